import uuid
from pathlib import Path

from fastapi import UploadFile

from invoicer.config import settings

ALLOWED_LOGO_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
}


class StorageService:
    """Handles saving and removing files on local disk."""

    def get_logos_dir(self) -> Path:
        settings.logos_dir.mkdir(parents=True, exist_ok=True)
        return settings.logos_dir

    async def save_logo(self, file: UploadFile) -> Path:
        """
        Save an uploaded logo image to disk.

        Returns:
            Path of the stored file.
        """
        suffix = ALLOWED_LOGO_TYPES.get(file.content_type or "")
        if suffix is None:
            raise ValueError("Only PNG or JPEG logos are accepted.")

        contents = await file.read()
        if len(contents) > settings.max_logo_bytes:
            raise ValueError(
                f"Logo exceeds {settings.max_logo_size_mb}MB limit "
                f"({len(contents) / 1024 / 1024:.1f}MB uploaded)"
            )

        file_path = self.get_logos_dir() / f"{uuid.uuid4()}{suffix}"
        file_path.write_bytes(contents)
        return file_path

    def remove_file(self, path: str | None) -> None:
        if not path:
            return
        file_path = Path(path)
        if file_path.is_file() and file_path.parent.resolve() == self.get_logos_dir().resolve():
            file_path.unlink()

