from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="INVOICER_",
    )

    data_dir: Path = Path("./data")
    db_path: Path = Path("./data/invoicer.db")
    autosave_delay_seconds: float = 1.5
    default_due_days: int = 14
    default_currency: str = "MYR"
    max_logo_size_mb: int = 2
    cors_origins: list[str] = ["http://localhost:5173"]
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def max_logo_bytes(self) -> int:
        return self.max_logo_size_mb * 1024 * 1024

    @property
    def logos_dir(self) -> Path:
        return self.data_dir / "logos"


settings = Settings()
