import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.config import settings as app_settings
from invoicer.database import get_db
from invoicer.models.db_models import BusinessSettings
from invoicer.models.schemas import BusinessSettingsRead, BusinessSettingsUpdate
from invoicer.services.storage import StorageService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/settings", tags=["settings"])

storage = StorageService()


async def _get_or_create(db: AsyncSession) -> BusinessSettings:
    """Return the single settings row, creating it with defaults if absent."""
    result = await db.execute(select(BusinessSettings).where(BusinessSettings.id == 1))
    row = result.scalar_one_or_none()
    if row is None:
        row = BusinessSettings(id=1, currency=app_settings.default_currency)
        db.add(row)
        await db.commit()
        await db.refresh(row)
    return row


@router.get("", response_model=BusinessSettingsRead)
async def get_settings(db: AsyncSession = Depends(get_db)) -> BusinessSettingsRead:
    """Return the business profile (creates a blank row on first call)."""
    row = await _get_or_create(db)
    return BusinessSettingsRead.model_validate(row)


@router.put("", response_model=BusinessSettingsRead)
async def update_settings(
    body: BusinessSettingsUpdate,
    db: AsyncSession = Depends(get_db),
) -> BusinessSettingsRead:
    """Partial-update the business profile."""
    row = await _get_or_create(db)
    for field, value in body.model_dump(exclude_unset=True).items():
        if field == "currency" and value:
            value = value.upper()
        setattr(row, field, value)
    row.updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(row)
    logger.info("Business settings updated.")
    return BusinessSettingsRead.model_validate(row)


@router.post("/logo", response_model=BusinessSettingsRead)
async def upload_logo(
    file: UploadFile = File(description="PNG or JPEG logo"),
    db: AsyncSession = Depends(get_db),
) -> BusinessSettingsRead:
    """Store a logo image on disk and point the business profile at it."""
    try:
        path = await storage.save_logo(file)
    except ValueError as exc:
        logger.warning("Rejected logo %s: %s", file.filename, exc)
        raise HTTPException(422, detail=str(exc))

    row = await _get_or_create(db)
    previous = row.logo_path
    row.logo_path = str(path)
    row.updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(row)
    storage.remove_file(previous)
    logger.info("Logo saved to %s", path)
    return BusinessSettingsRead.model_validate(row)


@router.delete("/logo", response_model=BusinessSettingsRead)
async def remove_logo(db: AsyncSession = Depends(get_db)) -> BusinessSettingsRead:
    row = await _get_or_create(db)
    previous = row.logo_path
    row.logo_path = None
    await db.commit()
    await db.refresh(row)
    storage.remove_file(previous)
    return BusinessSettingsRead.model_validate(row)
