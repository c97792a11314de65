import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.database import atomic
from invoicer.models.db_models import Client, Invoice, InvoiceItem, Receipt
from invoicer.services.sequence import SequenceCounterService

logger = logging.getLogger(__name__)


async def reset_counters(db: AsyncSession) -> None:
    """Restart invoice and receipt numbering at 001."""
    async with atomic(db):
        await SequenceCounterService(db).reset_all()
    logger.warning("Invoice and receipt counters reset to 0")


async def delete_all_data(db: AsyncSession) -> None:
    """
    Wipe clients, invoices, items and receipts and zero both counters in one
    transaction. The business profile is kept.
    """
    async with atomic(db):
        for model in (Receipt, InvoiceItem, Invoice, Client):
            await db.execute(delete(model))
        await SequenceCounterService(db).reset_all()
    logger.warning("All client, invoice and receipt data deleted")
