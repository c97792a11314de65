import logging
from collections.abc import Sequence
from datetime import date

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.models.db_models import BusinessSettings, Client, Invoice, InvoiceStatus
from invoicer.models.schemas import DashboardSummary, InvoiceRead
from invoicer.services.lifecycle import display_status

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "Unknown Client"


def to_invoice_read(
    invoice: Invoice, client: Client | None, today: date | None = None
) -> InvoiceRead:
    read = InvoiceRead.model_validate(invoice)
    read.client_name = client.name if client is not None else UNKNOWN_CLIENT
    read.display_status = display_status(invoice, today)
    return read


async def list_invoices(
    db: AsyncSession,
    search: str | None = None,
    status: str | None = None,
    limit: int | None = None,
) -> list[InvoiceRead]:
    """
    Invoices newest first with client names resolved.

    `status` matches the stored status, except "overdue" which finds sent
    invoices past their due date. `search` matches the invoice number or client name.
    A client that no longer exists shows as "Unknown Client".
    """
    query = (
        select(Invoice, Client)
        .outerjoin(Client, Client.id == Invoice.client_id)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
    )
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(Invoice.invoice_no.ilike(pattern), Client.name.ilike(pattern))
        )
    if status and status != InvoiceStatus.OVERDUE.value:
        query = query.where(Invoice.status == status)

    result = await db.execute(query)
    today = date.today()
    invoices = [to_invoice_read(inv, client, today) for inv, client in result.all()]

    if status == InvoiceStatus.OVERDUE.value:
        invoices = [inv for inv in invoices if inv.display_status == status]
    if limit is not None:
        invoices = invoices[:limit]
    return invoices


async def dashboard_summary(db: AsyncSession, recent: int = 5) -> DashboardSummary:
    async def _sum(status: InvoiceStatus) -> float:
        result = await db.scalar(
            select(func.coalesce(func.sum(Invoice.total), 0.0)).where(
                Invoice.status == status.value
            )
        )
        return float(result or 0.0)

    async def _count(status: InvoiceStatus) -> int:
        result = await db.scalar(
            select(func.count()).select_from(Invoice).where(Invoice.status == status.value)
        )
        return int(result or 0)

    profile = await db.get(BusinessSettings, 1)
    return DashboardSummary(
        currency=profile.currency if profile else "MYR",
        total_revenue=await _sum(InvoiceStatus.PAID),
        outstanding=await _sum(InvoiceStatus.SENT),
        draft_count=await _count(InvoiceStatus.DRAFT),
        paid_count=await _count(InvoiceStatus.PAID),
        recent=await list_invoices(db, limit=recent),
    )


async def all_rows(db: AsyncSession, model: type) -> Sequence:
    result = await db.execute(select(model).order_by(model.id))
    return result.scalars().all()
