import io
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.database import get_db
from invoicer.models.db_models import Client, Invoice, Receipt
from invoicer.models.schemas import DashboardSummary
from invoicer.services.export import ExportService
from invoicer.services.reports import all_rows, dashboard_summary

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["reports"])

exporter = ExportService()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/dashboard", response_model=DashboardSummary)
async def get_dashboard(db: AsyncSession = Depends(get_db)) -> DashboardSummary:
    """Revenue, outstanding amount and counts for the overview screen."""
    return await dashboard_summary(db)


@router.get("/export.xlsx")
async def export_workbook(db: AsyncSession = Depends(get_db)) -> StreamingResponse:
    """Download clients, invoices and receipts as a spreadsheet."""
    workbook = exporter.build_workbook(
        clients=await all_rows(db, Client),
        invoices=await all_rows(db, Invoice),
        receipts=await all_rows(db, Receipt),
    )
    return StreamingResponse(
        io.BytesIO(workbook),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="invoicer-export.xlsx"'},
    )
