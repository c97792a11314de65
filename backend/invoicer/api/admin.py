import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.database import get_db
from invoicer.models.schemas import CounterRead, DeleteAllRequest
from invoicer.services import maintenance
from invoicer.services.numbering import PREFIXES, document_number
from invoicer.services.sequence import SequenceCounterService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])

DELETE_CONFIRMATION = "DELETE"


async def _counters(db: AsyncSession) -> list[CounterRead]:
    counters = SequenceCounterService(db)
    reads = []
    for name in PREFIXES:
        value = await counters.current(name)
        reads.append(CounterRead(
            name=name, value=value, next_number=document_number(name, value + 1)
        ))
    return reads


@router.get("/counters", response_model=list[CounterRead])
async def get_counters(db: AsyncSession = Depends(get_db)) -> list[CounterRead]:
    return await _counters(db)


@router.post("/reset-counters", response_model=list[CounterRead])
async def reset_counters(db: AsyncSession = Depends(get_db)) -> list[CounterRead]:
    """Restart invoice and receipt numbering at 001."""
    await maintenance.reset_counters(db)
    return await _counters(db)


@router.post("/delete-all", status_code=204)
async def delete_all_data(
    body: DeleteAllRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Irreversibly delete all clients, invoices and receipts and reset numbering.
    The body must carry {"confirm": "DELETE"} as the second confirmation step.
    """
    if body.confirm != DELETE_CONFIRMATION:
        raise HTTPException(422, f'Type "{DELETE_CONFIRMATION}" to confirm.')
    # Open editing sessions would write their drafts back after the wipe
    await request.app.state.drafts.discard_all()
    await maintenance.delete_all_data(db)
