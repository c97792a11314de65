import logging

from fastapi import APIRouter, Depends, Request

from invoicer.models.schemas import (
    DraftEdit,
    DraftOpenRequest,
    DraftState,
    InvoiceRead,
)
from invoicer.services.autosave import AutoSaveCoordinator, DraftSessionRegistry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/drafts", tags=["drafts"])


def get_registry(request: Request) -> DraftSessionRegistry:
    return request.app.state.drafts


def _state(session_id: str, coordinator: AutoSaveCoordinator) -> DraftState:
    draft = coordinator.draft
    return DraftState(
        session_id=session_id,
        invoice_id=draft.invoice_id,
        invoice_no=draft.invoice_no,
        status=draft.status,
        client_id=draft.client_id,
        issue_date=draft.issue_date,
        due_date=draft.due_date,
        notes=draft.notes,
        items=draft.items,
        subtotal=draft.subtotal,
        total=draft.subtotal,
        save_pending=coordinator.save_pending,
        last_saved_at=coordinator.last_saved_at,
        last_error=coordinator.last_error,
    )


@router.post("", response_model=DraftState, status_code=201)
async def open_draft(
    body: DraftOpenRequest,
    registry: DraftSessionRegistry = Depends(get_registry),
) -> DraftState:
    """Start editing a new invoice, or an existing unpaid one."""
    session_id, coordinator = await registry.open(body.invoice_id)
    return _state(session_id, coordinator)


@router.get("/{session_id}", response_model=DraftState)
async def get_draft(
    session_id: str,
    registry: DraftSessionRegistry = Depends(get_registry),
) -> DraftState:
    coordinator = await registry.refresh_preview(session_id)
    return _state(session_id, coordinator)


@router.patch("/{session_id}", response_model=DraftState)
async def edit_draft(
    session_id: str,
    body: DraftEdit,
    registry: DraftSessionRegistry = Depends(get_registry),
) -> DraftState:
    """Apply an edit; the draft is saved once edits pause for the debounce window."""
    coordinator = registry.get(session_id)
    await coordinator.edit(body)
    return _state(session_id, coordinator)


@router.post("/{session_id}/finalize", response_model=InvoiceRead)
async def finalize_draft(
    session_id: str,
    registry: DraftSessionRegistry = Depends(get_registry),
) -> InvoiceRead:
    invoice = await registry.finalize(session_id)
    return InvoiceRead.model_validate(invoice)


@router.delete("/{session_id}", status_code=204)
async def close_draft(
    session_id: str,
    registry: DraftSessionRegistry = Depends(get_registry),
) -> None:
    """Stop editing; pending changes are written first."""
    await registry.close(session_id)
