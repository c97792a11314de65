"""
Debounced auto-save for invoices being edited.

Every edit cancels the pending save and schedules a new one `delay` seconds
later, so nothing is written while edits keep arriving. Once a save has
started it is no longer cancellable and runs to completion; saves for one
draft are serialized.
"""
import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoicer.config import settings
from invoicer.exceptions import InvoicerError, NotFound
from invoicer.models.db_models import Invoice
from invoicer.models.schemas import DraftEdit, DraftInvoice, InvoiceWrite
from invoicer.services.lifecycle import InvoiceLifecycle

logger = logging.getLogger(__name__)

SaveFn = Callable[[DraftInvoice], Awaitable[int]]
ReadyFn = Callable[[DraftInvoice], Awaitable[bool]]


class AutoSaveCoordinator:
    def __init__(
        self,
        draft: DraftInvoice,
        save: SaveFn,
        ready: ReadyFn,
        delay: float | None = None,
    ) -> None:
        self.draft = draft
        self.delay = settings.autosave_delay_seconds if delay is None else delay
        self._save = save
        self._ready = ready
        self._pending: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._dirty = False
        self.save_count = 0
        self.last_saved_at: datetime | None = None
        self.last_error: str | None = None

    @property
    def save_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def apply(self, change: DraftEdit) -> None:
        """Merge the fields set on `change` into the in-memory draft."""
        for field in change.model_fields_set:
            value = getattr(change, field)
            if value is None and field in ("client_id", "items", "issue_date"):
                continue
            setattr(self.draft, field, value)

    async def edit(self, change: DraftEdit) -> None:
        self.apply(change)
        self._cancel_pending()
        if not await self._ready(self.draft):
            logger.debug("Auto-save skipped: business profile, client or selection missing")
            return
        self._dirty = True
        self._pending = asyncio.create_task(self._save_after_quiet_period())
        self._running.add(self._pending)
        self._pending.add_done_callback(self._running.discard)

    def _cancel_pending(self) -> None:
        if self.save_pending:
            self._pending.cancel()
        self._pending = None

    async def _save_after_quiet_period(self) -> None:
        await asyncio.sleep(self.delay)
        # From here on the save is in flight and must not be cancelled
        self._pending = None
        await self._save_now()

    async def _save_now(self) -> None:
        async with self._lock:
            if not self._dirty:
                return
            self._dirty = False
            snapshot = self.draft.model_copy(deep=True)
            try:
                await self._save(snapshot)
            except InvoicerError as exc:
                self._dirty = True
                self.last_error = str(exc)
                logger.error("Auto-save failed for invoice %s: %s", snapshot.invoice_no, exc)
                return
            self.draft.invoice_id = snapshot.invoice_id
            self.draft.invoice_no = snapshot.invoice_no
            self.draft.status = snapshot.status
            self.save_count += 1
            self.last_error = None
            self.last_saved_at = datetime.now(timezone.utc)

    async def discard(self) -> None:
        """
        Drop unsaved changes and any pending save, then wait for a save that
        had already started so nothing is written after this returns.
        """
        self._cancel_pending()
        self._dirty = False
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    async def flush(self) -> None:
        """Write unsaved changes now and wait for in-flight saves."""
        self._cancel_pending()
        # Runs after any in-flight save; retries a save that failed earlier
        await self._save_now()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)


class DraftSessionRegistry:
    """
    Open editing sessions, one AutoSaveCoordinator each.

    Every save opens its own database session so that a slow save never
    shares a transaction with a request.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        delay: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.delay = delay
        self.sessions: dict[str, AutoSaveCoordinator] = {}

    async def _autosave(self, draft: DraftInvoice) -> int:
        async with self.session_factory() as db:
            return await InvoiceLifecycle(db).autosave(draft)

    async def _can_autosave(self, draft: DraftInvoice) -> bool:
        async with self.session_factory() as db:
            return await InvoiceLifecycle(db).can_autosave(draft)

    async def open(self, invoice_id: int | None = None) -> tuple[str, AutoSaveCoordinator]:
        async with self.session_factory() as db:
            draft = await InvoiceLifecycle(db).open_draft(invoice_id)
        session_id = uuid.uuid4().hex
        coordinator = AutoSaveCoordinator(
            draft, save=self._autosave, ready=self._can_autosave, delay=self.delay
        )
        self.sessions[session_id] = coordinator
        logger.info("Opened draft session %s for invoice %s", session_id, draft.invoice_no)
        return session_id, coordinator

    def get(self, session_id: str) -> AutoSaveCoordinator:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise NotFound("Draft session", session_id) from None

    async def refresh_preview(self, session_id: str) -> AutoSaveCoordinator:
        """Recompute the provisional number of a draft that has not been finalized."""
        coordinator = self.get(session_id)
        draft = coordinator.draft
        async with self.session_factory() as db:
            if draft.invoice_id is not None:
                invoice = await db.get(Invoice, draft.invoice_id)
                if invoice is not None and invoice.finalized_at is not None:
                    return coordinator
            draft.invoice_no = await InvoiceLifecycle(db).preview_number()
        return coordinator

    async def finalize(self, session_id: str) -> Invoice:
        coordinator = self.get(session_id)
        await coordinator.flush()
        draft = coordinator.draft
        data = InvoiceWrite(
            client_id=draft.client_id,
            issue_date=draft.issue_date,
            due_date=draft.due_date,
            notes=draft.notes,
            items=draft.items,
        )
        async with self.session_factory() as db:
            invoice = await InvoiceLifecycle(db).finalize(data, draft.invoice_id)
        await coordinator.discard()
        del self.sessions[session_id]
        return invoice

    async def close(self, session_id: str) -> None:
        coordinator = self.get(session_id)
        await coordinator.flush()
        del self.sessions[session_id]
        logger.info("Closed draft session %s", session_id)

    async def discard_all(self) -> None:
        for coordinator in list(self.sessions.values()):
            await coordinator.discard()
        self.sessions.clear()

    async def close_all(self) -> None:
        for session_id in list(self.sessions):
            await self.close(session_id)
