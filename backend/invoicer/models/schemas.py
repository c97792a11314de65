from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Business Settings
# ---------------------------------------------------------------------------

class BusinessSettingsRead(BaseModel):
    id: int = 1
    business_name: Optional[str] = None
    registration_no: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    bank_name: Optional[str] = None
    bank_account_name: Optional[str] = None
    bank_account_no: Optional[str] = None
    currency: str = "MYR"
    logo_path: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BusinessSettingsUpdate(BaseModel):
    business_name: Optional[str] = None
    registration_no: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    bank_name: Optional[str] = None
    bank_account_name: Optional[str] = None
    bank_account_no: Optional[str] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1)
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ClientRead(BaseModel):
    id: int
    name: str
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ClientUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


# ---------------------------------------------------------------------------
# Invoice items
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    """An editable line; `total` is always quantity * unit_price."""

    description: str = ""
    quantity: float = Field(default=1.0, ge=0)
    unit_price: float = Field(default=0.0, ge=0)
    total: float = 0.0

    @model_validator(mode="after")
    def _recompute_total(self) -> "LineItem":
        self.total = self.quantity * self.unit_price
        return self


class InvoiceItemRead(BaseModel):
    id: int
    invoice_id: int
    description: str
    quantity: float
    unit_price: float
    total: float

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

class InvoiceWrite(BaseModel):
    """Payload for finalizing a new invoice or editing an existing one."""

    client_id: int = 0
    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    items: list[LineItem] = Field(default_factory=list)


class InvoiceRead(BaseModel):
    id: int
    invoice_no: str
    client_id: int
    client_name: Optional[str] = None
    issue_date: date
    due_date: Optional[date] = None
    status: str
    display_status: Optional[str] = None
    notes: Optional[str] = None
    subtotal: float
    total: float
    finalized_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReceiptRead(BaseModel):
    id: int
    receipt_no: str
    invoice_id: int
    paid_date: date
    payment_method: str
    amount_paid: float
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class InvoiceDetail(BaseModel):
    invoice: InvoiceRead
    items: list[InvoiceItemRead] = Field(default_factory=list)
    client: Optional[ClientRead] = None
    receipt: Optional[ReceiptRead] = None
    editable: bool = True


class MarkPaidRequest(BaseModel):
    paid_date: date = Field(default_factory=date.today)
    payment_method: str = Field(default="Bank Transfer", min_length=1)
    notes: Optional[str] = None


class NextNumberRead(BaseModel):
    invoice_no: str
    receipt_no: str


class ShareLinks(BaseModel):
    """Prefilled links for sending an invoice; None where the client lacks a phone or e-mail."""

    invoice_no: str
    whatsapp: Optional[str] = None
    email: Optional[str] = None


# ---------------------------------------------------------------------------
# Draft editing sessions (auto-save)
# ---------------------------------------------------------------------------

class DraftInvoice(BaseModel):
    """In-memory state of an invoice being edited."""

    invoice_id: Optional[int] = None
    invoice_no: str = ""
    status: str = "draft"
    client_id: int = 0
    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    items: list[LineItem] = Field(
        default_factory=lambda: [LineItem(description="", quantity=1, unit_price=0)]
    )

    @property
    def subtotal(self) -> float:
        return sum(item.total for item in self.items)


class DraftEdit(BaseModel):
    """A partial change to a draft; unset fields are left alone."""

    client_id: Optional[int] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    items: Optional[list[LineItem]] = None


class DraftOpenRequest(BaseModel):
    invoice_id: Optional[int] = None


class DraftState(BaseModel):
    session_id: str
    invoice_id: Optional[int] = None
    invoice_no: str
    status: str
    client_id: int
    issue_date: date
    due_date: Optional[date] = None
    notes: Optional[str] = None
    items: list[LineItem]
    subtotal: float
    total: float
    save_pending: bool
    last_saved_at: Optional[datetime] = None
    last_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Dashboard / admin
# ---------------------------------------------------------------------------

class DashboardSummary(BaseModel):
    currency: str
    total_revenue: float
    outstanding: float
    draft_count: int
    paid_count: int
    recent: list[InvoiceRead] = Field(default_factory=list)


class CounterRead(BaseModel):
    name: str
    value: int
    next_number: str

    model_config = {"from_attributes": True}


class DeleteAllRequest(BaseModel):
    confirm: str
