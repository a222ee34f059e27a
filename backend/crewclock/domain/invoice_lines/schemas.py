import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class InvoiceLine(BaseModel):
    entry_id: str
    date: datetime.date
    actual_hours: str
    notes: str = ""
    billable_hours: Decimal
    rate: Decimal
    total: Decimal
    flags: list[str] = Field(default_factory=list)


class InvoiceDraft(BaseModel):
    event_id: str | None = None
    user_id: str | None = None
    currency: str
    items: list[InvoiceLine]
    subtotal: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    total: Decimal
    flagged_entry_ids: list[str] = Field(default_factory=list)
