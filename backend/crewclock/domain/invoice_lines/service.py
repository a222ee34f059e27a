"""Turns recorded sessions into invoice rows for the invoice workflow.

Rows with an unusable rate are rejected outright; rows from sessions that ran
past the maximum duration are kept and reported for review.
"""

import logging
from datetime import datetime, tzinfo
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from crewclock.domain.invoice_lines.schemas import InvoiceDraft, InvoiceLine
from crewclock.domain.time_tracking import service as time_service
from crewclock.domain.time_tracking.billing import (
    CENT,
    ZERO,
    BillableFlag,
    calculate_billable,
    format_actual_hours,
    to_decimal,
)
from crewclock.domain.time_tracking.errors import InvalidRate
from crewclock.domain.time_tracking.state import SessionSnapshot, ensure_utc, utcnow
from crewclock.settings import settings

logger = logging.getLogger(__name__)

_FLAG_NOTES = {
    BillableFlag.SESSION_OPEN: "Session still open",
    BillableFlag.STALE_SESSION: "Exceeded maximum session length, review hours",
}


def _calculate_tax(subtotal: Decimal, tax_percentage: Decimal) -> Decimal:
    if tax_percentage <= ZERO:
        return ZERO.quantize(CENT)
    return (subtotal * tax_percentage / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)


def assemble_invoice_lines(
    sessions: Iterable[SessionSnapshot],
    rate: Decimal | int | float | str | None,
    tax_percentage: Decimal | int | float | str | None,
    tz: tzinfo,
    now: datetime | None = None,
    *,
    max_session_hours: int | None = None,
    currency: str | None = None,
) -> InvoiceDraft:
    now = now or utcnow()
    tax_value = to_decimal(tax_percentage)
    if tax_value < ZERO or tax_value > Decimal(100):
        raise ValueError("Tax percentage must be between 0 and 100")

    items: list[InvoiceLine] = []
    flagged: list[str] = []
    rejected: list[dict] = []
    for snapshot in sessions:
        summary = calculate_billable(snapshot, rate, now=now, max_session_hours=max_session_hours)
        if not summary.has_valid_rate:
            rejected.append({"entry_id": snapshot.entry_id, "rate": str(summary.rate)})
            continue
        if summary.needs_review:
            flagged.append(snapshot.entry_id)
        items.append(
            InvoiceLine(
                entry_id=snapshot.entry_id,
                date=ensure_utc(snapshot.clock_in_time).astimezone(tz).date(),
                actual_hours=format_actual_hours(snapshot, tz),
                notes="; ".join(_FLAG_NOTES[flag] for flag in summary.flags if flag in _FLAG_NOTES),
                billable_hours=summary.billable_hours,
                rate=summary.rate,
                total=summary.line_total,
                flags=[flag.value for flag in summary.flags],
            )
        )

    if rejected:
        logger.info("invoice_lines_rejected_invalid_rate", extra={"extra": {"entries": len(rejected)}})
        raise InvalidRate(errors=rejected)

    subtotal = sum((item.total for item in items), ZERO).quantize(CENT)
    tax_amount = _calculate_tax(subtotal, tax_value)
    return InvoiceDraft(
        currency=currency or settings.currency,
        items=items,
        subtotal=subtotal,
        tax_percentage=tax_value,
        tax_amount=tax_amount,
        total=(subtotal + tax_amount).quantize(CENT),
        flagged_entry_ids=flagged,
    )


async def build_event_invoice_draft(
    session: AsyncSession,
    event_id: str,
    user_id: str,
    *,
    rate: Decimal | None = None,
    tax_percentage: Decimal | None = None,
    now: datetime | None = None,
) -> InvoiceDraft:
    entries = await time_service.get_event_time_entries(session, event_id, user_id)
    draft = assemble_invoice_lines(
        (entry.snapshot() for entry in entries),
        rate if rate is not None else settings.default_hourly_rate,
        tax_percentage if tax_percentage is not None else settings.invoice_tax_percentage,
        settings.tzinfo,
        now,
        max_session_hours=settings.max_session_hours,
    )
    draft.event_id = event_id
    draft.user_id = user_id
    logger.info(
        "invoice_lines_assembled",
        extra={
            "extra": {
                "event_id": event_id,
                "user_id": user_id,
                "lines": len(draft.items),
                "flagged": len(draft.flagged_entry_ids),
            }
        },
    )
    return draft
