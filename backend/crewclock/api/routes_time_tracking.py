import logging
from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from crewclock.dependencies import get_clock, get_db_session
from crewclock.domain.invoice_lines import service as invoice_lines_service
from crewclock.domain.invoice_lines.schemas import InvoiceDraft
from crewclock.domain.time_tracking import schemas as time_schemas
from crewclock.domain.time_tracking import service as time_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/v1/time-tracking/clock-in",
    response_model=time_schemas.TimeEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def clock_in(
    payload: time_schemas.ClockInRequest,
    session: AsyncSession = Depends(get_db_session),
    now: datetime = Depends(get_clock),
) -> time_schemas.TimeEntryResponse:
    entry = await time_service.clock_in(session, payload.user_id, payload.event_id, now=now)
    return time_schemas.TimeEntryResponse.from_entry(entry)


@router.put(
    "/v1/time-tracking/clock-out/{user_id}",
    response_model=time_schemas.TimeEntryResponse,
    status_code=status.HTTP_200_OK,
)
async def clock_out(
    user_id: str,
    session: AsyncSession = Depends(get_db_session),
    now: datetime = Depends(get_clock),
) -> time_schemas.TimeEntryResponse:
    entry = await time_service.clock_out(session, user_id, now=now)
    return time_schemas.TimeEntryResponse.from_entry(entry)


@router.put(
    "/v1/time-tracking/start-break/{user_id}",
    response_model=time_schemas.TimeEntryResponse,
    status_code=status.HTTP_200_OK,
)
async def start_break(
    user_id: str,
    session: AsyncSession = Depends(get_db_session),
    now: datetime = Depends(get_clock),
) -> time_schemas.TimeEntryResponse:
    entry = await time_service.start_break(session, user_id, now=now)
    return time_schemas.TimeEntryResponse.from_entry(entry)


@router.put(
    "/v1/time-tracking/end-break/{user_id}",
    response_model=time_schemas.TimeEntryResponse,
    status_code=status.HTTP_200_OK,
)
async def end_break(
    user_id: str,
    session: AsyncSession = Depends(get_db_session),
    now: datetime = Depends(get_clock),
) -> time_schemas.TimeEntryResponse:
    entry = await time_service.end_break(session, user_id, now=now)
    return time_schemas.TimeEntryResponse.from_entry(entry)


@router.get(
    "/v1/time-tracking/status/{user_id}",
    response_model=time_schemas.TimeStatusResponse,
    status_code=status.HTTP_200_OK,
)
async def get_status(
    user_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> time_schemas.TimeStatusResponse:
    status_info = await time_service.get_status(session, user_id)
    entry = status_info["entry"]
    return time_schemas.TimeStatusResponse(
        is_clocked_in=status_info["is_clocked_in"],
        state=status_info["state"],
        entry=time_schemas.TimeEntryResponse.from_entry(entry) if entry is not None else None,
    )


@router.get(
    "/v1/time-tracking/history/{user_id}",
    response_model=time_schemas.TimeHistoryResponse,
    status_code=status.HTTP_200_OK,
)
async def get_history(
    user_id: str,
    day: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_db_session),
) -> time_schemas.TimeHistoryResponse:
    events = await time_service.get_history(session, user_id, day)
    return time_schemas.TimeHistoryResponse(
        user_id=user_id,
        date=day.isoformat(),
        events=[time_schemas.TimelineEventResponse.from_event(event) for event in events],
    )


@router.get(
    "/v1/time-tracking/event/{event_id}/{user_id}",
    response_model=list[time_schemas.TimeEntryResponse],
    status_code=status.HTTP_200_OK,
)
async def get_event_time_entries(
    event_id: str,
    user_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> list[time_schemas.TimeEntryResponse]:
    entries = await time_service.get_event_time_entries(session, event_id, user_id)
    if not entries:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No time tracking records found for this event and user",
        )
    return [time_schemas.TimeEntryResponse.from_entry(entry) for entry in entries]


@router.get(
    "/v1/time-tracking/event/{event_id}/{user_id}/invoice-lines",
    response_model=InvoiceDraft,
    status_code=status.HTTP_200_OK,
)
async def get_event_invoice_lines(
    event_id: str,
    user_id: str,
    rate: Decimal | None = Query(None),
    tax_percentage: Decimal | None = Query(None, ge=0, le=100),
    session: AsyncSession = Depends(get_db_session),
    now: datetime = Depends(get_clock),
) -> InvoiceDraft:
    return await invoice_lines_service.build_event_invoice_draft(
        session,
        event_id,
        user_id,
        rate=rate,
        tax_percentage=tax_percentage,
        now=now,
    )


@router.post(
    "/v1/time-tracking/force-close-stale",
    response_model=list[time_schemas.TimeEntryResponse],
    status_code=status.HTTP_200_OK,
)
async def force_close_stale_sessions(
    session: AsyncSession = Depends(get_db_session),
    now: datetime = Depends(get_clock),
) -> list[time_schemas.TimeEntryResponse]:
    entries = await time_service.force_close_stale_sessions(session, now=now)
    if entries:
        logger.warning("time_tracking_force_closed_sessions", extra={"extra": {"count": len(entries)}})
    return [time_schemas.TimeEntryResponse.from_entry(entry) for entry in entries]
