from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence

import structlog

from carebook.core.config import settings
from carebook.core.exceptions import AuthError, NotFoundError, ValidationError
from carebook.models.appointment import BLOCKING_STATUSES
from carebook.schemas.scheduling import BookedWindow, OperatingHour, ScheduleInfo, Slot
from carebook.utils.timeformat import clock_from_minutes, minutes_of_day

logger = structlog.get_logger(__name__)


class ScheduleRepository(Protocol):
    """Source of a provider's schedule and existing bookings."""

    async def get_schedule(self, provider_id: int) -> Optional[ScheduleInfo]:
        ...

    async def get_booked_windows(
        self, provider_id: int, on_date: date
    ) -> List[BookedWindow]:
        ...


def generate_slots(
    day_hours: Optional[OperatingHour],
    on_date: date,
    duration_minutes: int,
    booked: Iterable[BookedWindow] = (),
    step_minutes: Optional[int] = None,
) -> Iterator[Slot]:
    """Yield bookable slots for one day in chronological order.

    Candidates start at opening time and advance by ``step_minutes`` (the
    duration itself when unset) while the slot still ends by closing time.
    Candidates overlapping a blocking booked window are skipped.
    """
    if day_hours is None or not day_hours.is_open:
        return
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    step = step_minutes or duration_minutes
    if step <= 0:
        raise ValueError("step_minutes must be positive")

    blocking = [window for window in booked if window.status in BLOCKING_STATUSES]
    opens = minutes_of_day(day_hours.start_time)
    closes = minutes_of_day(day_hours.end_time)

    start = opens
    while start + duration_minutes <= closes:
        slot_start = datetime.combine(on_date, clock_from_minutes(start))
        slot_end = slot_start + timedelta(minutes=duration_minutes)
        if not any(window.overlaps(slot_start, slot_end) for window in blocking):
            yield Slot.build(on_date, slot_start.time(), slot_end.time())
        start += step


def duration_for_services(schedule: ScheduleInfo, service_ids: Sequence[int]) -> int:
    """Total duration of the selected services in minutes."""
    if not service_ids:
        raise ValidationError(
            field_errors={"service_ids": ["Select at least one service."]}
        )
    total = 0
    for service_id in service_ids:
        service = schedule.service(service_id)
        if service is None:
            raise ValidationError(
                field_errors={
                    "service_ids": [f"Service {service_id} is not offered by this provider."]
                }
            )
        total += service.duration_minutes
    return total


def slot_fits_hours(schedule: ScheduleInfo, slot: Slot) -> bool:
    """Check the slot lies within the operating hours of its date."""
    hours = schedule.hours_for(slot.date)
    if hours is None or not hours.is_open:
        return False
    return (
        hours.start_time <= slot.start_time
        and slot.end_time <= hours.end_time
        and slot.start_time < slot.end_time
    )


def is_bookable_date(
    schedule: ScheduleInfo,
    on_date: date,
    today: date,
    horizon_days: Optional[int] = None,
) -> bool:
    """Dates in the past, past the horizon or on a closed weekday are disabled."""
    horizon = horizon_days if horizon_days is not None else settings.BOOKING_HORIZON_DAYS
    if on_date < today or on_date > today + timedelta(days=horizon):
        return False
    hours = schedule.hours_for(on_date)
    return hours is not None and hours.is_open


class AvailabilityResolver:
    """Resolve bookable slots from operating hours and existing bookings."""

    def __init__(
        self,
        repository: ScheduleRepository,
        step_minutes: Optional[int] = None,
        horizon_days: Optional[int] = None,
    ):
        self.repository = repository
        self.step_minutes = (
            step_minutes if step_minutes is not None else settings.SLOT_STEP_MINUTES
        )
        self.horizon_days = (
            horizon_days if horizon_days is not None else settings.BOOKING_HORIZON_DAYS
        )

    def validate_date(self, on_date: date, today: Optional[date] = None) -> None:
        today = today or date.today()
        if on_date < today:
            raise ValidationError(
                field_errors={"date": ["Please choose a date that is not in the past."]}
            )
        if on_date > today + timedelta(days=self.horizon_days):
            raise ValidationError(
                field_errors={
                    "date": [
                        f"Bookings open at most {self.horizon_days} days in advance."
                    ]
                }
            )

    async def get_schedule(self, provider_id: int) -> ScheduleInfo:
        schedule = await self.repository.get_schedule(provider_id)
        if schedule is None:
            raise NotFoundError(f"Provider {provider_id} was not found.")
        return schedule

    async def resolve(
        self,
        provider_id: int,
        on_date: date,
        duration_minutes: int,
        today: Optional[date] = None,
    ) -> List[Slot]:
        """Ordered bookable slots; an empty list means no availability."""
        self.validate_date(on_date, today)
        if duration_minutes <= 0:
            raise ValidationError(
                field_errors={"duration_minutes": ["Duration must be positive."]}
            )

        schedule = await self.get_schedule(provider_id)
        hours = schedule.hours_for(on_date)
        if hours is None or not hours.is_open:
            logger.info("Provider closed on date", provider_id=provider_id, date=str(on_date))
            return []

        booked = await self.repository.get_booked_windows(provider_id, on_date)
        slots = list(
            generate_slots(hours, on_date, duration_minutes, booked, self.step_minutes)
        )
        logger.debug(
            "Resolved availability",
            provider_id=provider_id,
            date=str(on_date),
            duration_minutes=duration_minutes,
            booked=len(booked),
            slots=len(slots),
        )
        return slots

    async def resolve_for_services(
        self,
        provider_id: int,
        on_date: date,
        service_ids: Sequence[int],
        today: Optional[date] = None,
    ) -> List[Slot]:
        schedule = await self.get_schedule(provider_id)
        duration = duration_for_services(schedule, service_ids)
        return await self.resolve(provider_id, on_date, duration, today)


class RemoteScheduleRepository:
    """Schedule repository backed by the marketplace API.

    Booked windows come from ``/provider/calendar-appointments``, which only
    returns the calendar of the authenticated provider. Local availability is
    therefore only resolvable for the caller's own ``provider_id``.
    """

    def __init__(self, client):
        self.client = client

    async def get_schedule(self, provider_id: int) -> Optional[ScheduleInfo]:
        try:
            return await self.client.get_schedule_info(provider_id)
        except NotFoundError:
            return None

    async def get_booked_windows(
        self, provider_id: int, on_date: date
    ) -> List[BookedWindow]:
        appointments = await self.client.get_calendar_appointments(on_date, on_date)
        foreign = {
            appointment.provider_id
            for appointment in appointments
            if appointment.provider_id not in (None, provider_id)
        }
        if foreign:
            logger.warning(
                "Calendar belongs to another provider",
                requested_provider_id=provider_id,
                calendar_provider_ids=sorted(foreign),
            )
            raise AuthError(
                "Availability can only be previewed for your own calendar.",
                status_code=403,
            )
        # Rows without provider_id come from the caller's own calendar
        return [
            BookedWindow(
                start=appointment.start_time,
                end=appointment.end_time,
                status=appointment.status,
            )
            for appointment in appointments
            if appointment.date == on_date
        ]
