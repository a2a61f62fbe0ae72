from datetime import date
from typing import List, Optional

import structlog

from carebook.schemas.appointment import (
    Appointment,
    AppointmentCounts,
    AppointmentFilters,
)
from carebook.schemas.scheduling import OperatingHour
from carebook.services.filters import DEFAULT_FILTERS, filters_cache_params
from carebook.services.projector import (
    AppointmentListView,
    CalendarGrid,
    CalendarView,
    calendar_range,
    project_calendar,
    project_list,
)
from carebook.services.query_cache import (
    PROVIDER_APPOINTMENT_COUNTS,
    PROVIDER_APPOINTMENTS,
    PROVIDER_CALENDAR,
    PROVIDER_OPERATING_HOURS,
    PROVIDER_SCHEDULE,
    PROVIDER_TIMESLOTS,
    QueryCache,
)

logger = structlog.get_logger(__name__)


class ProviderAppointmentsService:
    """Cached provider-side reads feeding the list and calendar projections."""

    def __init__(self, client, cache: QueryCache):
        self.client = client
        self.cache = cache

    async def list(self, filters: Optional[AppointmentFilters] = None) -> AppointmentListView:
        filters = filters or DEFAULT_FILTERS
        result = await self.cache.get_or_fetch(
            PROVIDER_APPOINTMENTS,
            filters_cache_params(filters),
            lambda: self.client.list_provider_appointments(filters),
        )
        return project_list(result, filters)

    async def counts(self) -> AppointmentCounts:
        return await self.cache.get_or_fetch(
            PROVIDER_APPOINTMENT_COUNTS, None, self.client.get_appointment_counts
        )

    async def calendar_appointments(self, start: date, end: date) -> List[Appointment]:
        return await self.cache.get_or_fetch(
            PROVIDER_CALENDAR,
            {"start_date": start.isoformat(), "end_date": end.isoformat()},
            lambda: self.client.get_calendar_appointments(start, end),
        )

    async def calendar(self, view: CalendarView, anchor: date) -> CalendarGrid:
        start, end = calendar_range(view, anchor)
        appointments = await self.calendar_appointments(start, end)
        return project_calendar(appointments, view, anchor)

    async def get_appointment(self, appointment_id: int) -> Appointment:
        # Always fresh: transitions are checked against the current status
        return await self.client.get_appointment(appointment_id)

    async def operating_hours(self) -> List[OperatingHour]:
        return await self.cache.get_or_fetch(
            PROVIDER_OPERATING_HOURS, None, self.client.get_operating_hours
        )

    async def update_operating_hours(
        self, hours: List[OperatingHour]
    ) -> List[OperatingHour]:
        updated = await self.client.update_operating_hours(hours)
        self.cache.invalidate(PROVIDER_OPERATING_HOURS)
        self.cache.invalidate(PROVIDER_SCHEDULE)
        self.cache.invalidate(PROVIDER_TIMESLOTS)
        logger.info("Operating hours updated", days=len(updated))
        return updated
