from datetime import date, time, timedelta
from unittest.mock import AsyncMock

import pytest

from carebook.core.exceptions import AuthError, NotFoundError, ValidationError
from carebook.models.appointment import AppointmentStatus
from carebook.schemas.scheduling import BookedWindow, OperatingHour, Slot
from carebook.services.availability import (
    AvailabilityResolver,
    RemoteScheduleRepository,
    duration_for_services,
    generate_slots,
    is_bookable_date,
    slot_fits_hours,
)
from tests.fixtures.booking_fixtures import BOOKING_DAY, PROVIDER_ID, TODAY, at, make_appointment

MORNING = OperatingHour(day_of_week=1, start_time=time(9), end_time=time(12))


def starts(slots):
    return [slot.start_time.strftime("%H:%M") for slot in slots]


class TestGenerateSlots:
    def test_booked_window_excluded(self):
        booked = [BookedWindow(start=at(BOOKING_DAY, 10), end=at(BOOKING_DAY, 10, 30))]
        slots = list(generate_slots(MORNING, BOOKING_DAY, 30, booked))
        assert starts(slots) == ["09:00", "09:30", "10:30", "11:00", "11:30"]

    def test_slot_shape(self):
        slot = next(generate_slots(MORNING, BOOKING_DAY, 30))
        assert slot.model_dump(by_alias=True, mode="json") == {
            "start_time": "09:00",
            "end_time": "09:30",
            "formatted_time": "9:00 AM - 9:30 AM",
            "datetime": "2025-06-02T09:00:00",
        }

    def test_is_lazy(self):
        slots = generate_slots(MORNING, BOOKING_DAY, 30)
        assert next(slots).start_time == time(9)
        assert next(slots).start_time == time(9, 30)

    def test_last_slot_must_end_by_closing(self):
        slots = list(generate_slots(MORNING, BOOKING_DAY, 45))
        assert starts(slots) == ["09:00", "09:45", "10:30", "11:15"]
        assert slots[-1].end_time == time(12)

    def test_fixed_step(self):
        slots = list(generate_slots(MORNING, BOOKING_DAY, 45, step_minutes=15))
        assert starts(slots)[:3] == ["09:00", "09:15", "09:30"]
        assert slots[-1].start_time == time(11, 15)

    def test_duration_longer_than_day(self):
        assert list(generate_slots(MORNING, BOOKING_DAY, 240)) == []

    @pytest.mark.parametrize("duration", [15, 30, 60, 90])
    def test_closed_day_has_no_slots(self, duration):
        closed = OperatingHour(day_of_week=0, is_closed=True)
        assert list(generate_slots(closed, BOOKING_DAY, duration)) == []
        assert list(generate_slots(None, BOOKING_DAY, duration)) == []

    def test_cancelled_booking_does_not_block(self):
        booked = [
            BookedWindow(
                start=at(BOOKING_DAY, 10),
                end=at(BOOKING_DAY, 11),
                status=AppointmentStatus.CANCELLED,
            )
        ]
        assert len(list(generate_slots(MORNING, BOOKING_DAY, 30, booked))) == 6

    @pytest.mark.parametrize(
        "status",
        [
            AppointmentStatus.PENDING,
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.NO_SHOW,
        ],
    )
    def test_non_cancelled_booking_blocks(self, status):
        booked = [
            BookedWindow(
                start=at(BOOKING_DAY, 10),
                end=at(BOOKING_DAY, 11),
                status=status,
            )
        ]
        slots = list(generate_slots(MORNING, BOOKING_DAY, 30, booked))
        assert starts(slots) == ["09:00", "09:30", "11:00", "11:30"]

    @pytest.mark.parametrize("step", [None, 5, 10, 15])
    @pytest.mark.parametrize(
        "window",
        [(9, 0, 9, 10), (9, 50, 10, 20), (10, 5, 11, 55), (11, 45, 12, 0)],
    )
    def test_no_slot_overlaps_booking(self, step, window):
        h1, m1, h2, m2 = window
        booked = BookedWindow(start=at(BOOKING_DAY, h1, m1), end=at(BOOKING_DAY, h2, m2))
        for slot in generate_slots(MORNING, BOOKING_DAY, 25, [booked], step):
            assert not booked.overlaps(slot.start_datetime, slot.end_datetime)
            assert slot.end_time <= MORNING.end_time

    def test_back_to_back_booking_allowed(self):
        booked = [BookedWindow(start=at(BOOKING_DAY, 9, 30), end=at(BOOKING_DAY, 10))]
        assert "09:00" in starts(generate_slots(MORNING, BOOKING_DAY, 30, booked))
        assert "10:00" in starts(generate_slots(MORNING, BOOKING_DAY, 30, booked))


class TestScheduleHelpers:
    def test_duration_for_services(self, schedule):
        assert duration_for_services(schedule, [1, 2]) == 45

    def test_duration_for_unknown_service(self, schedule):
        with pytest.raises(ValidationError) as exc_info:
            duration_for_services(schedule, [1, 99])
        assert "service_ids" in exc_info.value.field_errors

    def test_duration_requires_services(self, schedule):
        with pytest.raises(ValidationError):
            duration_for_services(schedule, [])

    def test_slot_fits_hours(self, schedule):
        assert slot_fits_hours(schedule, Slot.build(BOOKING_DAY, time(11, 30), time(12)))
        assert not slot_fits_hours(schedule, Slot.build(BOOKING_DAY, time(11, 45), time(12, 15)))
        assert not slot_fits_hours(schedule, Slot.build(BOOKING_DAY, time(8, 30), time(9)))

    def test_slot_on_closed_day_does_not_fit(self, schedule):
        sunday = date(2025, 6, 1)
        assert not slot_fits_hours(schedule, Slot.build(sunday, time(9), time(9, 30)))

    def test_is_bookable_date(self, schedule):
        assert is_bookable_date(schedule, BOOKING_DAY, TODAY)
        # Sunday is closed
        assert not is_bookable_date(schedule, TODAY, TODAY)
        assert not is_bookable_date(schedule, BOOKING_DAY, BOOKING_DAY + timedelta(days=1))
        assert not is_bookable_date(schedule, BOOKING_DAY + timedelta(days=7), TODAY, 5)


@pytest.fixture
def repository(schedule):
    repo = AsyncMock()
    repo.get_schedule.return_value = schedule
    repo.get_booked_windows.return_value = [
        BookedWindow(start=at(BOOKING_DAY, 10), end=at(BOOKING_DAY, 10, 30))
    ]
    return repo


class TestAvailabilityResolver:
    @pytest.mark.asyncio
    async def test_resolve(self, repository):
        resolver = AvailabilityResolver(repository, horizon_days=90)
        slots = await resolver.resolve(PROVIDER_ID, BOOKING_DAY, 30, today=TODAY)
        assert starts(slots) == ["09:00", "09:30", "10:30", "11:00", "11:30"]
        repository.get_booked_windows.assert_awaited_once_with(PROVIDER_ID, BOOKING_DAY)

    @pytest.mark.asyncio
    async def test_closed_day_is_empty_not_error(self, repository):
        resolver = AvailabilityResolver(repository)
        assert await resolver.resolve(PROVIDER_ID, date(2025, 6, 8), 30, today=TODAY) == []
        repository.get_booked_windows.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_past_date_rejected(self, repository):
        resolver = AvailabilityResolver(repository)
        with pytest.raises(ValidationError):
            await resolver.resolve(PROVIDER_ID, date(2025, 5, 30), 30, today=TODAY)
        repository.get_schedule.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_date_beyond_horizon_rejected(self, repository):
        resolver = AvailabilityResolver(repository, horizon_days=30)
        with pytest.raises(ValidationError):
            await resolver.resolve(PROVIDER_ID, TODAY + timedelta(days=31), 30, today=TODAY)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, -30])
    async def test_non_positive_duration_rejected(self, repository, duration):
        resolver = AvailabilityResolver(repository)
        with pytest.raises(ValidationError):
            await resolver.resolve(PROVIDER_ID, BOOKING_DAY, duration, today=TODAY)

    @pytest.mark.asyncio
    async def test_unknown_provider(self, repository):
        repository.get_schedule.return_value = None
        resolver = AvailabilityResolver(repository)
        with pytest.raises(NotFoundError):
            await resolver.resolve(999, BOOKING_DAY, 30, today=TODAY)

    @pytest.mark.asyncio
    async def test_resolve_for_services_uses_total_duration(self, repository):
        resolver = AvailabilityResolver(repository)
        slots = await resolver.resolve_for_services(
            PROVIDER_ID, BOOKING_DAY, [1, 2], today=TODAY
        )
        # 45 minute visits, 10:00-10:30 booked
        assert starts(slots) == ["09:00", "10:30", "11:15"]

    @pytest.mark.asyncio
    async def test_step_from_constructor(self, repository):
        resolver = AvailabilityResolver(repository, step_minutes=15)
        slots = await resolver.resolve(PROVIDER_ID, BOOKING_DAY, 30, today=TODAY)
        assert "09:15" in starts(slots)
        assert "09:45" not in starts(slots)


class TestRemoteScheduleRepository:
    @pytest.mark.asyncio
    async def test_booked_windows_from_calendar(self):
        client = AsyncMock()
        client.get_calendar_appointments.return_value = [
            make_appointment(appointment_id=1),
            make_appointment(appointment_id=2, status="cancelled"),
            make_appointment(appointment_id=3, provider_id=None),
        ]
        windows = await RemoteScheduleRepository(client).get_booked_windows(
            PROVIDER_ID, BOOKING_DAY
        )
        client.get_calendar_appointments.assert_awaited_once_with(BOOKING_DAY, BOOKING_DAY)
        assert [window.status for window in windows] == [
            AppointmentStatus.PENDING,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.PENDING,
        ]

    @pytest.mark.asyncio
    async def test_other_providers_calendar_rejected(self):
        client = AsyncMock()
        client.get_calendar_appointments.return_value = [
            make_appointment(appointment_id=3, provider_id=99),
        ]
        with pytest.raises(AuthError) as exc_info:
            await RemoteScheduleRepository(client).get_booked_windows(PROVIDER_ID, BOOKING_DAY)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_provider_schedule_is_none(self):
        client = AsyncMock()
        client.get_schedule_info.side_effect = NotFoundError()
        assert await RemoteScheduleRepository(client).get_schedule(5) is None
