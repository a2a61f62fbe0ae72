from datetime import date
from typing import Any, List, Optional, Sequence

import pydantic
import structlog

from carebook.core.exceptions import ConflictError, ValidationError
from carebook.schemas.appointment import Appointment, AppointmentCreate
from carebook.schemas.booking import BookingDraft
from carebook.schemas.scheduling import ScheduleInfo, Slot
from carebook.services.availability import (
    duration_for_services,
    is_bookable_date,
    slot_fits_hours,
)
from carebook.services.booking_draft import BookingDraftStore, slot_invalidated_by
from carebook.services.lifecycle import invalidate_appointment_views
from carebook.services.query_cache import (
    PROVIDER_SCHEDULE,
    PROVIDER_TIMESLOTS,
    QueryCache,
)

logger = structlog.get_logger(__name__)

CLEARED_SLOT = {"selected_slot": None, "selected_time": None}


def slot_query_params(provider_id: int, on_date: date) -> dict[str, Any]:
    return {"provider_id": provider_id, "date": on_date.isoformat()}


class SlotQueryCoordinator:
    """Tags slot fetches with a generation so superseded responses are dropped."""

    def __init__(self, client, cache: QueryCache):
        self.client = client
        self.cache = cache
        self.generation = 0

    def cancel(self) -> None:
        self.generation += 1

    async def fetch(
        self, provider_id: Optional[int], on_date: Optional[date]
    ) -> Optional[List[Slot]]:
        """Slots for the inputs, or ``None`` if disabled or superseded."""
        if provider_id is None or on_date is None:
            return None
        self.generation += 1
        generation = self.generation
        slots = await self.cache.get_or_fetch(
            PROVIDER_TIMESLOTS,
            slot_query_params(provider_id, on_date),
            lambda: self.client.get_available_slots(provider_id, on_date),
        )
        if generation != self.generation:
            logger.debug(
                "Discarding stale slot response",
                provider_id=provider_id,
                date=str(on_date),
            )
            return None
        return slots


class BookingWizard:
    """Patient booking flow: services, date, time slot, then submission."""

    def __init__(
        self,
        draft_store: BookingDraftStore,
        client,
        cache: QueryCache,
        coordinator: Optional[SlotQueryCoordinator] = None,
    ):
        self.draft_store = draft_store
        self.client = client
        self.cache = cache
        self.coordinator = coordinator or SlotQueryCoordinator(client, cache)

    async def _update(self, partial: dict) -> BookingDraft:
        draft = await self.draft_store.get()
        if slot_invalidated_by(draft, partial):
            # Slot is only valid for the provider, date and services it was picked for
            partial = {**partial, **CLEARED_SLOT}
            self.coordinator.cancel()
        return await self.draft_store.set_data(partial)

    async def schedule(self, provider_id: int) -> ScheduleInfo:
        return await self.cache.get_or_fetch(
            PROVIDER_SCHEDULE,
            {"provider_id": provider_id},
            lambda: self.client.get_schedule_info(provider_id),
        )

    async def draft(self) -> BookingDraft:
        return await self.draft_store.get()

    async def start(self, provider_id: int) -> BookingDraft:
        draft = await self.draft_store.get()
        if draft.provider_id == provider_id:
            return draft
        logger.info("Starting booking", provider_id=provider_id)
        return await self._update(
            {
                "provider_id": provider_id,
                "selected_services": [],
                "selected_date": None,
                **CLEARED_SLOT,
            }
        )

    async def select_services(self, service_ids: Sequence[int]) -> BookingDraft:
        if not service_ids:
            raise ValidationError(
                field_errors={"service_ids": ["Please select at least one service."]}
            )
        return await self._update({"selected_services": list(service_ids)})

    async def select_date(
        self, on_date: date, today: Optional[date] = None
    ) -> BookingDraft:
        draft = await self.draft_store.get()
        today = today or date.today()
        if on_date < today:
            raise ValidationError(
                field_errors={"appointment_date": ["Please choose a future date."]}
            )
        if draft.provider_id is not None:
            schedule = await self.schedule(draft.provider_id)
            if not is_bookable_date(schedule, on_date, today):
                raise ValidationError(
                    field_errors={
                        "appointment_date": ["The provider is not available on this date."]
                    }
                )
        return await self._update({"selected_date": on_date})

    async def select_slot(self, slot: Slot) -> BookingDraft:
        draft = await self.draft_store.get()
        if draft.selected_date is None:
            raise ValidationError(
                field_errors={"appointment_date": ["Please select a date first."]}
            )
        if slot.date != draft.selected_date:
            raise ValidationError(
                field_errors={"start_time": ["The selected slot is not on the chosen date."]}
            )
        return await self.draft_store.set_data(
            {"selected_slot": slot, "selected_time": slot.formatted_time}
        )

    async def set_notes(self, notes: Optional[str]) -> BookingDraft:
        notes = (notes or "").strip() or None
        return await self.draft_store.set_data({"notes": notes})

    async def fetch_slots(self) -> Optional[List[Slot]]:
        """Available slots for the current selection; ``None`` until it is complete."""
        draft = await self.draft_store.get()
        if not draft.ready_for_slots:
            return None
        slots = await self.coordinator.fetch(draft.provider_id, draft.selected_date)
        if slots is None:
            return None
        schedule = await self.schedule(draft.provider_id)
        duration = duration_for_services(schedule, draft.selected_services)
        # Remote slots are per date only; keep those sized for the chosen services
        return [slot for slot in slots if slot.duration_minutes == duration]

    def _missing_fields(self, draft: BookingDraft) -> dict[str, list[str]]:
        errors: dict[str, list[str]] = {}
        if draft.provider_id is None:
            errors["provider_id"] = ["Please select a provider."]
        if not draft.selected_services:
            errors["service_ids"] = ["Please select at least one service."]
        if draft.selected_date is None:
            errors["appointment_date"] = ["Please select a date."]
        if draft.selected_slot is None:
            errors["start_time"] = ["Please select a time slot."]
        return errors

    async def submit(self, today: Optional[date] = None) -> Appointment:
        draft = await self.draft_store.get()
        missing = self._missing_fields(draft)
        if missing:
            raise ValidationError(field_errors=missing)

        slot = draft.selected_slot
        if slot.date != draft.selected_date:
            raise ValidationError(
                field_errors={"start_time": ["The selected slot is not on the chosen date."]}
            )
        if draft.selected_date < (today or date.today()):
            raise ValidationError(
                field_errors={"appointment_date": ["Please choose a future date."]}
            )
        schedule = await self.schedule(draft.provider_id)
        duration = duration_for_services(schedule, draft.selected_services)
        if slot.duration_minutes != duration:
            raise ValidationError(
                field_errors={
                    "start_time": [
                        f"The selected slot does not fit the {duration} minutes "
                        "of the chosen services."
                    ]
                }
            )
        if not slot_fits_hours(schedule, slot):
            raise ValidationError(
                field_errors={
                    "start_time": ["The selected time is outside the provider's hours."]
                }
            )

        try:
            booking = AppointmentCreate(
                provider_id=draft.provider_id,
                service_ids=draft.selected_services,
                appointment_date=draft.selected_date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                notes=draft.notes,
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(exc.errors()[0]["msg"]) from exc

        try:
            appointment = await self.client.create_appointment(booking)
        except ConflictError:
            logger.info(
                "Selected slot was taken",
                provider_id=draft.provider_id,
                date=str(draft.selected_date),
                start_time=slot.start_time.isoformat(),
            )
            self.cache.invalidate(
                PROVIDER_TIMESLOTS,
                match=slot_query_params(draft.provider_id, draft.selected_date),
            )
            await self.draft_store.set_data(CLEARED_SLOT)
            raise

        invalidate_appointment_views(self.cache, draft.selected_date, draft.provider_id)
        self.coordinator.cancel()
        await self.draft_store.clear()
        return appointment

    async def abandon(self) -> BookingDraft:
        self.coordinator.cancel()
        return await self.draft_store.clear()
