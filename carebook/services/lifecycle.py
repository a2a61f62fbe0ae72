from datetime import date, datetime, timezone
from typing import Optional

import structlog

from carebook.core.exceptions import InvalidStateError, ValidationError
from carebook.models.appointment import AppointmentStatus, can_transition
from carebook.schemas.appointment import Appointment
from carebook.services.query_cache import (
    PROVIDER_APPOINTMENT_COUNTS,
    PROVIDER_APPOINTMENTS,
    PROVIDER_CALENDAR,
    PROVIDER_TIMESLOTS,
    QueryCache,
)

logger = structlog.get_logger(__name__)

# Remote action path per target status
TRANSITION_ACTIONS = {
    AppointmentStatus.CONFIRMED: "confirm",
    AppointmentStatus.COMPLETED: "complete",
    AppointmentStatus.CANCELLED: "cancel",
    AppointmentStatus.NO_SHOW: "no-show",
}


def _range_contains(params: dict, on_date: date) -> bool:
    try:
        start = date.fromisoformat(params["start_date"])
        end = date.fromisoformat(params["end_date"])
    except (KeyError, TypeError, ValueError):
        return True
    return start <= on_date <= end


def invalidate_appointment_views(
    cache: QueryCache, on_date: date, provider_id: Optional[int] = None
) -> None:
    """Drop every cached view that can show an appointment on ``on_date``."""
    cache.invalidate(PROVIDER_APPOINTMENTS)
    cache.invalidate(PROVIDER_APPOINTMENT_COUNTS)
    cache.invalidate(PROVIDER_CALENDAR, match=lambda params: _range_contains(params, on_date))
    slot_match = {"date": on_date.isoformat()}
    if provider_id is not None:
        slot_match["provider_id"] = provider_id
    cache.invalidate(PROVIDER_TIMESLOTS, match=slot_match)


def require_cancellation_reason(reason: Optional[str]) -> str:
    """Stripped reason; a blank one is rejected before anything is fetched or sent."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError(
            field_errors={
                "cancellation_reason": ["Please provide a reason for cancellation."]
            }
        )
    return reason


class AppointmentLifecycleManager:
    """Status transitions for provider-side appointment management."""

    def __init__(self, client, cache: QueryCache):
        self.client = client
        self.cache = cache

    def _check(self, appointment: Appointment, target: AppointmentStatus) -> None:
        if not can_transition(appointment.status, target):
            logger.info(
                "Rejected status transition",
                appointment_id=appointment.id,
                current_status=appointment.status.value,
                target_status=target.value,
            )
            raise InvalidStateError(
                current_status=appointment.status.value,
                target_status=target.value,
            )

    async def _transition(
        self,
        appointment: Appointment,
        target: AppointmentStatus,
        payload: Optional[dict] = None,
    ) -> Appointment:
        updated = await self.client.transition_appointment(
            appointment.id, TRANSITION_ACTIONS[target], payload
        )
        invalidate_appointment_views(
            self.cache, appointment.date, appointment.provider_id
        )
        if updated.date != appointment.date:
            invalidate_appointment_views(self.cache, updated.date, updated.provider_id)
        logger.info(
            "Appointment status changed",
            appointment_id=appointment.id,
            from_status=appointment.status.value,
            to_status=updated.status.value,
        )
        return updated

    async def confirm(self, appointment: Appointment) -> Appointment:
        self._check(appointment, AppointmentStatus.CONFIRMED)
        return await self._transition(appointment, AppointmentStatus.CONFIRMED)

    async def complete(self, appointment: Appointment) -> Appointment:
        self._check(appointment, AppointmentStatus.COMPLETED)
        return await self._transition(appointment, AppointmentStatus.COMPLETED)

    async def cancel(
        self, appointment: Appointment, reason: Optional[str], actor: str = "provider"
    ) -> Appointment:
        """Cancel with a mandatory reason; the actor and time are recorded."""
        reason = require_cancellation_reason(reason)
        self._check(appointment, AppointmentStatus.CANCELLED)

        updated = await self._transition(
            appointment,
            AppointmentStatus.CANCELLED,
            {"cancellation_reason": reason},
        )
        return updated.model_copy(
            update={
                "cancellation_reason": updated.cancellation_reason or reason,
                "cancelled_by": updated.cancelled_by or actor,
                "cancelled_at": updated.cancelled_at or datetime.now(timezone.utc),
            }
        )

    async def mark_no_show(
        self, appointment: Appointment, actor: str = "provider"
    ) -> Appointment:
        self._check(appointment, AppointmentStatus.NO_SHOW)
        updated = await self._transition(appointment, AppointmentStatus.NO_SHOW)
        logger.debug("No-show recorded", appointment_id=appointment.id, actor=actor)
        return updated

    async def apply(
        self,
        appointment: Appointment,
        target: AppointmentStatus,
        reason: Optional[str] = None,
        actor: str = "provider",
    ) -> Appointment:
        """Dispatch to the operation that moves ``appointment`` to ``target``."""
        if target == AppointmentStatus.CONFIRMED:
            return await self.confirm(appointment)
        if target == AppointmentStatus.COMPLETED:
            return await self.complete(appointment)
        if target == AppointmentStatus.CANCELLED:
            return await self.cancel(appointment, reason, actor)
        if target == AppointmentStatus.NO_SHOW:
            return await self.mark_no_show(appointment, actor)
        raise InvalidStateError(
            current_status=appointment.status.value, target_status=target.value
        )
