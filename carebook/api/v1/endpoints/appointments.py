from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from carebook.api.deps.services import get_lifecycle_manager, get_provider_service
from carebook.models.appointment import AppointmentStatus
from carebook.schemas.appointment import Appointment, AppointmentCancel, AppointmentCounts
from carebook.services.filters import FILTER_KEYS, deserialize_filters
from carebook.services.lifecycle import (
    AppointmentLifecycleManager,
    require_cancellation_reason,
)
from carebook.services.projector import AppointmentListView, CalendarGrid, CalendarView
from carebook.services.provider_appointments import ProviderAppointmentsService

router = APIRouter()


@router.get("/appointments", response_model=AppointmentListView)
async def list_appointments(
    request: Request,
    service: ProviderAppointmentsService = Depends(get_provider_service),
):
    """Paginated appointments; filters come from the page's query string."""
    filters = deserialize_filters(
        {
            key: value
            for key, value in request.query_params.items()
            if key in FILTER_KEYS
        }
    )
    return await service.list(filters)


@router.get("/appointments/counts", response_model=AppointmentCounts)
async def appointment_counts(
    service: ProviderAppointmentsService = Depends(get_provider_service),
):
    return await service.counts()


@router.get("/calendar", response_model=CalendarGrid)
async def calendar(
    view: CalendarView = Query(CalendarView.MONTH),
    anchor: Optional[date] = Query(None, alias="date"),
    service: ProviderAppointmentsService = Depends(get_provider_service),
):
    return await service.calendar(view, anchor or date.today())


async def _transition(
    appointment_id: int,
    target: AppointmentStatus,
    service: ProviderAppointmentsService,
    manager: AppointmentLifecycleManager,
    reason: Optional[str] = None,
) -> Appointment:
    appointment = await service.get_appointment(appointment_id)
    return await manager.apply(appointment, target, reason=reason)


@router.post("/appointments/{appointment_id}/confirm", response_model=Appointment)
async def confirm_appointment(
    appointment_id: int,
    service: ProviderAppointmentsService = Depends(get_provider_service),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return await _transition(appointment_id, AppointmentStatus.CONFIRMED, service, manager)


@router.post("/appointments/{appointment_id}/complete", response_model=Appointment)
async def complete_appointment(
    appointment_id: int,
    service: ProviderAppointmentsService = Depends(get_provider_service),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return await _transition(appointment_id, AppointmentStatus.COMPLETED, service, manager)


@router.post("/appointments/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment(
    appointment_id: int,
    data: AppointmentCancel,
    service: ProviderAppointmentsService = Depends(get_provider_service),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    reason = require_cancellation_reason(data.cancellation_reason)
    return await _transition(
        appointment_id,
        AppointmentStatus.CANCELLED,
        service,
        manager,
        reason=reason,
    )


@router.post("/appointments/{appointment_id}/no-show", response_model=Appointment)
async def mark_no_show(
    appointment_id: int,
    service: ProviderAppointmentsService = Depends(get_provider_service),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return await _transition(appointment_id, AppointmentStatus.NO_SHOW, service, manager)
