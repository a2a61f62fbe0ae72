from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query

from carebook.api.deps.services import get_availability_resolver, get_provider_service
from carebook.schemas.scheduling import (
    AvailableSlotsResponse,
    OperatingHour,
    OperatingHoursUpdate,
)
from carebook.services.availability import AvailabilityResolver, duration_for_services
from carebook.services.provider_appointments import ProviderAppointmentsService

router = APIRouter()


@router.get("/operating-hours", response_model=List[OperatingHour])
async def get_operating_hours(
    service: ProviderAppointmentsService = Depends(get_provider_service),
):
    return await service.operating_hours()


@router.put("/operating-hours", response_model=List[OperatingHour])
async def update_operating_hours(
    data: OperatingHoursUpdate,
    service: ProviderAppointmentsService = Depends(get_provider_service),
):
    return await service.update_operating_hours(data.operating_hours)


@router.get("/availability", response_model=AvailableSlotsResponse)
async def preview_availability(
    provider_id: int = Query(...),
    on_date: date = Query(..., alias="date"),
    service_ids: List[int] = Query(...),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
):
    """Slots computed locally from operating hours and booked appointments."""
    schedule = await resolver.get_schedule(provider_id)
    duration = duration_for_services(schedule, service_ids)
    slots = await resolver.resolve(provider_id, on_date, duration)
    return AvailableSlotsResponse(
        provider_id=provider_id,
        date=on_date,
        duration_minutes=duration,
        available_slots=slots,
        total_slots=len(slots),
    )
