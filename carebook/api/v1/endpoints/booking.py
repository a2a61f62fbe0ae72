from fastapi import APIRouter, Depends, status

from carebook.api.deps.services import get_booking_wizard
from carebook.schemas.booking import (
    BookingConfirmation,
    BookingDraft,
    BookingDraftUpdate,
    BookingStart,
    SlotsResponse,
)
from carebook.services.booking import BookingWizard

router = APIRouter()


@router.get("/draft", response_model=BookingDraft)
async def get_draft(wizard: BookingWizard = Depends(get_booking_wizard)):
    """Current booking draft of the session."""
    return await wizard.draft()


@router.post("/draft", response_model=BookingDraft)
async def start_booking(
    data: BookingStart, wizard: BookingWizard = Depends(get_booking_wizard)
):
    """Start (or resume) a booking with a provider."""
    return await wizard.start(data.provider_id)


@router.patch("/draft", response_model=BookingDraft)
async def update_draft(
    data: BookingDraftUpdate, wizard: BookingWizard = Depends(get_booking_wizard)
):
    """Apply wizard selections.

    Fields are applied provider first, then services, date, slot and notes, so
    a slot sent together with a new date is checked against that date.
    """
    fields = data.model_fields_set
    draft = await wizard.draft()
    if "provider_id" in fields and data.provider_id is not None:
        draft = await wizard.start(data.provider_id)
    if "selected_services" in fields:
        draft = await wizard.select_services(data.selected_services or [])
    if "selected_date" in fields and data.selected_date is not None:
        draft = await wizard.select_date(data.selected_date)
    if "selected_slot" in fields and data.selected_slot is not None:
        draft = await wizard.select_slot(data.selected_slot)
    if "notes" in fields:
        draft = await wizard.set_notes(data.notes)
    return draft


@router.delete("/draft", response_model=BookingDraft)
async def abandon_booking(wizard: BookingWizard = Depends(get_booking_wizard)):
    return await wizard.abandon()


@router.get("/slots", response_model=SlotsResponse)
async def get_slots(wizard: BookingWizard = Depends(get_booking_wizard)):
    """Available slots once provider, date and services are all selected."""
    slots = await wizard.fetch_slots()
    if slots is None:
        return SlotsResponse(ready=False)
    return SlotsResponse(ready=True, slots=slots)


@router.post(
    "/submit", response_model=BookingConfirmation, status_code=status.HTTP_201_CREATED
)
async def submit_booking(wizard: BookingWizard = Depends(get_booking_wizard)):
    appointment = await wizard.submit()
    return BookingConfirmation(appointment=appointment)
