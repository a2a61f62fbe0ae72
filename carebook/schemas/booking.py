from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from carebook.schemas.appointment import Appointment
from carebook.schemas.scheduling import Slot


class BookingDraft(BaseModel):
    """In-progress booking accumulated by the wizard."""

    model_config = ConfigDict(validate_assignment=True)

    provider_id: Optional[int] = None
    selected_services: List[int] = Field(default_factory=list)
    selected_date: Optional[date] = None
    selected_time: Optional[str] = None
    selected_slot: Optional[Slot] = None
    notes: Optional[str] = None

    @field_validator("selected_services", mode="before")
    @classmethod
    def dedupe_services(cls, v):
        if v is None:
            return []
        seen = []
        for service_id in v:
            if service_id not in seen:
                seen.append(service_id)
        return seen

    @property
    def is_empty(self) -> bool:
        return self == BookingDraft()

    @property
    def ready_for_slots(self) -> bool:
        return bool(
            self.provider_id is not None
            and self.selected_date is not None
            and self.selected_services
        )

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class BookingDraftUpdate(BaseModel):
    """Partial draft update accepted by ``PATCH /booking/draft``."""

    model_config = ConfigDict(extra="forbid")

    provider_id: Optional[int] = None
    selected_services: Optional[List[int]] = None
    selected_date: Optional[date] = None
    selected_slot: Optional[Slot] = None
    notes: Optional[str] = None


class BookingStart(BaseModel):
    provider_id: int


class SlotsResponse(BaseModel):
    ready: bool
    slots: List[Slot] = Field(default_factory=list)


class BookingConfirmation(BaseModel):
    appointment: Appointment
    message: str = "Your appointment has been booked."


class ErrorResponse(BaseModel):
    kind: str
    message: str
    field_errors: dict[str, List[str]] = Field(default_factory=dict)
