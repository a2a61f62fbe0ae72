from datetime import date, datetime, time
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# Import enums from the model to avoid duplication
from carebook.core.config import settings
from carebook.models.appointment import AppointmentStatus, is_terminal

T = TypeVar("T")


class PatientSummary(BaseModel):
    id: Optional[int] = None
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class AppointmentServiceItem(BaseModel):
    id: int
    name: str
    duration_minutes: Optional[int] = Field(
        None, validation_alias=AliasChoices("duration_minutes", "duration")
    )
    price: Optional[Decimal] = Field(
        None, validation_alias=AliasChoices("price", "price_at_booking")
    )


class Appointment(BaseModel):
    """Appointment as returned by the marketplace API."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    appointment_number: Optional[str] = None
    patient: Optional[PatientSummary] = Field(
        None, validation_alias=AliasChoices("patient", "user")
    )
    provider_id: Optional[int] = None
    services: List[AppointmentServiceItem] = Field(default_factory=list)
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: Optional[str] = None
    total_price: Optional[Decimal] = None

    # Cancellation details
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def combine_date_and_clock(cls, data):
        """Accept ``appointment_date`` plus bare ``HH:MM`` start/end times."""
        if not isinstance(data, dict) or not data.get("appointment_date"):
            return data
        data = dict(data)
        day = date.fromisoformat(str(data["appointment_date"])[:10])
        for key in ("start_time", "end_time"):
            value = data.get(key)
            if isinstance(value, str) and "T" not in value and len(value) <= 8:
                data[key] = datetime.combine(day, time.fromisoformat(value))
        return data

    @model_validator(mode="after")
    def validate_window(self):
        if self.end_time < self.start_time:
            raise ValueError("Appointment end_time must not be before start_time")
        return self

    @property
    def date(self) -> date:
        return self.start_time.date()

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end_time and end > self.start_time


class AppointmentCreate(BaseModel):
    """Body of ``POST /appointments``."""

    provider_id: int
    service_ids: List[int] = Field(..., min_length=1)
    appointment_date: date
    start_time: time
    end_time: time
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def to_payload(self) -> dict:
        payload = {
            "provider_id": self.provider_id,
            "service_ids": list(self.service_ids),
            "appointment_date": self.appointment_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
        }
        if self.notes:
            payload["notes"] = self.notes
        return payload


class AppointmentCancel(BaseModel):
    cancellation_reason: Optional[str] = None


# Pagination
class PaginationMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int = Field(1, ge=1, validation_alias=AliasChoices("page", "current_page"))
    per_page: int = Field(settings.DEFAULT_PER_PAGE, ge=1)
    total: int = Field(0, ge=0)
    total_pages: int = Field(
        0, ge=0, validation_alias=AliasChoices("total_pages", "last_page")
    )


class PaginatedResult(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)
    meta: PaginationMeta = Field(default_factory=PaginationMeta)


class AppointmentCounts(BaseModel):
    all: int = 0
    pending: int = 0
    confirmed: int = 0
    completed: int = 0
    cancelled: int = 0
    no_show: int = 0

    @model_validator(mode="before")
    @classmethod
    def compute_all(cls, data):
        if isinstance(data, dict) and "all" not in data:
            data = dict(data)
            data["all"] = sum(
                int(data.get(status.value, 0) or 0) for status in AppointmentStatus
            )
        return data

    def for_status(self, status: Optional[AppointmentStatus]) -> int:
        if status is None:
            return self.all
        return getattr(self, status.value)


# Filter schema
class AppointmentFilters(BaseModel):
    """Query shape driving the provider appointment list and its URL state.

    ``status=None`` means every status; the provider's default tab is pending.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Optional[AppointmentStatus] = AppointmentStatus.PENDING
    search: Optional[str] = None
    page: int = Field(1, ge=1)
    per_page: int = Field(settings.DEFAULT_PER_PAGE, ge=1, le=settings.MAX_PER_PAGE)

    @field_validator("search", mode="before")
    @classmethod
    def normalize_search(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str) and v.strip().lower() in ("", "all"):
            return None
        return v

    @property
    def has_active_filters(self) -> bool:
        return bool(self.search or self.status)
