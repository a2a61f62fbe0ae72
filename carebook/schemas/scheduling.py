from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from carebook.models.appointment import AppointmentStatus
from carebook.utils.timeformat import remote_weekday, slot_label

DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


class OperatingHour(BaseModel):
    """One weekday of a provider's operating-hours table."""

    day_of_week: int = Field(..., ge=0, le=6)  # 0 = Sunday
    day_name: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_closed: bool = False

    @model_validator(mode="after")
    def validate_hours(self):
        if self.day_name is None:
            self.day_name = DAY_NAMES[self.day_of_week]
        if self.is_open and self.end_time <= self.start_time:
            raise ValueError(
                f"{self.day_name}: end_time must be after start_time"
            )
        return self

    @property
    def is_open(self) -> bool:
        return (
            not self.is_closed
            and self.start_time is not None
            and self.end_time is not None
        )

    @field_serializer("start_time", "end_time")
    def serialize_clock(self, value: Optional[time]) -> Optional[str]:
        return value.strftime("%H:%M") if value is not None else None


class OperatingHoursUpdate(BaseModel):
    operating_hours: List[OperatingHour] = Field(..., min_length=1, max_length=7)

    @model_validator(mode="after")
    def validate_unique_days(self):
        days = [hour.day_of_week for hour in self.operating_hours]
        if len(days) != len(set(days)):
            raise ValueError("Each weekday may appear only once")
        return self


class ProviderService(BaseModel):
    id: int
    name: Optional[str] = None
    duration_minutes: int = Field(
        30, gt=0, validation_alias=AliasChoices("duration_minutes", "duration")
    )
    price_min: Optional[Decimal] = None
    price_max: Optional[Decimal] = None


class ScheduleInfo(BaseModel):
    """Operating hours and service durations of one provider."""

    provider_id: Optional[int] = None
    operating_hours: List[OperatingHour] = Field(default_factory=list)
    services: List[ProviderService] = Field(default_factory=list)

    def hours_for(self, day: date) -> Optional[OperatingHour]:
        weekday = remote_weekday(day)
        for entry in self.operating_hours:
            if entry.day_of_week == weekday:
                return entry
        return None

    def service(self, service_id: int) -> Optional[ProviderService]:
        for item in self.services:
            if item.id == service_id:
                return item
        return None


class Slot(BaseModel):
    """A candidate booking window on one date. Derived, never persisted."""

    model_config = ConfigDict(populate_by_name=True)

    start_time: time
    end_time: time
    formatted_time: Optional[str] = None
    starts_at: datetime = Field(
        ...,
        validation_alias=AliasChoices("datetime", "starts_at"),
        serialization_alias="datetime",
    )

    @model_validator(mode="after")
    def fill_label(self):
        if not self.formatted_time:
            self.formatted_time = slot_label(self.start_time, self.end_time)
        return self

    @classmethod
    def build(cls, day: date, start: time, end: time) -> "Slot":
        return cls(
            start_time=start,
            end_time=end,
            starts_at=datetime.combine(day, start),
        )

    @field_serializer("start_time", "end_time")
    def serialize_clock(self, value: time) -> str:
        return value.strftime("%H:%M")

    @property
    def date(self) -> date:
        return self.starts_at.date()

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def end_datetime(self) -> datetime:
        return datetime.combine(self.date, self.end_time)

    @property
    def duration_minutes(self) -> int:
        return int((self.end_datetime - self.start_datetime).total_seconds() // 60)


class BookedWindow(BaseModel):
    """An already-booked interval on a provider's calendar."""

    start: datetime
    end: datetime
    status: AppointmentStatus = AppointmentStatus.CONFIRMED

    @field_validator("start", "end")
    @classmethod
    def wall_clock(cls, v: datetime) -> datetime:
        # Slots are provider-local wall-clock times
        return v.replace(tzinfo=None)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


class AvailableSlotsResponse(BaseModel):
    provider_id: int
    date: date
    duration_minutes: int
    available_slots: List[Slot] = Field(default_factory=list)
    total_slots: int = 0
