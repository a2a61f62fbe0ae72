from datetime import date
from functools import lru_cache
from typing import Any, List, Optional

import httpx
import pydantic
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from carebook.core.config import settings
from carebook.core.exceptions import (
    AuthError,
    CareBookError,
    ConflictError,
    NotFoundError,
    UnknownError,
    ValidationError,
)
from carebook.schemas.appointment import (
    Appointment,
    AppointmentCounts,
    AppointmentCreate,
    AppointmentFilters,
    PaginatedResult,
    PaginationMeta,
)
from carebook.schemas.scheduling import OperatingHour, ScheduleInfo, Slot
from carebook.services.filters import to_request_params

logger = structlog.get_logger(__name__)

# 422 errors on these fields during booking mean the slot was taken
SLOT_FIELDS = ("start_time", "end_time", "appointment_date")

PAGINATION_KEYS = ("current_page", "last_page", "per_page", "total", "page", "total_pages")


def create_http_client(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared connection pool for the marketplace API."""
    return httpx.AsyncClient(
        base_url=(base_url or settings.CAREBOOK_API_URL).rstrip("/") + "/",
        timeout=timeout or settings.API_TIMEOUT_SECONDS,
        headers={"Accept": "application/json"},
        transport=transport,
    )


def _field_errors(body: Any) -> dict[str, list[str]]:
    errors = body.get("errors") if isinstance(body, dict) else None
    if not isinstance(errors, dict):
        return {}
    normalized: dict[str, list[str]] = {}
    for field, messages in errors.items():
        if isinstance(messages, str):
            messages = [messages]
        normalized[field] = [str(message) for message in messages or []]
    return normalized


def translate_error(response: httpx.Response, booking: bool = False) -> CareBookError:
    """Map a failed response onto the error taxonomy."""
    try:
        body = response.json()
    except ValueError:
        body = None
    message = body.get("message") if isinstance(body, dict) else None
    status = response.status_code

    if status in (401, 403):
        if status == 403 and not message:
            message = "You are not authorized to perform this action."
        return AuthError(message, status_code=status)
    if status == 404:
        return NotFoundError(message)
    if status == 409:
        return ConflictError(message)
    if status == 422:
        field_errors = _field_errors(body)
        if booking and any(field in field_errors for field in SLOT_FIELDS):
            return ConflictError(field_errors=field_errors)
        if field_errors:
            return ValidationError(field_errors=field_errors)
        return ValidationError(message)
    if 400 <= status < 500:
        return ValidationError(message)
    return UnknownError(message)


def _unwrap(body: Any, *envelopes: str) -> Any:
    if isinstance(body, dict):
        for key in envelopes:
            if key in body:
                return body[key]
        if "data" in body:
            return body["data"]
    return body


UNREADABLE_RESPONSE = "The server returned an unreadable response."


@lru_cache(maxsize=None)
def _adapter(schema: Any) -> pydantic.TypeAdapter:
    return pydantic.TypeAdapter(schema)


def parse_payload(schema: Any, data: Any, path: str) -> Any:
    """Validate a response body against ``schema``; a mismatch is an ``UnknownError``."""
    try:
        return _adapter(schema).validate_python(data)
    except pydantic.ValidationError as e:
        logger.warning(
            "Unreadable remote payload",
            path=path,
            errors=e.error_count(),
            first_error=e.errors()[0]["msg"],
        )
        raise UnknownError(UNREADABLE_RESPONSE) from e


def _paginated(body: Any, path: str) -> PaginatedResult[Appointment]:
    if isinstance(body, list):
        return PaginatedResult[Appointment](
            data=parse_payload(List[Appointment], body, path),
            meta=PaginationMeta(per_page=max(len(body), 1), total=len(body), total_pages=1),
        )
    if not isinstance(body, dict):
        return parse_payload(PaginatedResult[Appointment], body, path)
    meta = body.get("meta")
    if meta is None:
        # Laravel paginator: meta fields live beside ``data``
        meta = {key: body[key] for key in PAGINATION_KEYS if key in body}
    return parse_payload(
        PaginatedResult[Appointment], {"data": body.get("data", []), "meta": meta}, path
    )


class CareAPIClient:
    """Async client for the marketplace API.

    Every failure surfaces as a ``CareBookError``; GET requests are retried
    with exponential backoff on transport errors and 5xx responses.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_backoff: float = 0.5,
    ):
        self.http = http
        self.token = token
        self.max_retries = max_retries if max_retries is not None else settings.API_MAX_RETRIES
        self.retry_backoff = retry_backoff

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _send(
        self,
        method: str,
        path: str,
        booking: bool = False,
        **kwargs,
    ) -> Any:
        try:
            response = await self.http.request(
                method, path.lstrip("/"), headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as e:
            logger.warning("Remote request failed", method=method, path=path, error=str(e))
            raise UnknownError() from e

        if response.is_error:
            error = translate_error(response, booking=booking)
            logger.info(
                "Remote request rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                kind=error.kind,
            )
            raise error

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UnknownError(UNREADABLE_RESPONSE) from e

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_backoff, max=8),
            retry=retry_if_exception_type(UnknownError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Retrying remote GET",
                        path=path,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._send("GET", path, params=params)

    # Patient booking flow

    async def get_schedule_info(self, provider_id: int) -> ScheduleInfo:
        path = f"/providers/{provider_id}/schedule-info"
        info = parse_payload(ScheduleInfo, _unwrap(await self._get(path)), path)
        if info.provider_id is None:
            info.provider_id = provider_id
        return info

    async def get_available_slots(self, provider_id: int, on_date: date) -> List[Slot]:
        path = f"/providers/{provider_id}/available-slots"
        body = await self._get(path, params={"date": on_date.isoformat()})
        slots = _unwrap(body, "available_slots")
        if isinstance(slots, dict):
            slots = slots.get("available_slots", [])
        return parse_payload(List[Slot], slots or [], path)

    async def create_appointment(self, booking: AppointmentCreate) -> Appointment:
        body = await self._send(
            "POST", "/appointments", booking=True, json=booking.to_payload()
        )
        appointment = parse_payload(
            Appointment, _unwrap(body, "appointment"), "/appointments"
        )
        logger.info(
            "Appointment created",
            appointment_id=appointment.id,
            provider_id=booking.provider_id,
        )
        return appointment

    # Provider appointment management

    async def list_provider_appointments(
        self, filters: AppointmentFilters
    ) -> PaginatedResult[Appointment]:
        path = "/provider/appointments"
        body = await self._get(path, params=to_request_params(filters))
        return _paginated(body, path)

    async def get_appointment_counts(self) -> AppointmentCounts:
        path = "/provider/appointments/counts"
        body = await self._get(path)
        return parse_payload(AppointmentCounts, _unwrap(body, "counts"), path)

    async def get_calendar_appointments(
        self, start_date: date, end_date: date
    ) -> List[Appointment]:
        path = "/provider/calendar-appointments"
        body = await self._get(
            path,
            params={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        items = _unwrap(body, "appointments")
        return parse_payload(List[Appointment], items or [], path)

    async def get_appointment(self, appointment_id: int) -> Appointment:
        path = f"/appointments/{appointment_id}"
        body = await self._get(path)
        return parse_payload(Appointment, _unwrap(body, "appointment"), path)

    async def transition_appointment(
        self, appointment_id: int, action: str, payload: Optional[dict] = None
    ) -> Appointment:
        """POST ``/appointments/{id}/{action}`` and return the updated appointment."""
        path = f"/appointments/{appointment_id}/{action}"
        body = await self._send("POST", path, json=payload)
        return parse_payload(Appointment, _unwrap(body, "appointment"), path)

    async def get_operating_hours(self) -> List[OperatingHour]:
        path = "/provider/operating-hours"
        body = await self._get(path)
        items = _unwrap(body, "operating_hours")
        return parse_payload(List[OperatingHour], items or [], path)

    async def update_operating_hours(
        self, hours: List[OperatingHour]
    ) -> List[OperatingHour]:
        path = "/provider/operating-hours"
        payload = {
            "operating_hours": [
                hour.model_dump(mode="json", exclude={"day_name"}) for hour in hours
            ]
        }
        body = await self._send("PUT", path, json=payload)
        items = _unwrap(body, "operating_hours")
        return parse_payload(List[OperatingHour], items or [], path)
