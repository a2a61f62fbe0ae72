from typing import Any, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlencode

import pydantic

from carebook.core.exceptions import ValidationError
from carebook.schemas.appointment import AppointmentFilters

FILTER_KEYS = ("status", "search", "page", "per_page")
ALL_STATUSES = "all"

DEFAULT_FILTERS = AppointmentFilters()


def _field_errors(exc: pydantic.ValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "filters"
        errors.setdefault(field, []).append(error["msg"])
    return errors


def normalize_filters(data: Mapping[str, Any]) -> AppointmentFilters:
    """Build filters from raw values, raising ``ValidationError`` on bad input."""
    unknown = set(data) - set(FILTER_KEYS)
    if unknown:
        raise ValidationError(
            field_errors={key: [f"Unknown filter '{key}'"] for key in sorted(unknown)}
        )
    try:
        return AppointmentFilters(**data)
    except pydantic.ValidationError as exc:
        raise ValidationError(field_errors=_field_errors(exc)) from exc


def apply_filter_patch(
    current: AppointmentFilters, patch: Mapping[str, Any]
) -> AppointmentFilters:
    """Merge ``patch`` into ``current``.

    Changing anything other than the page sends the user back to page 1.
    """
    merged = current.model_dump()
    merged.update(patch)
    if set(patch) - {"page"}:
        merged["page"] = 1
    return normalize_filters(merged)


def to_query_params(filters: AppointmentFilters) -> dict[str, str]:
    """Non-default filter values in canonical key order."""
    params: dict[str, str] = {}
    if filters.status != DEFAULT_FILTERS.status:
        params["status"] = filters.status.value if filters.status else ALL_STATUSES
    if filters.search:
        params["search"] = filters.search
    if filters.page != DEFAULT_FILTERS.page:
        params["page"] = str(filters.page)
    if filters.per_page != DEFAULT_FILTERS.per_page:
        params["per_page"] = str(filters.per_page)
    return params


def serialize_filters(filters: AppointmentFilters) -> str:
    return urlencode(to_query_params(filters))


def deserialize_filters(
    query: Union[str, Mapping[str, Any], None]
) -> AppointmentFilters:
    """Rebuild filters from a query string or mapping; absent keys take defaults."""
    if query is None:
        return DEFAULT_FILTERS
    if isinstance(query, str):
        pairs = parse_qsl(query.lstrip("?"), keep_blank_values=True)
        # Last occurrence wins, as URLSearchParams.set would leave it
        data: dict[str, Any] = dict(pairs)
    else:
        data = dict(query)
    return normalize_filters(data)


def to_request_params(filters: AppointmentFilters) -> dict[str, Any]:
    """Parameters for the remote list endpoint, empty values dropped."""
    params: dict[str, Any] = {
        "status": filters.status.value if filters.status else None,
        "search": filters.search,
        "page": filters.page,
        "per_page": filters.per_page,
    }
    return {key: value for key, value in params.items() if value not in (None, "")}


def filters_cache_params(filters: Optional[AppointmentFilters]) -> dict[str, Any]:
    filters = filters or DEFAULT_FILTERS
    return {
        "status": filters.status.value if filters.status else ALL_STATUSES,
        "search": filters.search or "",
        "page": filters.page,
        "per_page": filters.per_page,
    }
