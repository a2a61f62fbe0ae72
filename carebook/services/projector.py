"""Projection of provider appointments into list and calendar views."""
import calendar as _calendar
import enum
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from carebook.models.appointment import STATUS_COLORS
from carebook.schemas.appointment import (
    Appointment,
    AppointmentFilters,
    PaginatedResult,
    PaginationMeta,
)
from carebook.services.filters import DEFAULT_FILTERS, serialize_filters

PAGE_WINDOW = 2
GAP = "..."
HOURS_PER_DAY = 24


class CalendarView(str, enum.Enum):
    MONTH = "month"
    WEEK = "week"
    DAY = "day"


class DisplayMode(str, enum.Enum):
    LIST = "list"
    CALENDAR = "calendar"


# List view


class AppointmentListView(BaseModel):
    rows: List[Appointment]
    meta: PaginationMeta
    filters: AppointmentFilters
    showing_from: int
    showing_to: int
    has_active_filters: bool
    visible_pages: List[Union[int, str]]
    query_string: str


def visible_pages(current: int, total_pages: int) -> List[Union[int, str]]:
    """First and last page plus a window around ``current``, gaps as ``"..."``."""
    if total_pages <= 0:
        return []
    window = list(
        range(max(2, current - PAGE_WINDOW), min(total_pages - 1, current + PAGE_WINDOW) + 1)
    )
    pages: List[Union[int, str]] = [1]
    if current - PAGE_WINDOW > 2:
        pages.append(GAP)
    pages.extend(window)
    if current + PAGE_WINDOW < total_pages - 1:
        pages.extend([GAP, total_pages])
    elif total_pages > 1:
        pages.append(total_pages)
    return pages


def project_list(
    result: PaginatedResult[Appointment], filters: Optional[AppointmentFilters] = None
) -> AppointmentListView:
    """Table view of one page; rows keep the server's order."""
    filters = filters or DEFAULT_FILTERS
    meta = result.meta
    if meta.total == 0 or not result.data:
        showing_from, showing_to = 0, 0
    else:
        showing_from = (meta.page - 1) * meta.per_page + 1
        showing_to = min(meta.page * meta.per_page, meta.total)
    return AppointmentListView(
        rows=list(result.data),
        meta=meta,
        filters=filters,
        showing_from=showing_from,
        showing_to=showing_to,
        has_active_filters=filters.has_active_filters,
        visible_pages=visible_pages(meta.page, meta.total_pages),
        query_string=serialize_filters(filters),
    )


# Calendar view


class CalendarEntry(BaseModel):
    appointment: Appointment

    @computed_field
    @property
    def color(self) -> str:
        return STATUS_COLORS[self.appointment.status]


class MonthDay(BaseModel):
    date: date
    in_month: bool
    entries: List[CalendarEntry] = Field(default_factory=list)


class HourCell(BaseModel):
    hour: int
    entries: List[CalendarEntry] = Field(default_factory=list)


class DayColumn(BaseModel):
    date: date
    hours: List[HourCell]

    def cell(self, hour: int) -> HourCell:
        return self.hours[hour]


class CalendarGrid(BaseModel):
    view: CalendarView
    anchor: date
    start_date: date
    end_date: date
    weeks: List[List[MonthDay]] = Field(default_factory=list)
    days: List[DayColumn] = Field(default_factory=list)


def start_of_week(day: date) -> date:
    # Weeks start on Monday
    return day - timedelta(days=day.weekday())


def calendar_range(view: CalendarView, anchor: date) -> tuple[date, date]:
    """Inclusive date range to fetch for ``view`` around ``anchor``."""
    view = CalendarView(view)
    if view == CalendarView.MONTH:
        first = anchor.replace(day=1)
        last = anchor.replace(day=_calendar.monthrange(anchor.year, anchor.month)[1])
        return start_of_week(first), start_of_week(last) + timedelta(days=6)
    if view == CalendarView.WEEK:
        monday = start_of_week(anchor)
        return monday, monday + timedelta(days=6)
    return anchor, anchor


def _sorted(appointments: Iterable[Appointment]) -> List[Appointment]:
    return sorted(appointments, key=lambda appointment: (appointment.start_time, appointment.id))


def bin_month(appointments: Iterable[Appointment], anchor: date) -> CalendarGrid:
    """Month grid of whole weeks; appointments are placed on their start date."""
    start, end = calendar_range(CalendarView.MONTH, anchor)
    by_date: dict[date, List[CalendarEntry]] = {}
    for appointment in _sorted(appointments):
        by_date.setdefault(appointment.date, []).append(CalendarEntry(appointment=appointment))

    weeks: List[List[MonthDay]] = []
    day = start
    while day <= end:
        week = []
        for offset in range(7):
            current = day + timedelta(days=offset)
            week.append(
                MonthDay(
                    date=current,
                    in_month=current.month == anchor.month,
                    entries=by_date.get(current, []),
                )
            )
        weeks.append(week)
        day += timedelta(days=7)
    return CalendarGrid(
        view=CalendarView.MONTH, anchor=anchor, start_date=start, end_date=end, weeks=weeks
    )


def _hour_cells(appointment: Appointment, day: date) -> range:
    """Hours of ``day`` whose cell the appointment overlaps."""
    starts = appointment.start_time.replace(tzinfo=None)
    ends = appointment.end_time.replace(tzinfo=None)
    day_start = datetime.combine(day, datetime.min.time())
    day_end = day_start + timedelta(days=1)

    if starts == ends:
        if day_start <= starts < day_end:
            return range(starts.hour, starts.hour + 1)
        return range(0)
    if ends <= day_start or starts >= day_end:
        return range(0)

    first = 0 if starts < day_start else starts.hour
    if ends >= day_end:
        last = HOURS_PER_DAY - 1
    else:
        # An appointment ending exactly on the hour does not enter that cell
        last = ends.hour if ends.minute or ends.second or ends.microsecond else ends.hour - 1
    return range(first, last + 1)


def _bin_days(
    appointments: Iterable[Appointment], days: List[date]
) -> List[DayColumn]:
    columns = [
        DayColumn(date=day, hours=[HourCell(hour=hour) for hour in range(HOURS_PER_DAY)])
        for day in days
    ]
    for appointment in _sorted(appointments):
        entry = CalendarEntry(appointment=appointment)
        for column in columns:
            for hour in _hour_cells(appointment, column.date):
                column.hours[hour].entries.append(entry)
    return columns


def bin_week(appointments: Iterable[Appointment], anchor: date) -> CalendarGrid:
    start, end = calendar_range(CalendarView.WEEK, anchor)
    days = [start + timedelta(days=offset) for offset in range(7)]
    return CalendarGrid(
        view=CalendarView.WEEK,
        anchor=anchor,
        start_date=start,
        end_date=end,
        days=_bin_days(appointments, days),
    )


def bin_day(appointments: Iterable[Appointment], anchor: date) -> CalendarGrid:
    return CalendarGrid(
        view=CalendarView.DAY,
        anchor=anchor,
        start_date=anchor,
        end_date=anchor,
        days=_bin_days(appointments, [anchor]),
    )


def project_calendar(
    appointments: Iterable[Appointment], view: CalendarView, anchor: date
) -> CalendarGrid:
    view = CalendarView(view)
    if view == CalendarView.MONTH:
        return bin_month(appointments, anchor)
    if view == CalendarView.WEEK:
        return bin_week(appointments, anchor)
    return bin_day(appointments, anchor)


def shift_anchor(view: CalendarView, anchor: date, steps: int) -> date:
    """Move the anchor by whole months, weeks or days."""
    view = CalendarView(view)
    if view == CalendarView.MONTH:
        month_index = anchor.year * 12 + anchor.month - 1 + steps
        year, month = divmod(month_index, 12)
        month += 1
        day = min(anchor.day, _calendar.monthrange(year, month)[1])
        return date(year, month, day)
    if view == CalendarView.WEEK:
        return anchor + timedelta(weeks=steps)
    return anchor + timedelta(days=steps)


class ViewState(BaseModel):
    """List/calendar toggle for the provider appointments page.

    Switching modes or navigating the calendar never alters the filters.
    """

    model_config = ConfigDict(frozen=True)

    mode: DisplayMode = DisplayMode.LIST
    calendar_view: CalendarView = CalendarView.MONTH
    anchor: date = Field(default_factory=date.today)
    filters: AppointmentFilters = DEFAULT_FILTERS

    def toggle(self) -> "ViewState":
        mode = DisplayMode.CALENDAR if self.mode == DisplayMode.LIST else DisplayMode.LIST
        return self.model_copy(update={"mode": mode})

    def show(self, mode: DisplayMode) -> "ViewState":
        return self.model_copy(update={"mode": DisplayMode(mode)})

    def with_view(self, view: CalendarView) -> "ViewState":
        return self.model_copy(update={"calendar_view": CalendarView(view)})

    def next(self) -> "ViewState":
        return self.model_copy(update={"anchor": shift_anchor(self.calendar_view, self.anchor, 1)})

    def previous(self) -> "ViewState":
        return self.model_copy(update={"anchor": shift_anchor(self.calendar_view, self.anchor, -1)})

    def today(self, today: Optional[date] = None) -> "ViewState":
        return self.model_copy(update={"anchor": today or date.today()})

    @property
    def fetch_range(self) -> tuple[date, date]:
        return calendar_range(self.calendar_view, self.anchor)
