import enum


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Define allowed transitions
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),  # Final state
    AppointmentStatus.CANCELLED: frozenset(),  # Final state
    AppointmentStatus.NO_SHOW: frozenset(),  # Final state
}

INITIAL_STATUS = AppointmentStatus.PENDING

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Statuses whose time window still blocks the provider's calendar
BLOCKING_STATUSES = frozenset(
    {
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }
)

# Calendar cell color per status
STATUS_COLORS: dict[AppointmentStatus, str] = {
    AppointmentStatus.PENDING: "yellow",
    AppointmentStatus.CONFIRMED: "blue",
    AppointmentStatus.COMPLETED: "green",
    AppointmentStatus.CANCELLED: "red",
    AppointmentStatus.NO_SHOW: "gray",
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check if an appointment in ``current`` may move to ``target``."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES
