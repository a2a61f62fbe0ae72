from typing import Optional


class CareBookError(Exception):
    """Base class for every error surfaced by the booking core."""

    kind = "unknown"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(CareBookError):
    """Malformed or out-of-range input, with optional per-field messages."""

    kind = "validation"
    default_message = "Please check your input."

    def __init__(
        self,
        message: Optional[str] = None,
        field_errors: Optional[dict[str, list[str]]] = None,
    ):
        self.field_errors = field_errors or {}
        if message is None and self.field_errors:
            message = first_field_message(self.field_errors)
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field_errors"] = self.field_errors
        return data


class NotFoundError(CareBookError):
    kind = "not_found"
    default_message = "The requested resource was not found."


class ConflictError(CareBookError):
    """The selected slot is no longer available."""

    kind = "conflict"
    default_message = (
        "This time slot is no longer available. Please select another time."
    )

    def __init__(
        self,
        message: Optional[str] = None,
        field_errors: Optional[dict[str, list[str]]] = None,
    ):
        self.field_errors = field_errors or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field_errors"] = self.field_errors
        return data


class AuthError(CareBookError):
    kind = "auth"
    default_message = "Please log in to continue."

    def __init__(self, message: Optional[str] = None, status_code: int = 401):
        self.status_code = status_code
        super().__init__(message)


class UnknownError(CareBookError):
    """Network failure or 5xx from the remote system; safe to retry."""

    kind = "unknown"


class InvalidStateError(CareBookError):
    """Illegal appointment status transition."""

    kind = "invalid_state"
    default_message = "This action is not allowed for the appointment's status."

    def __init__(
        self,
        message: Optional[str] = None,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
    ):
        self.current_status = current_status
        self.target_status = target_status
        if message is None and current_status and target_status:
            message = f"Cannot transition from {current_status} to {target_status}"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["current_status"] = self.current_status
        data["target_status"] = self.target_status
        return data


def first_field_message(field_errors: dict[str, list[str]]) -> Optional[str]:
    """Return the first message of the first field, as the booking UI shows it."""
    for messages in field_errors.values():
        if messages:
            return messages[0]
    return None
