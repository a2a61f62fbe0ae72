from typing import Any, Mapping, Optional

import pydantic
import structlog

from carebook.core.config import settings
from carebook.core.exceptions import ValidationError
from carebook.core.redis import RedisClient, booking_draft_key
from carebook.schemas.booking import BookingDraft

logger = structlog.get_logger(__name__)

# Fields whose change makes a previously chosen slot meaningless
SLOT_SCOPE_FIELDS = ("provider_id", "selected_date", "selected_services")


def slot_invalidated_by(draft: BookingDraft, partial: Mapping[str, Any]) -> bool:
    """Report whether applying ``partial`` changes provider, date or services."""
    if not partial:
        return False
    candidate = BookingDraft.model_validate(
        {**draft.model_dump(), **{k: v for k, v in partial.items() if k in SLOT_SCOPE_FIELDS}}
    )
    return (
        candidate.provider_id != draft.provider_id
        or candidate.selected_date != draft.selected_date
        or set(candidate.selected_services) != set(draft.selected_services)
    )


class BookingDraftStore:
    """Persisted, shallow-merge store for one session's booking draft.

    The store does not enforce slot invalidation; callers that change provider,
    date or services clear the slot in the same ``set_data`` call.
    """

    def __init__(
        self,
        redis_client: RedisClient,
        session_id: str,
        ttl: Optional[int] = None,
    ):
        self.redis_client = redis_client
        self.session_id = session_id
        self.ttl = ttl if ttl is not None else settings.BOOKING_DRAFT_TTL_SECONDS
        self.key = booking_draft_key(session_id)
        self._draft: Optional[BookingDraft] = None

    async def load(self) -> BookingDraft:
        """Restore the persisted draft, or start an empty one."""
        stored = await self.redis_client.read_json(self.key)
        if isinstance(stored, dict):
            try:
                self._draft = BookingDraft.model_validate(stored)
            except pydantic.ValidationError as exc:
                logger.warning(
                    "Discarding unreadable booking draft",
                    session_id=self.session_id,
                    errors=exc.error_count(),
                )
                await self.redis_client.delete(self.key)
                self._draft = BookingDraft()
            else:
                await self.redis_client.touch(self.key, self.ttl)
        else:
            self._draft = BookingDraft()
        return self._draft

    async def get(self) -> BookingDraft:
        if self._draft is None:
            return await self.load()
        return self._draft

    async def set_data(self, partial: Mapping[str, Any]) -> BookingDraft:
        """Merge ``partial`` over the current draft and persist the result."""
        current = await self.get()
        unknown = set(partial) - set(BookingDraft.model_fields)
        if unknown:
            raise ValidationError(
                field_errors={key: ["Unknown booking field"] for key in sorted(unknown)}
            )
        try:
            updated = BookingDraft.model_validate({**current.model_dump(), **partial})
        except pydantic.ValidationError as exc:
            raise ValidationError(
                field_errors={
                    ".".join(str(p) for p in error["loc"]): [error["msg"]]
                    for error in exc.errors()
                }
            ) from exc

        self._draft = updated
        saved = await self.redis_client.write_json(
            self.key, updated.to_storage(), ttl=self.ttl
        )
        if not saved:
            logger.warning("Booking draft kept in memory only", session_id=self.session_id)
        return updated

    async def clear(self) -> BookingDraft:
        self._draft = BookingDraft()
        await self.redis_client.delete(self.key)
        logger.info("Booking draft cleared", session_id=self.session_id)
        return self._draft
