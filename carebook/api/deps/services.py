from fastapi import Depends

from carebook.api.deps.session import (
    get_api_client,
    get_query_cache,
    get_redis_client,
    get_session_id,
)
from carebook.core.redis import RedisClient
from carebook.services.availability import AvailabilityResolver, RemoteScheduleRepository
from carebook.services.booking import BookingWizard
from carebook.services.booking_draft import BookingDraftStore
from carebook.services.lifecycle import AppointmentLifecycleManager
from carebook.services.provider_appointments import ProviderAppointmentsService
from carebook.services.query_cache import QueryCache
from carebook.services.remote_api import CareAPIClient


async def get_draft_store(
    redis_client: RedisClient = Depends(get_redis_client),
    session_id: str = Depends(get_session_id),
) -> BookingDraftStore:
    store = BookingDraftStore(redis_client, session_id)
    await store.load()
    return store


async def get_booking_wizard(
    draft_store: BookingDraftStore = Depends(get_draft_store),
    client: CareAPIClient = Depends(get_api_client),
    cache: QueryCache = Depends(get_query_cache),
) -> BookingWizard:
    return BookingWizard(draft_store, client, cache)


async def get_provider_service(
    client: CareAPIClient = Depends(get_api_client),
    cache: QueryCache = Depends(get_query_cache),
) -> ProviderAppointmentsService:
    return ProviderAppointmentsService(client, cache)


async def get_lifecycle_manager(
    client: CareAPIClient = Depends(get_api_client),
    cache: QueryCache = Depends(get_query_cache),
) -> AppointmentLifecycleManager:
    return AppointmentLifecycleManager(client, cache)


async def get_availability_resolver(
    client: CareAPIClient = Depends(get_api_client),
) -> AvailabilityResolver:
    return AvailabilityResolver(RemoteScheduleRepository(client))
