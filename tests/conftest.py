import os
import sys
from datetime import time

import httpx
import pytest

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from carebook.models.appointment import AppointmentStatus
from carebook.schemas.scheduling import OperatingHour, ProviderService, ScheduleInfo
from carebook.services.query_cache import QueryCache
from carebook.services.remote_api import CareAPIClient, create_http_client
from tests.fixtures.booking_fixtures import (
    PROVIDER_ID,
    InMemoryRedis,
    RecordingHandler,
    make_appointment,
)


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def schedule() -> ScheduleInfo:
    """Closed Sunday, Monday 09:00-12:00, Tuesday 09:00-17:00."""
    return ScheduleInfo(
        provider_id=PROVIDER_ID,
        operating_hours=[
            OperatingHour(day_of_week=0, is_closed=True),
            OperatingHour(day_of_week=1, start_time=time(9), end_time=time(12)),
            OperatingHour(day_of_week=2, start_time=time(9), end_time=time(17)),
        ],
        services=[
            ProviderService(id=1, name="General consultation", duration_minutes=30),
            ProviderService(id=2, name="Blood test", duration_minutes=15),
        ],
    )


@pytest.fixture
def pending_appointment():
    return make_appointment(status=AppointmentStatus.PENDING.value)


@pytest.fixture
def confirmed_appointment():
    return make_appointment(status=AppointmentStatus.CONFIRMED.value)


@pytest.fixture
def query_cache():
    return QueryCache(ttl_seconds=300)


@pytest.fixture
def remote():
    """Fake marketplace API; tests register routes on it."""
    return RecordingHandler()


@pytest.fixture
async def api_client(remote):
    http = create_http_client(
        base_url="http://marketplace.test/api", transport=httpx.MockTransport(remote)
    )
    yield CareAPIClient(http, token="provider-token", max_retries=2, retry_backoff=0)
    await http.aclose()
