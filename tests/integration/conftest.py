from typing import Optional

import httpx
import pytest
from fastapi import Depends

from carebook.api.deps.session import get_api_client, get_bearer_token
from carebook.main import create_app
from carebook.services.query_cache import SessionCacheRegistry
from carebook.services.remote_api import CareAPIClient, create_http_client


@pytest.fixture
async def app(remote, fake_redis):
    application = create_app()
    http = create_http_client(
        base_url="http://marketplace.test/api", transport=httpx.MockTransport(remote)
    )
    application.state.redis_client = fake_redis
    application.state.http_client = http
    application.state.session_caches = SessionCacheRegistry(max_sessions=10)

    async def api_client_override(token: Optional[str] = Depends(get_bearer_token)):
        return CareAPIClient(http, token=token, retry_backoff=0)

    application.dependency_overrides[get_api_client] = api_client_override
    yield application
    await http.aclose()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Session-ID": "session-1", "Authorization": "Bearer patient-token"},
    ) as client:
        yield client


