from typing import Optional

import httpx
from fastapi import Depends, Header, Request

from carebook.core.redis import RedisClient
from carebook.services.query_cache import QueryCache
from carebook.services.remote_api import CareAPIClient

ANONYMOUS_SESSION = "anonymous"


async def get_session_id(
    x_session_id: str = Header(
        ..., alias="X-Session-ID", description="Client session owning the booking draft"
    ),
) -> str:
    return x_session_id


async def get_bearer_token(
    authorization: Optional[str] = Header(None),
) -> Optional[str]:
    """Token forwarded untouched to the marketplace API."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return authorization.strip()


def get_redis_client(request: Request) -> RedisClient:
    return request.app.state.redis_client


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


async def get_api_client(
    http: httpx.AsyncClient = Depends(get_http_client),
    token: Optional[str] = Depends(get_bearer_token),
) -> CareAPIClient:
    return CareAPIClient(http, token=token)


async def get_query_cache(
    request: Request,
    x_session_id: Optional[str] = Header(None, alias="X-Session-ID"),
    token: Optional[str] = Depends(get_bearer_token),
) -> QueryCache:
    """Per-session cache; provider calls without a session share the token's."""
    key = x_session_id or token or ANONYMOUS_SESSION
    return request.app.state.session_caches.get(key)
