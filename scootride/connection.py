"""
Owned HTTP connection to the scooter API.

One ``ApiConnection`` is constructed by the app, handed to every API wrapper
that needs it, and closed once on teardown. There is no module-level client.
"""
import logging
from typing import Any

import httpx

from scootride.config import Settings, get_settings

logger = logging.getLogger(__name__)

MOCK_BASE_URL = "http://scootride.mock"


class ApiConnection:
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15.0,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("Missing base_url; cannot build the API connection")
        self.base_url = base_url.rstrip("/")
        self._access_token = access_token or None
        self._client: httpx.AsyncClient | None = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
        )

    @property
    def is_closed(self) -> bool:
        return self._client is None

    def set_access_token(self, token: str | None) -> None:
        self._access_token = token or None

    def _headers(self, extra: dict | None) -> dict:
        headers = dict(extra or {})
        if self._access_token and "Authorization" not in headers:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("ApiConnection is closed")
        kwargs["headers"] = self._headers(kwargs.get("headers"))
        return await self._client.request(method, path, **kwargs)

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApiConnection":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def build_connection(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ApiConnection:
    """
    Build the connection for the configured environment.
    In ``mock`` mode requests are served in-process by the mock backend.
    """
    settings = settings or get_settings()
    base_url = settings.scooter_api_base_url
    access_token = settings.access_token

    if transport is None and settings.env == "mock":
        from scootride.mock_server.auth import create_access_token
        from scootride.mock_server.main import create_app

        transport = httpx.ASGITransport(app=create_app(settings))
        base_url = base_url or MOCK_BASE_URL
        access_token = access_token or create_access_token({"sub": "user_123"}, settings)
        logger.info("Using in-process mock scooter API")

    return ApiConnection(
        base_url=base_url,
        timeout_seconds=settings.api_timeout_seconds,
        access_token=access_token,
        transport=transport,
    )
