"""
REST client for the platform HTTP API.

Only what the gateway client needs: authenticated JSON requests and the
current-user lookup used at startup. Rate limits are surfaced as
``RateLimitError`` rather than waited out here.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any

import aiohttp
import orjson

from edwiges.config import RestOptions
from edwiges.constants import CLIENT_NAME
from edwiges.errors import ClientConfigError, RateLimitError, RestError

logger = logging.getLogger(__name__)


class RestClient:
    """Async JSON client for ``{base_url}/v{api_version}{endpoint}``."""

    def __init__(self, token: str, options: RestOptions | None = None) -> None:
        """
        Initialize the REST client.

        Args:
            token: Bot token used for the Authorization header.
            options: REST options (API version, base URL, timeout).
        """
        if not token or not isinstance(token, str):
            raise ClientConfigError("RestClient(token): token is missing or is not a string.")
        self._token = token
        self._options = options or RestOptions()
        self._session: aiohttp.ClientSession | None = None

    @property
    def api_url(self) -> str:
        return f"{self._options.base_url}/v{self._options.api_version}"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._options.request_timeout_ms / 1000)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": f"DiscordBot ({CLIENT_NAME})"},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _headers(self, auth: bool) -> dict[str, str]:
        if auth or self._options.always_send_authorization_header:
            return {"Authorization": f"Bot {self._token}"}
        return {}

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        auth: bool = False,
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        """
        Make one HTTP request and return the decoded body.

        Args:
            method: HTTP method (case-insensitive).
            endpoint: Path below the versioned API root, e.g. ``/users/@me``.
            auth: Send the Authorization header.
            json: JSON request body.
            params: Query parameters.

        Returns:
            Decoded JSON body, or None for empty responses.

        Raises:
            RateLimitError: On HTTP 429.
            RestError: On any other non-2xx status.
            aiohttp.ClientError: On network errors.
        """
        url = f"{self.api_url}{endpoint}"
        session = await self._get_session()

        async with session.request(
            method.upper(),
            url,
            headers=self._headers(auth),
            json=json,
            params=params,
        ) as response:
            body = await self._read_body(response)

            if response.status == 429:
                retry_after_ms = None
                is_global = False
                if isinstance(body, dict):
                    with contextlib.suppress(TypeError, ValueError):
                        retry_after_ms = int(float(body.get("retry_after")) * 1000)
                    is_global = bool(body.get("global", False))
                if retry_after_ms is None and "Retry-After" in response.headers:
                    with contextlib.suppress(ValueError):
                        retry_after_ms = int(float(response.headers["Retry-After"]) * 1000)
                logger.warning(
                    "Rate limit hit",
                    extra={
                        "method": method.upper(),
                        "endpoint": endpoint,
                        "retry_after_ms": retry_after_ms,
                        "global": is_global,
                    },
                )
                raise RateLimitError(
                    f"Rate limited on {method.upper()} {endpoint}",
                    body=body,
                    retry_after_ms=retry_after_ms,
                    is_global=is_global,
                )

            if response.status >= 400:
                logger.error(
                    "HTTP error",
                    extra={"method": method.upper(), "endpoint": endpoint, "status": response.status},
                )
                raise RestError(
                    f"{method.upper()} {endpoint} failed with HTTP {response.status}",
                    status=response.status,
                    body=body,
                )

            return body

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        if response.status == 204:
            return None
        if response.content_type == "application/json":
            try:
                return await response.json(loads=orjson.loads)
            except orjson.JSONDecodeError as e:
                raise RestError(f"Malformed JSON body: {e}", status=response.status) from e
        text = await response.text()
        return text or None

    async def get_current_user(self) -> dict[str, Any]:
        """``GET /users/@me``: the account the token belongs to."""
        data: dict[str, Any] = await self.request("GET", "/users/@me", auth=True)
        return data

    async def create_message(self, channel_id: str, content: str) -> dict[str, Any]:
        """``POST /channels/{channel_id}/messages``."""
        data: dict[str, Any] = await self.request(
            "POST",
            f"/channels/{channel_id}/messages",
            auth=True,
            json={"content": content},
        )
        return data
