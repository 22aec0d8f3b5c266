"""Shared JSON-over-HTTP plumbing for the remote services."""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..errors import AuthError, DomainError, FlipmodeError, TransportError

logger = logging.getLogger(__name__)


class ServiceClient:
    """Bearer-authenticated JSON client.

    An injected ``aiohttp.ClientSession`` is reused across calls; without one
    a short-lived session is opened per request.
    """

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session

    def _headers(self, auth: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        auth: bool = True,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"{method} {url}")
        try:
            if self._session is not None:
                return await self._send(self._session, method, url, payload, auth)
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                return await self._send(session, method, url, payload, auth)
        except FlipmodeError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {endpoint} failed: {e}")
            raise TransportError(
                f"Could not reach the {self.service_name}. Check your connection.", detail=str(e)
            )

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]],
        auth: bool,
    ) -> Dict[str, Any]:
        async with session.request(
            method, url, json=payload, headers=self._headers(auth)
        ) as response:
            try:
                data = await response.json(content_type=None)
            except (aiohttp.ContentTypeError, ValueError):
                data = None
            self._raise_for_status(response.status, data)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise TransportError(f"Unexpected response from the {self.service_name}")
            return data

    def _error_message(self, data: Any) -> Optional[str]:
        if isinstance(data, dict):
            for key in ("error", "detail", "message"):
                if data.get(key):
                    return str(data[key])
        return None

    def _raise_for_status(self, status: int, data: Any) -> None:
        if status < 400:
            return
        message = self._error_message(data)
        if status in (401, 403):
            raise AuthError(
                f"The {self.service_name} rejected your token. Check your settings.",
                detail=message,
            )
        if status >= 500:
            raise TransportError(f"The {self.service_name} failed ({status})", detail=message)
        raise DomainError(message or f"Request failed ({status})")

    async def check_health(self) -> bool:
        """True if the service reports itself healthy. Never raises."""
        try:
            data = await self._request("GET", "/health", auth=False)
        except FlipmodeError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return data.get("status") == "healthy"
