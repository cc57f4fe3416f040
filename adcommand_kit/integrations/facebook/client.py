from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from .exceptions import (
    FacebookError,
    FacebookTimeoutError,
    parse_api_error,
)

logger = logging.getLogger("facebook.client")

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0


class ToolGateway(Protocol):
    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        ...


class HttpToolGateway:
    """
    Executes named platform operations on the tool gateway service:

        POST {base_url}/tools/{name}   {"arguments": {...}}

    Only connection failures are retried: the request never reached the server,
    so a create can't be applied twice. Everything else raises.
    """

    def __init__(
        self,
        base_url: str,
        tenant_id: str,
        business_id: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.tenant_id = tenant_id
        self.business_id = business_id
        self.timeout = timeout
        self._transport = transport
        self._headers = {
            "Content-Type": "application/json",
            "x-tenant-id": tenant_id,
        }

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(arguments)
        if self.business_id and "businessId" not in payload:
            payload["businessId"] = self.business_id
        url = f"{self.base_url}/tools/{name}"

        async def make_request() -> Dict[str, Any]:
            async with httpx.AsyncClient(transport=self._transport) as client:
                try:
                    response = await client.post(url, json={"arguments": payload}, headers=self._headers, timeout=self.timeout)
                except httpx.TimeoutException as e:
                    if isinstance(e, httpx.ConnectTimeout):
                        raise
                    raise FacebookTimeoutError(self.timeout, what=f"Tool {name}") from e
                if response.status_code != 200:
                    raise await parse_api_error(response)
                body = response.json()
                if isinstance(body, dict):
                    return body
                return {"data": body}

        return await self._retry_with_backoff(make_request, name)

    async def _retry_with_backoff(
        self,
        func,
        what: str,
        max_retries: int = MAX_RETRIES,
        initial_delay: float = INITIAL_RETRY_DELAY,
    ) -> Dict[str, Any]:
        for attempt in range(max_retries):
            try:
                return await func()
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                if attempt == max_retries - 1:
                    raise FacebookError(f"Tool gateway unreachable while calling {what}: {e}") from e
                delay = initial_delay * (2 ** attempt)
                logger.warning(f"Retry {attempt + 1}/{max_retries} after {delay}s due to: {e}")
                await asyncio.sleep(delay)
        raise FacebookError(f"Tool gateway unreachable while calling {what}")
