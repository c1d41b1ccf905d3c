"""HTTP transport abstraction for the translation provider.

``TranslationClient`` only depends on ``HttpTransport``; the default
implementation is an ``httpx.AsyncClient`` speaking the provider's
form-encoded REST contract.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..errors import TranslationNetworkError, TranslationUnknownError

logger = logging.getLogger(__name__)

AUTH_SCHEME = "DeepL-Auth-Key"


@dataclass
class HttpResponse:
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except json.JSONDecodeError as exc:
            raise TranslationUnknownError(f"Invalid JSON from translation provider: {exc}")


class HttpTransport:
    """Minimal async HTTP surface used by the translation client."""

    async def request(self, method: str, path: str, data: Optional[Dict[str, str]] = None) -> HttpResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class HttpxTransport(HttpTransport):
    """httpx-backed transport.

    Doxygen:
    - @param base_url: Provider root, e.g. ``https://api-free.deepl.com``.
    - @param api_key: Provider key sent in the Authorization header.
    - @param timeout: Per-request timeout in seconds.
    - @param transport: Optional httpx transport (``httpx.MockTransport`` in tests and offline mode).
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"{AUTH_SCHEME} {api_key}"
        self.base_url = base_url
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def request(self, method: str, path: str, data: Optional[Dict[str, str]] = None) -> HttpResponse:
        try:
            response = await self._client.request(method, path, data=data)
        except httpx.TimeoutException as exc:
            raise TranslationNetworkError(f"Translation request timed out: {exc}")
        except httpx.HTTPError as exc:
            raise TranslationNetworkError(f"Network error: {exc}")
        logger.debug("%s %s -> %s", method, path, response.status_code)
        return HttpResponse(status_code=response.status_code, text=response.text)

    async def aclose(self) -> None:
        await self._client.aclose()
