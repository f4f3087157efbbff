"""httpx client that waits for per-host admission before sending."""

from __future__ import annotations

import logging
import os
from typing import Any, Iterable

import httpx

from throttler.http.request import apply_policy
from throttler.limits.models import Policy
from throttler.limits.router import AdmissionRouter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = float(os.environ.get("THROTTLE_HTTP_TIMEOUT", "30"))
DEFAULT_USER_AGENT = os.environ.get("THROTTLE_USER_AGENT", "throttler/0.1")


class ThrottledClient:
    def __init__(
        self,
        policies: Policy | Iterable[Policy] | None = None,
        *,
        session: httpx.AsyncClient | None = None,
        router: AdmissionRouter | None = None,
    ) -> None:
        self._owns_session = session is None
        self._session = session or httpx.AsyncClient(
            timeout=DEFAULT_TIMEOUT, headers={"User-Agent": DEFAULT_USER_AGENT}
        )
        self.router = router or AdmissionRouter()
        if policies is not None:
            self.router.add(policies)

    @property
    def policies(self) -> list[Policy]:
        return self.router.policies

    def add_policy(self, policies: Policy | Iterable[Policy]) -> None:
        self.router.add(policies)

    def remove_policy(self, hostnames: str | Iterable[str]) -> None:
        self.router.remove(hostnames)

    def clear(self) -> None:
        self.router.clear()

    async def close(self) -> None:
        self.router.clear()
        if self._owns_session:
            await self._session.aclose()

    async def __aenter__(self) -> ThrottledClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def request(self, method: str, url: httpx.URL | str, *, cost: float = 1, **kwargs: Any) -> httpx.Response:
        request = self._session.build_request(method, url, **kwargs)
        host = request.url.host

        async def send(policy: Policy | None) -> httpx.Response:
            logger.debug("Sending %s %s", request.method, request.url)
            return await self._session.send(apply_policy(request, policy))

        return await self.router.admit_and_perform(host, send, cost=cost, request=request)

    async def get(self, url: httpx.URL | str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: httpx.URL | str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: httpx.URL | str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: httpx.URL | str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: httpx.URL | str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)
