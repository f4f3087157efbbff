"""Apply a policy's extra query parameters and headers to an outgoing request."""

from __future__ import annotations

import httpx

from throttler.limits.models import Policy


def apply_policy(request: httpx.Request, policy: Policy | None) -> httpx.Request:
    """Merge the policy's params and headers into ``request``; policy values win."""
    if policy is None:
        return request
    if policy.request_params:
        request.url = request.url.copy_merge_params(dict(policy.request_params))
    for name, value in policy.request_headers.items():
        request.headers[name] = value
    return request
