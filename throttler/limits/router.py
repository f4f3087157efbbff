"""Route outgoing calls to per-destination token buckets."""

from __future__ import annotations

import itertools
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from throttler.limits.bucket import TokenBucket
from throttler.limits.models import Policy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdmissionRouter:
    """Registry of policies keyed by destination, each owning one bucket.

    Destinations without a policy are never throttled. Several destinations can
    share a single policy, in which case they also share its bucket.
    """

    def __init__(self, policies: Policy | Iterable[Policy] | None = None) -> None:
        self._ids = itertools.count()
        self._key_to_id: dict[str, int] = {}
        self._policies: dict[int, Policy] = {}
        self._buckets: dict[int, TokenBucket] = {}
        if policies is not None:
            self.add(policies)

    @property
    def policies(self) -> list[Policy]:
        return list(self._policies.values())

    def add(self, policies: Policy | Iterable[Policy]) -> None:
        """Install one or more policies, replacing any that hold the same keys."""
        if isinstance(policies, Policy):
            policies = [policies]
        for policy in policies:
            resolved = policy.resolve()
            self.remove(resolved.hostnames)
            self._install(resolved)

    def remove(self, keys: str | Iterable[str]) -> None:
        """Stop throttling the given keys.

        A policy shared by other keys stays active for them; the last key to go
        takes the policy and its bucket with it.
        """
        if isinstance(keys, str):
            keys = [keys]
        for key in keys:
            self._detach(key)

    def clear(self) -> None:
        for bucket in self._buckets.values():
            bucket.close()
        self._buckets.clear()
        self._policies.clear()
        self._key_to_id.clear()
        logger.info("Cleared all throttling policies")

    def policy_for(self, key: str) -> Policy | None:
        policy_id = self._key_to_id.get(key)
        if policy_id is None:
            return None
        return self._policies[policy_id]

    def bucket_for(self, key: str) -> TokenBucket | None:
        policy_id = self._key_to_id.get(key)
        if policy_id is None:
            return None
        return self._buckets[policy_id]

    async def admit_and_perform(
        self,
        key: str,
        perform_call: Callable[[Policy | None], Awaitable[T]],
        *,
        cost: float = 1,
        request: Any = None,
    ) -> T:
        """Wait for admission on ``key``'s bucket, then run ``perform_call``.

        ``perform_call`` receives the governing policy, or ``None`` when the call
        bypassed throttling. ``request`` is handed to the policy's
        ``should_throttle`` predicate when given.
        """
        policy_id = self._key_to_id.get(key)
        if policy_id is None:
            logger.debug("No policy for %s; passing through", key)
            return await perform_call(None)
        policy = self._policies[policy_id]
        bucket = self._buckets[policy_id]
        if request is not None and not policy.should_throttle(request):
            logger.debug("Policy for %s exempts this request", key)
            return await perform_call(policy)
        await bucket.request(cost)
        return await perform_call(policy)

    def to_dict(self) -> dict[str, Any]:
        return {"policies": [policy.to_dict() for policy in self.policies]}

    def _install(self, policy: Policy) -> None:
        policy_id = next(self._ids)
        bucket = TokenBucket(
            policy.max_tokens,
            interval_ms=policy.interval,
            refill_amount=policy.tokens_per_interval,
            initial_level=policy.max_tokens,
        )
        self._policies[policy_id] = policy
        self._buckets[policy_id] = bucket
        for key in policy.hostnames:
            self._key_to_id[key] = policy_id
        logger.info(
            "Throttling %s at %s token(s) per %sms (max %s)",
            ", ".join(policy.hostnames),
            policy.tokens_per_interval,
            policy.interval,
            policy.max_tokens,
        )

    def _detach(self, key: str) -> None:
        policy_id = self._key_to_id.pop(key, None)
        if policy_id is None:
            return
        remaining = tuple(h for h in self._policies[policy_id].hostnames if h != key)
        if remaining:
            self._policies[policy_id] = replace(self._policies[policy_id], hostname=remaining)
            logger.info("Stopped throttling %s; policy still covers %s", key, ", ".join(remaining))
            return
        del self._policies[policy_id]
        self._buckets.pop(policy_id).close()
        logger.info("Removed throttling policy for %s", key)
