"""Policy data model."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Sequence

from throttler.errors import InvalidConfigurationError
from throttler.utils.intervals import interval_to_ms

THROTTLED_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})


def throttle_standard_methods(request: Any) -> bool:
    method = getattr(request, "method", None)
    if method is None:
        return True
    return str(method).upper() in THROTTLED_METHODS


def _number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfigurationError(f"{name} must be a number, got {value!r}")
    return value


@dataclass(slots=True)
class Policy:
    hostname: str | Sequence[str]
    tokens_per_interval: float
    interval: int | float | str
    max_tokens: float | None = None
    should_throttle: Callable[[Any], bool] | None = None
    request_params: Mapping[str, str] = field(default_factory=dict)
    request_headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def hostnames(self) -> list[str]:
        if isinstance(self.hostname, str):
            return [self.hostname]
        return list(self.hostname)

    def resolve(self) -> Policy:
        """Return a copy with every default filled in and the interval in milliseconds."""
        hostnames = tuple(dict.fromkeys(self.hostnames))
        if not hostnames:
            raise InvalidConfigurationError("Policy needs at least one hostname")
        tokens_per_interval = _number("tokens_per_interval", self.tokens_per_interval)
        if tokens_per_interval < 0:
            raise InvalidConfigurationError(f"tokens_per_interval must not be negative, got {tokens_per_interval}")
        max_tokens = tokens_per_interval if self.max_tokens is None else _number("max_tokens", self.max_tokens)
        if max_tokens <= 0:
            raise InvalidConfigurationError(f"max_tokens must be positive, got {max_tokens}")
        return replace(
            self,
            hostname=hostnames,
            interval=interval_to_ms(self.interval),
            max_tokens=max_tokens,
            should_throttle=self.should_throttle or throttle_standard_methods,
            request_params=dict(self.request_params),
            request_headers=dict(self.request_headers),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostnames,
            "tokens_per_interval": self.tokens_per_interval,
            "interval": self.interval,
            "max_tokens": self.max_tokens,
            "request_params": dict(self.request_params),
            "request_headers": dict(self.request_headers),
        }
