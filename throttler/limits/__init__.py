"""Policy loading helpers."""

from __future__ import annotations

import os
import pathlib
from dataclasses import fields
from typing import Any, Mapping

import yaml

from throttler.errors import InvalidConfigurationError
from throttler.limits.models import Policy

DEFAULT_POLICIES_PATH = pathlib.Path(__file__).with_name("policies.yml")
FILE_FIELDS = {f.name for f in fields(Policy)} - {"should_throttle"}


def policies_path() -> pathlib.Path:
    return pathlib.Path(os.environ.get("THROTTLE_POLICIES_PATH", DEFAULT_POLICIES_PATH))


def load_policies(path: str | pathlib.Path | None = None) -> list[Policy]:
    """Read a YAML list of policies, expanding ``${VAR}`` in params and headers."""
    source = pathlib.Path(path) if path is not None else policies_path()
    try:
        data = yaml.safe_load(source.read_text())
    except yaml.YAMLError as exc:
        raise InvalidConfigurationError(f"Cannot parse {source}: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, list):
        raise InvalidConfigurationError(f"{source} must contain a list of policies")
    return [_policy_from_mapping(item, source) for item in data]


def _policy_from_mapping(item: Any, source: pathlib.Path) -> Policy:
    if not isinstance(item, Mapping):
        raise InvalidConfigurationError(f"{source}: each policy must be a mapping, got {item!r}")
    unknown = set(item) - FILE_FIELDS
    if unknown:
        raise InvalidConfigurationError(f"{source}: unknown policy field(s) {', '.join(sorted(unknown))}")
    values = dict(item)
    for name in ("request_params", "request_headers"):
        if name in values:
            values[name] = _expand(values[name] or {})
    try:
        return Policy(**values)
    except TypeError as exc:
        raise InvalidConfigurationError(f"{source}: {exc}") from exc


def _expand(mapping: Mapping[str, Any]) -> dict[str, str]:
    return {str(key): os.path.expandvars(str(value)) for key, value in mapping.items()}
