"""
Sync Rule Filters

Named callbacks that transform the source values of a sync rule before
they are written. A filter returns:

- a list of values (or a single string) to write instead
- None or an empty list to treat the source as empty
- False to skip the rule entirely

Only filters registered here can be referenced from configuration.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Union

from ..core.errors import ConfigurationError

FilterResult = Union[List[str], str, None, bool]
SyncFilter = Callable[[List[str]], FilterResult]


# ---------------------------------------------------------------------
# Built-in Filters
# ---------------------------------------------------------------------

def _lowercase(values: List[str]) -> List[str]:
    return [v.lower() for v in values]


def _strip(values: List[str]) -> List[str]:
    return [v.strip() for v in values if v.strip()]


def _first(values: List[str]) -> List[str]:
    return values[:1]


def _require_value(values: List[str]) -> FilterResult:
    return values if values else False


# ---------------------------------------------------------------------
# Filter Registry (AUTHORITATIVE)
# ---------------------------------------------------------------------

FILTER_REGISTRY: Dict[str, SyncFilter] = {
    "lowercase": _lowercase,
    "strip": _strip,
    "first": _first,
    "require_value": _require_value,
}


def register_filter(name: str, func: SyncFilter) -> None:
    FILTER_REGISTRY[name] = func


def get_filter(name: str) -> SyncFilter:
    """
    Raises
    ------
    ConfigurationError
        If no filter is registered under `name`.
    """
    func = FILTER_REGISTRY.get(name)
    if func is None:
        raise ConfigurationError(f"Unknown sync filter: {name}")
    return func


def apply_filter(name: Optional[str], values: List[str]) -> Optional[List[str]]:
    """
    Run the named filter. Returns None when the rule must be skipped.
    """
    if not name:
        return values
    result = get_filter(name)(list(values))
    if result is False:
        return None
    if result is True:
        return values
    if result is None:
        return []
    if isinstance(result, str):
        return [result]
    return [str(v) for v in result]
