"""Canonical cache keys for memoized upstream requests."""

from typing import Any, Mapping

DEFAULT_PREFIX = "app"


def derive_key(namespace: str, params: Mapping[str, Any], prefix: str = DEFAULT_PREFIX) -> str:
    """Build ``<prefix>:<namespace>:<k1>:<v1>|<k2>:<v2>`` with pairs sorted by name.

    Values are rendered with ``str()`` and nothing else, so callers must
    normalize case, whitespace and number formatting before calling.
    """
    pairs = "|".join(f"{name}:{params[name]}" for name in sorted(params))
    return f"{prefix}:{namespace}:{pairs}"
