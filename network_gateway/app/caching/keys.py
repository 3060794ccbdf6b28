"""
Cache key derivation and mutation-invalidation matching.
"""

from typing import Any, Callable, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

INVALIDATION_MODES = ("substring", "path_prefix")


def _flatten_params(params: Mapping[str, Any]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    # Sort by key only; repeated values keep their call-site order
    for key in sorted(params, key=str):
        value = params[key]
        if isinstance(value, (list, tuple)):
            pairs.extend((str(key), _render(item)) for item in value)
        else:
            pairs.append((str(key), _render(value)))
    return pairs


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def sorted_query_string(params: Optional[Mapping[str, Any]]) -> str:
    """Serialize query parameters in lexicographic key order."""
    if not params:
        return ""
    return urlencode(_flatten_params(params))


def make_cache_key(method: str, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Build ``"{METHOD}:{path}:{sortedQueryString}"``.

    The path is used verbatim: no case folding and no trailing-slash
    normalization, so ``/users`` and ``/users/`` are distinct keys.
    """
    return f"{method.upper()}:{path}:{sorted_query_string(params)}"


def key_path(key: str) -> str:
    """Extract the path segment from a key built by ``make_cache_key``."""
    _, _, rest = key.partition(":")
    path, _, _ = rest.rpartition(":")
    return path


def substring_matcher(path: str) -> Callable[[str], bool]:
    """Match every key containing ``path`` anywhere.

    Coarse in one direction only: a mutation to ``/users`` also purges keys
    for ``/users/42`` and ``/admin/users``, while a mutation to ``/users/42``
    leaves the collection query ``GET:/users:team=1`` cached, since that key
    does not contain the resource path.
    """
    return lambda key: path in key


def path_prefix_matcher(path: str) -> Callable[[str], bool]:
    """Match keys whose path equals ``path`` or lies beneath it."""
    prefix = path.rstrip("/") + "/"

    def matches(key: str) -> bool:
        candidate = key_path(key)
        return candidate == path or candidate.startswith(prefix)

    return matches


def invalidation_matcher(mode: str, path: str) -> Callable[[str], bool]:
    if mode == "substring":
        return substring_matcher(path)
    if mode == "path_prefix":
        return path_prefix_matcher(path)
    raise ValueError(f"Unknown invalidation mode: {mode!r} (expected one of {INVALIDATION_MODES})")
