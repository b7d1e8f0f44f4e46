"""Dotted-path lookups into nested JSON-like data."""

from typing import Any, Optional

# Returned by ``resolve`` when asked to tell a missing path from a null value
MISSING = object()


def resolve(root: Any, path: Optional[str], default: Any = None) -> Any:
    """Resolve "a.b.0.c" against dicts and lists.

    Returns ``default`` as soon as a segment is missing or an intermediate
    value cannot be indexed. Never raises.
    """
    if not isinstance(root, (dict, list)) or not isinstance(path, str):
        return default

    current = root
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdigit():
                return default
            index = int(segment)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current
