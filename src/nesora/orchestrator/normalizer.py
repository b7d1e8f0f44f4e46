"""Normalization of automation-backend responses.

n8n webhooks answer in several shapes: ``[{"json": {...}}]``, ``{"json": {...}}``,
bare arrays, or objects carrying their rows under one of a handful of
container keys. Everything downstream works on a canonical item list.

Precedence used by ``normalize``:

1. array of ``{"json": ...}`` wrappers: unwrap each element and flatten
2. bare array: passed through
3. object: first array under one of ``ITEM_KEYS``
4. object: first array under ``data.<one of ITEM_KEYS>``
5. anything else: empty list
"""

from typing import Any, Dict, List

# Container keys checked in order, first at the top level, then under "data"
ITEM_KEYS = ("items", "tickets", "fetched", "issues", "created", "updated", "deleted")


def _is_wrapper(value: Any) -> bool:
    return isinstance(value, dict) and "json" in value


def unwrap(raw: Any) -> Any:
    """Collapse the n8n ``json`` wrapping convention.

    ``{"json": X}`` and ``[{"json": X}]`` become ``X``; several elements become
    ``{"items": [...]}``. Values that are not wrapped are returned as they are,
    except arrays, which are collapsed the same way.
    """
    if not raw:
        if isinstance(raw, list):
            return {"items": []}
        return raw

    if isinstance(raw, list):
        if _is_wrapper(raw[0]):
            extracted = [
                item["json"] if _is_wrapper(item) and item["json"] is not None else item
                for item in raw
            ]
        else:
            extracted = list(raw)
        return extracted[0] if len(extracted) == 1 else {"items": extracted}

    if _is_wrapper(raw):
        return raw["json"]

    return raw


def _container_items(obj: Dict[str, Any]):
    """Return the first array under ITEM_KEYS (top level, then ``data``), or None."""
    for key in ITEM_KEYS:
        value = obj.get(key)
        if isinstance(value, list):
            return value

    nested = obj.get("data")
    if isinstance(nested, dict):
        for key in ITEM_KEYS:
            value = nested.get(key)
            if isinstance(value, list):
                return value
    return None


def normalize(raw: Any) -> List[Any]:
    """Convert any upstream response into a list of items. Never raises."""
    if isinstance(raw, list):
        if not any(_is_wrapper(item) for item in raw):
            return list(raw)

        flattened: List[Any] = []
        for item in raw:
            inner = item["json"] if _is_wrapper(item) else item
            if isinstance(inner, list):
                flattened.extend(inner)
                continue
            if isinstance(inner, dict):
                items = _container_items(inner)
                if items is not None:
                    flattened.extend(items)
                    continue
            if inner is not None:
                flattened.append(inner)
        return flattened

    if isinstance(raw, dict):
        if _is_wrapper(raw):
            return normalize(raw["json"])
        items = _container_items(raw)
        return list(items) if items is not None else []

    return []


def attach_unified_items(result: Dict[str, Any]) -> Dict[str, Any]:
    """Expose the normalized rows of ``result`` at ``result["data"]["items"]``.

    Dependent intents can then always read ``$ctx.<id>.data.items`` no matter
    which shape the webhook answered with.
    """
    items = normalize(result)
    data = result.get("data")
    if not isinstance(data, dict):
        data = {} if data is None else {"value": data}
        result["data"] = data
    data["items"] = items
    return result
