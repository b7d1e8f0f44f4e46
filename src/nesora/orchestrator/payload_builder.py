"""Build intent payloads from the results of earlier intents.

A build instruction looks like::

    {
        "from": "$ctx.fetch1.data.items",
        "filter": {"status": "Open"},
        "map": {"updates[]": {"key": "$it.key", "status": "Done"}}
    }

which turns every open ticket fetched by ``fetch1`` into an entry of the
``updates`` array of the new payload.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from nesora.orchestrator.context_path import MISSING, resolve
from nesora.orchestrator.intent import BuildInstruction
from nesora.orchestrator.normalizer import normalize

logger = logging.getLogger(__name__)

CONTEXT_PREFIX = "$ctx."
ITEM_PREFIX = "$it."


def _candidate_paths(path: str) -> List[str]:
    """The requested path followed by the shape substitutions worth trying."""
    candidates = [
        path,
        re.sub(r"\.data\.issues$", ".data.fetched", path),
        re.sub(r"\.data\.fetched$", ".data.issues", path),
        re.sub(r"\.data\..+$", ".data.items", path),
        f"{path}.data.items",
    ]
    seen = []
    for candidate in candidates:
        if candidate not in seen:
            seen.append(candidate)
    return seen


def resolve_source(context: Mapping[str, Any], source: str) -> List[Any]:
    """Resolve a build source path to a list of items.

    Falls back to the normalized items of the top-level context entry when
    no candidate path points at a list.
    """
    path = source[len(CONTEXT_PREFIX):] if source.startswith(CONTEXT_PREFIX) else source

    for candidate in _candidate_paths(path):
        value = resolve(context, candidate)
        if isinstance(value, list):
            return value

    entry = context.get(path.split(".")[0])
    return normalize(entry)


def _same(actual: Any, expected: Any) -> bool:
    """Strict equality: no bool/int mixing and no str/number coercion."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    numbers = (int, float)
    if isinstance(actual, numbers) and isinstance(expected, numbers):
        return actual == expected
    return type(actual) is type(expected) and actual == expected


def _matches(item: Any, expected: Dict[str, Any]) -> bool:
    for key, value in expected.items():
        actual = resolve(item, key, MISSING)
        if actual is MISSING or not _same(actual, value):
            return False
    return True


def _map_item(item: Any, template: Dict[str, Any]) -> Dict[str, Any]:
    mapped = {}
    for key, value in template.items():
        if isinstance(value, str) and value.startswith(ITEM_PREFIX):
            mapped[key] = resolve(item, value[len(ITEM_PREFIX):])
        else:
            mapped[key] = value
    return mapped


def build_payload(
    instruction: Optional[BuildInstruction],
    context: Mapping[str, Any],
    base: Dict[str, Any],
) -> Dict[str, Any]:
    """Derive a payload from context according to ``instruction``.

    Args:
        instruction: Build instruction attached to the intent
        context: Lookup view of the execution context (id -> outcome)
        base: Payload assembled so far; never mutated

    Returns:
        A copy of ``base`` with the mapped array assigned to the target field,
        or an unchanged copy when the instruction is incomplete or malformed
    """
    payload = dict(base)
    if instruction is None or not instruction.source or not instruction.mapping:
        logger.warning("⚠️ Build instruction missing 'from' or 'map'; using base payload")
        return payload
    if not isinstance(instruction.source, str) or not isinstance(instruction.mapping, dict):
        logger.warning(f"⚠️ Malformed build instruction {instruction!r}; using base payload")
        return payload

    target_key = next(iter(instruction.mapping))
    template = instruction.mapping[target_key]
    if not isinstance(template, dict):
        logger.warning(f"⚠️ Build template for {target_key} is not an object; using base payload")
        return payload

    logger.info(f"🔧 Building payload from context path: {instruction.source}")
    source = resolve_source(context, instruction.source)
    logger.info(f"🔧 Resolved source array with {len(source)} items")

    if instruction.filter:
        source = [item for item in source if _matches(item, instruction.filter)]
        logger.info(f"🔧 After filter: {len(source)} items")

    target_name = re.sub(r"\[\]$", "", str(target_key))
    payload[target_name] = [_map_item(item, template) for item in source]
    logger.info(f"🔧 Built payload with {len(payload[target_name])} {target_name}")
    return payload
