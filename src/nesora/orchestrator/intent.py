"""Intent data model and types.

Intents are the structured operation descriptors produced by the parser
webhook. Each one names a Jira operation, its static payload, the intents it
depends on and, optionally, a build instruction deriving part of its payload
from an earlier intent's result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class OperationKind(str, Enum):
    """Jira operations the automation backend can execute."""

    CREATE_TICKET = "create_ticket"
    FETCH_TICKET = "fetch_ticket"
    UPDATE_TICKET = "update_ticket"
    COMMENT_TICKET = "comment_ticket"
    DELETE_TICKET = "delete_ticket"

    @classmethod
    def parse(cls, name: Any) -> Optional["OperationKind"]:
        """Map a wire name ("fetch" or "fetch_ticket") to a kind, or None."""
        if isinstance(name, OperationKind):
            return name
        if not isinstance(name, str):
            return None
        key = name.strip().lower()
        if not key.endswith("_ticket"):
            key = f"{key}_ticket"
        try:
            return cls(key)
        except ValueError:
            return None


@dataclass(frozen=True)
class BuildInstruction:
    """Declarative recipe for deriving an array payload field from context.

    Attributes:
        source: Context path, usually "$ctx.<intent_id>.data.items"
        mapping: Single-entry dict: "<field>[]" -> template dict
        filter: Optional key -> expected value equalities (all must match)
    """
    source: Optional[str]
    mapping: Optional[Dict[str, Any]]
    filter: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["BuildInstruction"]:
        if not isinstance(raw, dict):
            return None
        flt = raw.get("filter")
        return cls(
            source=raw.get("from"),
            mapping=raw.get("map"),
            filter=flt if isinstance(flt, dict) else None,
        )


@dataclass
class Intent:
    """A single requested Jira operation.

    Attributes:
        name: Operation name as received (e.g. "fetch_ticket")
        id: Identifier unique within the batch; defaults to the name
        depends_on: Ids that must finish (successfully or not) first
        payload: Static fields merged into the request payload
        build: Optional instruction deriving payload fields from context
    """
    name: str
    id: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict)
    build: Optional[BuildInstruction] = None

    def __post_init__(self):
        """Validate intent structure and apply the id default."""
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Intent name must be a non-empty string")
        if not self.id:
            self.id = self.name
        self.id = str(self.id)
        if self.payload is None:
            self.payload = {}
        if not isinstance(self.payload, dict):
            raise ValueError("Intent payload must be a dictionary")
        self.depends_on = [str(dep) for dep in (self.depends_on or [])]

    @property
    def kind(self) -> Optional[OperationKind]:
        return OperationKind.parse(self.name)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Intent":
        """Build an intent from the parser's JSON.

        Accepts both the parser's snake_case keys ("intent", "depends_on")
        and the camelCase variants ("name", "dependsOn").
        """
        if not isinstance(raw, dict):
            raise ValueError("Intent must be a JSON object")
        name = raw.get("intent") or raw.get("name")
        depends_on = raw.get("depends_on")
        if depends_on is None:
            depends_on = raw.get("dependsOn")
        if isinstance(depends_on, str):
            depends_on = [depends_on]
        return cls(
            name=name,
            id=raw.get("id"),
            depends_on=list(depends_on or []),
            payload=raw.get("payload") or {},
            build=BuildInstruction.from_dict(raw.get("build")),
        )

