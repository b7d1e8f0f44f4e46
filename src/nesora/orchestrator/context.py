"""Per-batch execution context and per-intent results."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional


class ResultStatus(str, Enum):
    """Outcome of a single intent."""
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class ExecutionResult:
    """Result of executing a single intent.

    Attributes:
        id: Intent id
        intent: Operation name as carried by the intent
        status: SUCCESS or ERROR
        data: Unwrapped response body on success
        error: Error message on failure
    """
    id: str
    intent: str
    status: ResultStatus
    data: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def ok(cls, intent_id: str, name: str, data: Any) -> "ExecutionResult":
        return cls(id=intent_id, intent=name, status=ResultStatus.SUCCESS, data=data)

    @classmethod
    def failed(cls, intent_id: str, name: str, error: str) -> "ExecutionResult":
        return cls(id=intent_id, intent=name, status=ResultStatus.ERROR, error=error)

    def to_dict(self) -> Dict[str, Any]:
        out = {"intent": self.intent, "id": self.id, "status": self.status.value}
        if self.success:
            out["data"] = self.data
        else:
            out["error"] = self.error
        return out


class ContextWriteError(Exception):
    """Raised when an intent id is written to the context twice."""
    pass


class ExecutionContext:
    """Write-once mapping from intent id to that intent's result.

    Owned by a single orchestrator run. ``lookup()`` returns the plain view
    that build instructions resolve their ``$ctx.`` paths against.
    """

    def __init__(self):
        self._entries: Dict[str, ExecutionResult] = {}

    def record(self, result: ExecutionResult) -> None:
        if result.id in self._entries:
            raise ContextWriteError(f"Context entry for '{result.id}' already written")
        self._entries[result.id] = result

    def get(self, intent_id: str) -> Optional[ExecutionResult]:
        return self._entries.get(intent_id)

    def __contains__(self, intent_id: object) -> bool:
        return intent_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def lookup(self) -> Dict[str, Any]:
        """Success entries map to their data, errors to their result dict."""
        return {
            intent_id: result.data if result.success else result.to_dict()
            for intent_id, result in self._entries.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.lookup()
