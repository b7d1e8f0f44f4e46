"""Execution tracing for intent batches.

Records which intents ran in which wave and how each one ended, so a
batch can be inspected after the chat reply has been sent.

Key principles:
- Read-only: Traces don't affect execution
- Serializable: Easy to convert to JSON
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum
import json


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StepStatus(str, Enum):
    """Status of a single intent within a batch."""
    STARTED = "STARTED"
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    UNRESOLVED = "UNRESOLVED"


class BatchStatus(str, Enum):
    """Overall batch status."""
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


@dataclass
class IntentStep:
    """A single intent execution in the batch."""
    step_number: int
    wave: int
    intent_id: str
    operation: str
    status: StepStatus
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        """Set started_at if not provided."""
        if self.started_at is None:
            self.started_at = _now()


@dataclass
class ExecutionTrace:
    """Complete trace of one orchestrator run."""
    trace_id: str
    user_id: Optional[str]
    intent_count: int
    status: BatchStatus = BatchStatus.RUNNING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    waves: List[List[str]] = field(default_factory=list)
    steps: List[IntentStep] = field(default_factory=list)
    final_error: Optional[str] = None

    def __post_init__(self):
        """Set started_at if not provided."""
        if self.started_at is None:
            self.started_at = _now()

    def start_wave(self, intent_ids: List[str]) -> int:
        """Record the ids of a new wave and return its 1-based number."""
        self.waves.append(list(intent_ids))
        return len(self.waves)

    def add_step(
        self,
        wave: int,
        intent_id: str,
        operation: str,
        status: StepStatus = StepStatus.STARTED,
    ) -> IntentStep:
        """Add a new step to the trace.

        Args:
            wave: Wave number the intent runs in (0 for never-run intents)
            intent_id: Intent id
            operation: Operation name
            status: Initial status (usually STARTED)

        Returns:
            The created IntentStep
        """
        step = IntentStep(
            step_number=len(self.steps) + 1,
            wave=wave,
            intent_id=intent_id,
            operation=operation,
            status=status,
        )
        self.steps.append(step)
        return step

    def finish_step(
        self,
        step: IntentStep,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        step.status = StepStatus.SUCCESS if success else StepStatus.FAIL
        step.completed_at = _now()
        if error_message is not None:
            step.error_message = error_message

    def complete(self, status: BatchStatus, final_error: Optional[str] = None) -> None:
        """Mark the trace as complete."""
        self.status = status
        self.completed_at = _now()
        if final_error is not None:
            self.final_error = final_error

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def get_summary(self) -> str:
        """Get a human-readable summary of the trace.

        Returns:
            Multi-line summary string
        """
        lines = [
            f"Trace ID: {self.trace_id}",
            f"Intents: {self.intent_count}",
            f"Status: {self.status.value}",
            f"Started: {self.started_at}",
        ]

        if self.completed_at:
            lines.append(f"Completed: {self.completed_at}")

        lines.append(f"\nWaves ({len(self.waves)}):")
        for number, wave in enumerate(self.waves, start=1):
            lines.append(f"  {number}. {', '.join(wave)}")

        lines.append(f"\nSteps ({len(self.steps)}):")
        for step in self.steps:
            status_icon = {
                StepStatus.STARTED: "⏳",
                StepStatus.SUCCESS: "✅",
                StepStatus.FAIL: "❌",
                StepStatus.UNRESOLVED: "🚫",
            }.get(step.status, "❓")
            lines.append(
                f"  {step.step_number}. {status_icon} [{step.wave}] {step.intent_id} "
                f"({step.operation}): {step.status.value}"
            )
            if step.error_message:
                lines.append(f"     Error: {step.error_message}")

        if self.final_error:
            lines.append(f"\nFinal Error: {self.final_error}")

        return "\n".join(lines)


class TraceStore:
    """Bounded in-memory store for batch traces."""

    def __init__(self, max_traces: int = 200):
        self.max_traces = max_traces
        self._traces: Dict[str, ExecutionTrace] = {}

    def store(self, trace: ExecutionTrace) -> None:
        self._traces[trace.trace_id] = trace
        while len(self._traces) > self.max_traces:
            oldest = next(iter(self._traces))
            del self._traces[oldest]

    def get(self, trace_id: str) -> Optional[ExecutionTrace]:
        return self._traces.get(trace_id)

    def get_recent(self, limit: int = 10) -> List[ExecutionTrace]:
        """Get the most recent traces, most recent first."""
        traces = sorted(
            self._traces.values(),
            key=lambda t: t.started_at,
            reverse=True,
        )
        return traces[:limit]

    def clear(self) -> None:
        """Clear all stored traces."""
        self._traces.clear()


# Global trace store instance
_trace_store = TraceStore()


def get_trace_store() -> TraceStore:
    """Get the global trace store instance."""
    return _trace_store
