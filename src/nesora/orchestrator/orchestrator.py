"""Orchestrator: single entry point for executing a batch of intents.

Accepts the intents produced by the parser, runs them in dependency waves
(every intent whose dependencies are finished runs concurrently with the
others of its wave), threads results through a shared context and returns
one aggregate report.

Includes execution tracing for observability and debugging.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from nesora.clients.workflow_client import WorkflowClient
from nesora.config import Settings, get_settings
from nesora.orchestrator.context import ExecutionContext, ExecutionResult, ResultStatus
from nesora.orchestrator.execution_trace import (
    BatchStatus,
    ExecutionTrace,
    StepStatus,
    TraceStore,
    get_trace_store,
)
from nesora.orchestrator.executor import IntentExecutor
from nesora.orchestrator.intent import Intent
from nesora.orchestrator.registry import EndpointRegistry

logger = logging.getLogger(__name__)


class ReportStatus:
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class UnresolvedIntent:
    """An intent that never ran because its dependencies never finished.

    Attributes:
        id: Intent id
        intent: Operation name
        missing: Dependency ids that were not done when scheduling stopped
    """
    id: str
    intent: str
    missing: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "intent": self.intent, "missing": list(self.missing)}


@dataclass
class AggregateReport:
    """Result of executing a whole batch.

    Attributes:
        status: "success", "partial" or "failed"
        intents_executed: Number of intents that finished (success or error)
        results: Per-intent results in settle order
        context: The batch's execution context
        unresolved: Intents left unexecuted by a cycle or dangling dependency
        trace_id: ID of the execution trace for this batch
        timestamp: ISO-8601 completion time
    """
    status: str
    intents_executed: int
    results: List[ExecutionResult]
    context: ExecutionContext
    unresolved: List[UnresolvedIntent] = field(default_factory=list)
    trace_id: Optional[str] = None
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def success_count(self) -> int:
        return len([r for r in self.results if r.success])

    @property
    def error_count(self) -> int:
        return len([r for r in self.results if not r.success])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "intents_executed": self.intents_executed,
            "results": [r.to_dict() for r in self.results],
            "context": self.context.to_dict(),
            "unresolved": [u.to_dict() for u in self.unresolved],
            "trace_id": self.trace_id,
            "meta": {"timestamp": self.timestamp},
        }

    def __repr__(self):
        """Human-readable representation."""
        return (
            f"AggregateReport(\n"
            f"  status={self.status},\n"
            f"  intents_executed={self.intents_executed},\n"
            f"  succeeded={self.success_count}, failed={self.error_count},\n"
            f"  unresolved={[u.id for u in self.unresolved]},\n"
            f"  trace_id={self.trace_id or 'N/A'}\n"
            f")"
        )


def aggregate_status(results: List[ExecutionResult], unresolved: List[UnresolvedIntent]) -> str:
    """success iff nothing failed, failed iff nothing succeeded, else partial."""
    success_count = len([r for r in results if r.status == ResultStatus.SUCCESS])
    error_count = len(results) - success_count
    if error_count == 0 and not unresolved:
        return ReportStatus.SUCCESS
    if success_count == 0:
        return ReportStatus.FAILED
    return ReportStatus.PARTIAL


class Orchestrator:
    """Wave-based executor for intent batches.

    Responsibilities:
    - Accept the parsed intents (objects or raw dicts)
    - Group them into waves whose dependencies are all finished
    - Run each wave concurrently and wait for all of it before the next
    - Keep every per-intent failure local to that intent
    - Report intents that can never run instead of looping on them

    The orchestrator exclusively owns the context and results of a batch.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[EndpointRegistry] = None,
        client: Optional[WorkflowClient] = None,
        trace_store: Optional[TraceStore] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or EndpointRegistry(self.settings.n8n_base_url)
        self.client = client
        self.trace_store = trace_store or get_trace_store()

    async def run(
        self,
        intents: List[Any],
        user_id: Optional[str],
        jira_domain: Optional[str],
    ) -> AggregateReport:
        """Execute a batch of intents.

        Args:
            intents: Intent objects or parser dicts
            user_id: Acting user
            jira_domain: Jira site of the acting user

        Returns:
            AggregateReport for the batch
        """
        if self.client is not None:
            return await self._run(intents, user_id, jira_domain, self.client)

        async with WorkflowClient(timeout=self.settings.request_timeout) as client:
            return await self._run(intents, user_id, jira_domain, client)

    async def _run(
        self,
        raw_intents: List[Any],
        user_id: Optional[str],
        jira_domain: Optional[str],
        client: WorkflowClient,
    ) -> AggregateReport:
        raw_intents = list(raw_intents or [])
        executor = IntentExecutor(self.registry, client, self.settings.default_project_key)

        trace = ExecutionTrace(
            trace_id=str(uuid.uuid4()),
            user_id=user_id,
            intent_count=len(raw_intents),
        )
        self.trace_store.store(trace)

        context = ExecutionContext()
        results: List[ExecutionResult] = []
        done: Set[str] = set()
        pending = self._admit(raw_intents, context, results, done, trace)

        logger.info(f"🔄 Starting intent execution, total intents: {len(raw_intents)}")

        while pending:
            ready = [it for it in pending if all(dep in done for dep in it.depends_on)]
            if not ready:
                logger.warning("⚠️ No ready intents, possible circular dependency")
                break

            ready_ids = {it.id for it in ready}
            pending = [it for it in pending if it.id not in ready_ids]
            wave = trace.start_wave([it.id for it in ready])
            logger.info(f"🔄 Executing wave {wave}: {[it.id for it in ready]}")
            await self._run_wave(wave, ready, executor, context, results, done, trace, user_id, jira_domain)

        unresolved = [
            UnresolvedIntent(
                id=it.id,
                intent=it.name,
                missing=[dep for dep in it.depends_on if dep not in done],
            )
            for it in pending
        ]
        for item in unresolved:
            step = trace.add_step(0, item.id, item.intent, StepStatus.UNRESOLVED)
            step.error_message = f"Unresolved dependencies: {', '.join(item.missing)}"

        status = aggregate_status(results, unresolved)
        report = AggregateReport(
            status=status,
            intents_executed=len(done),
            results=results,
            context=context,
            unresolved=unresolved,
            trace_id=trace.trace_id,
        )

        final_error = None
        if unresolved:
            final_error = f"Unresolvable dependencies for: {', '.join(u.id for u in unresolved)}"
        trace.complete(
            {
                ReportStatus.SUCCESS: BatchStatus.SUCCESS,
                ReportStatus.PARTIAL: BatchStatus.PARTIAL,
                ReportStatus.FAILED: BatchStatus.FAILED,
            }[status],
            final_error,
        )

        logger.info(
            f"✅ Execution complete: status={status}, succeeded={report.success_count}, "
            f"failed={report.error_count}, unresolved={len(unresolved)}"
        )
        return report

    def _admit(
        self,
        raw_intents: List[Any],
        context: ExecutionContext,
        results: List[ExecutionResult],
        done: Set[str],
        trace: ExecutionTrace,
    ) -> List[Intent]:
        """Parse the batch and set aside entries that must not be scheduled.

        Malformed entries become error results right away. Repeated ids keep
        their first occurrence; later ones get an error result without a
        context entry so each id is still written exactly once.
        """
        admitted: List[Intent] = []
        seen: Set[str] = set()

        for index, raw in enumerate(raw_intents):
            error = None
            if isinstance(raw, Intent):
                intent = raw
            else:
                try:
                    intent = Intent.from_dict(raw)
                except (ValueError, TypeError) as e:
                    fields = raw if isinstance(raw, dict) else {}
                    name = fields.get("intent") or fields.get("name") or "unknown"
                    intent_id = fields.get("id") or f"{name}_{index}"
                    intent = None
                    error = ExecutionResult.failed(str(intent_id), str(name), f"Invalid intent: {e}")

            intent_id = intent.id if intent is not None else error.id
            if intent_id in seen:
                name = intent.name if intent is not None else error.intent
                duplicate = ExecutionResult.failed(intent_id, name, f"Duplicate intent id: {intent_id}")
                logger.error(f"❌ Duplicate intent id: {intent_id}")
                results.append(duplicate)
                step = trace.add_step(0, intent_id, name, StepStatus.FAIL)
                trace.finish_step(step, False, duplicate.error)
                continue
            seen.add(intent_id)

            if error is not None:
                logger.error(f"❌ {error.error}")
                context.record(error)
                results.append(error)
                done.add(error.id)
                step = trace.add_step(0, error.id, error.intent, StepStatus.FAIL)
                trace.finish_step(step, False, error.error)
                continue

            admitted.append(intent)
        return admitted

    async def _run_wave(
        self,
        wave: int,
        ready: List[Intent],
        executor: IntentExecutor,
        context: ExecutionContext,
        results: List[ExecutionResult],
        done: Set[str],
        trace: ExecutionTrace,
        user_id: Optional[str],
        jira_domain: Optional[str],
    ) -> None:
        """Run one wave concurrently; every intent leaves a recorded result."""
        steps = {it.id: trace.add_step(wave, it.id, it.name) for it in ready}

        outcomes = await asyncio.gather(
            *(
                executor.execute_one(it, context, results, done, user_id, jira_domain)
                for it in ready
            ),
            return_exceptions=True,
        )

        for intent, outcome in zip(ready, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"❌ Intent {intent.name} ({intent.id}) raised: {outcome!r}")
                if intent.id not in context:
                    outcome = ExecutionResult.failed(
                        intent.id, intent.name, str(outcome) or outcome.__class__.__name__
                    )
                    context.record(outcome)
                    results.append(outcome)
                else:
                    outcome = context.get(intent.id)
                done.add(intent.id)
            trace.finish_step(steps[intent.id], outcome.success, outcome.error)


# Singleton instance for convenience
_default_orchestrator = None


def get_orchestrator() -> Orchestrator:
    """Get or create the default orchestrator instance."""
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = Orchestrator()
    return _default_orchestrator


async def run(intents: List[Any], user_id: Optional[str], jira_domain: Optional[str]) -> AggregateReport:
    """Convenience function: execute a batch using the default orchestrator."""
    return await get_orchestrator().run(intents, user_id, jira_domain)
