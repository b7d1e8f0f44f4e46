"""Tests for wave-based intent execution.

Validates:
- Acyclic batches run to completion
- Cycles and dangling dependencies terminate and are reported
- Dependents never start before their dependencies finish
- Independent intents share a wave and run concurrently
- Per-intent failures stay local to the intent
- Aggregate status reflects the mix of outcomes
"""

import asyncio
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from fakes import BASE_URL, FakeWorkflowClient
from nesora.clients.workflow_client import WorkflowHTTPError
from nesora.config import Settings, reset_settings
from nesora.orchestrator.context import ContextWriteError, ExecutionContext, ExecutionResult
from nesora.orchestrator.execution_trace import BatchStatus, StepStatus, TraceStore
from nesora.orchestrator import orchestrator as orchestrator_module
from nesora.orchestrator.intent import Intent
from nesora.orchestrator.orchestrator import Orchestrator, aggregate_status


def _orchestrator(client, trace_store=None):
    return Orchestrator(
        settings=Settings(n8n_base_url=BASE_URL),
        client=client,
        trace_store=trace_store or TraceStore(),
    )


def _run(orchestrator, intents, user_id="user-1", jira_domain="acme.atlassian.net"):
    return asyncio.run(orchestrator.run(intents, user_id, jira_domain))


def test_acyclic_batch_runs_every_intent():
    client = FakeWorkflowClient()
    intents = [
        {"id": "a", "intent": "fetch_ticket"},
        {"id": "b", "intent": "fetch_ticket", "depends_on": ["a"]},
        {"id": "c", "intent": "comment_ticket", "depends_on": ["a", "b"]},
        {"id": "d", "intent": "create_ticket"},
    ]

    report = _run(_orchestrator(client), intents)

    assert report.intents_executed == len(intents)
    assert report.status == "success"
    assert report.unresolved == []
    assert {r.id for r in report.results} == {"a", "b", "c", "d"}


def test_cycle_terminates_and_reports_unexecuted_intents():
    client = FakeWorkflowClient()
    intents = [
        {"id": "a", "intent": "fetch_ticket", "depends_on": ["b"]},
        {"id": "b", "intent": "update_ticket", "depends_on": ["a"]},
        {"id": "c", "intent": "create_ticket"},
    ]

    report = _run(_orchestrator(client), intents)

    assert report.intents_executed == 1
    assert report.intents_executed < len(intents)
    assert [r.id for r in report.results] == ["c"]
    assert {u.id for u in report.unresolved} == {"a", "b"}
    unresolved = {u.id: u.missing for u in report.unresolved}
    assert unresolved["a"] == ["b"]
    assert report.status == "partial"
    assert [op for op, _ in client.calls] == ["create"]


def test_fully_cyclic_batch_fails_without_calls():
    client = FakeWorkflowClient()
    intents = [
        {"id": "a", "intent": "fetch_ticket", "depends_on": ["a"]},
    ]

    report = _run(_orchestrator(client), intents)

    assert report.intents_executed == 0
    assert report.results == []
    assert report.status == "failed"
    assert client.calls == []


def test_dangling_dependency_is_unresolved():
    client = FakeWorkflowClient()

    report = _run(_orchestrator(client), [{"id": "x", "intent": "delete_ticket", "depends_on": ["ghost"]}])

    assert report.unresolved[0].id == "x"
    assert report.unresolved[0].missing == ["ghost"]
    assert report.to_dict()["unresolved"] == [{"id": "x", "intent": "delete_ticket", "missing": ["ghost"]}]


def test_dependent_starts_only_after_dependency_finished():
    client = FakeWorkflowClient(delays={"fetch": 0.05})
    intents = [
        {"id": "update1", "intent": "update_ticket", "depends_on": ["fetch1"], "payload": {"tag": "update1"}},
        {"id": "fetch1", "intent": "fetch_ticket", "payload": {"tag": "fetch1"}},
    ]

    _run(_orchestrator(client), intents)

    events = client.events
    assert events.index(("end", "fetch", "fetch1")) < events.index(("start", "update", "update1"))


def test_independent_intents_share_a_wave():
    client = FakeWorkflowClient(delays={"fetch": 0.05, "create": 0.05})
    store = TraceStore()
    intents = [
        {"id": "open", "intent": "fetch_ticket", "payload": {"tag": "open"}},
        {"id": "new", "intent": "create_ticket", "payload": {"tag": "new"}},
        {"id": "close", "intent": "update_ticket", "depends_on": ["open"], "payload": {"tag": "close"}},
    ]

    report = _run(_orchestrator(client, store), intents)

    starts = [i for i, e in enumerate(client.events) if e[0] == "start" and e[2] in ("open", "new")]
    first_end = next(i for i, e in enumerate(client.events) if e[0] == "end")
    assert all(i < first_end for i in starts)

    trace = store.get(report.trace_id)
    assert trace.waves == [["open", "new"], ["close"]]
    assert trace.status == BatchStatus.SUCCESS


def test_fetch_then_update_end_to_end():
    client = FakeWorkflowClient(routes={
        "fetch": [{"json": {"issues": [{"key": "NT-1"}, {"key": "NT-2"}]}}],
        "update": lambda payload: {"updated": [u["key"] for u in payload["updates"]]},
    })
    intents = [
        {"id": "fetch1", "name": "fetch"},
        {
            "id": "update1",
            "name": "update",
            "dependsOn": ["fetch1"],
            "build": {
                "from": "$ctx.fetch1.items",
                "map": {"updates[]": {"key": "$it.key", "status": "Done"}},
            },
        },
    ]

    report = _run(_orchestrator(client), intents)

    assert [op for op, _ in client.calls] == ["fetch", "update"]
    update_payload = client.calls[1][1]
    assert update_payload["updates"] == [
        {"key": "NT-1", "status": "Done"},
        {"key": "NT-2", "status": "Done"},
    ]
    assert report.status == "success"
    assert report.context.get("update1").data["updated"] == ["NT-1", "NT-2"]


def test_wrapped_array_response_feeds_dependents():
    client = FakeWorkflowClient(routes={
        "fetch": [{"json": [{"key": "A-1"}, {"key": "A-2"}]}],
    })
    intents = [
        {"id": "f", "intent": "fetch_ticket"},
        {
            "id": "u",
            "intent": "update_ticket",
            "depends_on": ["f"],
            "build": {"from": "$ctx.f.data.items", "map": {"updates[]": {"key": "$it.key"}}},
        },
    ]

    report = _run(_orchestrator(client), intents)

    assert report.context.get("f").data["items"] == [{"key": "A-1"}, {"key": "A-2"}]
    assert report.context.get("f").data["data"]["items"] == [{"key": "A-1"}, {"key": "A-2"}]
    assert client.calls[1][1]["updates"] == [{"key": "A-1"}, {"key": "A-2"}]


def test_context_exposes_unified_items_for_dependents():
    client = FakeWorkflowClient(routes={"fetch": {"data": {"fetched": [{"key": "NT-5"}]}}})

    report = _run(_orchestrator(client), [{"id": "f", "intent": "fetch_ticket"}])

    assert report.context.lookup()["f"]["data"]["items"] == [{"key": "NT-5"}]


def test_failed_dependency_still_releases_dependents():
    client = FakeWorkflowClient(routes={
        "fetch": WorkflowHTTPError(500, "Internal Server Error", "boom"),
    })
    intents = [
        {"id": "f", "intent": "fetch_ticket"},
        {
            "id": "u",
            "intent": "update_ticket",
            "depends_on": ["f"],
            "build": {"from": "$ctx.f.data.items", "map": {"updates[]": {"key": "$it.key"}}},
        },
    ]

    report = _run(_orchestrator(client), intents)

    results = {r.id: r for r in report.results}
    assert results["f"].error == "HTTP 500: Internal Server Error - boom"
    assert results["u"].success
    assert client.calls[1][1]["updates"] == []
    assert report.status == "partial"


def test_unknown_intent_is_a_local_error():
    client = FakeWorkflowClient()
    intents = [
        {"id": "weird", "intent": "frobnicate_ticket"},
        {"id": "ok", "intent": "create_ticket"},
    ]

    report = _run(_orchestrator(client), intents)

    results = {r.id: r for r in report.results}
    assert results["weird"].error == "Unknown intent: frobnicate_ticket"
    assert results["ok"].success
    assert report.intents_executed == 2
    assert report.status == "partial"


def test_timeout_is_recorded_and_siblings_continue():
    client = FakeWorkflowClient(routes={"fetch": httpx.ReadTimeout("timed out")})
    intents = [
        {"id": "slow", "intent": "fetch_ticket"},
        {"id": "fast", "intent": "create_ticket"},
    ]

    report = _run(_orchestrator(client), intents)

    results = {r.id: r for r in report.results}
    assert results["slow"].error == "Request timed out after 5.0s"
    assert results["fast"].success


def test_all_errors_is_failed():
    client = FakeWorkflowClient(routes={
        "fetch": WorkflowHTTPError(502, "Bad Gateway", ""),
        "create": httpx.ConnectError("refused"),
    })
    intents = [
        {"id": "a", "intent": "fetch_ticket"},
        {"id": "b", "intent": "create_ticket"},
    ]

    report = _run(_orchestrator(client), intents)

    assert report.status == "failed"
    assert report.error_count == 2


def test_duplicate_ids_run_once():
    client = FakeWorkflowClient()
    intents = [
        {"id": "same", "intent": "create_ticket"},
        {"id": "same", "intent": "delete_ticket"},
    ]

    report = _run(_orchestrator(client), intents)

    assert [op for op, _ in client.calls] == ["create"]
    errors = [r for r in report.results if not r.success]
    assert errors[0].error == "Duplicate intent id: same"
    assert report.context.get("same").success


def test_malformed_intent_is_recorded():
    client = FakeWorkflowClient()

    report = _run(_orchestrator(client), [{"id": "bad", "payload": {}}, {"intent": "create_ticket"}])

    results = {r.id: r for r in report.results}
    assert results["bad"].error.startswith("Invalid intent")
    assert results["create_ticket"].success


def test_base_payload_fields():
    client = FakeWorkflowClient()
    intents = [
        {"id": "a", "intent": "create_ticket", "payload": {"summary": "Login broken"}},
        {"id": "b", "intent": "create_ticket", "payload": {"project_key": "ABC"}},
    ]

    _run(_orchestrator(client), intents, user_id="u-9", jira_domain="acme.atlassian.net")

    payloads = {p.get("summary", "b"): p for _, p in client.calls}
    first = payloads["Login broken"]
    assert first["user_id"] == "u-9"
    assert first["jira_domain"] == "acme.atlassian.net"
    assert first["project_key"] == "NT"
    assert first["project_id"] == "NT"
    assert payloads["b"]["project_key"] == "ABC"
    assert payloads["b"]["project_id"] == "ABC"


def test_intent_objects_are_accepted():
    client = FakeWorkflowClient()
    intents = [Intent(name="fetch"), Intent(name="comment", id="c1", depends_on=["fetch"])]

    report = _run(_orchestrator(client), intents)

    assert report.intents_executed == 2
    assert [op for op, _ in client.calls] == ["fetch", "comment"]


def test_empty_batch_is_success():
    report = _run(_orchestrator(FakeWorkflowClient()), [])

    assert report.status == "success"
    assert report.intents_executed == 0


def test_report_to_dict_shape():
    client = FakeWorkflowClient(routes={"create": {"created": [{"key": "NT-7"}]}})

    report = _run(_orchestrator(client), [{"id": "c", "intent": "create_ticket"}])
    body = report.to_dict()

    assert set(body) == {"status", "intents_executed", "results", "context", "unresolved", "trace_id", "meta"}
    assert body["results"][0] == {
        "intent": "create_ticket",
        "id": "c",
        "status": "success",
        "data": {"created": [{"key": "NT-7"}], "data": {"items": [{"key": "NT-7"}]}},
    }
    assert body["meta"]["timestamp"]


def test_trace_records_unresolved_steps():
    store = TraceStore()
    intents = [
        {"id": "a", "intent": "fetch_ticket"},
        {"id": "b", "intent": "update_ticket", "depends_on": ["zzz"]},
    ]

    report = _run(_orchestrator(FakeWorkflowClient(), store), intents)

    trace = store.get(report.trace_id)
    statuses = {s.intent_id: s.status for s in trace.steps}
    assert statuses == {"a": StepStatus.SUCCESS, "b": StepStatus.UNRESOLVED}
    assert trace.status == BatchStatus.PARTIAL
    assert "b" in trace.final_error


def test_aggregate_status_rules():
    ok = ExecutionResult.ok("a", "fetch_ticket", {})
    bad = ExecutionResult.failed("b", "fetch_ticket", "boom")

    assert aggregate_status([ok, ok], []) == "success"
    assert aggregate_status([bad, bad], []) == "failed"
    assert aggregate_status([ok, bad], []) == "partial"
    assert aggregate_status([], []) == "success"


def test_context_is_write_once():
    context = ExecutionContext()
    context.record(ExecutionResult.ok("a", "fetch_ticket", {}))

    with pytest.raises(ContextWriteError):
        context.record(ExecutionResult.failed("a", "fetch_ticket", "again"))


def test_module_level_run_opens_and_closes_its_own_client(monkeypatch):
    created = []

    class ScopedClient(FakeWorkflowClient):
        def __init__(self, timeout=30.0):
            super().__init__(routes={"fetch": {"issues": [{"key": "NT-9"}]}})
            self.timeout = timeout
            self.closed = False
            created.append(self)

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            self.closed = True

    monkeypatch.setenv("N8N_BASE_URL", BASE_URL)
    monkeypatch.setenv("REQUEST_TIMEOUT", "7")
    monkeypatch.setenv("DEFAULT_PROJECT_KEY", "ABC")
    reset_settings()
    monkeypatch.setattr(orchestrator_module, "_default_orchestrator", None)
    monkeypatch.setattr(orchestrator_module, "WorkflowClient", ScopedClient)

    try:
        report = asyncio.run(orchestrator_module.run([{"id": "f", "intent": "fetch_ticket"}], "u1", "acme"))

        assert report.status == "success"
        assert orchestrator_module.get_orchestrator() is orchestrator_module.get_orchestrator()
    finally:
        reset_settings()

    assert len(created) == 1
    assert created[0].timeout == 7.0
    assert created[0].closed
    assert created[0].calls[0][1]["user_id"] == "u1"
    assert created[0].calls[0][1]["project_key"] == "ABC"
