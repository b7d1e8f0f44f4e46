"""Execution of a single intent against its automation webhook."""

import json
import logging
from typing import Any, Dict, List, Optional, Set

import httpx

from nesora.clients.workflow_client import WorkflowClient, WorkflowHTTPError
from nesora.orchestrator.context import ExecutionContext, ExecutionResult
from nesora.orchestrator.intent import Intent
from nesora.orchestrator.normalizer import attach_unified_items, unwrap
from nesora.orchestrator.payload_builder import build_payload
from nesora.orchestrator.registry import EndpointRegistry, UnknownIntentError

logger = logging.getLogger(__name__)


def _preview(value: Any, limit: int = 300) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return text[:limit]


class IntentExecutor:
    """Runs one intent: endpoint lookup, payload, call, normalization.

    The executor never raises for an intent-level failure. Whatever happens,
    exactly one result is written to the context and the results list and
    the intent id is added to ``done``.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        client: WorkflowClient,
        default_project_key: str = "NT",
    ):
        self.registry = registry
        self.client = client
        self.default_project_key = default_project_key

    def base_payload(self, intent: Intent, user_id: Optional[str], jira_domain: Optional[str]) -> Dict[str, Any]:
        payload = {
            "user_id": user_id,
            "project_key": intent.payload.get("project_key") or self.default_project_key,
            "jira_domain": jira_domain,
            **intent.payload,
        }
        if not payload.get("project_key"):
            payload["project_key"] = self.default_project_key
        if not payload.get("project_id") and payload.get("project_key"):
            payload["project_id"] = payload["project_key"]
        return payload

    async def _call(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        raw = await self.client.post(endpoint, payload)
        logger.info(f"📥 Raw response from {endpoint}: {_preview(raw)}")

        out = unwrap(raw)
        if isinstance(out, list):
            out = {"items": out}
        elif not isinstance(out, dict):
            out = {"result": out}
        return attach_unified_items(out)

    async def execute_one(
        self,
        intent: Intent,
        context: ExecutionContext,
        results: List[ExecutionResult],
        done: Set[str],
        user_id: Optional[str],
        jira_domain: Optional[str],
    ) -> ExecutionResult:
        """Execute ``intent`` and record its outcome.

        Args:
            intent: The intent to run
            context: Batch context; read for build instructions, written once
            results: Batch results list; the outcome is appended
            done: Ids of finished intents; ``intent.id`` is added
            user_id: Acting user, sent with every payload
            jira_domain: Jira site of the acting user

        Returns:
            The recorded ExecutionResult
        """
        logger.info(f"📤 Executing intent: {intent.name} ({intent.id})")

        try:
            endpoint = self.registry.get_endpoint(intent.name)

            payload = self.base_payload(intent, user_id, jira_domain)
            if intent.build is not None:
                payload = build_payload(intent.build, context.lookup(), payload)

            logger.info(f"📤 Calling {endpoint} with payload: {_preview(payload)}")
            data = await self._call(endpoint, payload)
            result = ExecutionResult.ok(intent.id, intent.name, data)
            logger.info(f"✅ Intent {intent.name} ({intent.id}) completed successfully")

        except UnknownIntentError as e:
            logger.error(f"❌ {e}")
            result = ExecutionResult.failed(intent.id, intent.name, str(e))
        except WorkflowHTTPError as e:
            logger.error(f"❌ Intent {intent.name} ({intent.id}) failed: {e}")
            result = ExecutionResult.failed(intent.id, intent.name, str(e))
        except httpx.TimeoutException:
            message = f"Request timed out after {getattr(self.client, 'timeout', '?')}s"
            logger.error(f"❌ Intent {intent.name} ({intent.id}) failed: {message}")
            result = ExecutionResult.failed(intent.id, intent.name, message)
        except Exception as e:
            logger.error(f"❌ Intent {intent.name} ({intent.id}) failed: {e}")
            result = ExecutionResult.failed(intent.id, intent.name, str(e) or e.__class__.__name__)

        context.record(result)
        results.append(result)
        done.add(intent.id)
        return result
