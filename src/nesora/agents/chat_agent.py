import json
import logging
from typing import Optional, Dict, Any, List

from nesora.clients.ai_gateway_client import AIGatewayClient
from nesora.clients.workflow_client import WorkflowClient, WorkflowHTTPError
from nesora.config import Settings, get_settings
from nesora.orchestrator.formatter import format_workflow_result
from nesora.orchestrator.normalizer import unwrap
from nesora.orchestrator.orchestrator import Orchestrator
from nesora.orchestrator.registry import EndpointRegistry

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """
You are Nesora, an AI-powered Jira Execution Assistant. Return **ONLY** valid JSON per the schemas below.
If you need to respond in natural language, put it in the "message" field. Never include extra text outside JSON.

When executing Jira operations (preferred when the user asks to do something):
{
  "needsClarification": false,
  "message": "✅ ...human-friendly summary...",
  "action": {
    "query": "<user-intent in natural language>",
    "context": {
      "source": "lovable",
      "project_key": "NT"
    }
  }
}

When needing clarification:
{
  "needsClarification": true,
  "message": "One question to unblock execution"
}

When only chatting:
{
  "needsClarification": false,
  "message": "short helpful text"
}
""".strip()

PARSER_FAILED_HINT = "⚠️ Parser workflow failed. Please check if your n8n workflows are running."
NO_INTENTS_HINT = "⚠️ I couldn't determine the specific actions to take. Please add a bit more detail."


class GatewayNotConfiguredError(Exception):
    """Raised when no API key is configured for the LLM gateway."""
    pass


class ParserFailedError(Exception):
    """Raised when the parser webhook answers with a non-2xx status."""

    def __init__(self, message: str, error: str, body: str = ""):
        self.message = message
        self.error = error
        self.body = body
        super().__init__(error)


def extract_json_from_text(text: str) -> Optional[Any]:
    """Parse ``text`` as JSON, or the outermost ``{...}`` block inside it.

    Models often wrap the JSON answer in prose or code fences.
    """
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except ValueError:
            pass
    return None


def last_user_message(messages: List[Dict[str, Any]]) -> str:
    for message in reversed(messages):
        if isinstance(message, dict) and message.get("role") == "user":
            return str(message.get("content") or "").strip()
    return ""


def extract_intents(parsed: Any) -> List[Any]:
    """Find the intents array in the (unwrapped) parser response."""
    if isinstance(parsed, list):
        return parsed
    if not isinstance(parsed, dict):
        return []
    if isinstance(parsed.get("intents"), list):
        return parsed["intents"]
    data = parsed.get("data")
    if isinstance(data, dict) and isinstance(data.get("intents"), list):
        return data["intents"]
    items = parsed.get("items")
    if isinstance(items, list) and items and all(isinstance(i, dict) and "intent" in i for i in items):
        return items
    if "intent" in parsed:
        return [parsed]
    return []


class ChatAgent:
    """Agent that turns a chat turn into Jira operations.

    Flow: LLM gateway → (action?) → parser webhook → orchestrator → formatter.
    Turns without an action are returned to the user as plain chat.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        ai_client: Optional[AIGatewayClient] = None,
        workflow_client: Optional[WorkflowClient] = None,
        orchestrator: Optional[Orchestrator] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = EndpointRegistry(self.settings.n8n_base_url)
        self.ai_client = ai_client
        self.workflow_client = workflow_client or WorkflowClient(timeout=self.settings.request_timeout)
        self.orchestrator = orchestrator or Orchestrator(
            settings=self.settings,
            registry=self.registry,
            client=self.workflow_client,
        )

    def _get_ai_client(self) -> AIGatewayClient:
        if self.ai_client is None:
            if not self.settings.ai_gateway_api_key:
                logger.error("❌ AI_GATEWAY_API_KEY not configured")
                raise GatewayNotConfiguredError("AI_GATEWAY_API_KEY is not configured")
            self.ai_client = AIGatewayClient(
                url=self.settings.ai_gateway_url,
                api_key=self.settings.ai_gateway_api_key,
                model=self.settings.ai_model,
                timeout=self.settings.request_timeout,
            )
        return self.ai_client

    async def interpret(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Ask the LLM what to do with the conversation.

        Falls back to sending the last user message straight to the parser
        when the model proposes no action and asks no question.
        """
        logger.info("🤖 Calling AI gateway...")
        ai_message = await self._get_ai_client().complete(SYSTEM_PROMPT, messages)
        logger.info(f"🤖 AI response: {ai_message[:200]}")

        parsed = extract_json_from_text(ai_message)
        if not isinstance(parsed, dict):
            parsed = {"needsClarification": False, "message": ai_message}

        last_message = last_user_message(messages)
        if not parsed.get("needsClarification") and not parsed.get("action") and len(last_message) > 3:
            logger.info(f"📝 Fallback to parser with user message: {last_message[:50]}")
            parsed = {
                "needsClarification": False,
                "message": parsed.get("message") or f"🎯 Working on your request: {last_message}",
                "action": {
                    "query": last_message,
                    "context": {"source": "lovable", "project_key": self.settings.default_project_key},
                },
            }
        return parsed

    async def parse_intents(
        self,
        action: Dict[str, Any],
        user_id: Optional[str],
        jira_domain: Optional[str],
        message: str,
    ) -> Dict[str, Any]:
        """Call the parser webhook; returns the unwrapped response and intents."""
        extra = action.get("context")
        context = {
            "source": "lovable",
            "project_key": self.settings.default_project_key,
            **(extra if isinstance(extra, dict) else {}),
        }
        try:
            raw = await self.workflow_client.parse(
                self.registry.parser_url,
                user_id,
                str(action.get("query") or ""),
                context,
                jira_domain,
            )
        except WorkflowHTTPError as e:
            logger.error(f"❌ Parser failed: {e.status_code} {e.body}")
            raise ParserFailedError(
                f"{message}\n\n{PARSER_FAILED_HINT}",
                f"HTTP {e.status_code} {e.reason}",
                e.body,
            )

        unwrapped = unwrap(raw)
        logger.info(f"📥 Parser unwrapped: {json.dumps(unwrapped, default=str)[:500]}")
        return {"parser": unwrapped, "intents": extract_intents(unwrapped)}

    async def handle(
        self,
        messages: List[Dict[str, Any]],
        user_id: Optional[str],
        jira_domain: Optional[str],
    ) -> Dict[str, Any]:
        """Process one chat request and return the response body.

        Raises:
            GatewayNotConfiguredError: When no gateway API key is configured
            AIGatewayError: When the LLM gateway call fails
            ParserFailedError: When the parser webhook call fails
        """
        parsed = await self.interpret(messages)
        action = parsed.get("action")
        if not action or parsed.get("needsClarification"):
            logger.info("💬 Returning chat response")
            return parsed
        if not isinstance(action, dict):
            action = {"query": str(action)}

        logger.info(f"🔧 Executing action: {action}")
        message = parsed.get("message") or ""
        parser_result = await self.parse_intents(action, user_id, jira_domain, message)
        parser = parser_result["parser"]
        intents = parser_result["intents"]

        if (isinstance(parser, dict) and parser.get("status") == "error") or not intents:
            logger.info("⚠️ No intents parsed, returning clarification")
            return {"message": f"{message}\n\n{NO_INTENTS_HINT}", "parser": parser}

        logger.info(f"🎯 Executing intents: {[i.get('id') or i.get('intent') for i in intents if isinstance(i, dict)]}")
        report = await self.orchestrator.run(intents, user_id, jira_domain)

        return {
            "message": message,
            "workflowResult": report.to_dict(),
            "formattedResult": format_workflow_result(report),
        }
