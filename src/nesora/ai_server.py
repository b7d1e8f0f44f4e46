from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional, Dict, Any, List
import json
import logging
from contextlib import asynccontextmanager

from nesora.agents.chat_agent import ChatAgent, GatewayNotConfiguredError, ParserFailedError
from nesora.clients.ai_gateway_client import AIGatewayError
from nesora.clients.workflow_client import WorkflowClient, WorkflowHTTPError
from nesora.config import get_settings
from nesora.orchestrator.execution_trace import get_trace_store
from nesora.orchestrator.normalizer import unwrap
from nesora.orchestrator.registry import EndpointRegistry

logging.basicConfig(
    level=get_settings().log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

_chat_agent = None


def get_chat_agent() -> ChatAgent:
    """Get or create the shared chat agent."""
    global _chat_agent
    if _chat_agent is None:
        _chat_agent = ChatAgent()
    return _chat_agent


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the shared HTTP clients on shutdown."""
    logger.info(f"🔧 ai-chat service initialized with N8N_BASE_URL: {get_settings().n8n_base_url}")
    yield
    global _chat_agent
    if _chat_agent is not None:
        await _chat_agent.workflow_client.aclose()
        if _chat_agent.ai_client is not None:
            await _chat_agent.ai_client.aclose()
        _chat_agent = None


app = FastAPI(title="Nesora Jira Chat Service", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


class ChatRequest(BaseModel):
    messages: List[Dict[str, Any]] = []
    userId: Optional[str] = None
    jiraDomain: Optional[str] = None


class JiraConnectRequest(BaseModel):
    user_id: Optional[str] = None
    jira_domain: Optional[str] = None
    jira_email: Optional[str] = None
    jira_token: Optional[str] = None


@app.get("/health")
async def health():
    """Service health check."""
    return {"status": "healthy"}


@app.post("/ai-chat")
async def ai_chat(request: ChatRequest):
    """
    Handle one chat turn.

    - Plain chat and clarification questions are returned as-is
    - Actions are parsed into intents and executed in dependency waves
    - The response carries the raw workflow report and its markdown rendering
    """
    last = request.messages[-1].get("content") if request.messages else None
    logger.info(
        f"📨 ai-chat request: messages={len(request.messages)}, userId={request.userId}, "
        f"jiraDomain={request.jiraDomain}, last={str(last or '')[:100]}"
    )

    agent = get_chat_agent()
    try:
        return await agent.handle(request.messages, request.userId, request.jiraDomain)
    except GatewayNotConfiguredError as e:
        return JSONResponse({"error": str(e)}, status_code=500)
    except AIGatewayError as e:
        if e.status_code == 429:
            return JSONResponse({"error": "Rate limit exceeded. Please try again in a moment."}, status_code=429)
        if e.status_code == 402:
            return JSONResponse({"error": "AI service requires payment. Please add credits."}, status_code=402)
        return JSONResponse({"error": "AI service error"}, status_code=500)
    except ParserFailedError as e:
        return JSONResponse({"message": e.message, "error": e.error, "body": e.body}, status_code=502)
    except Exception as e:
        logger.error(f"❌ ai-chat error: {e}", exc_info=True)
        return JSONResponse({"error": str(e) or "Failed to process request"}, status_code=500)


@app.post("/jira-connect")
async def jira_connect(request: JiraConnectRequest):
    """
    Register the user's Jira credentials with the automation backend.

    The backend validates them against Jira and stores them; this endpoint
    only relays its verdict.
    """
    logger.info(
        f"📨 jira-connect request: user_id={request.user_id}, jira_domain={request.jira_domain}"
    )
    if not all([request.user_id, request.jira_domain, request.jira_email, request.jira_token]):
        return JSONResponse({"status": "error", "message": "Missing required fields"}, status_code=400)

    settings = get_settings()
    registry = EndpointRegistry(settings.n8n_base_url)
    try:
        async with WorkflowClient(timeout=settings.request_timeout) as client:
            raw = await client.connect(
                registry.connect_url,
                request.user_id,
                request.jira_domain,
                request.jira_email,
                request.jira_token,
            )
    except WorkflowHTTPError as e:
        logger.error(f"❌ Connect webhook error: {e.body}")
        return JSONResponse(
            {"status": "error", "message": f"Connection failed ({e.status_code}): {e.body}"},
            status_code=e.status_code,
        )
    except Exception as e:
        logger.error(f"❌ jira-connect error: {e}", exc_info=True)
        return JSONResponse({"status": "error", "message": str(e) or "Failed to connect"}, status_code=500)

    result = unwrap(raw[:1] if isinstance(raw, list) else raw)
    logger.info(f"✅ Connection result: {json.dumps(result, default=str)[:200]}")

    if isinstance(result, dict) and result.get("status") == "error":
        return JSONResponse(result, status_code=400)
    return {"status": "success", **(result if isinstance(result, dict) else {})}


@app.get("/api/traces")
async def list_traces(limit: int = 10):
    """Summaries of the most recent intent batches."""
    return {
        "traces": [
            {
                "trace_id": trace.trace_id,
                "status": trace.status.value,
                "intent_count": trace.intent_count,
                "waves": len(trace.waves),
                "started_at": trace.started_at,
                "completed_at": trace.completed_at,
            }
            for trace in get_trace_store().get_recent(limit)
        ]
    }


@app.get("/api/traces/{trace_id}")
async def get_trace(trace_id: str):
    """Full trace of one intent batch."""
    trace = get_trace_store().get(trace_id)
    if trace is None:
        raise HTTPException(status_code=404, detail=f"Trace {trace_id} not found")
    return trace.to_dict()


def main():
    import os
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
