"""Client for the LLM chat-completions gateway"""

import logging
import httpx
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class AIGatewayError(Exception):
    """Raised when the gateway answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"AI gateway error {status_code}: {body}")


class AIGatewayClient:
    """HTTP client for an OpenAI-compatible chat-completions gateway"""

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self.client = None

    async def __aenter__(self):
        """Async context manager entry"""
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if not self.client:
            self.client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self.client

    async def aclose(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def complete(self, system_prompt: str, messages: List[Dict[str, Any]]) -> str:
        """Send the conversation and return the first choice's message content.

        A success body without that content yields an empty string.
        """
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
        }

        client = self._ensure_client()
        response = await client.post(
            self.url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        if not response.is_success:
            logger.error(f"❌ AI gateway error: {response.status_code} {response.text}")
            raise AIGatewayError(response.status_code, response.text)

        data = response.json()
        choices = data.get("choices") if isinstance(data, dict) else None
        first = choices[0] if isinstance(choices, list) and choices else None
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if content is None:
            logger.warning("⚠️ AI gateway returned no message content")
            return ""
        return content if isinstance(content, str) else str(content)
