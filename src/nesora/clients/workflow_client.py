"""Client for the n8n automation webhooks."""

import logging
import httpx
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class WorkflowHTTPError(Exception):
    """Raised when a webhook answers with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"HTTP {status_code}: {reason} - {body}")


class WorkflowClient:
    """Async HTTP client for the automation backend's webhooks.

    Every call is a JSON POST. The client may be used as an async context
    manager; otherwise the underlying httpx client is created lazily and
    released with ``aclose()``.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
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

    async def post(self, url: str, payload: Dict[str, Any]) -> Any:
        """POST ``payload`` as JSON and return the decoded JSON body.

        Raises:
            WorkflowHTTPError: On a non-2xx response
            httpx.TimeoutException: When the call exceeds the timeout
            httpx.HTTPError: On other transport failures
            ValueError: When the body is not valid JSON
        """
        client = self._ensure_client()
        response = await client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        if not response.is_success:
            raise WorkflowHTTPError(response.status_code, response.reason_phrase, response.text)
        return response.json()

    async def parse(
        self,
        url: str,
        user_id: Optional[str],
        query: str,
        context: Dict[str, Any],
        jira_domain: Optional[str],
    ) -> Any:
        """Ask the parser webhook to turn a natural-language query into intents."""
        logger.info(f"📤 Calling parser at: {url}")
        return await self.post(url, {
            "user_id": user_id,
            "query": query,
            "context": context,
            "jira_domain": jira_domain,
        })

    async def connect(
        self,
        url: str,
        user_id: str,
        jira_domain: str,
        jira_email: str,
        jira_token: str,
    ) -> Any:
        """Register a user's Jira credentials with the automation backend."""
        logger.info(f"📤 Calling connect webhook: {url}")
        return await self.post(url, {
            "user_id": user_id,
            "jira_domain": jira_domain,
            "jira_email": jira_email,
            "jira_token": jira_token,
        })
