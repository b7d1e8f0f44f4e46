"""Registry of Jira operations and their automation webhooks.

Maps each OperationKind to the webhook that executes it. The table is bound
once from the configured base URL; nothing here performs a call.
"""

from typing import Dict, List, Optional

from nesora.orchestrator.intent import OperationKind


class UnknownIntentError(Exception):
    """Raised when an intent names an operation with no registered endpoint."""
    pass


# Webhook path per operation, relative to the n8n base URL
OPERATION_PATHS = {
    OperationKind.CREATE_TICKET: "/webhook/mcp/create",
    OperationKind.FETCH_TICKET: "/webhook/mcp/fetch",
    OperationKind.UPDATE_TICKET: "/webhook/mcp/update",
    OperationKind.COMMENT_TICKET: "/webhook/mcp/comment",
    OperationKind.DELETE_TICKET: "/webhook/mcp/delete",
}

PARSER_PATH = "/webhook/mcp/parser"
CONNECT_PATH = "/webhook/mcp/connect"


class EndpointRegistry:
    """Deterministic operation -> endpoint table.

    This is the control plane: it decides where an operation goes,
    not how it is called or whether it succeeds.
    """

    def __init__(self, base_url: str, paths: Optional[Dict[OperationKind, str]] = None):
        self.base_url = base_url.rstrip("/")
        self._endpoints = {
            kind: f"{self.base_url}{path}"
            for kind, path in (paths if paths is not None else OPERATION_PATHS).items()
        }

    @property
    def parser_url(self) -> str:
        return f"{self.base_url}{PARSER_PATH}"

    @property
    def connect_url(self) -> str:
        return f"{self.base_url}{CONNECT_PATH}"

    def get_endpoint(self, name: str) -> str:
        """Look up the webhook URL for an operation name.

        Args:
            name: Operation name as carried by the intent

        Returns:
            Absolute webhook URL

        Raises:
            UnknownIntentError: If the name maps to no registered operation
        """
        kind = OperationKind.parse(name)
        if kind is None or kind not in self._endpoints:
            raise UnknownIntentError(f"Unknown intent: {name}")
        return self._endpoints[kind]

    def list_operations(self) -> List[str]:
        """Return all registered operation names."""
        return [kind.value for kind in self._endpoints]
