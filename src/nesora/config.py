"""Runtime configuration loaded from the environment.

A ``.env`` file next to the working directory is loaded first so local runs
behave like the deployed service.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_N8N_BASE_URL = "http://localhost:5678"
DEFAULT_AI_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
DEFAULT_AI_MODEL = "google/gemini-2.5-flash"


@dataclass
class Settings:
    """Service settings.

    Attributes:
        n8n_base_url: Base URL of the automation backend hosting the webhooks
        ai_gateway_url: Chat-completions endpoint of the LLM gateway
        ai_gateway_api_key: Bearer token for the LLM gateway (may be unset)
        ai_model: Model name sent to the LLM gateway
        request_timeout: Per-call timeout in seconds for every outbound request
        default_project_key: Jira project key used when an intent names none
        log_level: Root logging level for the server
    """
    n8n_base_url: str = DEFAULT_N8N_BASE_URL
    ai_gateway_url: str = DEFAULT_AI_GATEWAY_URL
    ai_gateway_api_key: Optional[str] = None
    ai_model: str = DEFAULT_AI_MODEL
    request_timeout: float = 30.0
    default_project_key: str = "NT"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            n8n_base_url=os.getenv("N8N_BASE_URL", DEFAULT_N8N_BASE_URL).rstrip("/"),
            ai_gateway_url=os.getenv("AI_GATEWAY_URL", DEFAULT_AI_GATEWAY_URL),
            ai_gateway_api_key=os.getenv("AI_GATEWAY_API_KEY") or None,
            ai_model=os.getenv("AI_GATEWAY_MODEL", DEFAULT_AI_MODEL),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
            default_project_key=os.getenv("DEFAULT_PROJECT_KEY", "NT"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


_settings = None


def get_settings() -> Settings:
    """Get or create the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
