"""Nesora: chat-driven Jira operations through n8n automation webhooks."""

__version__ = "0.1.0"
