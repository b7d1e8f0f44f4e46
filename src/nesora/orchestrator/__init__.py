"""Orchestrator package for executing parsed Jira intents.

Dependency-wave scheduling, payload building and response normalization.
No LLMs here; the chat agent hands this package structured intents.
"""
