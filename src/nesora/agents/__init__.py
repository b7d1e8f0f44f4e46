"""Agents that turn chat conversations into orchestrator runs."""
