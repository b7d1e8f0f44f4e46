"""HTTP clients for the automation webhooks and the LLM gateway."""
