"""LLM-facing pieces: completion client, conversation state, generation and orchestration."""
