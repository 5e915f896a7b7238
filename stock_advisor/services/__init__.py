"""Conversation memory, summaries, profile extraction, identity and persistence."""
