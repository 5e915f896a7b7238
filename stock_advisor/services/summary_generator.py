"""
Natural-language digests of buffered turns.

Used by compaction (in memory only) and at conversation end (appended to the
store). Summaries are write-once; the latest one is the newest by timestamp.
"""

from datetime import datetime

import structlog
from langchain_core.messages import HumanMessage

from ..agent.llm_client import SUMMARY_PROMPT, DashScopeClient
from ..agent.state import Turn, TurnRole, utcnow
from .conversation_store import PersistenceGateway
from .turn_buffer import estimate_tokens, serialize_turns

logger = structlog.get_logger()


class SummaryGenerator:
    """Summarizes turns with a fast model and stores/retrieves digests."""

    def __init__(self, llm: DashScopeClient, gateway: PersistenceGateway):
        """
        Args:
            llm: Completion client, typically bound to the summarization model
            gateway: Store for write-once summaries
        """
        self.llm = llm
        self.gateway = gateway

    async def summarize(self, turns: list[Turn]) -> str:
        """
        Ask the completion service for a concise paragraph about the turns.

        Falls back to a static digest if the call fails, so compaction and
        conversation end never fail on summarization.
        """
        if not turns:
            return ""

        history_text = serialize_turns(turns)
        prompt = SUMMARY_PROMPT.format(history=history_text)

        try:
            summary_text = (
                await self.llm.ainvoke([HumanMessage(content=prompt)])
            ).strip()
        except Exception as e:
            logger.error(
                "Summarization failed", error=str(e), error_type=type(e).__name__
            )
            return self._fallback_summary(turns)

        if not summary_text:
            logger.warning("Summarization returned empty text", turn_count=len(turns))
            return self._fallback_summary(turns)

        original_tokens = estimate_tokens(history_text)
        logger.info(
            "Turns summarized",
            turn_count=len(turns),
            original_tokens=original_tokens,
            summary_tokens=estimate_tokens(summary_text),
        )
        return summary_text

    def _fallback_summary(self, turns: list[Turn]) -> str:
        """Digest built without the LLM: counts plus the latest user request."""
        user_turns = [turn for turn in turns if turn.role is TurnRole.USER]
        latest_request = user_turns[-1].content[:200] if user_turns else ""
        summary = (
            f"Summary of {len(turns)} earlier messages. "
            "Full history was compressed to save context."
        )
        if latest_request:
            summary += f" Last request discussed: {latest_request}"
        return summary

    async def store(
        self, user_id: str, text: str, timestamp: datetime | None = None
    ) -> str | None:
        """Append a summary to the store. Raises PersistenceUnavailableError."""
        return await self.gateway.append_summary(user_id, text, timestamp or utcnow())

    async def load_latest(self, user_id: str) -> str | None:
        """Most recent stored summary; None when there is none."""
        return await self.gateway.latest_summary(user_id)
