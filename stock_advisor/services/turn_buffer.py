"""
Turn buffer: ordered, paired conversation memory with budget-triggered compaction.

When the estimated token count exceeds the budget, compacts history by:
- Compressing BODY (older turns, including any previous summary) → one summary turn
- Keeping TAIL (most recent turns) verbatim, never splitting an exchange
"""

from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

import structlog

from ..agent.state import Turn, TurnRole, utcnow
from ..models.conversation import StoredTurn

logger = structlog.get_logger()

Summarizer = Callable[[list[Turn]], Awaitable[str]]


def estimate_tokens(text: str) -> int:
    """Approximate token count as one token per four characters."""
    return len(text) // 4


def serialize_turns(turns: Iterable[Turn]) -> str:
    """Render turns as "<role>: <content>" blocks separated by blank lines."""
    return "\n\n".join(turn.serialize() for turn in turns)


class TurnBuffer:
    """
    In-memory history of user/assistant exchanges, oldest first.

    A user turn stays pending until an assistant turn pairs it. Recording a
    second user turn while one is pending closes the first with an empty
    assistant reply, so two user turns are never adjacent.
    """

    def __init__(self, token_budget: int, tail_keep: int = 4):
        """
        Initialize an empty buffer.

        Args:
            token_budget: Estimated token count above which compaction runs
            tail_keep: Number of most recent turns compaction keeps verbatim
        """
        self.token_budget = token_budget
        self.tail_keep = tail_keep
        self._turns: list[Turn] = []

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def has_pending_user(self) -> bool:
        """True when the newest turn is a user turn awaiting its reply."""
        return bool(self._turns) and self._turns[-1].role is TurnRole.USER

    def record_user(self, text: str, timestamp: datetime | None = None) -> Turn:
        """Append a pending user turn."""
        if self.has_pending_user:
            logger.warning(
                "Closing unpaired user turn with empty reply",
                pending_chars=len(self._turns[-1].content),
            )
            self._turns.append(
                Turn(TurnRole.ASSISTANT, "", timestamp=self._turns[-1].timestamp)
            )

        turn = Turn(TurnRole.USER, text, timestamp=timestamp or utcnow())
        self._turns.append(turn)
        return turn

    def record_assistant(self, text: str, timestamp: datetime | None = None) -> Turn:
        """
        Append an assistant turn.

        Completes the pending pairing if there is one, otherwise the turn is a
        standalone entry (e.g. the opening greeting).
        """
        turn = Turn(TurnRole.ASSISTANT, text, timestamp=timestamp or utcnow())
        self._turns.append(turn)
        return turn

    def discard_pending(self) -> Turn | None:
        """Drop a pending user turn whose exchange failed. Returns it, if any."""
        if not self.has_pending_user:
            return None
        return self._turns.pop()

    def load_history(self) -> list[Turn]:
        """Turns in insertion order, oldest first."""
        return list(self._turns)

    def estimate_tokens(self) -> int:
        return estimate_tokens(serialize_turns(self._turns))

    def replay(self, stored: Iterable[StoredTurn]) -> int:
        """
        Rebuild pairing from a flat persisted log.

        Messages are stably ordered by (timestamp, sequence). A trailing
        unmatched user message is closed with an empty assistant reply.
        Senders that are neither user nor assistant are skipped.

        Returns:
            Number of stored messages replayed
        """
        indexed = list(enumerate(stored))
        indexed.sort(
            key=lambda pair: (
                pair[1].timestamp,
                pair[1].sequence if pair[1].sequence is not None else pair[0],
            )
        )

        replayed = 0
        for _, message in indexed:
            if message.is_user:
                self.record_user(message.message, timestamp=message.timestamp)
            elif message.is_assistant:
                self.record_assistant(message.message, timestamp=message.timestamp)
            else:
                logger.debug("Skipping stored message", sender=message.sender)
                continue
            replayed += 1

        if self.has_pending_user:
            self.record_assistant("", timestamp=self._turns[-1].timestamp)

        return replayed

    def _split_for_compaction(self) -> tuple[list[Turn], list[Turn]]:
        """Split into (body, tail) without separating a user turn from its reply."""
        tail_start = max(0, len(self._turns) - self.tail_keep)
        if (
            0 < tail_start < len(self._turns)
            and self._turns[tail_start].role is TurnRole.ASSISTANT
            and self._turns[tail_start - 1].role is TurnRole.USER
        ):
            tail_start -= 1
        return self._turns[:tail_start], self._turns[tail_start:]

    async def compact_if_over_budget(self, summarizer: Summarizer) -> str | None:
        """
        Replace the oldest turns with one synthetic summary turn when over budget.

        Args:
            summarizer: Produces a digest of the turns being compacted

        Returns:
            The summary text, or None if nothing was compacted
        """
        total_tokens = self.estimate_tokens()
        if total_tokens <= self.token_budget:
            return None

        body, tail = self._split_for_compaction()
        if not body or all(turn.is_summary for turn in body):
            logger.debug(
                "Over budget but nothing to compact",
                total_tokens=total_tokens,
                tail_count=len(tail),
            )
            return None

        summary_text = await summarizer(body)
        self._turns = [Turn(TurnRole.SYSTEM, summary_text), *tail]

        logger.info(
            "Conversation compacted",
            original_tokens=total_tokens,
            compacted_tokens=self.estimate_tokens(),
            summarized_turns=len(body),
            kept_turns=len(tail),
        )
        return summary_text
