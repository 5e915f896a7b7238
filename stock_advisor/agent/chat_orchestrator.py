"""
Chat orchestrator: the façade wiring identity, memory, generation, tool calls
and persistence together for one client session.

Lifecycle per bound identity:
    UNINITIALIZED -> RESTORING -> READY <-> GENERATING

Switching identity replaces the ConversationState wholesale. An exchange that
is still generating when that happens is not cancelled; its reply is returned
to its caller but neither recorded nor persisted.

Persistence is best-effort. Every gateway failure is logged and the in-memory
state stays authoritative.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..core.config import Settings
from ..core.exceptions import (
    ConflictError,
    GenerationError,
    GenerationInProgressError,
    MalformedToolArgumentsError,
    PersistenceUnavailableError,
    ValidationError,
)
from ..models.profile import AdvisoryProfile
from ..services.conversation_store import PersistenceGateway
from ..services.identity_resolver import SessionIdentityResolver
from ..services.profile_extractor import ToolCallProfileExtractor
from ..services.summary_generator import SummaryGenerator
from ..services.turn_buffer import TurnBuffer
from .llm_client import ADVISOR_SYSTEM_PROMPT, APOLOGY, GREETING
from .response_assembler import (
    GenerationResult,
    StreamingResponseAssembler,
    StreamToken,
)
from .state import ConversationState, SessionPhase, Turn, TurnRole
from .tools import UPDATE_PROFILE_TOOL_NAME, ToolInvocation

logger = structlog.get_logger()

T = TypeVar("T")

TOOL_RESULT_MESSAGE = "Profile updated successfully."
NO_SUMMARY_PLACEHOLDER = "No previous conversation."


@dataclass(frozen=True)
class ReplyCompleted:
    """Final event of an exchange, emitted after all of its tokens."""

    text: str
    profile_updated: bool = False
    failed: bool = False


class ChatOrchestrator:
    """
    Conversation façade for one client session.

    Exactly one exchange may generate at a time for the bound identity;
    overlapping sends raise GenerationInProgressError instead of queueing.
    """

    def __init__(
        self,
        settings: Settings,
        assembler: StreamingResponseAssembler,
        summary_generator: SummaryGenerator,
        gateway: PersistenceGateway,
        identity_resolver: SessionIdentityResolver,
        profile_extractor: ToolCallProfileExtractor | None = None,
    ):
        """
        Args:
            settings: Memory budget, tail size and default identity
            assembler: Drives generation against the completion service
            summary_generator: Digests turns for compaction and conversation end
            gateway: Best-effort durable store
            identity_resolver: Bound identity for this client session
            profile_extractor: Interprets update_profile tool calls
        """
        self.settings = settings
        self.assembler = assembler
        self.summary_generator = summary_generator
        self.gateway = gateway
        self.identity_resolver = identity_resolver
        self.profile_extractor = profile_extractor or ToolCallProfileExtractor()

        self.phase = SessionPhase.UNINITIALIZED
        self.state: ConversationState | None = None
        self._pending_writes: set[asyncio.Task] = set()

    @property
    def user_id(self) -> str | None:
        return self.state.user_id if self.state else None

    # ===== Identity =====

    async def initialize(self) -> ConversationState:
        """Bind the restored identity, or the default one if none is fresh."""
        identity = await self.identity_resolver.restore()
        if identity is None:
            logger.info(
                "No fresh identity, using default",
                default_user_id=self.settings.default_user_id,
            )
            user_id = self.settings.default_user_id
        else:
            user_id = identity.user_id
        return await self.set_user_id(user_id)

    async def set_user_id(self, user_id: str) -> ConversationState:
        """
        Bind the conversation to a user and restore their memory.

        Binding the already-bound user is a no-op. Restore failures leave an
        empty conversation with the default profile.
        """
        if (
            self.state is not None
            and self.state.user_id == user_id
            and self.phase is not SessionPhase.UNINITIALIZED
        ):
            logger.debug("User already bound", user_id=user_id)
            return self.state

        if self.phase is SessionPhase.GENERATING:
            logger.info(
                "Switching user during generation, in-flight reply will be discarded",
                previous_user_id=self.user_id,
                user_id=user_id,
            )

        state = ConversationState(
            user_id=user_id,
            turns=TurnBuffer(
                token_budget=self.settings.memory_token_budget,
                tail_keep=self.settings.tail_messages_keep,
            ),
            profile=AdvisoryProfile.default_for(user_id),
        )
        self.state = state
        self.phase = SessionPhase.RESTORING

        await self._restore(state)

        if self.state is state:
            self.phase = SessionPhase.READY
        return state

    async def handle_login(self, user_id: str) -> ConversationState:
        """Bind a freshly authenticated user to this session."""
        await self.identity_resolver.bind(user_id)
        return await self.set_user_id(user_id)

    async def handle_logout(self) -> str | None:
        """
        End the current conversation, forget the identity and fall back to
        the default user.

        Returns:
            The end-of-conversation summary, if one was produced
        """
        summary = await self.end_conversation()
        await self.identity_resolver.clear()
        await self.set_user_id(self.settings.default_user_id)
        return summary

    async def _restore(self, state: ConversationState) -> None:
        """Load history, profile and latest summary for a freshly bound user."""
        user_id = state.user_id
        logger.info("Restoring conversation", user_id=user_id)

        stored_turns = await self._best_effort(
            "list_turns", self.gateway.list_turns(user_id), [], user_id=user_id
        )
        replayed = state.turns.replay(stored_turns)
        sequences = [turn.sequence for turn in stored_turns if turn.sequence is not None]
        state.next_sequence = max(sequences) + 1 if sequences else 0

        state.profile = await self._load_profile(user_id)
        state.running_summary = await self._best_effort(
            "latest_summary",
            self.summary_generator.load_latest(user_id),
            None,
            user_id=user_id,
        )

        await self._compact(state)

        logger.info(
            "Conversation restored",
            user_id=user_id,
            replayed_turns=replayed,
            has_summary=state.running_summary is not None,
        )

    async def _load_profile(self, user_id: str) -> AdvisoryProfile:
        try:
            profile = await self.gateway.read_profile(user_id)
        except PersistenceUnavailableError as e:
            logger.warning(
                "Profile unavailable, using default",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AdvisoryProfile.default_for(user_id)

        if profile is None:
            profile = AdvisoryProfile.default_for(user_id)
            logger.info("Creating default profile", user_id=user_id)
            self._schedule_write(
                "write_profile",
                lambda: self.gateway.write_profile(user_id, profile),
                user_id=user_id,
            )
        return profile

    # ===== Conversation =====

    def greet(self) -> str:
        """Record the welcome message when the conversation is empty."""
        state = self._require_state()
        if len(state.turns) == 0:
            state.turns.record_assistant(GREETING)
        return GREETING

    async def stream_message(
        self, text: str
    ) -> AsyncIterator[StreamToken | ReplyCompleted]:
        """
        Run one exchange, yielding tokens in arrival order and then exactly
        one ReplyCompleted.

        A failed generation yields the apology with failed=True; the user turn
        is discarded and nothing is persisted.

        Raises:
            GenerationInProgressError: If an exchange is already generating
        """
        state = await self._begin_exchange()
        state.turns.record_user(text)
        history = state.turns.load_history()[:-1]

        profile_updated = False
        result: GenerationResult | None = None
        try:
            async for item in self.assembler.stream(
                self._system_prompt(state), history, text
            ):
                if isinstance(item, StreamToken):
                    yield item
                else:
                    result = item

            call = result.find_tool_call(UPDATE_PROFILE_TOOL_NAME) if result else None
            if call is not None and self.state is state:
                arguments = self._apply_tool_call(state, call)
                if arguments is not None:
                    profile_updated = True
                    messages = self.assembler.build_tool_followup(
                        self._system_prompt(state),
                        history,
                        text,
                        result,
                        call,
                        arguments,
                        TOOL_RESULT_MESSAGE,
                    )
                    async for item in self.assembler.stream_messages(messages):
                        if isinstance(item, StreamToken):
                            yield item
                        else:
                            result = item

        except GenerationError as e:
            logger.error(
                "Generation failed",
                user_id=state.user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._abandon_exchange(state)
            yield ReplyCompleted(APOLOGY, profile_updated=profile_updated, failed=True)
            return
        except BaseException:
            self._abandon_exchange(state)
            raise

        reply = result.text if result else ""

        if self.state is not state:
            logger.info(
                "Discarding reply for replaced conversation",
                user_id=state.user_id,
                current_user_id=self.user_id,
            )
            yield ReplyCompleted(reply, profile_updated=profile_updated)
            return

        try:
            self._record_exchange(state, reply)
            await self._compact(state)
        finally:
            self._finish_exchange(state)

        logger.info(
            "Exchange completed",
            user_id=state.user_id,
            reply_chars=len(reply),
            profile_updated=profile_updated,
            buffered_turns=len(state.turns),
        )
        yield ReplyCompleted(reply, profile_updated=profile_updated)

    async def send_message(
        self, text: str, on_token: Callable[[str], None] | None = None
    ) -> str:
        """
        Run one exchange and return the reply text.

        Args:
            text: The user's message
            on_token: Optional sink called for every token, in arrival order,
                before this returns
        """
        reply = APOLOGY
        async for item in self.stream_message(text):
            if isinstance(item, StreamToken):
                if on_token is not None:
                    on_token(item.text)
            else:
                reply = item.text
        return reply

    async def end_conversation(self) -> str | None:
        """
        Summarize the conversation and append the summary to the store.

        The summary also becomes the running summary used in later prompts.

        Returns:
            The summary text, or None if no exchange was recorded since the
            conversation was restored or last ended
        """
        state = self.state
        if state is None or state.unsummarized_exchanges == 0:
            logger.debug("Nothing new to summarize", user_id=self.user_id)
            return None

        turns = self._with_running_summary(state, state.turns.load_history())
        summary = await self.summary_generator.summarize(turns)
        if not summary:
            return None

        state.running_summary = summary
        state.unsummarized_exchanges = 0
        await self._best_effort(
            "append_summary",
            self.summary_generator.store(state.user_id, summary),
            None,
            user_id=state.user_id,
        )
        logger.info(
            "Conversation ended", user_id=state.user_id, summary_chars=len(summary)
        )
        return summary

    # ===== Profile =====

    def get_profile(self) -> AdvisoryProfile:
        return self._require_state().profile.model_copy(deep=True)

    def setup_profile(
        self,
        risk_tolerance: str,
        investment_goals: str,
        preferred_sectors: list[str],
    ) -> AdvisoryProfile:
        """Replace the whole profile and persist it."""
        state = self._require_state()
        try:
            profile = AdvisoryProfile(
                user_id=state.user_id,
                risk_tolerance=risk_tolerance,
                investment_goals=investment_goals,
                preferred_sectors=preferred_sectors,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid profile", user_id=state.user_id, errors=e.error_count()
            ) from e

        state.profile = profile
        self._schedule_write(
            "write_profile",
            lambda: self.gateway.write_profile(state.user_id, profile),
            user_id=state.user_id,
        )
        logger.info("Profile set up", user_id=state.user_id)
        return profile.model_copy(deep=True)

    def get_history(self) -> list[Turn]:
        return self._require_state().turns.load_history()

    # ===== Persistence =====

    async def flush(self) -> None:
        """Wait for every background write scheduled so far."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()

    async def _best_effort(
        self, operation: str, awaitable: Awaitable[T], default: Any, **context: Any
    ) -> T | Any:
        """Await a gateway call, logging and absorbing persistence failures."""
        try:
            return await awaitable
        except PersistenceUnavailableError as e:
            logger.warning(
                "Persistence unavailable, continuing in memory",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            return default

    def _schedule_write(
        self,
        operation: str,
        write: Callable[[], Awaitable[Any]],
        **context: Any,
    ) -> None:
        """Fire-and-forget a best-effort write, tracked until it finishes."""

        async def run() -> None:
            await self._best_effort(operation, write(), None, **context)

        task = asyncio.create_task(run())
        self._pending_writes.add(task)
        task.add_done_callback(self._on_write_done)

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background write crashed",
                error=str(error),
                error_type=type(error).__name__,
            )

    # ===== Internals =====

    def _require_state(self) -> ConversationState:
        if self.state is None:
            raise ConflictError("Conversation not initialized")
        return self.state

    async def _begin_exchange(self) -> ConversationState:
        if self.phase is SessionPhase.UNINITIALIZED:
            await self.initialize()
        if self.phase is SessionPhase.GENERATING:
            raise GenerationInProgressError(
                "A reply is already being generated", user_id=self.user_id
            )
        if self.phase is SessionPhase.RESTORING:
            raise ConflictError("Conversation is still restoring", user_id=self.user_id)

        state = self._require_state()
        self.phase = SessionPhase.GENERATING
        return state

    def _finish_exchange(self, state: ConversationState) -> None:
        if self.state is state:
            self.phase = SessionPhase.READY

    def _abandon_exchange(self, state: ConversationState) -> None:
        if self.state is state:
            state.turns.discard_pending()
        self._finish_exchange(state)

    def _record_exchange(self, state: ConversationState, reply: str) -> None:
        """Pair the pending user turn and queue both turns for persistence."""
        user_turn = state.turns.load_history()[-1]
        assistant_turn = state.turns.record_assistant(reply)
        state.unsummarized_exchanges += 1
        user_sequence = state.take_sequence()
        assistant_sequence = state.take_sequence()
        user_id = state.user_id

        async def persist() -> None:
            await self._best_effort(
                "append_turn",
                self.gateway.append_turn(
                    user_id,
                    TurnRole.USER,
                    user_turn.content,
                    user_turn.timestamp,
                    sequence=user_sequence,
                ),
                None,
                user_id=user_id,
            )
            await self.gateway.append_turn(
                user_id,
                TurnRole.ASSISTANT,
                assistant_turn.content,
                assistant_turn.timestamp,
                sequence=assistant_sequence,
            )

        self._schedule_write("append_exchange", persist, user_id=user_id)

    def _apply_tool_call(
        self, state: ConversationState, call: ToolInvocation
    ) -> dict[str, Any] | None:
        """Apply update_profile to the state. Returns the parsed arguments."""
        try:
            arguments = self.profile_extractor.parse_arguments(call)
        except MalformedToolArgumentsError as e:
            logger.warning(
                "Ignoring malformed tool call",
                user_id=state.user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        state.profile = self.profile_extractor.apply(state.profile, arguments)
        profile = state.profile
        self._schedule_write(
            "write_profile",
            lambda: self.gateway.write_profile(state.user_id, profile),
            user_id=state.user_id,
        )
        return arguments.model_dump(exclude_none=True)

    def _system_prompt(self, state: ConversationState) -> str:
        profile = state.profile
        return ADVISOR_SYSTEM_PROMPT.format(
            risk_tolerance=profile.risk_tolerance,
            investment_goals=profile.investment_goals,
            preferred_sectors=", ".join(profile.preferred_sectors),
            summary=state.running_summary or NO_SUMMARY_PLACEHOLDER,
        )

    def _with_running_summary(
        self, state: ConversationState, turns: list[Turn]
    ) -> list[Turn]:
        """Prefix the running summary unless the turns already carry a summary turn."""
        if state.running_summary and not any(turn.is_summary for turn in turns):
            return [Turn(TurnRole.SYSTEM, state.running_summary), *turns]
        return turns

    async def _compact(self, state: ConversationState) -> None:
        async def summarize(turns: list[Turn]) -> str:
            return await self.summary_generator.summarize(
                self._with_running_summary(state, turns)
            )

        summary = await state.turns.compact_if_over_budget(summarize)
        if summary is not None:
            state.running_summary = summary
