"""
LangChain-based LLM client wrapper for Qwen models via Alibaba Cloud DashScope.

Uses ChatTongyi (langchain-community) for streaming replies with tool calling
and for one-shot summarization calls.
"""

from collections.abc import AsyncIterator
from typing import Any

import structlog
from langchain_community.chat_models import ChatTongyi
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessageChunk, BaseMessage

from ..core.config import Settings

logger = structlog.get_logger()


class DashScopeClient:
    """
    Client for Qwen models via DashScope.

    A pre-built LangChain chat model may be injected (tests, other providers);
    otherwise a streaming ChatTongyi is created from settings.
    """

    def __init__(
        self,
        settings: Settings,
        model: str | None = None,
        chat: BaseChatModel | None = None,
    ):
        """
        Initialize LangChain chat model client.

        Args:
            settings: Application settings with API keys
            model: Model ID (defaults to settings.default_llm_model)
            chat: Optional pre-built LangChain chat model
        """
        self.settings = settings
        self.model = model or settings.default_llm_model

        if chat is None:
            # temperature and max_tokens are passed per-request via bind()
            chat = ChatTongyi(  # type: ignore[call-arg]  # LangChain stubs incomplete
                model_name=self.model,
                dashscope_api_key=settings.dashscope_api_key,
                streaming=True,
            )
        self.chat = chat
        logger.info("LLM client initialized", model=self.model)

    async def astream(
        self,
        messages: list[BaseMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[AIMessageChunk]:
        """
        Stream a chat completion as LangChain message chunks.

        Args:
            messages: Prompt messages, system message first
            tools: Optional OpenAI-style function schemas offered to the model

        Yields:
            AIMessageChunk: content deltas and tool-call chunks in arrival order
        """
        runnable: Any = self.chat
        if tools:
            runnable = runnable.bind_tools(tools)
        runnable = runnable.bind(
            temperature=self.settings.default_llm_temperature,
            max_tokens=self.settings.max_response_tokens,
        )

        logger.info(
            "Streaming chat completion",
            model=self.model,
            message_count=len(messages),
            tools_offered=len(tools or []),
        )

        async for chunk in runnable.astream(messages):
            yield chunk

    async def ainvoke(self, messages: list[BaseMessage]) -> str:
        """Run a non-streaming completion and return its text."""
        response = await self.chat.ainvoke(messages)
        content = response.content if hasattr(response, "content") else response
        return content if isinstance(content, str) else str(content)


# Personalized advisor prompt. Filled with the profile and the latest digest.
ADVISOR_SYSTEM_PROMPT = """You are a financial advisor specializing in stocks.
The user has the following established profile:
- Risk Tolerance: {risk_tolerance}
- Investment Goals: {investment_goals}
- Preferred Sectors: {preferred_sectors}

Use this profile information to provide personalized advice.
Always reference specific details from past conversations, including exact investment amounts and stocks mentioned.
Be precise when recalling past information.
When the user states a new risk tolerance, investment goal or sector interest, call update_profile with only the fields that changed.
Previous conversation summary: {summary}"""

SUMMARY_PROMPT = """Summarize the following conversation between a user and their financial advisor in one concise paragraph.
Keep exact amounts, stock symbols, sectors and stated preferences.

{history}"""

GREETING = (
    "Hello! I'm your AI Financial Advisor. I can help you with investment advice, "
    "portfolio analysis, and answering your financial questions. "
    "How can I assist you today?"
)

APOLOGY = (
    "Sorry, I'm having trouble processing your request. Please try again later."
)
