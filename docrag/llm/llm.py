import asyncio
from functools import lru_cache
from typing import AsyncIterator, List, Optional
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from docrag.core.config import settings
from docrag.core.errors import StreamError
from docrag.llm.prompt_template import PromptMode, system_prompt
from docrag.utils.chat_persistence import save_assistant_message
from docrag.utils.logger import get_logger

logger = get_logger("docrag.llm")

INTERRUPTED_PLACEHOLDER = "[Response interrupted]"


@lru_cache(maxsize=1)
def get_chat_model() -> ChatGoogleGenerativeAI:
    return ChatGoogleGenerativeAI(
        model=settings.CHAT_MODEL,
        google_api_key=settings.GOOGLE_API_KEY,
        temperature=settings.CHAT_TEMPERATURE,
        max_output_tokens=settings.CHAT_MAX_OUTPUT_TOKENS,
    )


def build_messages(
    question: str,
    context: str,
    history: Optional[List[BaseMessage]] = None,
    mode: PromptMode = PromptMode.DOCUMENT_ONLY,
) -> List[BaseMessage]:
    """System prompt, prior turns (oldest first), then the new question."""
    return [
        SystemMessage(content=system_prompt(mode, context)),
        *(history or []),
        HumanMessage(content=question),
    ]


async def stream_llm_answer(messages: List[BaseMessage]) -> AsyncIterator[str]:
    """
    Yield text tokens as the model produces them.

    Raises:
        StreamError: the completion service failed before or during the stream
    """
    upstream = None
    try:
        upstream = get_chat_model().astream(messages)
        async for chunk in upstream:
            content = getattr(chunk, "content", None)
            if isinstance(content, list):
                content = "".join(p.get("text", "") if isinstance(p, dict) else str(p) for p in content)
            if content:
                yield content
    except Exception as e:
        logger.error(f"Streaming error: {e}", exc_info=True)
        raise StreamError(str(e)) from e
    finally:
        # Closing the model stream aborts the request when the reader goes away
        if upstream is not None:
            await upstream.aclose()


async def _persist_answer(chat_id: int, parts: List[str], completed: bool) -> None:
    answer = "".join(parts)
    if not completed and not answer:
        answer = INTERRUPTED_PLACEHOLDER
    try:
        await asyncio.shield(save_assistant_message(chat_id, answer))
    except Exception:
        logger.exception("Could not persist assistant message", extra={"chat_id": chat_id})
    logger.info("LLM stream finished", extra={
        "chat_id": chat_id,
        "completed": completed,
        "answer_length": len(answer),
        "token_count": len(parts),
    })


async def synthesize(
    chat_id: int,
    question: str,
    context: str,
    history: Optional[List[BaseMessage]] = None,
    mode: PromptMode = PromptMode.DOCUMENT_ONLY,
) -> AsyncIterator[str]:
    """
    Stream the answer and store it as one assistant message once the stream
    ends. On failure or cancellation, whatever was emitted so far (or a
    placeholder) is stored instead, then the error propagates.
    """
    messages = build_messages(question, context, history, mode)
    logger.info("Starting LLM stream", extra={
        "chat_id": chat_id,
        "mode": mode.value,
        "history_turns": len(history or []),
        "context_length": len(context),
    })

    parts: List[str] = []
    completed = False
    tokens = stream_llm_answer(messages)
    try:
        async for token in tokens:
            parts.append(token)
            yield token
        completed = True
    finally:
        try:
            await tokens.aclose()
        finally:
            await _persist_answer(chat_id, parts, completed)
