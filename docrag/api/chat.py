import json
from typing import AsyncIterator, List
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from langchain_core.messages import BaseMessage
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from docrag.core.config import settings
from docrag.core.database import get_db
from docrag.core.errors import ChatNotFound, DocumentNotFound, EmbeddingServiceError, StreamError, VectorStoreError
from docrag.core.security import get_current_user_id
from docrag.llm.llm import synthesize
from docrag.llm.memory import get_history, to_chat_messages
from docrag.llm.prompt_template import PromptMode
from docrag.models.chat import Message
from docrag.retriever.retriever import RetrievalResult, RetrievalScope, retrieve
from docrag.schemas.chat_schema import ChatMessage, ChatMessageList, ChatRequest
from docrag.utils.chat_persistence import create_chat, save_message
from docrag.utils.logger import get_logger
from docrag.utils.permissions import check_chat_ownership, check_document_ownership, check_workspace_ownership

logger = get_logger("docrag.api.chat")

router = APIRouter(prefix="/chat", tags=["chat"])


def _event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def answer_events(
    chat_id: int,
    question: str,
    result: RetrievalResult,
    history: List[BaseMessage],
    mode: PromptMode,
) -> AsyncIterator[str]:
    """SSE frames for one turn: tokens, then sources (or an error), then end."""
    token_count = 0
    answer = synthesize(chat_id, question, result.context, history, mode)
    try:
        async for token in answer:
            token_count += 1
            yield _event({"type": "token", "content": token})
        yield _event({
            "type": "sources",
            "sources": result.sources,
            "used_fallback": result.used_fallback,
            "web_error": result.web_error,
        })
    except StreamError as e:
        yield _event({"type": "error", "message": str(e)})
    finally:
        # A client disconnect closes this generator; stop the model and keep the partial answer
        await answer.aclose()
    logger.info("Stream completed", extra={"chat_id": chat_id, "tokens_sent": token_count})
    yield _event({"type": "end"})


@router.post("/stream")
async def chat_stream(
    body: ChatRequest,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """
    Streaming chat over one document or one workspace.
    1. Check the scope belongs to the user
    2. Store the user turn, load prior turns
    3. Retrieve context, then stream the answer as SSE events
    """
    logger.info("Chat stream request received", extra={
        "user_id": user_id,
        "message_length": len(body.message),
        "document_id": body.document_id,
        "workspace_id": body.workspace_id,
        "web_search": body.web_search,
    })

    try:
        if body.document_id is not None:
            await check_document_ownership(db, body.document_id, user_id)
        else:
            await check_workspace_ownership(db, body.workspace_id, user_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document or workspace not found")

    if body.chat_id is not None:
        try:
            chat = await check_chat_ownership(db, body.chat_id, user_id)
        except ChatNotFound:
            raise HTTPException(status_code=404, detail="Chat not found")
        if (chat.document_id, chat.workspace_id) != (body.document_id, body.workspace_id):
            raise HTTPException(status_code=400, detail="Chat belongs to a different document or workspace")
    else:
        chat = await create_chat(
            db, user_id, body.message,
            document_id=body.document_id,
            workspace_id=body.workspace_id,
        )
    chat_id = chat.id

    user_message = await save_message(db, chat_id, "user", body.message)
    history = await get_history(db, chat_id, limit=settings.HISTORY_LIMIT, exclude_message_id=user_message.id)

    scope = RetrievalScope(
        user_id=user_id,
        document_id=body.document_id,
        workspace_id=body.workspace_id,
        web_search=body.web_search,
    )
    try:
        result = await retrieve(db, body.message, scope)
    except EmbeddingServiceError as e:
        logger.error("Query embedding failed", extra={"chat_id": chat_id, "error": str(e)})
        raise HTTPException(status_code=502, detail="Embedding service unavailable")
    except VectorStoreError as e:
        logger.error("Vector search failed", extra={"chat_id": chat_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Vector search failed")

    mode = PromptMode.SYNTHESIS if body.web_search else PromptMode.DOCUMENT_ONLY

    return StreamingResponse(
        answer_events(chat_id, body.message, result, to_chat_messages(history), mode),
        media_type="text/event-stream",
        headers={"X-Chat-Id": str(chat_id)},
    )


@router.get("/{chat_id}/messages", response_model=ChatMessageList)
async def get_chat_messages(
    chat_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        await check_chat_ownership(db, chat_id, user_id)
    except ChatNotFound:
        raise HTTPException(status_code=404, detail="Chat not found")

    result = await db.execute(
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at, Message.id)
    )
    messages = result.scalars().all()
    return ChatMessageList(
        chat_id=chat_id,
        messages=[ChatMessage.model_validate(m) for m in messages],
    )
