from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from docrag.core.database import AsyncSessionLocal
from docrag.models.chat import Chat, Message
from docrag.utils.logger import get_logger

logger = get_logger("docrag.utils.chat_persistence")

TITLE_LENGTH = 50


def make_chat_title(message: str) -> str:
    return message[:TITLE_LENGTH] + "..."


async def create_chat(
    db: AsyncSession,
    owner_id: int,
    first_message: str,
    document_id: Optional[int] = None,
    workspace_id: Optional[int] = None,
) -> Chat:
    chat = Chat(
        owner_id=owner_id,
        document_id=document_id,
        workspace_id=workspace_id,
        title=make_chat_title(first_message),
    )
    db.add(chat)
    await db.commit()
    await db.refresh(chat)
    logger.info("Chat created", extra={"chat_id": chat.id, "owner_id": owner_id})
    return chat


async def save_message(
    db: AsyncSession,
    chat_id: int,
    role: str,
    content: str,
) -> Message:
    """
    Append one message to a chat and commit.

    Raises:
        Exception: re-raised after rollback for the caller to handle
    """
    try:
        message = Message(chat_id=chat_id, role=role, content=content)
        db.add(message)
        await db.commit()
        await db.refresh(message)
    except Exception as e:
        await db.rollback()
        logger.error("Failed to save message", extra={
            "chat_id": chat_id,
            "role": role,
            "error": str(e),
        })
        raise

    logger.info("Message saved", extra={
        "chat_id": chat_id,
        "role": role,
        "content_length": len(content),
    })
    return message


async def save_assistant_message(chat_id: int, content: str) -> Message:
    """Persist an assistant reply on its own session (the request session may be gone)."""
    async with AsyncSessionLocal() as db:
        return await save_message(db, chat_id, "assistant", content)
