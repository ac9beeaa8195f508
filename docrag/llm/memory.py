from typing import List, Optional
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from docrag.models.chat import Message


async def get_history(
        db: AsyncSession,
        chat_id: int,
        limit: int = 10,
        exclude_message_id: Optional[int] = None,
) -> List[Message]:
    """
    Return the most recent `limit` messages of a chat in chronological order.
    `exclude_message_id` drops the just-submitted user message so it is not
    sent to the model twice.
    """
    stmt = select(Message).where(Message.chat_id == chat_id)
    if exclude_message_id is not None:
        stmt = stmt.where(Message.id != exclude_message_id)
    stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)

    result = await db.execute(stmt)
    return list(reversed(result.scalars().all()))


def to_chat_messages(history: List[Message]) -> List[BaseMessage]:
    """Convert stored messages into LangChain conversation turns."""
    turns: List[BaseMessage] = []
    for m in history:
        if m.role == "user":
            turns.append(HumanMessage(content=m.content))
        elif m.role == "assistant":
            turns.append(AIMessage(content=m.content))
    return turns
