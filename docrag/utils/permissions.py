from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from docrag.core.errors import ChatNotFound, DocumentNotFound
from docrag.models.chat import Chat
from docrag.models.document import Document
from docrag.models.workspace import Workspace


async def check_document_ownership(
        db: AsyncSession,
        document_id: int,
        owner_id: int,
) -> Document:
    """Return the document if the user owns it"""
    result = await db.execute(
        select(Document).filter(
            Document.id == document_id,
            Document.owner_id == owner_id
        )
    )
    doc = result.scalar_one_or_none()

    if not doc:
        raise DocumentNotFound(f"Document {document_id} not found or access denied")

    return doc


async def check_workspace_ownership(
        db: AsyncSession,
        workspace_id: int,
        owner_id: int,
) -> Workspace:
    result = await db.execute(
        select(Workspace).filter(
            Workspace.id == workspace_id,
            Workspace.owner_id == owner_id
        )
    )
    workspace = result.scalar_one_or_none()

    if not workspace:
        raise DocumentNotFound(f"Workspace {workspace_id} not found or access denied")

    return workspace


async def check_chat_ownership(
        db: AsyncSession,
        chat_id: int,
        owner_id: int,
) -> Chat:
    """Check if user owns the chat"""
    result = await db.execute(
        select(Chat).filter(
            Chat.id == chat_id,
            Chat.owner_id == owner_id
        )
    )
    chat = result.scalar_one_or_none()

    if not chat:
        raise ChatNotFound(f"Chat {chat_id} not found or access denied")

    return chat


async def workspace_document_ids(
        db: AsyncSession,
        workspace_id: int,
        owner_id: int,
) -> List[int]:
    result = await db.execute(
        select(Document.id).filter(
            Document.workspace_id == workspace_id,
            Document.owner_id == owner_id
        )
    )
    return [row[0] for row in result.all()]
