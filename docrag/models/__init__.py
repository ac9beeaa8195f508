from docrag.models.workspace import Workspace
from docrag.models.document import Document, DocumentStatus, IMAGE_PENDING_MARKER
from docrag.models.embedding import EmbeddingRecord
from docrag.models.chat import Chat, Message

__all__ = [
    "Workspace",
    "Document",
    "DocumentStatus",
    "IMAGE_PENDING_MARKER",
    "EmbeddingRecord",
    "Chat",
    "Message",
]
