import enum
from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, func
from sqlalchemy.orm import relationship
from docrag.core.database import Base

# Stored as content for images whose vision analysis has not run yet
IMAGE_PENDING_MARKER = "[IMAGE_PENDING_ANALYSIS]"


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    INDEXING = "indexing"
    COMPLETED = "completed"
    FAILED = "failed"


class Document(Base):
    __tablename__ = "documents"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String, nullable=False)
    # Kept after indexing so the document can be re-indexed without re-upload
    content = Column(Text, nullable=True)
    source_kind = Column(String, default="file", nullable=False)
    status = Column(String, default=DocumentStatus.PENDING.value, nullable=False)
    chunk_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    status_updated_at = Column(DateTime(timezone=True), server_default=func.now())

    workspace = relationship("Workspace", back_populates="documents")
    embeddings = relationship(
        "EmbeddingRecord",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_indexable_content(self) -> bool:
        return bool(self.content and self.content.strip()) and IMAGE_PENDING_MARKER not in self.content
