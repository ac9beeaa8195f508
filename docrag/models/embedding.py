from sqlalchemy import Column, Integer, Text, LargeBinary, JSON, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import relationship
from docrag.core.database import Base

class EmbeddingRecord(Base):
    """One chunk of a document plus its embedding vector (packed float32)."""
    __tablename__ = "embeddings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    chunk_metadata = Column("metadata", JSON, nullable=False, default=dict)
    vector = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    document = relationship("Document", back_populates="embeddings")

    __table_args__ = (
        Index("idx_embeddings_document_id_id", "document_id", "id"),
    )
