from sqlalchemy import Column, Integer, String, DateTime, func
from sqlalchemy.orm import relationship
from docrag.core.database import Base

class Workspace(Base):
    __tablename__ = "workspaces"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Deleting a workspace detaches its documents (ON DELETE SET NULL)
    documents = relationship("Document", back_populates="workspace", passive_deletes=True)
