from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import datetime

class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    chat_id: Optional[int] = None
    document_id: Optional[int] = None
    workspace_id: Optional[int] = None
    web_search: bool = False

    @model_validator(mode="after")
    def _one_scope(self):
        if (self.document_id is None) == (self.workspace_id is None):
            raise ValueError("Provide exactly one of document_id or workspace_id")
        return self

class ChatMessage(BaseModel):
    id: int
    role: str  # 'user' or 'assistant'
    content: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ChatMessageList(BaseModel):
    chat_id: int
    messages: List[ChatMessage]
