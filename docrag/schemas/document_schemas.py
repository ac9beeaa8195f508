from pydantic import BaseModel, Field, HttpUrl
from typing import Optional

class DocumentIngestRequest(BaseModel):
    name: str = Field(..., min_length=1)
    content: str
    source_kind: str = "file"
    workspace_id: Optional[int] = None

class UrlIngestRequest(BaseModel):
    url: HttpUrl
    workspace_id: Optional[int] = None

class DocumentAccepted(BaseModel):
    id: int
    status: str

class DocumentStatusResponse(BaseModel):
    document_id: int
    status: str
    chunk_count: int

class DocumentDeleteResponse(BaseModel):
    detail: str
