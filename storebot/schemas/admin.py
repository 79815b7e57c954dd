from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel


class ConversationActionResponse(BaseModel):
    success: bool
    conversation_id: UUID
    action: Literal["take-over", "resume", "complete"]
    old_status: str
    new_status: str


class DeleteConversationResponse(BaseModel):
    success: bool
    conversation_id: UUID
    deleted_messages: int


class DocumentContentUpdate(BaseModel):
    content: str
    title: Optional[str] = None


class DocumentIndexResponse(BaseModel):
    success: bool
    document_id: UUID
    status: str


class DocumentIndexResult(BaseModel):
    document_id: str
    title: str
    success: bool
    chunks: Optional[int] = None
    error: Optional[str] = None


class RegenerateEmbeddingsResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[DocumentIndexResult]


class MissingEmbeddingsDocument(BaseModel):
    document_id: str
    title: str


class EmbeddingsStatusResponse(BaseModel):
    total_documents: int
    active_documents: int
    documents_with_embeddings: int
    total_chunks: int
    documents_without_embeddings: List[MissingEmbeddingsDocument]
