"""Operator endpoints: conversation control and knowledge indexing."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.database import get_db
from storebot.logging_config import get_logger
from storebot.models import KnowledgeDocument
from storebot.schemas.admin import (
    ConversationActionResponse,
    DeleteConversationResponse,
    DocumentContentUpdate,
    DocumentIndexResponse,
    EmbeddingsStatusResponse,
    RegenerateEmbeddingsResponse,
)
from storebot.services import state_service
from storebot.services.conversation_service import get_store_config
from storebot.services.indexing_service import (
    get_embeddings_status,
    regenerate_store_embeddings,
    reindex_document_by_id,
)
from storebot.services.result import Result, ResultError

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])

CONVERSATION_ACTIONS = {
    "take-over": state_service.take_over,
    "resume": state_service.resume_bot,
    "complete": state_service.complete_conversation,
}

ERROR_STATUS = {"not_found": 404, "invalid_state": 409}


def require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _unwrap_or_raise(result: Result):
    try:
        return result.unwrap()
    except ResultError as e:
        raise HTTPException(status_code=ERROR_STATUS.get(e.code, 400), detail=e.error) from e


# === CONVERSATIONS ===


@router.post(
    "/conversations/{conversation_id}/{action}",
    response_model=ConversationActionResponse,
    dependencies=[Depends(require_admin_token)],
)
def conversation_action(conversation_id: UUID, action: str, db: Session = Depends(get_db)):
    """Take over, resume the bot, or complete a conversation."""
    handler = CONVERSATION_ACTIONS.get(action)
    if handler is None:
        raise HTTPException(status_code=404, detail=f"Unknown action '{action}'")

    old_status, new_status = _unwrap_or_raise(handler(db, conversation_id))
    db.commit()

    return ConversationActionResponse(
        success=True,
        conversation_id=conversation_id,
        action=action,
        old_status=old_status,
        new_status=new_status,
    )


@router.delete(
    "/conversations/{conversation_id}",
    response_model=DeleteConversationResponse,
    dependencies=[Depends(require_admin_token)],
)
def delete_conversation(conversation_id: UUID, db: Session = Depends(get_db)):
    deleted_messages = _unwrap_or_raise(state_service.delete_conversation(db, conversation_id))
    db.commit()
    return DeleteConversationResponse(success=True, conversation_id=conversation_id, deleted_messages=deleted_messages)


# === KNOWLEDGE ===


@router.put(
    "/knowledge/documents/{document_id}",
    response_model=DocumentIndexResponse,
    dependencies=[Depends(require_admin_token)],
)
def update_document_content(
    document_id: UUID,
    data: DocumentContentUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Store extracted plain text for a document and reindex it in the background."""
    document = db.query(KnowledgeDocument).filter(KnowledgeDocument.id == document_id).first()
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")

    document.content = data.content
    if data.title:
        document.title = data.title
    db.commit()

    background_tasks.add_task(reindex_document_by_id, document_id)
    logger.info(f"Document {document_id} updated, reindex scheduled")
    return DocumentIndexResponse(success=True, document_id=document_id, status="scheduled")


@router.post(
    "/knowledge/documents/{document_id}/reprocess",
    response_model=DocumentIndexResponse,
    dependencies=[Depends(require_admin_token)],
)
def reprocess_document(document_id: UUID, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    document = db.query(KnowledgeDocument).filter(KnowledgeDocument.id == document_id).first()
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")

    background_tasks.add_task(reindex_document_by_id, document_id)
    return DocumentIndexResponse(success=True, document_id=document_id, status="scheduled")


@router.post(
    "/knowledge/{tenant_id}/regenerate-embeddings",
    response_model=RegenerateEmbeddingsResponse,
    dependencies=[Depends(require_admin_token)],
)
async def regenerate_embeddings(tenant_id: str, db: Session = Depends(get_db)):
    """Reindex every active document of the tenant and report per document."""
    store = get_store_config(db, tenant_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store config not found")
    return await regenerate_store_embeddings(db, store.id)


@router.get(
    "/knowledge/{tenant_id}/embeddings-status",
    response_model=EmbeddingsStatusResponse,
    dependencies=[Depends(require_admin_token)],
)
def embeddings_status(tenant_id: str, db: Session = Depends(get_db)):
    store = get_store_config(db, tenant_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store config not found")
    return get_embeddings_status(db, store.id)
