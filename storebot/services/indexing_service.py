"""Knowledge indexing: chunking documents and (re)writing their embeddings."""

import asyncio
from typing import Dict, List
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.database import SessionLocal
from storebot.logging_config import get_logger
from storebot.models import DocumentEmbedding, KnowledgeDocument
from storebot.services.embedding_service import EmbeddingError, get_embedding
from storebot.services.result import Result

logger = get_logger("indexing_service")


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 150) -> List[str]:
    """Split text into overlapping fixed-size character windows.

    Windows advance by chunk_size - overlap. Each window is stripped and
    blank windows are dropped. The last window ends exactly at the end of
    the text.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")
    if not text or not text.strip():
        return []

    chunks = []
    step = chunk_size - overlap
    start = 0
    length = len(text)

    while start < length:
        end = min(start + chunk_size, length)
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end == length:
            break
        start += step

    return chunks


async def process_document_embeddings(
    db: Session,
    document_id: UUID,
    content: str,
    sleep_func=asyncio.sleep,
) -> int:
    """Replace all chunks of a document with freshly embedded ones.

    Every chunk is embedded before the index is touched, so a failing
    embedding call leaves the previous chunks in place. Delete and insert
    run in one transaction. Returns the number of chunks written.

    Raises EmbeddingError if any chunk cannot be embedded.
    """
    chunks = chunk_text(content or "", settings.chunk_size, settings.chunk_overlap)
    delay = settings.embedding_request_delay_ms / 1000

    vectors = []
    for index, chunk in enumerate(chunks):
        if index > 0 and delay > 0:
            await sleep_func(delay)
        vectors.append(await get_embedding(chunk))

    try:
        db.query(DocumentEmbedding).filter(DocumentEmbedding.document_id == document_id).delete(
            synchronize_session=False
        )
        db.add_all(
            [
                DocumentEmbedding(
                    document_id=document_id,
                    chunk_index=index,
                    chunk_text=chunk,
                    embedding=vector,
                )
                for index, (chunk, vector) in enumerate(zip(chunks, vectors))
            ]
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Indexed document {document_id}: {len(chunks)} chunks",
        extra={"context": {"document_id": str(document_id), "chunks": len(chunks)}},
    )
    return len(chunks)


async def reindex_document(db: Session, document: KnowledgeDocument, sleep_func=asyncio.sleep) -> Result[int]:
    """Reindex one document, converting failures into a Result."""
    try:
        count = await process_document_embeddings(db, document.id, document.content, sleep_func=sleep_func)
        return Result.success(count)
    except EmbeddingError as e:
        logger.error(f"Embedding failed for document {document.id}: {e}")
        return Result.failure(str(e), "embedding_error")
    except Exception as e:
        logger.error(f"Reindex failed for document {document.id}: {e}", exc_info=True)
        return Result.failure(str(e), "index_error")


async def regenerate_store_embeddings(db: Session, store_config_id: UUID, sleep_func=asyncio.sleep) -> dict:
    """Reprocess every active document of a store."""
    documents = (
        db.query(KnowledgeDocument)
        .filter(
            KnowledgeDocument.store_config_id == store_config_id,
            KnowledgeDocument.active.is_(True),
        )
        .all()
    )

    results = []
    for document in documents:
        result = await reindex_document(db, document, sleep_func=sleep_func)
        entry = {"document_id": str(document.id), "title": document.title, "success": result.ok}
        if result.ok:
            entry["chunks"] = result.value
        else:
            entry["error"] = result.error
        results.append(entry)

    succeeded = sum(1 for r in results if r["success"])
    logger.info(
        f"Regenerated embeddings for store {store_config_id}: {succeeded}/{len(results)} documents",
        extra={"context": {"store_config_id": str(store_config_id)}},
    )
    return {
        "total": len(results),
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "results": results,
    }


def count_chunks_by_document(db: Session, store_config_id: UUID) -> Dict[UUID, int]:
    rows = (
        db.query(DocumentEmbedding.document_id, func.count(DocumentEmbedding.id))
        .join(KnowledgeDocument, KnowledgeDocument.id == DocumentEmbedding.document_id)
        .filter(KnowledgeDocument.store_config_id == store_config_id)
        .group_by(DocumentEmbedding.document_id)
        .all()
    )
    return {document_id: count for document_id, count in rows}


def get_embeddings_status(db: Session, store_config_id: UUID) -> dict:
    """Summarise how much of a store's knowledge base is indexed."""
    documents = db.query(KnowledgeDocument).filter(KnowledgeDocument.store_config_id == store_config_id).all()
    chunk_counts = count_chunks_by_document(db, store_config_id)

    active = [d for d in documents if d.active]
    missing = [
        {"document_id": str(d.id), "title": d.title} for d in active if chunk_counts.get(d.id, 0) == 0
    ]

    return {
        "total_documents": len(documents),
        "active_documents": len(active),
        "documents_with_embeddings": sum(1 for d in documents if chunk_counts.get(d.id, 0) > 0),
        "total_chunks": sum(chunk_counts.values()),
        "documents_without_embeddings": missing,
    }


async def reindex_document_by_id(document_id: UUID, session_factory=None) -> Result[int]:
    """Background entry point: reindex a document with a session of its own."""
    db = (session_factory or SessionLocal)()
    try:
        document = db.query(KnowledgeDocument).filter(KnowledgeDocument.id == document_id).first()
        if not document:
            logger.warning(f"Document {document_id} disappeared before reindexing")
            return Result.failure(f"Document {document_id} not found", "not_found")
        return await reindex_document(db, document)
    finally:
        db.close()
