from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.logging_config import get_logger
from storebot.models import DocumentEmbedding, KnowledgeDocument, StoreConfig
from storebot.services.alert_service import alert_warning
from storebot.services.embedding_service import get_embedding
from storebot.services.turn_context import StoreSnapshot

logger = get_logger("knowledge_service")


@dataclass
class KnowledgeChunk:
    text: str
    title: str
    document_id: UUID
    chunk_index: int
    distance: float

    @property
    def relevance(self) -> float:
        return round(1 - self.distance, 3)


@dataclass
class KnowledgeContext:
    text: str
    rag_used: bool
    chunks: List[KnowledgeChunk] = field(default_factory=list)


def build_similarity_query(embedding: List[float], tenant_id: str, limit: int):
    """Nearest chunks by cosine distance, restricted to one tenant's active documents."""
    distance = DocumentEmbedding.embedding.cosine_distance(embedding).label("distance")
    return (
        select(
            DocumentEmbedding.chunk_text,
            DocumentEmbedding.chunk_index,
            DocumentEmbedding.document_id,
            KnowledgeDocument.title,
            distance,
        )
        .join(KnowledgeDocument, KnowledgeDocument.id == DocumentEmbedding.document_id)
        .join(StoreConfig, StoreConfig.id == KnowledgeDocument.store_config_id)
        .where(StoreConfig.tenant_id == tenant_id, KnowledgeDocument.active.is_(True))
        .order_by(distance)
        .limit(limit)
    )


async def search_similar_chunks(
    db: Session,
    query: str,
    tenant_id: str,
    limit: int = 5,
) -> List[KnowledgeChunk]:
    """Search the tenant's knowledge index. Raises on embedding or query failure."""
    embedding = await get_embedding(query)
    rows = db.execute(build_similarity_query(embedding, tenant_id, limit)).all()

    results = [
        KnowledgeChunk(
            text=row.chunk_text,
            title=row.title,
            document_id=row.document_id,
            chunk_index=row.chunk_index,
            distance=float(row.distance),
        )
        for row in rows
    ]
    logger.info(f"Knowledge search: found {len(results)} chunks for '{query[:30]}...'")
    return results


def format_chunks(chunks: List[KnowledgeChunk]) -> str:
    return "\n\n".join(f"--- {c.title} (relevância: {c.relevance:.3f}) ---\n{c.text}" for c in chunks)


def format_full_documents(store: StoreSnapshot) -> str:
    return "\n\n".join(f"--- DOCUMENTO: {d.title} ---\n{d.content}" for d in store.active_documents)


async def build_knowledge_context(
    db: Optional[Session],
    query: str,
    store: StoreSnapshot,
    limit: Optional[int] = None,
) -> KnowledgeContext:
    """Retrieved chunks when the index answers, every active document otherwise.

    Never raises.
    """
    limit = limit or settings.retrieval_limit
    context = {"tenant_id": store.tenant_id}

    if db is not None:
        try:
            chunks = await search_similar_chunks(db, query, store.tenant_id, limit)
            if chunks:
                for c in chunks:
                    logger.debug(f"Chunk '{c.title}' #{c.chunk_index}: relevance={c.relevance}, distance={c.distance:.4f}")
                logger.info(f"RAG context used: {len(chunks)} chunks", extra={"context": context})
                return KnowledgeContext(text=format_chunks(chunks), rag_used=True, chunks=chunks)
            logger.info("RAG returned no chunks, using full documents", extra={"context": context})
        except Exception as e:
            # session may be left in a failed transaction by the query
            try:
                db.rollback()
            except Exception:
                logger.warning("Rollback after failed knowledge search also failed", exc_info=True)
            logger.warning(f"RAG search failed, using full documents: {e}", extra={"context": context})
            await alert_warning("Knowledge search failed", {"tenant_id": store.tenant_id, "error": str(e)[:200]})

    text = format_full_documents(store)
    logger.info(
        f"Full-document context: {len(store.active_documents)} documents, {len(text)} chars",
        extra={"context": context},
    )
    return KnowledgeContext(text=text, rag_used=False)
