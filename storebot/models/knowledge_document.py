import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from storebot.database import Base


class KnowledgeDocument(Base):
    __tablename__ = "knowledge_documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    store_config_id = Column(
        UUID(as_uuid=True), ForeignKey("store_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False, default="")
    active = Column(Boolean, nullable=False, default=True)

    store_config = relationship("StoreConfig", back_populates="knowledge_documents")
    embeddings = relationship("DocumentEmbedding", back_populates="document", passive_deletes=True)
