import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from storebot.database import Base


class StoreConfig(Base):
    __tablename__ = "store_configs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False, unique=True)
    store_name = Column(Text, nullable=False)
    description = Column(Text, default="")
    opening_hours = Column(Text, default="")
    tone = Column(Text, nullable=False, default="friendly")  # formal, friendly, enthusiastic
    fallback_message = Column(Text, default="")
    instagram = Column(Text, default="")
    reference_document_url = Column(Text, default="")
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    knowledge_documents = relationship(
        "KnowledgeDocument",
        back_populates="store_config",
        cascade="all, delete-orphan",
        order_by="KnowledgeDocument.title",
    )
