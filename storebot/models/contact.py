import uuid

from sqlalchemy import Column, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from storebot.database import Base


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (UniqueConstraint("tenant_id", "phone_number", name="uq_contacts_tenant_phone"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    phone_number = Column(Text, nullable=False)
    permission = Column(Text, nullable=False, default="denied")  # allowed, denied

    conversations = relationship("Conversation", back_populates="contact", passive_deletes=True)
