import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import UUID

from storebot.database import Base


class GatewayConfig(Base):
    __tablename__ = "gateway_configs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    base_url = Column(Text, nullable=False, default="")
    api_key = Column(Text, nullable=False, default="")
    instance_name = Column(Text, nullable=False, default="", index=True)
    phone_number = Column(Text, nullable=False, default="")
