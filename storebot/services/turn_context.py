"""Immutable snapshots captured when a debounce window opens.

The debouncer keeps these instead of ORM rows: they outlive the request
session that loaded them and are read from another task later.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
from uuid import UUID

from storebot.models import Contact, Conversation, GatewayConfig, StoreConfig


@dataclass(frozen=True)
class DocumentSnapshot:
    id: UUID
    title: str
    content: str
    active: bool = True


@dataclass(frozen=True)
class StoreSnapshot:
    id: UUID
    tenant_id: str
    store_name: str
    description: str = ""
    opening_hours: str = ""
    tone: str = "friendly"
    fallback_message: str = ""
    instagram: str = ""
    reference_document_url: str = ""
    documents: Tuple[DocumentSnapshot, ...] = field(default_factory=tuple)

    @property
    def active_documents(self) -> Tuple[DocumentSnapshot, ...]:
        return tuple(d for d in self.documents if d.active)


@dataclass(frozen=True)
class GatewaySnapshot:
    base_url: str
    api_key: str
    instance_name: str


@dataclass(frozen=True)
class TurnContext:
    """Everything the orchestrator needs to process a flushed buffer."""

    tenant_id: str
    phone_number: str
    contact_id: UUID
    conversation_id: UUID
    store: StoreSnapshot
    gateway: GatewaySnapshot
    public_base_url: str = ""
    contact_name: Optional[str] = None

    @property
    def buffer_key(self) -> str:
        return build_buffer_key(self.tenant_id, self.phone_number)


def build_buffer_key(tenant_id: str, phone_number: str) -> str:
    return f"{tenant_id}:{phone_number}"


def snapshot_store(store: StoreConfig) -> StoreSnapshot:
    return StoreSnapshot(
        id=store.id,
        tenant_id=store.tenant_id,
        store_name=store.store_name,
        description=store.description or "",
        opening_hours=store.opening_hours or "",
        tone=store.tone or "friendly",
        fallback_message=store.fallback_message or "",
        instagram=store.instagram or "",
        reference_document_url=store.reference_document_url or "",
        documents=tuple(
            DocumentSnapshot(id=d.id, title=d.title, content=d.content or "", active=bool(d.active))
            for d in store.knowledge_documents
        ),
    )


def snapshot_gateway(gateway: GatewayConfig) -> GatewaySnapshot:
    return GatewaySnapshot(
        base_url=gateway.base_url or "",
        api_key=gateway.api_key or "",
        instance_name=gateway.instance_name or "",
    )


def build_turn_context(
    store: StoreConfig,
    gateway: GatewayConfig,
    contact: Contact,
    conversation: Conversation,
    public_base_url: str = "",
) -> TurnContext:
    return TurnContext(
        tenant_id=store.tenant_id,
        phone_number=conversation.phone_number,
        contact_id=contact.id,
        conversation_id=conversation.id,
        store=snapshot_store(store),
        gateway=snapshot_gateway(gateway),
        public_base_url=public_base_url,
        contact_name=contact.name,
    )
