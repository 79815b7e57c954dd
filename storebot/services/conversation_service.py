from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from storebot.models import Contact, Conversation, GatewayConfig, Message, StoreConfig
from storebot.services.state_machine import ConversationStatus

NEW_CONTACT_NAME = "Cliente Novo"


def find_gateway_config(db: Session, instance_name: Optional[str]) -> Optional[GatewayConfig]:
    """Gateway config for a webhook instance, falling back to the first one configured."""
    if instance_name:
        gateway = db.query(GatewayConfig).filter(GatewayConfig.instance_name == instance_name).first()
        if gateway:
            return gateway
    return db.query(GatewayConfig).order_by(GatewayConfig.id).first()


def get_store_config(db: Session, tenant_id: str) -> Optional[StoreConfig]:
    return db.query(StoreConfig).filter(StoreConfig.tenant_id == tenant_id).first()


def get_or_create_contact(db: Session, tenant_id: str, phone_number: str, push_name: Optional[str] = None) -> Contact:
    """Find contact by phone or create a new one without marketing consent."""
    contact = db.query(Contact).filter(Contact.tenant_id == tenant_id, Contact.phone_number == phone_number).first()

    if not contact:
        contact = Contact(
            tenant_id=tenant_id,
            phone_number=phone_number,
            name=(push_name or "").strip() or NEW_CONTACT_NAME,
            permission="denied",
        )
        db.add(contact)
        db.flush()

    return contact


def get_or_create_conversation(db: Session, tenant_id: str, contact: Contact) -> Conversation:
    """One conversation per (tenant, phone). Existing ones only get their activity touched."""
    now = datetime.now(timezone.utc)
    conversation = (
        db.query(Conversation)
        .filter(Conversation.tenant_id == tenant_id, Conversation.phone_number == contact.phone_number)
        .first()
    )

    if not conversation:
        conversation = Conversation(
            tenant_id=tenant_id,
            contact_id=contact.id,
            phone_number=contact.phone_number,
            customer_name=contact.name,
            status=ConversationStatus.ACTIVE.value,
            total_tokens=0,
            last_message_at=now,
            created_at=now,
        )
        db.add(conversation)
    else:
        conversation.last_message_at = now
        if conversation.contact_id is None:
            conversation.contact_id = contact.id

    db.flush()
    return conversation


def update_customer_name(db: Session, contact: Contact, conversation: Conversation, name: str) -> None:
    contact.name = name
    conversation.customer_name = name
    db.flush()


def update_permission(db: Session, contact: Contact, permission: str) -> None:
    if permission not in ("allowed", "denied"):
        raise ValueError(f"Unknown permission: {permission}")
    contact.permission = permission
    db.flush()


def add_tokens(db: Session, conversation: Conversation, tokens: int) -> int:
    conversation.total_tokens = (conversation.total_tokens or 0) + max(0, tokens)
    db.flush()
    return conversation.total_tokens


def count_customer_messages(db: Session, conversation_id: UUID) -> int:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id, Message.is_from_customer.is_(True))
        .count()
    )
