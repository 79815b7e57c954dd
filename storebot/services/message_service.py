from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from storebot.models import Message

SENDER_CUSTOMER = "customer"
SENDER_BOT = "bot"
SENDER_SYSTEM = "system"


def save_message(db: Session, conversation_id: UUID, sender: str, content: str) -> Message:
    """Append a message to the conversation."""
    message = Message(
        conversation_id=conversation_id,
        sender=sender,
        content=content,
        is_from_customer=sender == SENDER_CUSTOMER,
        timestamp=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message
