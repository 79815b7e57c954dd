from typing import Callable, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from storebot.logging_config import get_logger
from storebot.models import Conversation
from storebot.services import state_machine
from storebot.services.result import Result
from storebot.services.state_machine import ConversationStatus, InvalidTransitionError

logger = get_logger("state_service")


def _apply(
    db: Session,
    conversation_id: UUID,
    action: str,
    step: Callable[[ConversationStatus], ConversationStatus],
) -> Result[Tuple[str, str]]:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        return Result.failure(f"Conversation {conversation_id} not found", "not_found")

    old_status = conversation.status
    try:
        new_status = step(ConversationStatus(old_status))
    except (InvalidTransitionError, ValueError) as e:
        return Result.failure(f"Cannot {action} conversation in status '{old_status}': {e}", "invalid_state")

    conversation.status = new_status.value
    db.flush()

    logger.info(
        f"Operator {action}: {old_status} -> {new_status.value}",
        extra={"context": {"conversation_id": str(conversation_id)}},
    )
    return Result.success((old_status, new_status.value))


def take_over(db: Session, conversation_id: UUID) -> Result[Tuple[str, str]]:
    """Operator silences the bot for this conversation."""
    return _apply(db, conversation_id, "take over", state_machine.take_over)


def resume_bot(db: Session, conversation_id: UUID) -> Result[Tuple[str, str]]:
    """Operator hands the conversation back to the bot."""
    return _apply(db, conversation_id, "resume", state_machine.resume_bot)


def complete_conversation(db: Session, conversation_id: UUID) -> Result[Tuple[str, str]]:
    return _apply(db, conversation_id, "complete", state_machine.complete)


def delete_conversation(db: Session, conversation_id: UUID) -> Result[int]:
    """Delete a conversation and its messages. Returns the number of messages removed."""
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        return Result.failure(f"Conversation {conversation_id} not found", "not_found")

    message_count = len(conversation.messages)
    db.delete(conversation)
    db.flush()

    logger.info(
        f"Deleted conversation with {message_count} messages",
        extra={"context": {"conversation_id": str(conversation_id)}},
    )
    return Result.success(message_count)
