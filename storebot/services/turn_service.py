"""Processing of one debounced customer turn."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.database import SessionLocal
from storebot.logging_config import TurnLogger, get_turn_logger
from storebot.models import Contact, Conversation
from storebot.services.ai_service import (
    DEFAULT_FALLBACK_MESSAGE,
    BotReply,
    generate_bot_response,
    get_conversation_history,
)
from storebot.services.alert_service import alert_error
from storebot.services.conversation_service import (
    add_tokens,
    count_customer_messages,
    update_customer_name,
    update_permission,
)
from storebot.services.debounce_service import BufferedTurn
from storebot.services.gateway_service import resolve_document_url, send_document, send_text
from storebot.services.message_service import SENDER_BOT, SENDER_CUSTOMER, save_message
from storebot.services.name_service import NameExtractor, extract_name_from_message
from storebot.services.state_machine import ConversationStatus, bot_may_reply, handover, reopen
from storebot.services.turn_context import TurnContext

TOKEN_LIMIT_MESSAGE = (
    "Percebi que nossa conversa está ficando bem longa! Para garantir que você receba o melhor atendimento "
    "possível, vou transferir você para um atendente humano que poderá ajudá-lo de forma mais completa. "
    "Aguarde um momento, por favor."
)


@dataclass
class TurnResult:
    status: str
    reason: str
    replied: bool = False
    handover: bool = False
    tokens_used: int = 0
    document_sent: bool = False


class _Progress:
    replied = False


def token_limit_reply() -> BotReply:
    return BotReply(text=TOKEN_LIMIT_MESSAGE, handover=True, tokens_used=0)


async def process_buffered_turn(
    turn: BufferedTurn,
    session_factory=None,
    name_extractor: Optional[NameExtractor] = None,
) -> Optional[TurnResult]:
    """Run the full pipeline for a flushed buffer with its own session.

    Never raises. On unexpected errors the conversation is handed to a
    human with the store's fallback message.
    """
    ctx: TurnContext = turn.context
    log = get_turn_logger(
        "turn_service",
        buffer_key=turn.key,
        tenant_id=ctx.tenant_id,
        conversation_id=ctx.conversation_id,
    )
    progress = _Progress()
    db = (session_factory or SessionLocal)()

    try:
        return await _process_turn(db, ctx, turn.text, log, progress, name_extractor)
    except Exception as e:
        db.rollback()
        log.error(f"Turn processing failed: {e}", exc_info=True)
        await alert_error("Turn processing failed", {"buffer_key": turn.key, "error": str(e)[:200]})
        if not progress.replied:
            await _fail_safe_handover(db, ctx, log)
        return TurnResult(status=ConversationStatus.WAITING_HUMAN.value, reason="error")
    finally:
        db.close()


async def _process_turn(
    db: Session,
    ctx: TurnContext,
    text: str,
    log: TurnLogger,
    progress: _Progress,
    name_extractor: Optional[NameExtractor],
) -> Optional[TurnResult]:
    # Re-read state: an operator may have taken over while the window was open.
    conversation = db.query(Conversation).filter(Conversation.id == ctx.conversation_id).first()
    if conversation is None:
        log.warning("Conversation no longer exists, dropping turn")
        return None
    contact = db.query(Contact).filter(Contact.id == ctx.contact_id).first()

    detected = extract_name_from_message(text, name_extractor)
    if detected and contact is not None and detected != contact.name:
        log.info(f"Customer name detected: {detected}")
        update_customer_name(db, contact, conversation, detected)

    inbound = save_message(db, conversation.id, SENDER_CUSTOMER, text)
    db.commit()

    status = ConversationStatus(conversation.status)
    if not bot_may_reply(status):
        log.info(f"Conversation is {status.value}, not replying")
        return TurnResult(status=status.value, reason=status.value)

    if status == ConversationStatus.COMPLETED:
        status = reopen(status)
        conversation.status = status.value
        db.commit()
        log.info("Completed conversation reopened by a new customer message")

    is_first_message = count_customer_messages(db, conversation.id) <= 1

    if (conversation.total_tokens or 0) >= settings.max_tokens_per_conversation:
        log.info(
            f"Token budget reached ({conversation.total_tokens}/{settings.max_tokens_per_conversation}), handing over"
        )
        reply = token_limit_reply()
        reason = "token_limit"
    else:
        history = get_conversation_history(db, conversation.id, exclude_message_id=inbound.id)
        reply = await generate_bot_response(
            ctx.store,
            contact_name=contact.name if contact is not None else None,
            permission=contact.permission if contact is not None else None,
            user_message=text,
            history=history,
            is_first_message=is_first_message,
            db=db,
        )
        total = add_tokens(db, conversation, reply.tokens_used)
        log.info(f"Tokens used: {reply.tokens_used}, total {total}/{settings.max_tokens_per_conversation}")
        reason = "fallback" if reply.fallback else "replied"

    if reply.permission_update and contact is not None:
        update_permission(db, contact, reply.permission_update)
        log.info(f"Permission updated to {reply.permission_update}")

    if reply.handover:
        conversation.status = handover(status).value
        log.info("Conversation handed over to a human")

    db.commit()

    sent = await send_text(ctx.gateway, ctx.phone_number, reply.text)
    progress.replied = sent

    document_sent = False
    if reply.send_document and ctx.store.reference_document_url:
        document_sent = await _send_reference_document(ctx, log)

    if sent:
        save_message(db, conversation.id, SENDER_BOT, reply.text)
        db.commit()
    else:
        log.warning("Reply was not delivered, bot message not stored")

    return TurnResult(
        status=conversation.status,
        reason=reason,
        replied=sent,
        handover=reply.handover,
        tokens_used=reply.tokens_used,
        document_sent=document_sent,
    )


async def _send_reference_document(ctx: TurnContext, log: TurnLogger) -> bool:
    base_url = settings.public_base_url or ctx.public_base_url
    url = resolve_document_url(ctx.store.reference_document_url, base_url)
    if not url:
        log.warning(f"Cannot resolve reference document URL {ctx.store.reference_document_url!r}")
        return False

    log.info(f"Sending reference document: {url}")
    return await send_document(
        ctx.gateway,
        ctx.phone_number,
        url,
        caption=settings.reference_document_caption,
        file_name=settings.reference_document_filename,
    )


async def _fail_safe_handover(db: Session, ctx: TurnContext, log: TurnLogger) -> None:
    """Tell the customer a human will take over and park the conversation."""
    try:
        conversation = db.query(Conversation).filter(Conversation.id == ctx.conversation_id).first()
        if conversation is None or conversation.status != ConversationStatus.ACTIVE.value:
            return
        conversation.status = handover(ConversationStatus.ACTIVE).value
        db.commit()

        message = ctx.store.fallback_message or DEFAULT_FALLBACK_MESSAGE
        if await send_text(ctx.gateway, ctx.phone_number, message):
            save_message(db, conversation.id, SENDER_BOT, message)
            db.commit()
        log.info("Fail-safe handover applied")
    except Exception as e:
        db.rollback()
        log.error(f"Fail-safe handover failed: {e}", exc_info=True)
