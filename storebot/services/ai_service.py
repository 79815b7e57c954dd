import asyncio
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.logging_config import get_logger
from storebot.models import Message
from storebot.services.alert_service import alert_error
from storebot.services.control_tags import parse_control_tags, wants_document_fallback
from storebot.services.knowledge_service import build_knowledge_context
from storebot.services.llm import LLMProvider, LLMRequestError, LLMResponseError, OpenRouterProvider
from storebot.services.prompt_service import build_system_prompt
from storebot.services.turn_context import StoreSnapshot

logger = get_logger("ai_service")

DEFAULT_FALLBACK_MESSAGE = (
    "Desculpe, estou com dificuldades técnicas no momento. Vou transferir você para um atendente humano."
)

_llm_provider: Optional[LLMProvider] = None


@dataclass
class BotReply:
    text: str
    permission_update: Optional[str] = None
    handover: bool = False
    send_document: bool = False
    tokens_used: int = 0
    fallback: bool = False
    rag_used: bool = False


def get_llm_provider() -> LLMProvider:
    """Get or create LLM provider instance."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = OpenRouterProvider(
            api_key=settings.openrouter_api_key or "",
            api_url=settings.openrouter_api_url,
            default_model=settings.completion_model,
            timeout_seconds=settings.completion_timeout_seconds,
        )
    return _llm_provider


def fallback_reply(store: StoreSnapshot, rag_used: bool = False) -> BotReply:
    """Reply used whenever the model cannot speak: hand the customer to a human."""
    return BotReply(
        text=store.fallback_message or DEFAULT_FALLBACK_MESSAGE,
        permission_update=None,
        handover=True,
        send_document=False,
        tokens_used=0,
        fallback=True,
        rag_used=rag_used,
    )


def get_conversation_history(
    db: Session,
    conversation_id: UUID,
    limit: Optional[int] = None,
    exclude_message_id: Optional[UUID] = None,
) -> List[dict]:
    """Get recent conversation history as chat messages, oldest first."""
    limit = settings.history_messages if limit is None else limit
    if limit <= 0:
        return []

    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if exclude_message_id is not None:
        query = query.filter(Message.id != exclude_message_id)
    messages = query.order_by(Message.timestamp.desc()).limit(limit).all()

    history = []
    for msg in reversed(messages):
        if msg.sender == "system":
            continue
        role = "user" if msg.is_from_customer else "assistant"
        history.append({"role": role, "content": msg.content})
    return history


async def request_completion(
    provider: LLMProvider,
    messages: List[dict],
    sleep_func=asyncio.sleep,
):
    """Call the provider with a fixed delay between attempts.

    Returns the first successful LLMResponse. Re-raises the last
    LLMRequestError once attempts are exhausted. LLMResponseError is not
    retried.
    """
    attempts = max(1, settings.completion_max_retries)
    delay = settings.completion_retry_delay_ms / 1000
    last_error: Optional[LLMRequestError] = None

    for attempt in range(1, attempts + 1):
        try:
            logger.info(f"Completion attempt {attempt}/{attempts}")
            return await provider.generate(
                messages=messages,
                model=settings.completion_model,
                temperature=settings.completion_temperature,
                max_tokens=settings.completion_max_tokens,
            )
        except LLMRequestError as e:
            last_error = e
            logger.warning(f"Completion attempt {attempt} failed: {e}")
            if attempt < attempts:
                await sleep_func(delay)

    raise last_error


async def generate_bot_response(
    store: StoreSnapshot,
    contact_name: Optional[str],
    permission: Optional[str],
    user_message: str,
    history: Optional[List[dict]] = None,
    is_first_message: bool = False,
    db: Optional[Session] = None,
    provider: Optional[LLMProvider] = None,
    sleep_func=asyncio.sleep,
) -> BotReply:
    """Generate the bot reply for one customer turn.

    Never raises: upstream failures, unparseable bodies and empty replies
    all produce the handover-forcing fallback reply.
    """
    knowledge = await build_knowledge_context(db, user_message, store)

    system_prompt = build_system_prompt(
        store,
        contact_name=contact_name,
        permission=permission,
        knowledge_context=knowledge.text,
        is_first_message=is_first_message,
    )
    messages = [{"role": "system", "content": system_prompt}, *(history or []), {"role": "user", "content": user_message}]

    logger.info(
        f"Completion request: {len(messages)} messages, context {len(knowledge.text)} chars",
        extra={"context": {"tenant_id": store.tenant_id, "rag_used": knowledge.rag_used}},
    )

    try:
        response = await request_completion(provider or get_llm_provider(), messages, sleep_func=sleep_func)
    except LLMRequestError as e:
        logger.error(f"All completion attempts failed: {e}")
        await alert_error("Completion failed, handing over", {"tenant_id": store.tenant_id, "error": str(e)[:200]})
        return fallback_reply(store, rag_used=knowledge.rag_used)
    except LLMResponseError as e:
        logger.error(f"Unusable completion response: {e}")
        await alert_error("Unusable completion response", {"tenant_id": store.tenant_id, "error": str(e)[:200]})
        return fallback_reply(store, rag_used=knowledge.rag_used)

    if not response.content or not response.content.strip():
        logger.error("Empty completion content")
        return fallback_reply(store, rag_used=knowledge.rag_used)

    parsed = parse_control_tags(response.content)
    if not parsed.text:
        # reply consisted of markers only; nothing to send
        logger.error("Completion contained only control markers")
        return fallback_reply(store, rag_used=knowledge.rag_used)

    send_document = parsed.send_document
    if not send_document and store.reference_document_url:
        if wants_document_fallback(user_message, parsed.text):
            logger.info("Forcing document send: reply announces it without the marker")
            send_document = True

    reply = BotReply(
        text=parsed.text,
        permission_update=parsed.permission_update,
        handover=parsed.handover,
        send_document=send_document,
        tokens_used=response.total_tokens,
        rag_used=knowledge.rag_used,
    )
    logger.info(
        f"Completion ok: {len(reply.text)} chars, {reply.tokens_used} tokens",
        extra={
            "context": {
                "tags": sorted(t.value for t in parsed.tags),
                "send_document": reply.send_document,
            }
        },
    )
    return reply
