from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.database import get_db
from storebot.logging_config import get_logger
from storebot.schemas.webhook import EvolutionWebhookPayload, WebhookResponse
from storebot.services.alert_service import alert_critical
from storebot.services.conversation_service import (
    find_gateway_config,
    get_or_create_contact,
    get_or_create_conversation,
    get_store_config,
)
from storebot.services.debounce_service import MessageDebouncer
from storebot.services.gateway_service import normalize_phone_from_jid
from storebot.services.turn_context import build_buffer_key, build_turn_context

logger = get_logger("webhook")

router = APIRouter()


def get_debouncer(request: Request) -> MessageDebouncer:
    debouncer = getattr(request.app.state, "debouncer", None)
    if debouncer is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Debouncer not running")
    return debouncer


def _get_request_webhook_token(request: Request) -> Optional[str]:
    header_token = request.headers.get("X-Webhook-Token")
    if header_token:
        return header_token.strip()
    query_token = request.query_params.get("token")
    if query_token:
        return query_token.strip()
    return None


def get_server_base_url(request: Request) -> str:
    """Externally reachable base URL, as seen through the reverse proxy."""
    forwarded_proto = request.headers.get("x-forwarded-proto")
    protocol = forwarded_proto.split(",")[0].strip() if forwarded_proto else request.url.scheme
    host = request.headers.get("host")
    return f"{protocol}://{host}" if host else ""


def _ignored(reason: str) -> WebhookResponse:
    return WebhookResponse(success=True, ignored=True, reason=reason)


@router.post("/api/evolution/messages-upsert", response_model=WebhookResponse, response_model_exclude_none=True)
@router.post("/webhook/evolution", response_model=WebhookResponse, response_model_exclude_none=True)
async def handle_evolution_webhook(
    request: Request,
    db: Session = Depends(get_db),
    debouncer: MessageDebouncer = Depends(get_debouncer),
) -> WebhookResponse:
    """Buffer an inbound WhatsApp message. Always acknowledges so the gateway does not retry."""
    if settings.webhook_token and _get_request_webhook_token(request) != settings.webhook_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token")

    try:
        body = await request.json()
        payload = EvolutionWebhookPayload.model_validate(body)
    except (ValueError, ValidationError) as e:
        logger.warning("Webhook payload could not be parsed", extra={"context": {"error": str(e)[:200]}})
        return _ignored("invalid_payload")

    inbound = payload.to_inbound()

    if inbound.from_me:
        logger.debug("Message sent by the bot itself, ignoring")
        return _ignored("fromMe")

    phone_number = normalize_phone_from_jid(inbound.remote_jid)
    if not phone_number:
        logger.warning(f"Invalid or missing remoteJid: {inbound.remote_jid!r}")
        return _ignored("invalid_jid")

    if not inbound.text or not inbound.text.strip():
        logger.debug("Message without text, ignoring")
        return _ignored("no_text")

    gateway = find_gateway_config(db, inbound.instance)
    if not gateway:
        logger.warning("No gateway config found, ignoring message")
        return _ignored("no_config")

    tenant_id = gateway.tenant_id
    store = get_store_config(db, tenant_id)
    if not store:
        logger.error(
            "Store config missing for tenant",
            extra={"context": {"tenant_id": tenant_id, "instance": inbound.instance}},
        )
        await alert_critical("Store config missing", {"tenant_id": tenant_id, "instance": inbound.instance})
        return _ignored("no_store_config")

    contact = get_or_create_contact(db, tenant_id, phone_number, inbound.push_name)
    conversation = get_or_create_conversation(db, tenant_id, contact)
    context = build_turn_context(
        store,
        gateway,
        contact,
        conversation,
        public_base_url=get_server_base_url(request),
    )
    db.commit()

    buffer_key = build_buffer_key(tenant_id, phone_number)
    fragments = debouncer.ingest(buffer_key, inbound.text, context)

    logger.info(
        f"Buffered message for {buffer_key} ({fragments} fragment(s))",
        extra={"context": {"buffer_key": buffer_key, "conversation_id": str(conversation.id)}},
    )
    return WebhookResponse(
        success=True,
        buffered=True,
        contact_id=contact.id,
        conversation_id=conversation.id,
        buffer_key=buffer_key,
    )
