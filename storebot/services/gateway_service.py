import re
from typing import Optional

import httpx

from storebot.logging_config import get_logger
from storebot.services.alert_service import alert_critical
from storebot.services.turn_context import GatewaySnapshot

logger = get_logger("gateway_service")

SEND_DELAY_MS = 1200

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


def normalize_phone_from_jid(remote_jid: Optional[str]) -> Optional[str]:
    """'5511999999999@s.whatsapp.net' -> '5511999999999'."""
    if not remote_jid or not isinstance(remote_jid, str):
        return None
    raw = remote_jid.split("@", 1)[0]
    digits = re.sub(r"\D", "", raw)
    return digits or None


def resolve_document_url(url: Optional[str], base_url: Optional[str]) -> Optional[str]:
    """Make a stored document path absolute. Returns None when it cannot be."""
    if not url:
        return None
    if _ABSOLUTE_URL.match(url):
        return url
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def _is_configured(gateway: GatewaySnapshot) -> bool:
    return bool(gateway.base_url and gateway.api_key and gateway.instance_name)


async def _post(gateway: GatewaySnapshot, path: str, payload: dict) -> httpx.Response:
    async with httpx.AsyncClient(timeout=30.0) as client:
        return await client.post(
            f"{gateway.base_url.rstrip('/')}/message/{path}/{gateway.instance_name}",
            headers={"Content-Type": "application/json", "apikey": gateway.api_key},
            json=payload,
        )


async def send_text(gateway: GatewaySnapshot, phone_number: str, text: str) -> bool:
    """Send a WhatsApp text through the gateway. Never raises."""
    if not _is_configured(gateway):
        logger.error("Gateway not configured, cannot send text", extra={"context": {"phone": phone_number}})
        await alert_critical("WhatsApp send failed", {"phone": phone_number, "error": "gateway_not_configured"})
        return False

    if not phone_number or not text:
        logger.warning(f"send_text: missing phone={phone_number} or text")
        return False

    try:
        response = await _post(
            gateway,
            "sendText",
            {"number": phone_number, "text": text, "delay": SEND_DELAY_MS, "linkPreview": False},
        )
        logger.info(f"Gateway sendText: status={response.status_code}, phone={phone_number}")
        if response.is_success:
            return True
        logger.error(f"Gateway sendText error: {response.status_code} - {response.text[:200]}")
        await alert_critical("WhatsApp send failed", {"phone": phone_number, "status": response.status_code})
        return False
    except Exception as e:
        logger.error(f"Error sending WhatsApp message: {e}")
        await alert_critical("WhatsApp send failed", {"phone": phone_number, "error": str(e)})
        return False


async def send_document(
    gateway: GatewaySnapshot,
    phone_number: str,
    document_url: str,
    caption: str = "",
    file_name: str = "document.pdf",
) -> bool:
    """Send a PDF by absolute URL. Never raises."""
    if not _is_configured(gateway):
        logger.error("Gateway not configured, cannot send document", extra={"context": {"phone": phone_number}})
        return False

    if not document_url or not _ABSOLUTE_URL.match(document_url):
        logger.warning(f"send_document: document URL must be absolute, got {document_url!r}")
        return False

    try:
        response = await _post(
            gateway,
            "sendMedia",
            {
                "number": phone_number,
                "mediatype": "document",
                "mimetype": "application/pdf",
                "media": document_url,
                "caption": caption,
                "fileName": file_name,
            },
        )
        logger.info(f"Gateway sendMedia: status={response.status_code}, phone={phone_number}")
        if response.is_success:
            return True
        logger.error(f"Gateway sendMedia error: {response.status_code} - {response.text[:200]}")
        await alert_critical("WhatsApp document send failed", {"phone": phone_number, "status": response.status_code})
        return False
    except Exception as e:
        logger.error(f"Error sending WhatsApp document: {e}")
        await alert_critical("WhatsApp document send failed", {"phone": phone_number, "error": str(e)})
        return False
