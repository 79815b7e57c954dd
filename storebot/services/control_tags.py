"""In-band control markers the model uses to request side effects.

All marker spellings live in MARKERS. Prompts reference them through
marker_for() so the parser and the instructions never drift apart.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional


class ControlTag(str, Enum):
    ALLOW_PERMISSION = "allow_permission"
    DENY_PERMISSION = "deny_permission"
    HUMAN_HANDOVER = "human_handover"
    SEND_DOCUMENT = "send_document"


# Canonical marker first; extra spellings are accepted when parsing.
MARKERS = {
    ControlTag.ALLOW_PERMISSION: ["[SET_PERMISSION:ALLOWED]"],
    ControlTag.DENY_PERMISSION: ["[SET_PERMISSION:DENIED]"],
    ControlTag.HUMAN_HANDOVER: ["[HUMAN_HANDOVER]"],
    ControlTag.SEND_DOCUMENT: ["[SEND_MENU_PDF]", "[SEND_DOCUMENT]"],
}

DOCUMENT_REQUEST_KEYWORDS = ("cardápio", "cardapio", "menu")
DOCUMENT_SENDING_PHRASES = (
    "cardápio em pdf",
    "cardapio em pdf",
    "enviando o cardápio em pdf",
    "estou te enviando o cardápio",
)


def marker_for(tag: ControlTag) -> str:
    return MARKERS[tag][0]


def _marker_pattern(marker: str) -> str:
    # "[SET_PERMISSION:ALLOWED]" -> tolerate case and blanks inside the brackets
    inner = marker[1:-1]
    parts = [re.escape(p) for p in re.split(r"([:_])", inner) if p]
    return r"\[\s*" + r"\s*".join(parts) + r"\s*\]"


_TAG_PATTERNS = {
    tag: re.compile("|".join(_marker_pattern(m) for m in markers), re.IGNORECASE)
    for tag, markers in MARKERS.items()
}


@dataclass(frozen=True)
class ParsedReply:
    text: str
    tags: FrozenSet[ControlTag] = field(default_factory=frozenset)

    @property
    def permission_update(self) -> Optional[str]:
        # deny wins when the model emits both
        if ControlTag.DENY_PERMISSION in self.tags:
            return "denied"
        if ControlTag.ALLOW_PERMISSION in self.tags:
            return "allowed"
        return None

    @property
    def handover(self) -> bool:
        return ControlTag.HUMAN_HANDOVER in self.tags

    @property
    def send_document(self) -> bool:
        return ControlTag.SEND_DOCUMENT in self.tags


def parse_control_tags(text: str) -> ParsedReply:
    """Strip every control marker from text and report which ones were present."""
    found = set()
    cleaned = text or ""
    for tag, pattern in _TAG_PATTERNS.items():
        cleaned, count = pattern.subn("", cleaned)
        if count:
            found.add(tag)

    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    cleaned = re.sub(r"[ \t]+\n", "\n", cleaned)
    return ParsedReply(text=cleaned.strip(), tags=frozenset(found))


def wants_document_fallback(user_message: str, reply_text: str) -> bool:
    """Customer asked for the document and the reply says it is being sent."""
    lower_user = (user_message or "").lower()
    lower_reply = (reply_text or "").lower()

    requested = any(k in lower_user for k in DOCUMENT_REQUEST_KEYWORDS)
    claims_sending = any(p in lower_reply for p in DOCUMENT_SENDING_PHRASES)
    return requested and claims_sending
