"""Best-effort detection of a customer's self-reported name.

The result is only a suggestion for the contact's display name. Nothing
downstream relies on it being correct.
"""

import re
from typing import List, Optional, Pattern, Protocol

PLACEHOLDER_NAME = "Cliente"

_LETTERS = "a-záàâãéèêíïóôõöúçñ"
_WORD = f"[{_LETTERS}]+"

NAME_PATTERNS = [
    # "meu nome é Ana Paula", "me chamo Pedro", "sou a Maria"
    re.compile(rf"(?:meu nome (?:é|e)|me chamo|sou (?:o|a)?)[\s:]+({_WORD}(?:\s+{_WORD})?)", re.IGNORECASE),
    # "oi, sou Maria", "olá meu nome é João"
    re.compile(rf"^(?:oi|olá|ola),?\s+(?:meu nome (?:é|e)|sou)\s+({_WORD})", re.IGNORECASE),
    # "Carlos aqui", "Carlos, falando"
    re.compile(rf"^({_WORD}),?\s+(?:aqui|falando)", re.IGNORECASE),
    # bare answer to "qual é o seu nome?", optionally followed by sim/não
    re.compile(rf"^({_WORD})(?:\s+(?:sim|não|nao))?$", re.IGNORECASE),
]

# Words that the patterns above happily capture but are never names.
NOT_A_NAME = {
    "oi", "olá", "ola", "opa", "eai", "bom", "boa", "dia", "tarde", "noite",
    "sim", "não", "nao", "ok", "okay", "beleza", "blz", "certo", "claro",
    "obrigado", "obrigada", "valeu", "tchau", "show", "top", "legal",
    "quero", "queria", "gostaria", "preciso", "pode", "e", "de", "da", "do",
    "cardápio", "cardapio", "menu", "pedido", "pizza", "ajuda", "cliente",
    "aqui", "falando", "hoje", "agora", "um", "uma", "o", "a",
}


class NameExtractor(Protocol):
    def extract(self, text: str) -> Optional[str]: ...


def is_placeholder_name(name: Optional[str]) -> bool:
    """Generic names such as "Cliente Novo" mean the real name is unknown."""
    return not name or name.strip().lower().startswith("cliente")


def _title(words: List[str]) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


class RegexNameExtractor:
    def __init__(self, patterns: Optional[List[Pattern]] = None, stopwords: Optional[set] = None):
        self.patterns = patterns if patterns is not None else NAME_PATTERNS
        self.stopwords = stopwords if stopwords is not None else NOT_A_NAME

    def extract(self, text: str) -> Optional[str]:
        message = (text or "").strip()
        if not message:
            return None

        for pattern in self.patterns:
            match = pattern.search(message)
            if not match or not match.group(1):
                continue

            words = match.group(1).split()
            if words[0].lower() in self.stopwords or len(words[0]) < 2:
                continue
            # second word is kept only when it looks like a surname
            words = [words[0]] + [w for w in words[1:2] if w.lower() not in self.stopwords and len(w) > 1]

            name = _title(words)
            if is_placeholder_name(name):
                continue
            return name

        return None


_default_extractor = RegexNameExtractor()


def extract_name_from_message(text: str, extractor: Optional[NameExtractor] = None) -> Optional[str]:
    return (extractor or _default_extractor).extract(text)
