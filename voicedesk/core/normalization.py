"""
Text normalization for spoken caller input.

Handles name/ID cleanup for the IDENTIFY stage, vague-answer rejection for
the REASON stage and goodbye detection for the DONE stage.

Examples:
    "hola, soy el señor Juan Pérez" -> "Juan Pérez"
    "me llamo maría de la cruz."     -> "María de la Cruz"
    "mi número de empleado es 4512"  -> "4512"
"""

import re
from typing import List, Optional, Pattern, Tuple


def _rule(pattern: str, replacement: str) -> Tuple[Pattern[str], str]:
    return re.compile(pattern, re.IGNORECASE), replacement


# Applied in order, repeatedly, until the text stops changing.
NAME_RULES: List[Tuple[Pattern[str], str]] = [
    # Punctuation and symbols become spaces (letters, digits and accents survive)
    _rule(r"[^\w\s]|_", " "),
    _rule(r"\s+", " "),
    # Leading greeting fillers
    _rule(
        r"^\s*(?:hola|buenas|buenos d[ií]as|buenas tardes|buenas noches|al[oó]|bueno|pues|eh|este|"
        r"s[ií]|ok|okay|vale|claro|hello|hi|hey|good morning|good afternoon|yes)\b\s*",
        "",
    ),
    # Self-introduction phrases
    _rule(
        r"^\s*(?:yo\s+)?(?:soy|me llamo|mi nombre es|le habla|habla|mi n[uú]mero de empleado es|"
        r"mi n[uú]mero es|n[uú]mero de empleado|i am|i m|im|my name is|this is|it s|it is)\b\s*",
        "",
    ),
    # Articles left before an honorific ("soy el señor ...")
    _rule(r"^\s*(?:el|la)\s+(?=(?:se[nñ]or|se[nñ]ora|se[nñ]orita|doctor|doctora|licenciado|licenciada|ingeniero|ingeniera)\b)", ""),
    # Honorifics
    _rule(
        r"^\s*(?:se[nñ]or|se[nñ]ora|se[nñ]orita|sr|sra|srta|don|do[nñ]a|doctor|doctora|dr|dra|"
        r"licenciado|licenciada|lic|ingeniero|ingeniera|ing|mr|mrs|ms|miss)\b\s*",
        "",
    ),
    # Trailing courtesy
    _rule(r"\s+(?:gracias|por favor|please|thanks|thank you)\s*$", ""),
    _rule(r"^\s+|\s+$", ""),
]

# Name particles kept lowercase unless they lead the name
NAME_PARTICLES = {"de", "del", "la", "las", "los", "y", "da", "van", "von"}

VAGUE_STOPLIST = {
    "", "ok", "okay", "vale", "bueno", "pues", "a ver", "sí", "si", "no", "hola", "eh", "este",
    "mmm", "mm", "hmm", "well", "yes", "hello", "hi", "buenas", "gracias", "claro", "aja", "ajá",
    "bueno pues", "pues nada", "no sé", "no se",
}

MIN_REASON_WORDS = 4

GOODBYE_PATTERN = re.compile(
    r"\b(?:adi[oó]s|hasta luego|hasta pronto|hasta la vista|chao|chau|nos vemos|bye|goodbye|good bye)\b",
    re.IGNORECASE,
)

_MAX_PASSES = 8


def _apply_rules(text: str) -> str:
    for _ in range(_MAX_PASSES):
        previous = text
        for pattern, replacement in NAME_RULES:
            text = pattern.sub(replacement, text)
        if text == previous:
            break
    return text


def _capitalize_word(word: str, index: int) -> str:
    if word.isdigit():
        return word
    lowered = word.lower()
    if index > 0 and lowered in NAME_PARTICLES:
        return lowered
    return lowered[:1].upper() + lowered[1:]


def normalize_name(text: Optional[str]) -> str:
    """Return the cleaned, capitalized caller name/ID, or "" if nothing remains."""
    if not text:
        return ""
    stripped = _apply_rules(text)
    words = stripped.split()
    return " ".join(_capitalize_word(word, idx) for idx, word in enumerate(words))


def display_token(name: Optional[str]) -> Optional[str]:
    """First word that is not purely numeric, used when confirming back to the caller."""
    if not name:
        return None
    for word in name.split():
        if not word.isdigit():
            return word
    return None


def _simplify(text: str) -> str:
    text = re.sub(r"[^\w\s]|_", " ", text.lower())
    return " ".join(text.split())


def is_vague_reason(text: Optional[str]) -> bool:
    """True when the caller's answer is too vague to record as a reason."""
    simplified = _simplify(text or "")
    if simplified in VAGUE_STOPLIST:
        return True
    return len(simplified.split()) < MIN_REASON_WORDS


def is_goodbye(text: Optional[str]) -> bool:
    if not text:
        return False
    return GOODBYE_PATTERN.search(text) is not None
