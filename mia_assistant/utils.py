import re
import unicodedata
from typing import Iterable, List, Optional

_NON_WORD_RE = re.compile(r"[^a-z0-9_\s]")
_SPACES_RE = re.compile(r"\s+")


def normalize_text(text: Optional[str]) -> str:
    """Purpose: Normalize free-form text for accent-insensitive keyword matching.
    Inputs/Outputs: Input is a raw string (or None); output is a lowercase string with
        diacritics removed, punctuation replaced by spaces and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by red flags, gate, intents,
        retrieval and documents.
    Failure Modes: Returns an empty string when input is falsy; never raises.
    If Removed: Keyword rules miss accented or punctuated variants ("no respira!").
    Testing Notes: Idempotent; output is never longer than input.
    """
    # Lowercase, strip combining marks, then flatten punctuation and spaces.
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text).lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _NON_WORD_RE.sub(" ", stripped)
    return _SPACES_RE.sub(" ", cleaned).strip()


def contains_keyword(normalized_text: str, keyword: str) -> bool:
    """Purpose: Substring test of a keyword against already-normalized text.
    Inputs/Outputs: Inputs are normalized text and a raw keyword; output is a bool.
    Side Effects / State: None.
    Dependencies: Normalizes the keyword with normalize_text.
    Failure Modes: An empty keyword never matches.
    If Removed: Every rule module would re-implement keyword matching.
    Testing Notes: "Vómita" as keyword matches "mi perro vomita".
    """
    # Normalize the keyword the same way as the text before comparing.
    normalized_keyword = normalize_text(keyword)
    if not normalized_keyword:
        return False
    return normalized_keyword in normalized_text


def contains_all_keywords(normalized_text: str, keywords: Iterable[str]) -> bool:
    """Return True only when every keyword matches (combined rules)."""
    keywords = list(keywords)
    if not keywords:
        return False
    return all(contains_keyword(normalized_text, keyword) for keyword in keywords)


def contains_any_keyword(normalized_text: str, keywords: Iterable[str]) -> bool:
    """Return True when at least one keyword matches."""
    return any(contains_keyword(normalized_text, keyword) for keyword in keywords)


def strip_accents_upper(text: Optional[str]) -> str:
    """Purpose: Produce the uppercase, accent-free form used for category comparison.
    Inputs/Outputs: Input is a category label; output keeps "/" and spaces intact.
    Side Effects / State: None.
    Dependencies: Uses unicodedata.
    Failure Modes: Returns empty string for falsy input.
    If Removed: "ÓTICO" and "OTICO" no longer compare equal in category search.
    Testing Notes: "Dermatología" -> "DERMATOLOGIA".
    """
    # Decompose and drop combining marks, keep all other characters.
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text).upper())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).strip()


def significant_words(text: str, min_length: int = 2) -> List[str]:
    """Split lowercase text into words strictly longer than min_length."""
    return [word for word in (text or "").lower().split() if len(word) > min_length]


def normalize_key(text: str) -> str:
    """Purpose: Produce a compact normalization key without spaces.
    Inputs/Outputs: Input is a raw string; output is normalized string with spaces removed.
    Side Effects / State: None; pure function.
    Dependencies: Calls normalize_text; used for record-field key lookups.
    Failure Modes: Returns empty string for falsy input; otherwise deterministic.
    If Removed: Catalog loading cannot map "Nombre" / "product name" style keys.
    Testing Notes: Ensure spaces are removed after normalization.
    """
    # Collapse normalization output into a compact key.
    return normalize_text(text).replace(" ", "")
