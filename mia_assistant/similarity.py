from __future__ import annotations

import re
from typing import Set

# Fuzzy product-name acceptance threshold (strictly greater than).
SIMILARITY_THRESHOLD = 0.6

# Trigram thresholds for the generic search; loose to favor recall.
NAME_TRIGRAM_THRESHOLD = 0.15
DESCRIPTION_TRIGRAM_THRESHOLD = 0.15
CATEGORY_TRIGRAM_THRESHOLD = 0.2

_TRIGRAM_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


def containment_ratio(a: str, b: str) -> float:
    """Shorter/longer length ratio when one string contains the other, else 0."""
    if not a or not b:
        return 0.0
    if a in b or b in a:
        shorter, longer = (a, b) if len(a) < len(b) else (b, a)
        return len(shorter) / len(longer)
    return 0.0


def word_overlap_ratio(a: str, b: str, min_length: int = 2) -> float:
    """Share of words (length > min_length) that overlap, over the longer word list."""
    words_a = [word for word in a.split() if len(word) > min_length]
    words_b = [word for word in b.split() if len(word) > min_length]
    if not words_a or not words_b:
        return 0.0
    matching = [w1 for w1 in words_a if any(w1 in w2 or w2 in w1 for w2 in words_b)]
    return len(matching) / max(len(words_a), len(words_b))


def name_similarity(name1: str, name2: str) -> float:
    """Purpose: Score how likely two product-name strings denote the same product.
    Inputs/Outputs: Inputs are two names; output is a score in [0, 1].
    Side Effects / State: None; pure function.
    Dependencies: containment_ratio and word_overlap_ratio.
    Failure Modes: Empty input scores 0.
    If Removed: The validator cannot repair near-miss product names.
    Testing Notes: Comparison is case-insensitive; identical names score 1.0.
    """
    # Exact, then containment, then word overlap.
    a = (name1 or "").strip().lower()
    b = (name2 or "").strip().lower()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return containment_ratio(a, b)
    return word_overlap_ratio(a, b)


def trigrams(text: str) -> Set[str]:
    """Trigram set of a string, each word padded with two leading and one trailing space."""
    grams: Set[str] = set()
    for word in _TRIGRAM_WORD_RE.findall((text or "").lower()):
        padded = f"  {word} "
        for index in range(len(padded) - 2):
            grams.add(padded[index : index + 3])
    return grams


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the two trigram sets (0 when either is empty)."""
    grams_a = trigrams(a)
    grams_b = trigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    return len(grams_a & grams_b) / len(grams_a | grams_b)
