from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from .utils import normalize_text

logger = logging.getLogger("mia.query_terms")

# Token -> species label; matched on whole tokens so "canal" is not "can".
SPECIES_TOKENS: Dict[str, str] = {
    "perro": "perro",
    "perros": "perro",
    "perra": "perro",
    "perrito": "perro",
    "can": "perro",
    "canino": "perro",
    "gato": "gato",
    "gatos": "gato",
    "gata": "gato",
    "gatito": "gato",
    "felino": "gato",
}

FOOD_TERMS: List[tuple] = [
    ("alimentacion", "alimentación"),
    ("comida", "comida"),
    ("pienso", "pienso"),
    ("croquetas", "croquetas"),
    ("dieta", "dieta"),
]

PUPPY_RE = re.compile(r"\b(cachorro|cachorros|puppy|joven)\b")
ADULT_RE = re.compile(r"\b(adulto|adultos|adult)\b|\b\d+\s*anos?\b")
SENIOR_RE = re.compile(r"\b(senior|anciano|viejo|mayor)\b")


def _species_in(normalized: str) -> List[str]:
    found: List[str] = []
    for token in normalized.split():
        species = SPECIES_TOKENS.get(token)
        if species and species not in found:
            found.append(species)
    # Dogs first when both appear, matching the species filter preference.
    return sorted(found, key=lambda value: 0 if value == "perro" else 1)


def extract_species(history: Sequence[Dict[str, str]], message: str) -> Optional[str]:
    """Purpose: Infer the pet species from the whole conversation.
    Inputs/Outputs: Inputs are prior messages (role/content dicts) and the current
        message; output is "perro", "gato" or None.
    Side Effects / State: None.
    Dependencies: normalize_text and SPECIES_TOKENS.
    Failure Modes: None; unknown species returns None.
    If Removed: Retrieval loses the species filter and the species-only tier.
    Testing Notes: "Tengo un gato" -> "gato"; dog wins when both are mentioned.
    """
    # Scan every turn (user and assistant) plus the current message.
    combined = " ".join([str(item.get("content", "")) for item in history] + [message or ""])
    species = _species_in(normalize_text(combined))
    return species[0] if species else None


def extract_search_terms(history: Sequence[Dict[str, str]], message: str) -> str:
    """Purpose: Build the catalog query for the current turn.
    Inputs/Outputs: Inputs are prior messages and the current message; output is
        a query string.
    Side Effects / State: Debug log when terms are rewritten.
    Dependencies: normalize_text, FOOD_TERMS and the age regexes.
    Failure Modes: None; falls back to the raw message.
    If Removed: Follow-up answers ("tiene 4 años") search on their own words only.
    Testing Notes: A food conversation about a 4 year old dog becomes
        "pienso perro adulto".
    """
    # Food terms + species + age from all user turns; else the message itself.
    user_turns = [str(item.get("content", "")) for item in history if item.get("role") == "user"]
    combined = normalize_text(" ".join(user_turns + [message or ""]))
    tokens = set(combined.split())

    food = [label for token, label in FOOD_TERMS if token in tokens]
    species = _species_in(combined)
    ages: List[str] = []
    if PUPPY_RE.search(combined):
        ages.append("cachorro")
    if ADULT_RE.search(combined):
        ages.append("adulto")
    if SENIOR_RE.search(combined):
        ages.append("senior")

    if food:
        terms = " ".join(food + species + ages)
        logger.debug("search terms from conversation original=%s terms=%s", message[:100], terms)
        return terms
    return message
