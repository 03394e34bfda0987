"""Intent dictionary and rule-based classifier (MIA v2.0, es-ES).

Each intent maps trigger keywords to catalog category paths and a retrieval
strategy. Classification is a single scan over intents sorted by priority; the
first intent with any trigger hit wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .utils import contains_keyword, normalize_text, strip_accents_upper

logger = logging.getLogger("mia.intents")

DICTIONARY_VERSION = "mia-v2.0"

SUPPORT_INTENT_ID = "SUPPORT_SHOP"
GI_INTENT_ID = "GI_GASTROINTESTINAL"

STRATEGY_CATEGORIES_FIRST = "categories_first"
STRATEGY_NAME_WITH_SYNONYMS = "name_with_synonyms"
STRATEGY_CATEGORY_THEN_NAME = "category_then_name"

CATEGORY_ALIASES: Dict[str, str] = {
    "DERMATOLOGIA": "DERMATOLOGÍA",
    "DERMATOLOGÍA": "DERMATOLOGÍA",
    "OTICO": "ÓTICO",
    "ÓTICO": "ÓTICO",
    "CONDOPROTECTOR/ARTICULAR": "CONDROPROTECTOR/ARTICULAR",
    "CONDROPROTECTOR ARTICULAR": "CONDROPROTECTOR/ARTICULAR",
    "DIETA VETERINARIA": "DIETA VETERINARIA",
    "GASTRO INTESTINAL": "GASTROINTESTINAL",
    "GASTROINTESTINAL": "GASTROINTESTINAL",
    "BUCO DENTAL": "BUCODENTAL",
    "BUCODENTAL": "BUCODENTAL",
}

TOKEN_ALIASES: Dict[str, str] = {
    "condoprotector": "condroprotector",
    "condro": "condroprotector",
    "artrosis": "articulaciones",
    "movilidad": "articulaciones",
    "diabetico": "diabetes",
    "diabetica": "diabetes",
    "renal": "rinon",
    "rinon": "rinon",
    "rinones": "rinon",
    "gastro": "gastrointestinal",
    "intestinal": "gastrointestinal",
    "diarrea": "gastrointestinal",
    "vomitos": "gastrointestinal",
    "hipoalergenico": "hipoalergenico",
    "hidrolizado": "hidrolizado",
    "ultrahypo": "ultrahypo",
    "toallitas": "higiene",
    "oidos": "otico",
    "otitis": "otico",
    "dental": "bucodental",
    "sarro": "bucodental",
    "malaliento": "halitosis",
    "aliento": "halitosis",
}


@dataclass(frozen=True)
class CategoryFilter:
    """Name filter scoped to one category key."""
    must_match_name_any: List[str] = field(default_factory=list)
    should_match_name_any: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Intent:
    """One entry of the intent dictionary."""
    id: str
    priority: int
    triggers_any: List[str]
    category_candidates: List[List[str]] = field(default_factory=list)
    category_filters: Dict[str, CategoryFilter] = field(default_factory=dict)
    search_strategy: List[str] = field(default_factory=list)
    name_synonyms_any: List[str] = field(default_factory=list)
    red_flags_any: List[str] = field(default_factory=list)
    followup_questions: List[str] = field(default_factory=list)


@dataclass
class IntentResult:
    """Classifier output consumed by retrieval and logging."""
    intent: Optional[str] = None
    category_candidates: List[List[str]] = field(default_factory=list)
    category_filters: Dict[str, CategoryFilter] = field(default_factory=dict)
    search_strategy: List[str] = field(default_factory=list)
    name_synonyms: List[str] = field(default_factory=list)
    red_flags: List[str] = field(default_factory=list)
    followup_questions: List[str] = field(default_factory=list)

    @property
    def is_support(self) -> bool:
        return self.intent == SUPPORT_INTENT_ID

    def uses_strategy(self, *tags: str) -> bool:
        return any(tag in self.search_strategy for tag in tags)


INTENTS: List[Intent] = [
    Intent(
        id=SUPPORT_INTENT_ID,
        priority=100,
        triggers_any=[
            "envio", "envíos", "entrega", "devolucion", "devolución", "cambio",
            "pago", "factura", "pedido", "seguimiento", "reembolso",
            "tarjeta", "bizum", "transferencia",
        ],
        search_strategy=["faq", "policies"],
    ),
    Intent(
        id="JOINTS_CONDROPROTECTOR",
        priority=90,
        triggers_any=[
            "condroprotector", "articulaciones", "artrosis", "movilidad",
            "cojera", "cartilago", "cartílago", "glucosamina", "condroitina",
            "msm", "seraquin", "condrovet", "cosequin",
        ],
        category_candidates=[
            ["CONDROPROTECTOR/ARTICULAR"],
            ["SALUD", "CONDROPROTECTOR/ARTICULAR"],
            ["SUPLEMENTOS", "CONDROPROTECTOR/ARTICULAR"],
        ],
        search_strategy=[STRATEGY_CATEGORIES_FIRST, STRATEGY_NAME_WITH_SYNONYMS],
        name_synonyms_any=["condro", "joint", "mobility", "glucos", "chondro", "articular"],
    ),
    Intent(
        id="DIET_RENAL",
        priority=90,
        triggers_any=[
            "renal", "renales", "rinon", "riñon", "riñones", "insuficiencia renal", "kidney",
            "uremia", "uremico", "porus one", "porus", "nefro", "renal care",
        ],
        category_candidates=[
            ["DIETA VETERINARIA"],
            ["SALUD", "RENAL"],
            ["RENAL"],
        ],
        category_filters={
            "DIETA VETERINARIA": CategoryFilter(must_match_name_any=["renal", "kidney", "renal care"]),
        },
        search_strategy=[STRATEGY_CATEGORY_THEN_NAME],
        name_synonyms_any=["renal", "kidney", "nefro", "urinario", "uremia"],
    ),
    Intent(
        id="DIET_DIABETES",
        priority=85,
        triggers_any=[
            "diabetes", "diabetico", "diabético", "insulina", "glucosa",
            "diabetic", "glycemic", "glucemico", "glucémico",
        ],
        category_candidates=[["DIETA VETERINARIA"]],
        category_filters={
            "DIETA VETERINARIA": CategoryFilter(must_match_name_any=["diabet", "diabetes", "diabetic"]),
        },
        search_strategy=[STRATEGY_CATEGORY_THEN_NAME],
        name_synonyms_any=["diabet", "diabetes", "diabetic"],
    ),
    Intent(
        id="DIET_HYPOALLERGENIC",
        priority=85,
        triggers_any=[
            "alergia", "alergico", "alérgico", "hipoalergenico", "hipoalergénico",
            "ultrahypo", "hypoallergenic", "hidrolizado", "hidrolizada",
            "intolerancia", "dieta de eliminacion", "dieta de eliminación", "prurito por comida",
        ],
        category_candidates=[
            ["DIETA VETERINARIA"],
            ["SALUD", "DERMATOLOGÍA"],
            ["DERMATOLOGÍA"],
        ],
        category_filters={
            "DIETA VETERINARIA": CategoryFilter(
                should_match_name_any=["hypo", "ultra", "allerg", "hidrol", "anallergenic"]
            ),
        },
        search_strategy=[STRATEGY_CATEGORY_THEN_NAME],
        name_synonyms_any=["hypo", "ultra", "allerg", "hidrol", "anallergenic", "z/d", "ha"],
    ),
    Intent(
        id=GI_INTENT_ID,
        priority=80,
        triggers_any=[
            "diarrea", "vomito", "vómito", "vomitos", "vómitos", "gastro",
            "gastrointestinal", "intestino", "heces blandas", "flora intestinal",
            "probiotico", "probiótico", "prebiotico", "prebiótico", "fortiflora",
            "forti flora", "intestinal", "colitis",
        ],
        category_candidates=[
            ["GASTROINTESTINAL"],
            ["DIETA VETERINARIA"],
            ["SALUD", "GASTROINTESTINAL"],
        ],
        category_filters={
            "DIETA VETERINARIA": CategoryFilter(should_match_name_any=["gastro", "intestinal", "gi", "digest"]),
        },
        search_strategy=[STRATEGY_CATEGORIES_FIRST, STRATEGY_NAME_WITH_SYNONYMS],
        name_synonyms_any=["fortiflora", "probiotic", "prebiotic", "intestinal", "gastro", "digest"],
        red_flags_any=[
            "sangre", "heces negras", "vomitos repetidos", "vómitos repetidos",
            "apatia", "apatía", "no come", "no bebe", "deshidrat", "cachorro muy pequeño", "gatito",
        ],
    ),
    Intent(
        id="DENTAL_HALITOSIS",
        priority=75,
        triggers_any=[
            "mal aliento", "halitosis", "sarro", "dientes", "pasta de dientes",
            "cepillo", "higiene dental", "dental", "gingivitis",
        ],
        category_candidates=[
            ["BUCODENTAL"],
            ["HIGIENE", "BUCODENTAL"],
        ],
        search_strategy=[STRATEGY_CATEGORIES_FIRST, STRATEGY_NAME_WITH_SYNONYMS],
        name_synonyms_any=["dental", "tooth", "pasta", "cepillo", "sarro", "aliento"],
    ),
    Intent(
        id="EAR_OTIC",
        priority=75,
        triggers_any=[
            "oido", "oído", "oidos", "oídos", "otitis", "limpiar oidos", "limpiar oídos",
            "oreja", "orejas", "cera", "mal olor oido", "gotas oticas", "gotas óticas",
        ],
        category_candidates=[
            ["ÓTICO"],
            ["HIGIENE", "ÓTICO"],
        ],
        search_strategy=[STRATEGY_CATEGORIES_FIRST, STRATEGY_NAME_WITH_SYNONYMS],
        name_synonyms_any=["otico", "otitis", "ear", "oido", "oreja"],
        red_flags_any=["dolor intenso", "pus", "fiebre", "cabeza ladeada", "equilibrio"],
    ),
    Intent(
        id="PARASITES_EXTERNAL",
        priority=70,
        triggers_any=[
            "antiparasitario", "pulgas", "garrapatas", "mosquitos", "leishmania",
            "pipeta", "collar", "spray antiparasitario", "repelente", "repelente mosquitos",
        ],
        category_candidates=[
            ["ANTIPARASITARIOS"],
            ["HIGIENE", "ANTIPARASITARIOS"],
        ],
        search_strategy=[STRATEGY_CATEGORIES_FIRST, STRATEGY_NAME_WITH_SYNONYMS],
        name_synonyms_any=["flea", "tick", "pipeta", "collar", "repel", "mosquito", "leish"],
    ),
]


def _sorted_intents(intents: List[Intent]) -> List[Intent]:
    # Stable sort keeps dictionary order among equal priorities.
    return sorted(intents, key=lambda intent: intent.priority, reverse=True)


_INTENTS_BY_PRIORITY = _sorted_intents(INTENTS)
_INTENTS_BY_ID = {intent.id: intent for intent in INTENTS}


def normalize_category_name(category_name: Optional[str]) -> str:
    """Uppercase a category label and resolve it through CATEGORY_ALIASES."""
    if not category_name:
        return ""
    normalized = category_name.upper().strip()
    return CATEGORY_ALIASES.get(normalized) or CATEGORY_ALIASES.get(strip_accents_upper(normalized)) or normalized


def normalize_token(token: str) -> str:
    """Normalize a single token and apply TOKEN_ALIASES."""
    normalized = normalize_text(token)
    return TOKEN_ALIASES.get(normalized, normalized)


def get_intent(intent_id: str) -> Optional[Intent]:
    return _INTENTS_BY_ID.get(intent_id)


def _has_trigger(intent: Intent, full_text: str, tokens: List[str]) -> bool:
    for trigger in intent.triggers_any:
        normalized_trigger = normalize_token(trigger)
        if not normalized_trigger:
            continue
        if normalized_trigger in full_text or normalized_trigger in tokens:
            return True
    return False


def _collect_red_flags(normalized: str, keywords: List[str], found: List[str]) -> None:
    for keyword in keywords:
        if keyword not in found and contains_keyword(normalized, keyword):
            found.append(keyword)


def detect_intent(message: str, intents: Optional[List[Intent]] = None) -> IntentResult:
    """Purpose: Classify a user message into at most one catalog intent.
    Inputs/Outputs: Input is the raw message (and optionally a custom intent list);
        output is an IntentResult, with intent=None when nothing matched.
    Side Effects / State: Debug logging only.
    Dependencies: normalize_text, TOKEN_ALIASES, INTENTS.
    Failure Modes: None; an unmatched message is a valid outcome.
    If Removed: Retrieval loses category routing and falls back to generic search.
    Testing Notes: "¿Tienes condroprotector?" -> JOINTS_CONDROPROTECTOR; equal
        priorities resolve to the intent listed first.
    """
    # Alias every token, then scan intents from highest priority down.
    normalized = normalize_text(message)
    tokens = [normalize_token(token) for token in normalized.split()]
    full_text = " ".join(tokens)

    ordered = _INTENTS_BY_PRIORITY if intents is None else _sorted_intents(intents)
    best: Optional[Intent] = None
    for intent in ordered:
        if _has_trigger(intent, full_text, tokens):
            best = intent
            break

    red_flags: List[str] = []
    if best is not None:
        _collect_red_flags(normalized, best.red_flags_any, red_flags)
    gi_intent = _INTENTS_BY_ID.get(GI_INTENT_ID)
    if gi_intent is not None:
        _collect_red_flags(normalized, gi_intent.red_flags_any, red_flags)

    if best is None:
        return IntentResult(red_flags=red_flags)

    logger.debug(
        "intent detected intent=%s priority=%s red_flags=%s message=%s",
        best.id,
        best.priority,
        red_flags,
        message[:100],
    )
    return IntentResult(
        intent=best.id,
        category_candidates=[list(path) for path in best.category_candidates],
        category_filters=dict(best.category_filters),
        search_strategy=list(best.search_strategy),
        name_synonyms=list(best.name_synonyms_any),
        red_flags=red_flags,
        followup_questions=list(best.followup_questions),
    )


def get_normalized_category_names(category_candidates: List[List[str]]) -> List[str]:
    """Flatten candidate paths into unique alias-normalized category names."""
    names: List[str] = []
    for path in category_candidates:
        for category in path:
            normalized = normalize_category_name(category)
            if normalized and normalized not in names:
                names.append(normalized)
    return names


def is_support_intent(message: str) -> bool:
    return detect_intent(message).is_support
