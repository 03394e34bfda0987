from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .utils import contains_any_keyword, normalize_text

logger = logging.getLogger("mia.medical_gate")

RESPONSE_MEDICAL_LIMIT = "medical_limit"
RESPONSE_RX_LIMIT = "rx_limit"

# Diagnosis, dosage or treatment-substitution requests.
MEDICAL_REQUEST_PATTERNS = [
    "que dosis",
    "cuanta dosis",
    "dosis recomendada",
    "cuanta cantidad",
    "que medicamento le doy",
    "que medicamento darle",
    "diagnostico",
    "diagnosticar",
    "que enfermedad tiene",
    "que le pasa",
    "que tiene mi",
    "esta enfermo",
    "recetame",
    "prescribeme",
    "necesito receta",
    "sustituir medicamento",
    "cambiar medicamento",
    "interpretar analisis",
    "interpretar resultados",
]

RX_PATTERNS = [
    "receta",
    "prescripcion",
    "medicamento con receta",
    "necesita receta",
    "requiere receta",
    "antibiotico",
    "corticoide",
    "antiinflamatorio con receta",
]

# Educational phrasing that suppresses the medical-request limit.
EDUCATIONAL_MARKERS = [
    "composicion",
    "caracteristicas",
    "debe tener",
    "deberia tener",
    "informacion general",
]


@dataclass
class GateKeywords:
    """Keyword configuration for the medical / prescription gate."""
    medical_request: List[str] = field(default_factory=lambda: list(MEDICAL_REQUEST_PATTERNS))
    prescription: List[str] = field(default_factory=lambda: list(RX_PATTERNS))
    educational_markers: List[str] = field(default_factory=lambda: list(EDUCATIONAL_MARKERS))


class MedicalGate:
    """Classify a message as medical_limit, rx_limit or neither."""

    def __init__(self, keywords: Optional[GateKeywords] = None) -> None:
        self._keywords = keywords or GateKeywords()

    @property
    def keywords(self) -> GateKeywords:
        return self._keywords

    def is_educational(self, normalized: str) -> bool:
        return contains_any_keyword(normalized, self._keywords.educational_markers)

    def check(self, message: str) -> Optional[str]:
        """Purpose: Decide whether a message must get a limit template.
        Inputs/Outputs: Input is the raw message; output is "medical_limit",
            "rx_limit" or None.
        Side Effects / State: Logs the decision at INFO when a limit applies.
        Dependencies: normalize_text and contains_any_keyword.
        Failure Modes: None; keyword lists are plain configuration.
        If Removed: Dosage and prescription questions reach the generator.
        Testing Notes: "que composicion debe tener..." is never medical_limit;
            the medical check runs before the prescription check.
        """
        # Educational phrasing only suppresses the medical list, not the rx list.
        normalized = normalize_text(message)
        if not normalized:
            return None
        if not self.is_educational(normalized) and contains_any_keyword(
            normalized, self._keywords.medical_request
        ):
            logger.info("medical gate route=%s", RESPONSE_MEDICAL_LIMIT)
            return RESPONSE_MEDICAL_LIMIT
        if contains_any_keyword(normalized, self._keywords.prescription):
            logger.info("medical gate route=%s", RESPONSE_RX_LIMIT)
            return RESPONSE_RX_LIMIT
        return None
