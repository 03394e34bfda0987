from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("mia.clinics")

POSTAL_CODE_RE = re.compile(r"\b(\d{5})\b")
MIN_PROVINCE_PREFIX = 1
MAX_PROVINCE_PREFIX = 52


@dataclass
class Clinic:
    """Partner veterinary clinic."""
    id: Any
    name: str
    address: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    is_emergency: bool = False
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Clinic":
        return cls(
            id=data.get("id"),
            name=str(data.get("name") or ""),
            address=str(data.get("address") or ""),
            city=str(data.get("city") or ""),
            province=str(data.get("province") or ""),
            postal_code=str(data.get("postal_code") or "").strip(),
            phone=str(data.get("phone") or ""),
            email=str(data.get("email") or ""),
            website=str(data.get("website") or ""),
            is_emergency=bool(data.get("is_emergency", False)),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class ClinicLookup:
    """Result of a postal-code lookup."""
    clinics: List[Clinic] = field(default_factory=list)
    is_exact_match: bool = False


def extract_postal_code(message: str) -> Optional[str]:
    """Purpose: Detect a Spanish postal code in a message.
    Inputs/Outputs: Input is the raw message; output is the 5-digit code or None.
    Side Effects / State: None.
    Dependencies: POSTAL_CODE_RE.
    Failure Modes: Only the first 5-digit token is considered; an invalid
        province prefix (00, 53-99) returns None.
    If Removed: Users answering the emergency copy with a postal code get a
        generated reply instead of clinics.
    Testing Notes: "28001" -> "28001"; "99999" -> None; "280011" -> None.
    """
    # Province prefixes run 01-52.
    match = POSTAL_CODE_RE.search(message or "")
    if not match:
        return None
    code = match.group(1)
    prefix = int(code[:2])
    if MIN_PROVINCE_PREFIX <= prefix <= MAX_PROVINCE_PREFIX:
        return code
    return None


class ClinicStore:
    """JSON-backed partner clinic directory."""

    def __init__(self, path: Optional[Path] = None, clinics: Optional[List[Clinic]] = None) -> None:
        self._path = path
        self._clinics = list(clinics or [])
        if path is not None:
            self.reload()

    def reload(self) -> None:
        if self._path is None or not self._path.exists():
            return
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("clinics", [])
        self._clinics = [Clinic.from_dict(item) for item in raw if isinstance(item, dict)]
        logger.info("clinics loaded path=%s count=%s", self._path, len(self._clinics))

    def count_active(self) -> int:
        return len([clinic for clinic in self._clinics if clinic.is_active])

    def find_by_postal_code(self, postal_code: str) -> ClinicLookup:
        """Purpose: Look up active clinics registered under an exact postal code.
        Inputs/Outputs: Input is a postal code; output is a ClinicLookup, with
            emergency clinics first and then by name.
        Side Effects / State: Logs the match count.
        Dependencies: In-memory clinic list.
        Failure Modes: No match returns an empty, non-exact lookup.
        If Removed: Clinic recommendations are never shown.
        Testing Notes: Whitespace inside the code is ignored.
        """
        # Exact code only; the caller shows the "no evaluated clinic" copy otherwise.
        clean = re.sub(r"\s", "", postal_code or "")[:5]
        matches = [clinic for clinic in self._clinics if clinic.is_active and clinic.postal_code == clean]
        matches.sort(key=lambda clinic: (not clinic.is_emergency, clinic.name.lower()))
        logger.info("clinic lookup postal_code=%s count=%s", clean, len(matches))
        return ClinicLookup(clinics=matches, is_exact_match=bool(matches))


def format_clinics_for_chat(clinics: List[Clinic]) -> str:
    """Render clinics as the chat message listing shown to the user."""
    lines = ["🏥 **Clínicas veterinarias colaboradoras en tu zona:**", ""]
    for index, clinic in enumerate(clinics, start=1):
        title = f"{index}. **{clinic.name}**"
        if clinic.is_emergency:
            title += " 🚨 (Urgencias)"
        lines.append(title)
        location = f"   📍 {clinic.address}" if clinic.address else "  "
        if clinic.city:
            location += f", {clinic.city}"
        if clinic.province:
            location += f" ({clinic.province})"
        lines.append(location)
        if clinic.phone:
            lines.append(f"   📞 {clinic.phone}")
        if clinic.email:
            lines.append(f"   ✉️ {clinic.email}")
        if clinic.website:
            lines.append(f"   🌐 {clinic.website}")
        lines.append("")
    return "\n".join(lines).strip()


def format_clinic_card(clinic: Clinic) -> Dict[str, Any]:
    return {
        "id": clinic.id,
        "name": clinic.name,
        "address": clinic.address,
        "city": clinic.city,
        "province": clinic.province,
        "postal_code": clinic.postal_code,
        "phone": clinic.phone,
        "email": clinic.email,
        "website": clinic.website,
        "is_emergency": clinic.is_emergency,
    }
