"""Red-flag (veterinary emergency) detection over a cached, mutable pattern set.

Patterns live in a JSON file managed by admin tooling. The detector reads them
through a CachedStore (5 minute TTL) and falls back to FALLBACK_PATTERNS when the
store cannot be read, so emergency detection is never switched off.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .cache import CachedStore
from .utils import contains_all_keywords, contains_keyword, normalize_text

logger = logging.getLogger("mia.red_flags")

PATTERN_CACHE_TTL_SEC = 5 * 60

PATTERN_KEYWORD = "keyword"
PATTERN_COMBINED = "combined"

SEVERITY_LEVELS: Dict[str, int] = {
    "emergency": 3,
    "urgent": 2,
    "caution": 1,
}


def severity_level(severity: Optional[str]) -> int:
    """Map a severity label to its rank; unknown labels rank 0."""
    return SEVERITY_LEVELS.get(severity or "", 0)


@dataclass
class RedFlagPattern:
    """One keyword or combined (all-of) emergency rule."""
    pattern_type: str
    keywords: List[str]
    severity: str
    category: str
    is_active: bool = True
    id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "RedFlagPattern":
        keywords = data.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [keywords]
        return cls(
            id=data.get("id"),  # type: ignore[arg-type]
            pattern_type=str(data.get("pattern_type") or PATTERN_KEYWORD),
            keywords=[str(keyword) for keyword in keywords if str(keyword).strip()],
            severity=str(data.get("severity") or "emergency"),
            category=str(data.get("category") or ""),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class RedFlagResult:
    """Detection outcome for one message."""
    is_red_flag: bool = False
    severity: Optional[str] = None
    detected_patterns: List[str] = field(default_factory=list)
    category: Optional[str] = None


def _kw(keywords: List[str], category: str, severity: str = "emergency") -> RedFlagPattern:
    return RedFlagPattern(pattern_type=PATTERN_KEYWORD, keywords=keywords, severity=severity, category=category)


def _combo(keywords: List[str], category: str = "combinado", severity: str = "emergency") -> RedFlagPattern:
    return RedFlagPattern(pattern_type=PATTERN_COMBINED, keywords=keywords, severity=severity, category=category)


FALLBACK_PATTERNS: Tuple[RedFlagPattern, ...] = (
    _kw(["no respira"], "respiracion"),
    _kw(["dificultad para respirar"], "respiracion"),
    _kw(["se ahoga"], "respiracion"),
    _kw(["inconsciente"], "consciencia"),
    _kw(["convulsion"], "consciencia"),
    _kw(["convulsiones"], "consciencia"),
    _kw(["hemorragia"], "sangrado"),
    _kw(["vomita sangre"], "sangrado"),
    _kw(["veneno"], "envenenamiento"),
    _kw(["envenenado"], "envenenamiento"),
    _kw(["intoxicacion"], "envenenamiento"),
    _kw(["raticida"], "envenenamiento"),
    _kw(["paracetamol"], "envenenamiento"),
    _kw(["atropellado"], "trauma"),
    _kw(["fractura"], "trauma"),
    _kw(["no puede orinar"], "abdomen"),
    _kw(["bloqueo urinario"], "abdomen"),
    _combo(["vomita", "sangre"]),
    _combo(["no come", "no bebe", "aletargado"]),
    _combo(["diarrea", "letargo"]),
    _combo(["vomita", "sin parar"]),
)


class PatternStore:
    """JSON-file store for red-flag patterns with write notifications."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []

    def add_write_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback fired after every pattern write (cache invalidation)."""
        self._listeners.append(listener)

    def list_all_patterns(self) -> List[RedFlagPattern]:
        """Purpose: Read every stored pattern, active or not.
        Inputs/Outputs: No inputs; returns RedFlagPattern list.
        Side Effects / State: Reads the JSON file.
        Dependencies: json and RedFlagPattern.from_dict.
        Failure Modes: Missing file, bad JSON or a non-list payload raise; the
            detector converts these into the fallback set.
        If Removed: Admin-managed patterns are never used.
        Testing Notes: Write a temp file and verify parsing of both pattern types.
        """
        # Parse the file strictly so corruption is visible to the caller.
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("patterns", [])
        if not isinstance(raw, list):
            raise ValueError(f"Invalid pattern file format: {self._path}")
        return [RedFlagPattern.from_dict(item) for item in raw if isinstance(item, dict)]

    def list_active_red_flag_patterns(self) -> List[RedFlagPattern]:
        return [pattern for pattern in self.list_all_patterns() if pattern.is_active]

    def save_pattern(self, pattern: RedFlagPattern) -> RedFlagPattern:
        """Purpose: Insert or replace a pattern (keyed by id) and notify listeners.
        Inputs/Outputs: Input is a RedFlagPattern; returns it with an id assigned.
        Side Effects / State: Rewrites the JSON file; fires write listeners.
        Dependencies: list_all_patterns and _write.
        Failure Modes: IO errors propagate to the admin caller.
        If Removed: Pattern edits only take effect after the cache TTL.
        Testing Notes: Saving a pattern invalidates a wired detector cache.
        """
        # Assign the next id for new patterns, replace in place otherwise.
        with self._lock:
            patterns = self.list_all_patterns() if self._path.exists() else []
            if pattern.id is None:
                pattern.id = max((p.id or 0 for p in patterns), default=0) + 1
                patterns.append(pattern)
            else:
                patterns = [pattern if p.id == pattern.id else p for p in patterns]
                if not any(p is pattern for p in patterns):
                    patterns.append(pattern)
            self._write(patterns)
        self._notify()
        return pattern

    def set_pattern_active(self, pattern_id: int, is_active: bool) -> bool:
        """Toggle a pattern's active flag; returns False when the id is unknown."""
        with self._lock:
            patterns = self.list_all_patterns()
            found = False
            for pattern in patterns:
                if pattern.id == pattern_id:
                    pattern.is_active = is_active
                    found = True
            if not found:
                return False
            self._write(patterns)
        self._notify()
        return True

    def _write(self, patterns: List[RedFlagPattern]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [asdict(pattern) for pattern in patterns]
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def _notify(self) -> None:
        for listener in self._listeners:
            listener()


class RedFlagDetector:
    """Scan messages for emergency keywords and combined symptom clusters."""

    def __init__(self, store: Optional[PatternStore], ttl_seconds: float = PATTERN_CACHE_TTL_SEC) -> None:
        """Purpose: Wire the detector to a pattern store through a TTL cache.
        Inputs/Outputs: Inputs are an optional PatternStore and cache TTL; no return.
        Side Effects / State: Registers invalidate() as a store write listener.
        Dependencies: CachedStore, PatternStore.
        Failure Modes: A None store means the fallback set is always used.
        If Removed: The pipeline has no emergency short-circuit.
        Testing Notes: Pass a store whose file is missing to exercise the fallback.
        """
        # The cache owns refresh timing; store writes clear it immediately.
        self._store = store
        self._cache: Optional[CachedStore[List[RedFlagPattern]]] = None
        if store is not None:
            self._cache = CachedStore(store.list_active_red_flag_patterns, ttl_seconds)
            store.add_write_listener(self.invalidate)

    def invalidate(self) -> None:
        """Clear cached patterns regardless of TTL (called after admin writes)."""
        if self._cache is not None:
            self._cache.invalidate()

    def load_patterns(self) -> List[RedFlagPattern]:
        """Purpose: Return the active pattern set, degrading to the built-in fallback.
        Inputs/Outputs: No inputs; returns a non-empty pattern list.
        Side Effects / State: May refresh the cache; logs warnings when degraded.
        Dependencies: CachedStore.get and FALLBACK_PATTERNS.
        Failure Modes: Never raises; store errors and empty stores use the fallback.
        If Removed: detect() cannot resolve which rules to apply.
        Testing Notes: Corrupt JSON yields the fallback list.
        """
        # Any store problem falls back to the fixed set; the failure is not cached.
        if self._cache is None:
            return list(FALLBACK_PATTERNS)
        try:
            patterns = self._cache.get()
        except Exception as exc:
            logger.warning("red flag patterns unavailable, using fallback error=%s", exc)
            return list(FALLBACK_PATTERNS)
        if not patterns:
            logger.warning("red flag store returned no active patterns, using fallback")
            return list(FALLBACK_PATTERNS)
        return patterns

    def detect(self, message: str) -> RedFlagResult:
        """Purpose: Detect emergency patterns in a user message.
        Inputs/Outputs: Input is the raw message; output is a RedFlagResult.
        Side Effects / State: Logs detected red flags at INFO.
        Dependencies: normalize_text, contains_keyword, contains_all_keywords.
        Failure Modes: None; pattern loading never raises.
        If Removed: Emergencies would be answered by the generator.
        Testing Notes: Severity is the max found; category belongs to the first
            pattern reaching that max.
        """
        # Keyword patterns report every hit; combined patterns need all keywords.
        normalized = normalize_text(message)
        result = RedFlagResult()
        if not normalized:
            return result

        patterns = self.load_patterns()
        for pattern in patterns:
            if pattern.pattern_type != PATTERN_KEYWORD:
                continue
            for keyword in pattern.keywords:
                if contains_keyword(normalized, keyword):
                    result.detected_patterns.append(keyword)
                    _promote(result, pattern)

        for pattern in patterns:
            if pattern.pattern_type != PATTERN_COMBINED:
                continue
            if contains_all_keywords(normalized, pattern.keywords):
                result.detected_patterns.append(f"[combo: {' + '.join(pattern.keywords)}]")
                _promote(result, pattern)

        result.is_red_flag = bool(result.detected_patterns)
        if result.is_red_flag:
            logger.info(
                "red flag detected severity=%s category=%s patterns=%s message=%s",
                result.severity,
                result.category,
                result.detected_patterns,
                message[:100],
            )
        return result


def _promote(result: RedFlagResult, pattern: RedFlagPattern) -> None:
    # Strictly higher severity replaces the current best; ties keep the first.
    if result.severity is None or severity_level(pattern.severity) > severity_level(result.severity):
        result.severity = pattern.severity
        result.category = pattern.category
