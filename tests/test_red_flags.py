"""
Red-Flag Detection Tests
========================

Purpose
-------
Validate emergency detection: keyword and combined rules, severity selection,
the built-in fallback set and cache invalidation on pattern writes.

Scope
-----
- Detector over a temp pattern file (conftest `detector`).
- Detector without a store, with a corrupt file and with an empty file.
- PatternStore writes notifying the detector.
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Standard libraries
import json                        # Writing temp pattern files

# Third-party libraries
import pytest                      # Parametrized cases

# Local modules
from mia_assistant.red_flags import (
    FALLBACK_PATTERNS,
    PatternStore,
    RedFlagDetector,
    RedFlagPattern,
    severity_level,
)


# ----------------------------
# Keyword and combined rules
# ----------------------------

def test_keyword_pattern_detects_emergency(detector):
    """A keyword hit is reported with its severity and category."""
    result = detector.detect("Mi perro no respira!!")

    assert result.is_red_flag
    assert result.severity == "emergency"
    assert result.category == "respiracion"
    assert result.detected_patterns == ["no respira"]


def test_combined_pattern_needs_all_keywords(detector):
    """Both combo keywords fire the combo; dropping one does not."""
    both = detector.detect("Mi gato vomita y tiene sangre en las heces")
    assert "[combo: vomita + sangre]" in both.detected_patterns
    assert both.severity == "emergency"

    one = detector.detect("Mi gato vomita desde ayer")
    assert not one.is_red_flag
    assert "[combo: vomita + sangre]" not in one.detected_patterns


def test_highest_severity_wins(detector):
    """A caution keyword plus an emergency keyword reports emergency."""
    result = detector.detect("Cojea desde ayer y ahora no respira bien")

    assert result.severity == "emergency"
    assert result.category == "respiracion"
    assert result.detected_patterns == ["no respira", "cojea"]


def test_harmless_message_is_not_a_red_flag(detector):
    """Ordinary product questions pass through."""
    result = detector.detect("¿Tienes pienso para gato esterilizado?")

    assert not result.is_red_flag
    assert result.severity is None
    assert result.detected_patterns == []


def test_empty_message_is_not_a_red_flag(detector):
    assert not detector.detect("").is_red_flag


def test_severity_levels_are_ordered():
    assert severity_level("emergency") > severity_level("urgent") > severity_level("caution")
    assert severity_level("unknown") == 0


# ----------------------------
# Fallback behavior
# ----------------------------

def test_detector_without_store_uses_fallback():
    """No store configured: the fixed fallback set still detects emergencies."""
    detector = RedFlagDetector(None)

    assert detector.load_patterns() == list(FALLBACK_PATTERNS)
    assert detector.detect("Creo que se ha comido un raticida").is_red_flag


@pytest.mark.parametrize("payload", ["{not json", "[]", json.dumps({"patterns": []})])
def test_unreadable_or_empty_store_uses_fallback(tmp_path, payload):
    """Corrupt or empty pattern files never switch detection off."""
    path = tmp_path / "patterns.json"
    path.write_text(payload, encoding="utf-8")
    detector = RedFlagDetector(PatternStore(path))

    result = detector.detect("Mi perro ha tenido convulsiones")
    assert result.is_red_flag
    assert result.category == "consciencia"


def test_missing_file_uses_fallback(tmp_path):
    detector = RedFlagDetector(PatternStore(tmp_path / "missing.json"))

    assert detector.detect("no respira").is_red_flag


def test_inactive_patterns_are_ignored(tmp_path):
    """Only active patterns take part in detection."""
    path = tmp_path / "patterns.json"
    path.write_text(
        json.dumps(
            [
                {"pattern_type": "keyword", "keywords": ["golpe de calor"], "severity": "emergency", "category": "calor", "is_active": False},
                {"pattern_type": "keyword", "keywords": ["chocolate"], "severity": "urgent", "category": "envenenamiento"},
            ]
        ),
        encoding="utf-8",
    )
    detector = RedFlagDetector(PatternStore(path))

    assert not detector.detect("Creo que tiene un golpe de calor").is_red_flag
    assert detector.detect("Se ha comido chocolate").severity == "urgent"


# ----------------------------
# Store writes and cache invalidation
# ----------------------------

def test_save_pattern_invalidates_detector_cache(pattern_file):
    """A new pattern applies to the very next message, without waiting for the TTL."""
    store = PatternStore(pattern_file)
    detector = RedFlagDetector(store, ttl_seconds=3600)
    assert not detector.detect("Ha comido uvas").is_red_flag

    saved = store.save_pattern(
        RedFlagPattern(pattern_type="keyword", keywords=["uvas"], severity="urgent", category="envenenamiento")
    )

    assert saved.id == 4
    result = detector.detect("Ha comido uvas")
    assert result.is_red_flag
    assert result.severity == "urgent"


def test_set_pattern_active_toggles_detection(pattern_file):
    """Deactivating a pattern removes it immediately; unknown ids report False."""
    store = PatternStore(pattern_file)
    detector = RedFlagDetector(store, ttl_seconds=3600)
    assert detector.detect("cojea").is_red_flag

    assert store.set_pattern_active(2, False)
    assert not detector.detect("cojea").is_red_flag
    assert not store.set_pattern_active(999, True)


def test_pattern_from_dict_accepts_single_keyword_string():
    pattern = RedFlagPattern.from_dict({"keywords": "no respira", "severity": "emergency"})

    assert pattern.keywords == ["no respira"]
    assert pattern.pattern_type == "keyword"
    assert pattern.is_active
