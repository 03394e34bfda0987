"""
Partner Clinic Tests
====================

Purpose
-------
Cover postal-code detection and clinic lookup ordering.

Scope
-----
- extract_postal_code province-prefix rules.
- ClinicStore exact-code lookup, emergency-first ordering, inactive filtering.
- Chat/card formatting.
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Third-party libraries
import pytest                      # Parametrized cases

# Local modules
from mia_assistant.clinics import (
    Clinic,
    ClinicStore,
    extract_postal_code,
    format_clinic_card,
    format_clinics_for_chat,
)
from mia_assistant.config import DEFAULT_DATA_DIR


# ----------------------------
# Postal codes
# ----------------------------

@pytest.mark.parametrize(
    "message, expected",
    [
        ("28001", "28001"),
        ("Vivo en el 08012, Barcelona", "08012"),
        ("99999", None),
        ("00123", None),
        ("280011", None),
        ("Pesa 12 kg", None),
        ("", None),
    ],
)
def test_extract_postal_code(message, expected):
    assert extract_postal_code(message) == expected


# ----------------------------
# Lookup
# ----------------------------

def test_emergency_clinics_come_first(clinic_store):
    lookup = clinic_store.find_by_postal_code("28009")

    assert lookup.is_exact_match
    assert [clinic.name for clinic in lookup.clinics] == ["Hospital 24h Madrid", "Clínica Retiro"]


def test_unknown_code_is_not_an_exact_match(clinic_store):
    lookup = clinic_store.find_by_postal_code("28001")

    assert not lookup.is_exact_match
    assert lookup.clinics == []


def test_inactive_clinics_are_excluded():
    store = ClinicStore(clinics=[Clinic(id=1, name="Cerrada", postal_code="41010", is_active=False)])

    assert not store.find_by_postal_code("41010").is_exact_match
    assert store.count_active() == 0


def test_packaged_clinics_load():
    store = ClinicStore(path=DEFAULT_DATA_DIR / "clinics.json")

    assert store.count_active() == 3
    assert store.find_by_postal_code("28 009").clinics[0].is_emergency
    assert not store.find_by_postal_code("28001").clinics


# ----------------------------
# Formatting
# ----------------------------

def test_chat_listing_marks_emergency_clinics(clinic_store):
    text = format_clinics_for_chat(clinic_store.find_by_postal_code("28009").clinics)

    assert "1. **Hospital 24h Madrid** 🚨 (Urgencias)" in text
    assert "2. **Clínica Retiro**" in text


def test_clinic_card_fields():
    card = format_clinic_card(Clinic(id=7, name="Gràcia", postal_code="08012", phone="931234567"))

    assert card["name"] == "Gràcia"
    assert card["phone"] == "931234567"
    assert card["is_emergency"] is False
