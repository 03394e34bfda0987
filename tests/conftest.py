"""
Shared Test Fixtures
====================

Purpose
-------
Provide a small, fixed product catalog, temp-dir JSON stores and a stub
generator so every test runs offline and deterministically.

Scope
-----
- No network access: the Gemini client is never constructed in tests.
- Stores write into pytest's tmp_path; the packaged data files are read-only.
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Standard libraries
import json                        # Writing temp pattern/prompt files
from typing import Dict, List      # Stub generator call log typing

# Third-party libraries
import pytest                      # Fixtures

# Local modules
from mia_assistant.catalog import CatalogStore, Product
from mia_assistant.clinics import Clinic, ClinicStore
from mia_assistant.conversation_store import ConversationStore
from mia_assistant.generator import GenerationResult
from mia_assistant.pipeline import ChatPipeline
from mia_assistant.red_flags import PatternStore, RedFlagDetector


# ----------------------------
# Stub Generator
# ----------------------------

class StubGenerator:
    """
    Stand-in for GeminiClient with the same complete() signature.

    Returns a canned reply (or raises `error`) and records every call so tests
    can assert on the system message and history the pipeline sent.
    """

    def __init__(self, text: str = "", tokens_used: int = 42, error: Exception = None) -> None:
        self.text = text
        self.tokens_used = tokens_used
        self.error = error
        self.calls: List[Dict[str, object]] = []

    def complete(self, system_prompt, history, max_tokens, temperature, model=None):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "history": list(history),
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.text, tokens_used=self.tokens_used, processing_time_ms=120)


# ----------------------------
# Catalog Fixtures
# ----------------------------

def make_product(product_id, name, **fields) -> Product:
    """Build a Product with a deterministic URL derived from its id."""
    fields.setdefault("product_url", f"https://shop.example/p/{product_id}")
    return Product(id=product_id, name=name, **fields)


@pytest.fixture
def products() -> List[Product]:
    """A catalog slice covering food, joints, renal/diabetic diets and parasites."""
    return [
        make_product(
            1,
            "Advance Mini Adult Chicken & Rice",
            brand="Advance",
            category="ALIMENTACION",
            subcategory="PIENSO SECO",
            species="perro",
            description="Pienso para perros adultos de razas pequeñas con pollo y arroz.",
            price=24.95,
        ),
        make_product(
            2,
            "Condrovet Force HA",
            brand="Ecuphar",
            category="SALUD",
            subcategory="CONDROPROTECTOR/ARTICULAR",
            species="perro, gato",
            description="Condroprotector con glucosamina y condroitina.",
            price=29.9,
        ),
        make_product(
            3,
            "Aaa Multivitamin Pasta",
            category="SALUD",
            subcategory="VITAMINAS",
            species="perro, gato",
            description="Pasta multivitamínica.",
            price=12.4,
        ),
        make_product(
            4,
            "Royal Canin Renal Canine",
            brand="Royal Canin",
            category="DIETA VETERINARIA",
            subcategory="RENAL",
            species="perro",
            description="Dieta para insuficiencia renal.",
            price=54.99,
        ),
        make_product(
            5,
            "Royal Canin Diabetic Feline",
            brand="Royal Canin",
            category="DIETA VETERINARIA",
            subcategory="DIABETES",
            species="gato",
            description="Dieta para gatos con diabetes.",
            price=38.5,
        ),
        make_product(
            6,
            "Frontline Tri-Act Pipetas Perro 10-20 kg",
            brand="Frontline",
            category="ANTIPARASITARIOS",
            subcategory="PIPETAS",
            species="perro",
            description="Pipetas contra pulgas y garrapatas.",
            price=32.9,
        ),
        make_product(
            7,
            "Discontinued Joint Diet",
            category="SALUD",
            subcategory="CONDROPROTECTOR/ARTICULAR",
            species="perro",
            is_active=False,
        ),
    ]


@pytest.fixture
def catalog(products) -> CatalogStore:
    return CatalogStore(products=products)


# ----------------------------
# Store Fixtures
# ----------------------------

@pytest.fixture
def pattern_file(tmp_path):
    """A pattern file with one keyword and one combined rule."""
    path = tmp_path / "patterns.json"
    path.write_text(
        json.dumps(
            [
                {"id": 1, "pattern_type": "keyword", "keywords": ["no respira"], "severity": "emergency", "category": "respiracion"},
                {"id": 2, "pattern_type": "keyword", "keywords": ["cojea"], "severity": "caution", "category": "trauma"},
                {"id": 3, "pattern_type": "combined", "keywords": ["vomita", "sangre"], "severity": "emergency", "category": "combinado"},
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def detector(pattern_file) -> RedFlagDetector:
    return RedFlagDetector(PatternStore(pattern_file))


@pytest.fixture
def conversations(tmp_path) -> ConversationStore:
    return ConversationStore(tmp_path / "conversations.json")


@pytest.fixture
def clinic_store() -> ClinicStore:
    return ClinicStore(
        clinics=[
            Clinic(id=1, name="Clínica Retiro", city="Madrid", postal_code="28009"),
            Clinic(id=2, name="Hospital 24h Madrid", city="Madrid", postal_code="28009", is_emergency=True),
        ]
    )


@pytest.fixture
def make_generator():
    """The StubGenerator class, for tests that need a custom reply or error."""
    return StubGenerator


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator(
        text=(
            "Te recomiendo estas opciones:\n\n"
            "1. [Condrovet Force HA](https://fake.example/condro) - Condroprotector con glucosamina."
        )
    )


@pytest.fixture
def make_pipeline(catalog, detector, conversations, clinic_store):
    """Factory so each test can choose its own generator."""

    def build(generator: StubGenerator) -> ChatPipeline:
        return ChatPipeline(
            catalog=catalog,
            detector=detector,
            generator=generator,
            conversations=conversations,
            clinics=clinic_store,
        )

    return build
