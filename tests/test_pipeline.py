"""
Chat Pipeline Tests
===================

Purpose
-------
End-to-end behavior of ChatPipeline.process_message with a stub generator:
safety short-circuits, clinic lookups, grounded generation, validation,
product cards, degraded generator paths and persistence.

Scope
-----
- Decision precedence: postal code, red flag, medical gate, generation.
- Generator inputs (system message sections, history).
- Stored turns and their metadata.
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Third-party libraries
import pytest                      # Exception assertions

# Local modules
from mia_assistant.config import DEFAULT_DATA_DIR
from mia_assistant.context_builder import SECTION_DOCUMENTS, SECTION_PRODUCT_PAGE, STRICT_HEADER
from mia_assistant.documents import DocumentStore
from mia_assistant.generator import GenerationError, RateLimitError
from mia_assistant.pipeline import ChatPipeline
from mia_assistant.prompt_loader import DEFAULT_SYSTEM_PROMPT
from mia_assistant.step_runner import StepRunner
from mia_assistant.templates import POSTAL_CODE_INVITE, get_template


# ----------------------------
# Safety short-circuits
# ----------------------------

def test_emergency_message_gets_warning_without_generation(make_pipeline, make_generator, conversations):
    """"Mi perro no respira" is answered with the emergency template only."""
    generator = make_generator(text="no debería usarse")
    pipeline = make_pipeline(generator)

    response = pipeline.process_message("sess-1", "Mi perro no respira")

    assert response.response_type == "emergency_warning"
    assert response.message == get_template("emergency_warning")
    assert POSTAL_CODE_INVITE in response.message
    assert response.severity == "emergency"
    assert response.awaiting_postal_code
    assert response.products == []
    assert generator.calls == []

    record = conversations.get_conversation(response.conversation_id)
    assert record.has_emergency
    assert record.messages[1].red_flags_detected == ["no respira"]
    assert record.messages[1].response_type == "emergency_warning"


def test_dosage_question_gets_medical_limit(make_pipeline, make_generator):
    generator = make_generator()
    pipeline = make_pipeline(generator)

    response = pipeline.process_message("sess-1", "¿Qué dosis de meloxicam le doy a mi perro?")

    assert response.response_type == "medical_limit"
    assert response.message == get_template("medical_limit")
    assert response.awaiting_postal_code
    assert generator.calls == []


def test_prescription_question_gets_rx_limit(make_pipeline, make_generator):
    response = make_pipeline(make_generator()).process_message("sess-1", "¿El Apoquel necesita receta?")

    assert response.response_type == "rx_limit"


def test_red_flag_wins_over_medical_keywords(make_pipeline, make_generator):
    """An emergency asking for a dose is still an emergency."""
    response = make_pipeline(make_generator()).process_message(
        "sess-1", "Mi perro no respira, ¿qué dosis le doy?"
    )

    assert response.response_type == "emergency_warning"


def test_educational_question_reaches_the_generator(make_pipeline, make_generator):
    """Asking what a renal diet should contain is answered normally."""
    generator = make_generator(text="Una dieta renal debe ser baja en fósforo.")
    pipeline = make_pipeline(generator)

    response = pipeline.process_message(
        "sess-1", "¿Qué composición debe tener un pienso para perro con problemas renales?"
    )

    assert response.response_type == "normal"
    assert response.response_type != "medical_limit"
    assert len(generator.calls) == 1


# ----------------------------
# Clinics
# ----------------------------

def test_postal_code_without_clinics_gets_no_clinic_copy(make_pipeline, make_generator):
    response = make_pipeline(make_generator()).process_message("sess-1", "28001")

    assert response.response_type == "clinic_recommendation"
    assert response.message == get_template("no_clinic")
    assert response.clinics == []


def test_postal_code_with_clinics_lists_them(make_pipeline, make_generator):
    generator = make_generator()
    response = make_pipeline(generator).process_message("sess-1", "Mi código postal es 28009")

    assert response.response_type == "clinic_recommendation"
    assert [clinic.name for clinic in response.clinics] == ["Hospital 24h Madrid", "Clínica Retiro"]
    assert response.clinics[0].is_emergency
    assert "Clínica Retiro" in response.message
    assert generator.calls == []


def test_emergency_then_postal_code_flow(make_pipeline, make_generator):
    """The postal code sent after an emergency warning returns clinics."""
    pipeline = make_pipeline(make_generator())

    first = pipeline.process_message("sess-1", "Mi gato no respira")
    second = pipeline.process_message("sess-1", "28009", conversation_id=first.conversation_id)

    assert second.conversation_id == first.conversation_id
    assert second.response_type == "clinic_recommendation"
    assert len(second.clinics) == 2


# ----------------------------
# Grounded generation
# ----------------------------

def test_normal_flow_grounds_validates_and_builds_cards(make_pipeline, generator):
    pipeline = make_pipeline(generator)

    response = pipeline.process_message("sess-1", "Busco un condroprotector para mi perro")

    assert response.response_type == "normal"
    assert [card.name for card in response.products] == ["Condrovet Force HA"]
    assert "[Condrovet Force HA](https://shop.example/p/2)" in response.message
    assert response.tokens_used == 42
    assert response.severity is None
    assert not response.awaiting_postal_code

    call = generator.calls[0]
    assert call["system_prompt"].startswith(DEFAULT_SYSTEM_PROMPT)
    assert STRICT_HEADER in call["system_prompt"]
    assert 'NOMBRE EXACTO: "Condrovet Force HA"' in call["system_prompt"]
    assert call["history"] == [{"role": "user", "content": "Busco un condroprotector para mi perro"}]
    assert call["max_tokens"] == 800
    assert call["temperature"] == 0.4


def test_clarifying_question_shows_retrieved_options(make_pipeline, make_generator):
    generator = make_generator(text="¿Qué edad tiene tu perro y qué tamaño?")

    response = make_pipeline(generator).process_message("sess-1", "Busco un condroprotector para mi perro")

    assert response.response_type == "normal"
    assert [card.name for card in response.products] == ["Condrovet Force HA", "Aaa Multivitamin Pasta"]


def test_product_page_and_documents_reach_the_system_message(catalog, detector, conversations, make_generator):
    generator = make_generator(text="La glucosamina ayuda al cartílago.")
    pipeline = ChatPipeline(
        catalog=catalog,
        detector=detector,
        generator=generator,
        conversations=conversations,
        documents=DocumentStore(DEFAULT_DATA_DIR / "vademecums"),
    )

    pipeline.process_message(
        "sess-1",
        "¿Qué es la glucosamina?",
        product_context={"name": "Condrovet Force HA", "price": 29.9},
    )

    system_prompt = generator.calls[0]["system_prompt"]
    assert SECTION_PRODUCT_PAGE in system_prompt
    assert "Producto: Condrovet Force HA." in system_prompt
    assert SECTION_DOCUMENTS in system_prompt
    assert "[Guía de condroprotectores]:" in system_prompt


def test_retrieval_failure_still_answers(catalog, detector, conversations, make_generator):
    class BrokenRetriever:
        def search_products_with_intent(self, *args, **kwargs):
            raise RuntimeError("catalog offline")

    generator = make_generator(text="Te ayudo con gusto.")
    pipeline = ChatPipeline(
        catalog=catalog,
        detector=detector,
        generator=generator,
        conversations=conversations,
        retriever=BrokenRetriever(),
    )

    response = pipeline.process_message("sess-1", "Busco un condroprotector")

    assert response.response_type == "normal"
    assert response.products == []
    assert "NOMBRE EXACTO" not in generator.calls[0]["system_prompt"]


# ----------------------------
# Degraded generator
# ----------------------------

def test_rate_limit_returns_template_with_zero_usage(make_pipeline, make_generator, conversations):
    pipeline = make_pipeline(make_generator(error=RateLimitError("429")))

    response = pipeline.process_message("sess-1", "Busco un condroprotector para mi perro")

    assert response.response_type == "rate_limit"
    assert response.message == get_template("rate_limit")
    assert response.tokens_used == 0
    assert response.processing_time_ms == 0
    assert response.products == []
    stored = conversations.get_conversation(response.conversation_id).messages[-1]
    assert stored.tokens_used == 0
    assert stored.response_type == "rate_limit"


def test_generator_error_returns_apology(make_pipeline, make_generator):
    pipeline = make_pipeline(make_generator(error=GenerationError("boom")))

    response = pipeline.process_message("sess-1", "Busco un condroprotector para mi perro")

    assert response.response_type == "generator_error"
    assert response.message == get_template("generator_error")
    assert response.tokens_used == 0


# ----------------------------
# Persistence
# ----------------------------

def test_turns_are_persisted_in_order_with_metadata(make_pipeline, generator, conversations):
    pipeline = make_pipeline(generator)

    first = pipeline.process_message("sess-1", "Busco un condroprotector para mi perro")
    pipeline.process_message("sess-1", "¿Y para gatos?", conversation_id=first.conversation_id)

    record = conversations.get_conversation(first.conversation_id)
    assert [message.role for message in record.messages] == ["user", "assistant", "user", "assistant"]
    assert record.message_count == 4
    assert record.messages[1].products_recommended == ["2"]
    assert record.messages[1].tokens_used == 42
    assert record.messages[1].response_type == "normal"

    second_history = generator.calls[1]["history"]
    assert [item["role"] for item in second_history] == ["user", "assistant", "user"]
    assert second_history[-1]["content"] == "¿Y para gatos?"


def test_unknown_conversation_id_starts_a_new_conversation(make_pipeline, make_generator, conversations):
    response = make_pipeline(make_generator(text="Hola")).process_message(
        "sess-1", "Hola", conversation_id="does-not-exist"
    )

    assert response.conversation_id != "does-not-exist"
    assert conversations.get_conversation(response.conversation_id).message_count == 2


def test_missing_response_raises(make_pipeline, make_generator):
    pipeline = make_pipeline(make_generator(text="Hola"))
    pipeline._runner = StepRunner([])

    with pytest.raises(RuntimeError):
        pipeline.process_message("sess-1", "Hola")
