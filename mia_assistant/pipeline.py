"""MIA chat pipeline orchestration and deterministic guards.

Role:
    Implements the end-to-end flow for one chat message: safety short-circuits,
    catalog retrieval, context assembly, generation, response validation and
    persistence. It owns the PipelineContext contract used by the step runner.

Pipeline data contract (core fields passed across steps):
    - conversation_id/history: resolved conversation and its turns (user turn included).
    - response_type/response_text: set once a step decides the answer; later
      deciding steps are skipped.
    - intent/search_terms/species/retrieval: retrieval inputs and outcome.
    - documents: technical excerpts for the generator.
    - generated_text/tokens_used/generation_ms: raw generator output and usage.
    - cards/clinics: what the UI renders below the message.

Step contracts:
    Conversation:
        Resolves or creates the conversation and persists the user turn.
    Postal Code / Red Flag / Medical Gate:
        Decide a templated answer and stop the deciding chain.
    History / Retrieval / Documents:
        Gather generator context; failures degrade to empty context.
    Generation / Validation / Card Filter:
        Produce, correct and decorate the normal answer.
    Finalize:
        Persists the assistant turn and builds the ChatResponse (always runs).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .catalog import CatalogStore, Product
from .clinics import Clinic, ClinicStore, extract_postal_code, format_clinic_card, format_clinics_for_chat
from .context_builder import (
    HISTORY_TURNS,
    build_system_message,
    format_document_context,
    format_product_card,
    format_product_page_context,
    format_products_for_context,
    trim_history,
)
from .conversation_store import ConversationStore
from .documents import DocumentChunk, DocumentStore
from .generator import GenerationError, RateLimitError
from .intents import IntentResult, detect_intent
from .medical_gate import MedicalGate
from .models import ROLE_ASSISTANT, ROLE_USER, ChatResponse, ClinicCard, ProductCard
from .prompt_loader import MAIN_PROMPT_NAME, PromptStore
from .query_terms import extract_search_terms, extract_species
from .red_flags import RedFlagDetector
from .retrieval import DEFAULT_LIMIT, ProductRetriever, RetrievalResult
from .step_runner import PipelineStep, StepRunner
from .templates import (
    RESPONSE_EMERGENCY,
    RESPONSE_GENERATOR_ERROR,
    RESPONSE_NO_CLINIC,
    RESPONSE_RATE_LIMIT,
    get_template,
)
from .validator import select_product_cards, validate_response

logger = logging.getLogger("mia.pipeline")

RESPONSE_CLINIC = "clinic_recommendation"
RESPONSE_NORMAL = "normal"

DEFAULT_MAX_TOKENS = 800
DEFAULT_TEMPERATURE = 0.4


@dataclass
class PipelineContext:
    """Mutable context passed through each pipeline step."""
    session_id: str
    message: str
    conversation_id: Optional[str] = None
    product_context: Optional[Dict[str, Any]] = None
    started: float = field(default_factory=time.monotonic)
    history: List[Dict[str, str]] = field(default_factory=list)
    response_type: Optional[str] = None
    response_text: str = ""
    severity: Optional[str] = None
    awaiting_postal_code: bool = False
    red_flags: List[str] = field(default_factory=list)
    clinics: List[Clinic] = field(default_factory=list)
    intent: Optional[IntentResult] = None
    search_terms: str = ""
    species: Optional[str] = None
    retrieval: Optional[RetrievalResult] = None
    documents: List[DocumentChunk] = field(default_factory=list)
    generated_text: str = ""
    tokens_used: Optional[int] = None
    generation_ms: Optional[int] = None
    cards: List[Product] = field(default_factory=list)
    response: Optional[ChatResponse] = None

    @property
    def decided(self) -> bool:
        return self.response_type is not None

    @property
    def products(self) -> List[Product]:
        return list(self.retrieval.products) if self.retrieval else []

    def decide(self, response_type: str, text: str) -> None:
        self.response_type = response_type
        self.response_text = text


def _decided(context: PipelineContext) -> bool:
    return context.decided


def _not_normal(context: PipelineContext) -> bool:
    return context.response_type != RESPONSE_NORMAL


class ChatPipeline:
    def __init__(
        self,
        catalog: CatalogStore,
        detector: RedFlagDetector,
        generator: Any,
        conversations: ConversationStore,
        prompts: Optional[PromptStore] = None,
        documents: Optional[DocumentStore] = None,
        clinics: Optional[ClinicStore] = None,
        gate: Optional[MedicalGate] = None,
        retriever: Optional[ProductRetriever] = None,
        history_turns: int = HISTORY_TURNS,
        result_limit: int = DEFAULT_LIMIT,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        """Purpose: Initialize the pipeline runner and its collaborators.
        Inputs/Outputs: Inputs are the stores, detector, generator and limits; no return.
        Side Effects / State: Constructs a StepRunner with ordered steps.
        Dependencies: Any generator exposing complete(system_prompt, history,
            max_tokens, temperature) can be injected.
        Failure Modes: None at init; runtime errors occur within step functions.
        If Removed: The chat endpoint has nothing to call.
        Testing Notes: Inject a stub generator and temp-dir stores.
        """
        # Store dependencies and build the step runner.
        self._catalog = catalog
        self._detector = detector
        self._generator = generator
        self._conversations = conversations
        self._prompts = prompts or PromptStore(None)
        self._documents = documents or DocumentStore(None)
        self._clinics = clinics or ClinicStore(clinics=[])
        self._gate = gate or MedicalGate()
        self._retriever = retriever or ProductRetriever(catalog, default_limit=result_limit)
        self._history_turns = history_turns
        self._result_limit = result_limit
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._runner: StepRunner[PipelineContext] = StepRunner(
            steps=[
                PipelineStep("conversation", self._step_conversation),
                PipelineStep("postal_code", self._step_postal_code, skip_if=_decided),
                PipelineStep("red_flag", self._step_red_flag, skip_if=_decided),
                PipelineStep("medical_gate", self._step_medical_gate, skip_if=_decided),
                PipelineStep("history", self._step_history, skip_if=_decided),
                PipelineStep("retrieval", self._step_retrieval, skip_if=_decided),
                PipelineStep("documents", self._step_documents, skip_if=_decided),
                PipelineStep("generation", self._step_generation, skip_if=_decided),
                PipelineStep("validation", self._step_validation, skip_if=_not_normal),
                PipelineStep("card_filter", self._step_card_filter, skip_if=_not_normal),
                PipelineStep("finalize", self._step_finalize, always_run=True),
            ]
        )

    @property
    def catalog(self) -> CatalogStore:
        return self._catalog

    @property
    def clinics(self) -> ClinicStore:
        return self._clinics

    @property
    def conversations(self) -> ConversationStore:
        return self._conversations

    def process_message(
        self,
        session_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        product_context: Optional[Dict[str, Any]] = None,
    ) -> ChatResponse:
        """Purpose: Run the full pipeline for a user message.
        Inputs/Outputs: Inputs are session id, message, optional conversation id and
            product page context; output is a ChatResponse.
        Side Effects / State: Persists both turns; may mark the conversation as an
            emergency; calls the generator at most once.
        Dependencies: StepRunner and the step methods below.
        Failure Modes: Persistence errors propagate; every other stage degrades.
            RuntimeError if the steps finish without building a response.
        If Removed: No chat responses.
        Testing Notes: Red flags win over medical keywords in the same message.
        """
        # Build the context and execute the steps.
        context = PipelineContext(
            session_id=session_id,
            message=message,
            conversation_id=conversation_id,
            product_context=product_context,
        )
        logger.info("session=%s conversation=%s message=%s", session_id, conversation_id, message[:100])
        trace = self._runner.run(context)
        logger.debug("conversation=%s step_timings_ms=%s", context.conversation_id, trace.timings_ms)
        if context.response is None:
            raise RuntimeError("pipeline finished without a response")
        return context.response

    def _step_conversation(self, context: PipelineContext) -> None:
        # Resolve the conversation, then persist the user turn before anything else.
        context.conversation_id = self._conversations.ensure_conversation(
            context.conversation_id,
            context.session_id,
            context.product_context,
        )
        self._conversations.append_message(context.conversation_id, ROLE_USER, context.message)

    def _step_postal_code(self, context: PipelineContext) -> None:
        """Purpose: Answer postal-code messages with partner clinics.
        Inputs/Outputs: Input is PipelineContext; sets clinics and the clinic response.
        Side Effects / State: Logs the lookup.
        Dependencies: extract_postal_code, ClinicStore.find_by_postal_code.
        Failure Modes: No matching clinic answers with the "no evaluated clinic" copy.
        If Removed: Postal codes reach the generator as ordinary questions.
        Testing Notes: "28001" with no clinic rows returns clinics=[].
        """
        # A five-digit Spanish code short-circuits everything else.
        postal_code = extract_postal_code(context.message)
        if not postal_code:
            return
        lookup = self._clinics.find_by_postal_code(postal_code)
        if lookup.is_exact_match:
            context.clinics = lookup.clinics
            context.decide(RESPONSE_CLINIC, format_clinics_for_chat(lookup.clinics))
        else:
            context.decide(RESPONSE_CLINIC, get_template(RESPONSE_NO_CLINIC) or "")
        logger.info(
            "session=%s postal_code=%s clinics=%s",
            context.session_id,
            postal_code,
            len(context.clinics),
        )

    def _step_red_flag(self, context: PipelineContext) -> None:
        """Purpose: Stop on veterinary emergencies before any generation.
        Inputs/Outputs: Input is PipelineContext; sets the emergency response.
        Side Effects / State: Marks the conversation as an emergency; logs at WARNING.
        Dependencies: RedFlagDetector.detect.
        Failure Modes: Pattern-store failures are handled inside the detector.
        If Removed: Emergencies get product recommendations.
        Testing Notes: "Mi perro no respira" returns emergency_warning.
        """
        # Emergency wins over medical-limit and intent keywords.
        result = self._detector.detect(context.message)
        if not result.is_red_flag:
            return
        context.decide(RESPONSE_EMERGENCY, get_template(RESPONSE_EMERGENCY) or "")
        context.severity = result.severity
        context.red_flags = list(result.detected_patterns)
        context.awaiting_postal_code = True
        self._conversations.mark_emergency(context.conversation_id or "")
        logger.warning(
            "emergency red flag conversation=%s severity=%s patterns=%s category=%s",
            context.conversation_id,
            result.severity,
            result.detected_patterns,
            result.category,
        )

    def _step_medical_gate(self, context: PipelineContext) -> None:
        # Diagnosis/dosage first, then prescription inquiries.
        outcome = self._gate.check(context.message)
        if not outcome:
            return
        context.decide(outcome, get_template(outcome) or "")
        context.awaiting_postal_code = True
        logger.info("session=%s gate=%s", context.session_id, outcome)

    def _step_history(self, context: PipelineContext) -> None:
        context.history = self._conversations.get_history(context.conversation_id or "")

    def _step_retrieval(self, context: PipelineContext) -> None:
        """Purpose: Retrieve grounded catalog products for the message.
        Inputs/Outputs: Input is PipelineContext; sets intent, terms, species, retrieval.
        Side Effects / State: Logging happens inside the retriever.
        Dependencies: detect_intent, extract_search_terms, extract_species,
            ProductRetriever.search_products_with_intent.
        Failure Modes: Any error leaves the product list empty with a warning.
        If Removed: The generator answers without catalog grounding.
        Testing Notes: Check the strategy name for a condroprotector question.
        """
        # Earlier turns give species/age/food context; the current message is last.
        previous = context.history[:-1] if context.history else []
        try:
            context.intent = detect_intent(context.message)
            context.search_terms = extract_search_terms(previous, context.message)
            context.species = extract_species(previous, context.message)
            context.retrieval = self._retriever.search_products_with_intent(
                context.search_terms,
                context.intent,
                species=context.species,
                limit=self._result_limit,
            )
        except Exception as exc:
            logger.warning("product search failed session=%s error=%s", context.session_id, exc)
            context.retrieval = None

    def _step_documents(self, context: PipelineContext) -> None:
        try:
            context.documents = self._documents.search_documents_by_keyword(context.message)
        except Exception as exc:
            logger.warning("document search failed session=%s error=%s", context.session_id, exc)
            context.documents = []

    def _step_generation(self, context: PipelineContext) -> None:
        """Purpose: Call the generator once with the assembled context.
        Inputs/Outputs: Input is PipelineContext; sets the normal response or a
            degraded template.
        Side Effects / State: One generator call.
        Dependencies: PromptStore, context_builder, generator.complete.
        Failure Modes: RateLimitError -> rate_limit template; GenerationError ->
            generator_error template; both report zero tokens and zero timing.
        If Removed: Only templated answers are possible.
        Testing Notes: A stub raising RateLimitError yields response_type=rate_limit.
        """
        # Assemble the system message; the history already ends with the user turn.
        catalog_block = ""
        if context.products:
            catalog_block = format_products_for_context(context.products, context.retrieval.is_alternative)
        system_message = build_system_message(
            self._prompts.get_active_system_prompt(MAIN_PROMPT_NAME),
            product_page=format_product_page_context(context.product_context),
            catalog=catalog_block,
            documents=format_document_context(context.documents),
        )
        history = trim_history(context.history, self._history_turns)
        try:
            result = self._generator.complete(system_message, history, self._max_tokens, self._temperature)
        except RateLimitError as exc:
            logger.error("generator rate limited session=%s error=%s", context.session_id, exc)
            self._degrade(context, RESPONSE_RATE_LIMIT)
            return
        except GenerationError as exc:
            logger.error("generator failed session=%s error=%s", context.session_id, exc)
            self._degrade(context, RESPONSE_GENERATOR_ERROR)
            return
        context.generated_text = result.text
        context.tokens_used = result.tokens_used
        context.generation_ms = result.processing_time_ms
        context.decide(RESPONSE_NORMAL, result.text)

    def _degrade(self, context: PipelineContext, response_type: str) -> None:
        context.decide(response_type, get_template(response_type) or "")
        context.tokens_used = 0
        context.generation_ms = 0

    def _step_validation(self, context: PipelineContext) -> None:
        # Validate against every active catalog name, not just the retrieved ones.
        try:
            entries = self._catalog.list_all_active_names()
            report = validate_response(context.response_text, context.products, entries)
        except Exception as exc:
            logger.warning("product name validation failed, using original response error=%s", exc)
            return
        context.response_text = report.text

    def _step_card_filter(self, context: PipelineContext) -> None:
        context.cards, shown_while_asking = select_product_cards(context.response_text, context.products)
        if shown_while_asking:
            logger.info("session=%s showing options while asking count=%s", context.session_id, len(context.cards))

    def _step_finalize(self, context: PipelineContext) -> None:
        """Purpose: Persist the assistant turn and build the ChatResponse.
        Inputs/Outputs: Input is PipelineContext; sets context.response.
        Side Effects / State: Appends the assistant message with its metadata.
        Dependencies: ConversationStore.append_message, response models.
        Failure Modes: Persistence errors propagate to the caller.
        If Removed: No response is returned and the turn is not stored.
        Testing Notes: Degraded generator paths report tokens_used=0.
        """
        # Persist first so the next message sees this turn in its history.
        response_type = context.response_type or RESPONSE_GENERATOR_ERROR
        degraded = response_type in (RESPONSE_RATE_LIMIT, RESPONSE_GENERATOR_ERROR)
        self._conversations.append_message(
            context.conversation_id or "",
            ROLE_ASSISTANT,
            context.response_text,
            response_type=response_type,
            red_flags_detected=context.red_flags or None,
            products_recommended=[str(product.id) for product in context.cards] or None,
            tokens_used=context.tokens_used,
            processing_time_ms=context.generation_ms,
        )
        elapsed_ms = 0 if degraded else int((time.monotonic() - context.started) * 1000)
        context.response = ChatResponse(
            conversation_id=context.conversation_id or "",
            message=context.response_text,
            response_type=response_type,
            products=[ProductCard(**format_product_card(product)) for product in context.cards],
            clinics=[ClinicCard(**format_clinic_card(clinic)) for clinic in context.clinics],
            tokens_used=context.tokens_used,
            processing_time_ms=elapsed_ms,
            severity=context.severity,
            awaiting_postal_code=context.awaiting_postal_code,
        )
        logger.info(
            "session=%s conversation=%s response_type=%s products=%s tokens=%s processing_ms=%s",
            context.session_id,
            context.conversation_id,
            response_type,
            [product.id for product in context.cards],
            context.tokens_used,
            elapsed_ms,
        )
