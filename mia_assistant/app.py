from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .catalog import CatalogStore
from .clinics import ClinicStore
from .config import Settings, load_settings
from .conversation_store import ConversationStore
from .documents import DocumentStore
from .generator import GeminiClient
from .models import ChatRequest, ChatResponse, ConversationRecord, WelcomeResponse
from .pipeline import ChatPipeline
from .prompt_loader import PromptStore
from .red_flags import PatternStore, RedFlagDetector
from .templates import get_welcome_message

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

INTERNAL_ERROR_MESSAGE = "Lo siento, ha ocurrido un error inesperado. Por favor, inténtalo de nuevo más tarde."

logger = logging.getLogger("mia.app")


def configure_logging() -> None:
    # LOG_LEVEL applies to the root handler and the mia.* namespace.
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("mia").setLevel(log_level)


def build_pipeline(settings: Settings, generator: Optional[Any] = None) -> ChatPipeline:
    """Purpose: Wire the JSON stores, detector and generator into a ChatPipeline.
    Inputs/Outputs: Inputs are Settings and an optional generator; output is a pipeline.
    Side Effects / State: Loads catalog/clinic files; configures the Gemini SDK when
        no generator is injected.
    Dependencies: Every store module plus GeminiClient.
    Failure Modes: Missing GEMINI_API_KEY raises ValueError when no generator is given.
    If Removed: The routes have nothing to call.
    Testing Notes: Pass a stub generator and a temp data dir.
    """
    # The detector subscribes to pattern writes for cache invalidation.
    detector = RedFlagDetector(PatternStore(settings.patterns_path), ttl_seconds=settings.pattern_cache_ttl)
    return ChatPipeline(
        catalog=CatalogStore(path=settings.catalog_path),
        detector=detector,
        generator=generator or GeminiClient(settings),
        conversations=ConversationStore(settings.conversations_path),
        prompts=PromptStore(settings.prompts_path),
        documents=DocumentStore(settings.documents_dir),
        clinics=ClinicStore(path=settings.clinics_path),
        history_turns=settings.history_turns,
        result_limit=settings.result_limit,
        max_tokens=settings.generator_max_tokens,
        temperature=settings.generator_temperature,
    )


def create_app(settings: Optional[Settings] = None, generator: Optional[Any] = None) -> FastAPI:
    """Purpose: Build the FastAPI application for the chat widget.
    Inputs/Outputs: Optional Settings and generator; returns a FastAPI app.
    Side Effects / State: Loads .env, configures logging, loads data files.
    Dependencies: build_pipeline and the request/response models.
    Failure Modes: Configuration errors raise at startup, not per request.
    If Removed: The service cannot be started
        (uvicorn --factory mia_assistant.app:create_app).
    Testing Notes: Use fastapi.testclient.TestClient with a stub generator.
    """
    # Environment first so load_settings sees .env values.
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=True)
    else:
        load_dotenv()
    configure_logging()
    settings = settings or load_settings()
    pipeline = build_pipeline(settings, generator)
    conversations = pipeline.conversations

    app = FastAPI(title="MIA Veterinary Assistant")

    @app.post("/api/chat", response_model=ChatResponse)
    def chat(request: ChatRequest) -> Any:
        """Purpose: Handle chat requests and run the pipeline.
        Inputs/Outputs: Input is ChatRequest; output is ChatResponse.
        Side Effects / State: Persists both turns through the pipeline.
        Dependencies: ChatPipeline.process_message.
        Failure Modes: Invalid payloads return 422; unexpected errors return 500
            with a generic Spanish message.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Post "Mi perro no respira" and check response_type.
        """
        # Preconditions beyond the model's own bounds, then the pipeline.
        if len(request.message) > settings.max_message_chars:
            raise HTTPException(
                status_code=422,
                detail=f"message must be at most {settings.max_message_chars} characters",
            )
        product_context = request.product_context.model_dump() if request.product_context else None
        try:
            return pipeline.process_message(
                request.session_id,
                request.message,
                conversation_id=request.conversation_id,
                product_context=product_context,
            )
        except Exception:
            logger.exception("chat pipeline failed session=%s", request.session_id)
            return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})

    @app.get("/api/chat/welcome", response_model=WelcomeResponse)
    def welcome() -> WelcomeResponse:
        return WelcomeResponse(message=get_welcome_message())

    @app.get("/api/chat/health")
    def health() -> dict:
        return {
            "status": "ok",
            "products": pipeline.catalog.count_active(),
            "clinics": pipeline.clinics.count_active(),
        }

    @app.get("/api/conversations/{conversation_id}", response_model=ConversationRecord)
    def get_conversation(conversation_id: str) -> ConversationRecord:
        """Purpose: Return a stored conversation with its messages.
        Inputs/Outputs: Input is conversation_id; output is a ConversationRecord.
        Side Effects / State: None.
        Dependencies: ConversationStore.get_conversation.
        Failure Modes: Unknown ids return 404.
        If Removed: Clients cannot restore a transcript.
        Testing Notes: Fetch the id returned by /api/chat.
        """
        # Serialize the stored record for the requested conversation.
        record = conversations.get_conversation(conversation_id)
        if record is None:
            raise HTTPException(status_code=404, detail="conversation not found")
        return record

    return app
