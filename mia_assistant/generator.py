from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings

logger = logging.getLogger("mia.generator")

# Poisoning and injury questions must not be silently blocked by the SDK.
DEFAULT_SAFETY_SETTINGS = [
    {"category": HarmCategory.HARM_CATEGORY_HARASSMENT, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
    {"category": HarmCategory.HARM_CATEGORY_HATE_SPEECH, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
    {"category": HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
    {"category": HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
]

_ROLE_MAP = {"user": "user", "assistant": "model"}


class GenerationError(Exception):
    """The generator call failed; the caller answers with an apology template."""


class RateLimitError(GenerationError):
    """The generator rejected the call for quota / rate reasons (HTTP 429)."""


@dataclass
class GenerationResult:
    text: str
    tokens_used: int
    processing_time_ms: int


class GeminiClient:
    """Thin wrapper around the Gemini SDK with model caching and safety settings."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Validate credentials and bind the SDK to the configured key.
        Inputs/Outputs: Input is Settings (gemini_api_key, gemini_model); no return value.
        Side Effects / State: Calls genai.configure once; bare models are cached per name.
        Failure Modes: ValueError when the key or the default model is empty.
        If Removed: The pipeline has no generator and normal answers cannot be produced.
        Testing Notes: Construct with an empty key to get ValueError.
        """
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("Gemini model name is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._models: Dict[str, genai.GenerativeModel] = {}

    def _model(self, model_name: str, system_instruction: Optional[str]) -> genai.GenerativeModel:
        # System instructions are bound at construction, so only cache bare models.
        if system_instruction:
            return genai.GenerativeModel(model_name, system_instruction=system_instruction)
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        return self._models[model_name]

    def complete(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
        model: Optional[str] = None,
    ) -> GenerationResult:
        """Purpose: Produce one assistant reply for a conversation.
        Inputs/Outputs: Inputs are the full system message, role/content history
            (oldest first, ending with the user turn), token cap and temperature;
            output is a GenerationResult.
        Side Effects / State: Network call; logs token usage and latency.
        Dependencies: genai.GenerativeModel.generate_content, to_contents.
        Failure Modes: ResourceExhausted/TooManyRequests raise RateLimitError, any
            other failure raises GenerationError. Single attempt, no retry.
        If Removed: Normal (non-template) answers are impossible.
        Testing Notes: Pipeline tests inject a stub with the same method.
        """
        # One attempt; map quota errors to RateLimitError for the caller.
        model_name = _normalize_model_name(model) if model else self._default_model
        started = time.monotonic()
        try:
            response = self._model(model_name, system_prompt).generate_content(
                to_contents(history),
                generation_config={
                    "temperature": temperature,
                    "max_output_tokens": max_tokens,
                },
                safety_settings=DEFAULT_SAFETY_SETTINGS,
            )
            text = _response_text(response)
        except (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests) as exc:
            logger.error("generator rate limited model=%s error=%s", model_name, exc)
            raise RateLimitError(str(exc)) from exc
        except Exception as exc:
            logger.error("generator error model=%s error=%s", model_name, exc)
            raise GenerationError(str(exc)) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        usage = getattr(response, "usage_metadata", None)
        tokens_used = int(getattr(usage, "total_token_count", 0) or 0)
        logger.info(
            "generator response model=%s tokens=%s processing_ms=%s",
            model_name,
            tokens_used,
            elapsed_ms,
        )
        return GenerationResult(text=text, tokens_used=tokens_used, processing_time_ms=elapsed_ms)


def to_contents(history: List[Dict[str, str]]) -> List[Dict[str, object]]:
    """Purpose: Convert role/content messages into Gemini contents.
    Inputs/Outputs: Input is a list of {"role", "content"} dicts; output is the
        SDK's [{"role", "parts": [{"text"}]}] list.
    Side Effects / State: None.
    Dependencies: _ROLE_MAP.
    Failure Modes: Unknown roles and empty messages are skipped.
    If Removed: History cannot be sent to the model.
    Testing Notes: "assistant" becomes "model".
    """
    # Map roles and wrap text in parts.
    contents: List[Dict[str, object]] = []
    for entry in history:
        role = _ROLE_MAP.get(str(entry.get("role", "")))
        text = str(entry.get("content") or "").strip()
        if not role or not text:
            continue
        contents.append({"role": role, "parts": [{"text": text}]})
    return contents


def _response_text(response: object) -> str:
    # .text raises when the candidate was blocked or empty.
    try:
        text: Optional[str] = getattr(response, "text", None)
    except ValueError as exc:
        raise GenerationError(f"empty or blocked response: {exc}") from exc
    return (text or "").strip()


def _normalize_model_name(name: Optional[str]) -> str:
    """Accept both "gemini-x" and the SDK-listed "models/gemini-x" forms."""
    cleaned = (name or "").strip()
    prefix, _, rest = cleaned.partition("models/")
    return rest if not prefix and rest else cleaned
