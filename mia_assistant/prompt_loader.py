from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger("mia.prompts")

MAIN_PROMPT_NAME = "main_assistant"

DEFAULT_SYSTEM_PROMPT = (
    "Eres MIA, el asistente veterinario de la tienda online MundoMascotix en España.\n"
    "Tu rol es el de un asistente farmacéutico veterinario que orienta sobre productos, "
    "pero NO diagnosticas ni prescribes.\n"
    "Escribe en español de España, con tono amable pero profesional.\n"
    "Recomienda EXCLUSIVAMENTE productos del catálogo de la tienda. No inventes marcas ni "
    "productos que no estén en el catálogo.\n"
    "Usa el nombre EXACTO del producto tal como aparece en el catálogo, sin resumirlo, sin "
    "cambiarlo y sin abreviarlo.\n"
    "Sé breve y directo (máximo 3-4 líneas). Antes de recomendar, pregunta raza, edad y si "
    "tiene alguna patología.\n"
    "Solo menciona síntomas o derivación al veterinario si el usuario ha hablado de síntomas."
)


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: None; pure function reading the filesystem.
    Dependencies: Uses Path.read_text/read_bytes; used by PromptStore for
        prompts stored as separate text files.
    Failure Modes: UnicodeDecodeError triggers a fallback decode with errors ignored,
        which can drop invalid bytes.
    If Removed: Prompt entries pointing at a file cannot be resolved.
    Testing Notes: Validate BOM-stripping and fallback decoding on non-UTF8 files.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        text = raw.decode("utf-8", errors="ignore")
        return text.lstrip("\ufeff")


class PromptStore:
    """Versioned system prompts kept in a JSON file, with a hardcoded default."""

    def __init__(self, path: Optional[Path]) -> None:
        self._path = path

    def get_active_system_prompt(self, name: str = MAIN_PROMPT_NAME) -> str:
        """Purpose: Return the highest active version of a named system prompt.
        Inputs/Outputs: Input is the prompt name; output is prompt text.
        Side Effects / State: Reads the prompts file on every call so edits apply
            to the next message.
        Dependencies: json, load_prompt for entries with a "file" key.
        Failure Modes: Missing file, bad JSON, no active entry or empty content all
            return DEFAULT_SYSTEM_PROMPT with a warning.
        If Removed: Prompt edits require a code deploy.
        Testing Notes: Two active versions resolve to the higher one.
        """
        # Pick the highest active version; every failure uses the default.
        try:
            content = self._load_active(name)
        except Exception as exc:
            logger.warning("system prompt unavailable name=%s error=%s, using default", name, exc)
            return DEFAULT_SYSTEM_PROMPT
        if not content:
            logger.warning("no active system prompt name=%s, using default", name)
            return DEFAULT_SYSTEM_PROMPT
        return content

    def _load_active(self, name: str) -> str:
        if self._path is None:
            return ""
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        entries = raw.get("prompts", []) if isinstance(raw, dict) else raw
        candidates = [
            entry
            for entry in entries
            if isinstance(entry, dict) and entry.get("name") == name and entry.get("is_active", True)
        ]
        if not candidates:
            return ""
        best = max(candidates, key=lambda entry: int(entry.get("version") or 0))
        if best.get("file"):
            return load_prompt(self._path.parent / str(best["file"])).strip()
        return str(best.get("content") or "").strip()
