from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_DATA_DIR = (BASE_DIR / "data").resolve()


@dataclass(frozen=True)
class Settings:
    """Configuration container for the generator, data files and runtime limits."""
    gemini_api_key: str
    gemini_model: str
    generator_max_tokens: int
    generator_temperature: float
    data_dir: Path
    catalog_path: Path
    patterns_path: Path
    prompts_path: Path
    clinics_path: Path
    documents_dir: Path
    conversations_path: Path
    pattern_cache_ttl: int
    history_turns: int
    max_message_chars: int
    result_limit: int


def _path_from_env(name: str, default: Path) -> Path:
    value = os.getenv(name)
    return Path(value).expanduser() if value else default


def _int_from_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def load_settings(data_dir: Optional[Path] = None) -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: Optional data_dir override; returns a Settings instance.
    Side Effects / State: Reads environment variables.
    Dependencies: Uses os.getenv and DEFAULT_DATA_DIR for default paths.
    Failure Modes: Invalid integer/float env values raise ValueError at startup.
    If Removed: App cannot locate its data files and fails at startup.
    Testing Notes: Verify defaults and overrides via monkeypatched environment.
    """
    # Resolve the data directory first; individual files default inside it.
    base = data_dir or _path_from_env("DATA_DIR", DEFAULT_DATA_DIR)

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        generator_max_tokens=_int_from_env("GENERATOR_MAX_TOKENS", 800),
        generator_temperature=float(os.getenv("GENERATOR_TEMPERATURE", "0.4")),
        data_dir=base,
        catalog_path=_path_from_env("CATALOG_PATH", base / "catalog.json"),
        patterns_path=_path_from_env("PATTERNS_PATH", base / "red_flag_patterns.json"),
        prompts_path=_path_from_env("PROMPTS_PATH", base / "system_prompts.json"),
        clinics_path=_path_from_env("CLINICS_PATH", base / "clinics.json"),
        documents_dir=_path_from_env("DOCUMENTS_DIR", base / "vademecums"),
        conversations_path=_path_from_env("CONVERSATIONS_PATH", base / "conversations.json"),
        pattern_cache_ttl=_int_from_env("PATTERN_CACHE_TTL", 300),
        history_turns=_int_from_env("HISTORY_TURNS", 10),
        max_message_chars=_int_from_env("MAX_MESSAGE_CHARS", 2000),
        result_limit=_int_from_env("RESULT_LIMIT", 5),
    )
