"""Technical document (vademecum) store with sentence-aware chunking and keyword lookup."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .utils import normalize_text

logger = logging.getLogger("mia.documents")

MAX_CHUNK_SIZE = 2000
SEARCH_CHUNK_SIZE = 1500
DEFAULT_SEARCH_LIMIT = 3
DOCUMENT_SUFFIXES = (".txt", ".md")
MANIFEST_NAME = "manifest.json"

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass
class Document:
    """One technical reference document."""
    id: str
    name: str
    content_text: str
    is_active: bool = True


@dataclass
class DocumentChunk:
    """Matching excerpt returned to the context assembler."""
    document_id: str
    name: str
    content: str


def split_into_chunks(text: str, max_chunk_size: int = MAX_CHUNK_SIZE) -> List[str]:
    """Purpose: Split text into chunks of at most max_chunk_size on sentence boundaries.
    Inputs/Outputs: Inputs are text and a size cap; output is a list of chunks.
    Side Effects / State: None.
    Dependencies: _SENTENCE_SPLIT_RE.
    Failure Modes: A single sentence longer than the cap becomes its own chunk.
    If Removed: Whole documents would be pasted into the generator context.
    Testing Notes: Chunks never split inside a sentence.
    """
    # Greedily pack sentences; flush before a sentence would overflow.
    if not text or not text.strip():
        return []
    chunks: List[str] = []
    current = ""
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        if current and len(current + sentence) > max_chunk_size:
            chunks.append(current.strip())
            current = ""
        current += sentence + " "
    if current.strip():
        chunks.append(current.strip())
    return chunks


class DocumentStore:
    """Load documents from a directory and answer keyword searches."""

    def __init__(self, documents_dir: Optional[Path]) -> None:
        self._dir = documents_dir
        self._cache: List[Document] = []
        self._mtimes: Tuple[Tuple[str, float], ...] = ()

    def list_documents(self) -> List[Document]:
        """Purpose: Return all documents, re-reading the directory when files change.
        Inputs/Outputs: No inputs; returns Document list sorted by file name.
        Side Effects / State: Refreshes the in-memory cache keyed by file mtimes.
        Dependencies: _read_manifest, Path.read_text.
        Failure Modes: A missing directory yields an empty list; read errors raise.
        If Removed: Vademecum excerpts never reach the generator.
        Testing Notes: Touching a file refreshes its content on the next call.
        """
        # Rebuild only when the set of (file, mtime) pairs changed.
        if self._dir is None or not self._dir.is_dir():
            return []
        files = sorted(
            path for path in self._dir.iterdir() if path.is_file() and path.suffix.lower() in DOCUMENT_SUFFIXES
        )
        mtimes = tuple((path.name, path.stat().st_mtime) for path in files)
        manifest_path = self._dir / MANIFEST_NAME
        if manifest_path.exists():
            mtimes += ((MANIFEST_NAME, manifest_path.stat().st_mtime),)
        if mtimes == self._mtimes:
            return list(self._cache)

        manifest = self._read_manifest(manifest_path)
        documents: List[Document] = []
        for path in files:
            meta = manifest.get(path.name, {})
            documents.append(
                Document(
                    id=path.stem,
                    name=str(meta.get("name") or path.name),
                    content_text=path.read_text(encoding="utf-8").lstrip("\ufeff"),
                    is_active=bool(meta.get("is_active", True)),
                )
            )
        self._cache = documents
        self._mtimes = mtimes
        logger.info("documents loaded dir=%s count=%s", self._dir, len(documents))
        return list(documents)

    def search_documents_by_keyword(self, text: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[DocumentChunk]:
        """Purpose: Find the first matching excerpt of each document containing the query.
        Inputs/Outputs: Inputs are query text and max documents; output is chunks.
        Side Effects / State: Logs errors at ERROR.
        Dependencies: normalize_text, split_into_chunks, list_documents.
        Failure Modes: Any error returns an empty list.
        If Removed: The "INFORMACIÓN TÉCNICA" block is always empty.
        Testing Notes: Accent differences between query and document still match.
        """
        # Whole-query match first; all significant words (len > 3) as a second chance.
        try:
            needle = normalize_text(text)
            if not needle or limit <= 0:
                return []
            words = [word for word in needle.split() if len(word) > 3]
            results: List[DocumentChunk] = []
            for document in self.list_documents():
                if not document.is_active:
                    continue
                if not _matches(normalize_text(document.content_text), needle, words):
                    continue
                for chunk in split_into_chunks(document.content_text, SEARCH_CHUNK_SIZE):
                    if _matches(normalize_text(chunk), needle, words):
                        results.append(DocumentChunk(document_id=document.id, name=document.name, content=chunk))
                        break
                if len(results) >= limit:
                    break
            return results
        except Exception as exc:
            logger.error("document search error error=%s", exc)
            return []

    def _read_manifest(self, manifest_path: Path) -> Dict[str, Dict[str, object]]:
        if not manifest_path.exists():
            return {}
        try:
            data = json.loads(manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("document manifest unreadable path=%s error=%s", manifest_path, exc)
            return {}
        return data if isinstance(data, dict) else {}


def _matches(haystack: str, needle: str, words: List[str]) -> bool:
    if needle in haystack:
        return True
    return bool(words) and all(word in haystack for word in words)
