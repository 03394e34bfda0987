from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ConversationRecord, StoredMessage

logger = logging.getLogger("mia.conversations")


class ConversationStore:
    """Conversation and message storage backed by a JSON file."""

    def __init__(self, path: Optional[Path] = None, max_conversations: Optional[int] = None) -> None:
        """Purpose: Initialize the store and hydrate from disk if available.
        Inputs/Outputs: Inputs are an optional file path and a conversation cap; no return.
        Side Effects / State: Loads and caches conversations in memory.
        Dependencies: Calls _load; relies on ConversationRecord/StoredMessage models.
        Failure Modes: A corrupt file is logged and leaves an empty cache.
        If Removed: The pipeline has no history and nothing is persisted.
        Testing Notes: Verify a second store on the same path sees earlier turns.
        """
        # Keep configuration and preload persisted conversations if present.
        self._path = path
        self._max_conversations = max_conversations
        self._lock = threading.RLock()
        self._conversations: Dict[str, ConversationRecord] = {}
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted conversations from disk into memory.
        Inputs/Outputs: Reads from self._path; no return value.
        Side Effects / State: Populates the _conversations cache.
        Dependencies: Uses json.loads and pydantic validation.
        Failure Modes: Missing file or JSONDecodeError results in an empty cache.
        If Removed: Conversations are never restored on startup.
        Testing Notes: Corrupt JSON should not crash; valid JSON should hydrate.
        """
        # Read and decode persisted JSON if present.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("conversation file unreadable path=%s error=%s", self._path, exc)
            return
        for conversation_id, record in data.get("conversations", {}).items():
            self._conversations[conversation_id] = ConversationRecord.model_validate(record)
        if self._prune():
            self._persist()

    def _persist(self) -> None:
        """Purpose: Write all conversations to disk.
        Inputs/Outputs: Writes to self._path; no return value.
        Side Effects / State: Replaces the JSON file through a temp file.
        Dependencies: Uses json.dumps and Path.replace.
        Failure Modes: IO errors raise (persistence failures are user-visible).
        If Removed: Turns are lost on restart.
        Testing Notes: Ensure the file is created and matches the models.
        """
        # Serialize the cache and swap the file in one step.
        if not self._path:
            return
        payload = {
            "conversations": {
                conversation_id: record.model_dump()
                for conversation_id, record in self._conversations.items()
            }
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    def create_conversation(self, session_id: str, product_context: Optional[Dict[str, Any]] = None) -> str:
        """Create a conversation and return its id."""
        with self._lock:
            now = time.time()
            conversation_id = str(uuid.uuid4())
            self._conversations[conversation_id] = ConversationRecord(
                id=conversation_id,
                session_id=session_id,
                product_context=product_context,
                created_at=now,
                last_message_at=now,
            )
            self._prune()
            self._persist()
        logger.info("conversation created id=%s session=%s", conversation_id, session_id)
        return conversation_id

    def ensure_conversation(
        self,
        conversation_id: Optional[str],
        session_id: str,
        product_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Purpose: Resolve the conversation for a request, creating it if absent.
        Inputs/Outputs: Inputs are an optional id, session id and product context;
            output is an existing or new conversation id.
        Side Effects / State: May create and persist a conversation.
        Dependencies: create_conversation.
        Failure Modes: Unknown ids start a new conversation instead of failing.
        If Removed: Every client would need a separate create call.
        Testing Notes: Passing a known id returns it unchanged.
        """
        # Reuse a known id; anything else starts fresh.
        with self._lock:
            if conversation_id and conversation_id in self._conversations:
                return conversation_id
        if conversation_id:
            logger.info("unknown conversation id=%s, creating new", conversation_id)
        return self.create_conversation(session_id, product_context)

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        response_type: Optional[str] = None,
        red_flags_detected: Optional[List[str]] = None,
        products_recommended: Optional[List[str]] = None,
        tokens_used: Optional[int] = None,
        processing_time_ms: Optional[int] = None,
    ) -> StoredMessage:
        """Purpose: Append one turn and update conversation counters.
        Inputs/Outputs: Inputs are the conversation id, role, content and optional
            metadata; returns the stored message.
        Side Effects / State: Mutates the cache and persists to disk.
        Dependencies: StoredMessage, _persist.
        Failure Modes: KeyError for unknown conversations; IO errors propagate.
        If Removed: History is never recorded.
        Testing Notes: message_count increments once per appended turn.
        """
        # Append, bump counters, then flush before returning.
        with self._lock:
            record = self._conversations[conversation_id]
            message = StoredMessage(
                role=role,
                content=content,
                created_at=time.time(),
                response_type=response_type,
                red_flags_detected=red_flags_detected,
                products_recommended=products_recommended,
                tokens_used=tokens_used,
                processing_time_ms=processing_time_ms,
            )
            record.messages.append(message)
            record.message_count += 1
            record.last_message_at = message.created_at
            self._persist()
        return message

    def mark_emergency(self, conversation_id: str) -> None:
        with self._lock:
            record = self._conversations.get(conversation_id)
            if record is None or record.has_emergency:
                return
            record.has_emergency = True
            self._persist()

    def get_history(self, conversation_id: str) -> List[Dict[str, str]]:
        """Role/content pairs in chronological order (empty for unknown ids)."""
        with self._lock:
            record = self._conversations.get(conversation_id)
            if record is None:
                return []
            return [{"role": message.role, "content": message.content} for message in record.messages]

    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            record = self._conversations.get(conversation_id)
            return record.model_copy(deep=True) if record is not None else None

    def _prune(self) -> bool:
        """Purpose: Enforce max_conversations by dropping the least recently active.
        Inputs/Outputs: No inputs; returns True if any conversation was removed.
        Side Effects / State: Mutates the _conversations cache.
        Dependencies: Uses last_message_at ordering.
        Failure Modes: None; no-op when the cap is unset or not exceeded.
        If Removed: The conversation file grows without bound.
        Testing Notes: Set a low cap and verify the oldest is dropped.
        """
        # Remove least-recent conversations when above the configured cap.
        if not self._max_conversations or self._max_conversations <= 0:
            return False
        if len(self._conversations) <= self._max_conversations:
            return False
        ordered = sorted(self._conversations.values(), key=lambda record: record.last_message_at, reverse=True)
        keep_ids = {record.id for record in ordered[: self._max_conversations]}
        removed = [conversation_id for conversation_id in self._conversations if conversation_id not in keep_ids]
        for conversation_id in removed:
            self._conversations.pop(conversation_id, None)
        return bool(removed)
