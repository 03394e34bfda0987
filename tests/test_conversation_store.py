"""
Conversation Store Tests
========================

Purpose
-------
Validate conversation persistence: message ordering, counters, emergency
flag, reload from disk and pruning.

Scope
-----
- ConversationStore over a temp JSON file (conftest `conversations`).
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Standard libraries
import itertools                   # Deterministic fake timestamps

# Third-party libraries
import pytest                      # Exception assertions

# Local modules
from mia_assistant import conversation_store as conversation_store_module
from mia_assistant.conversation_store import ConversationStore


# ----------------------------
# Messages
# ----------------------------

def test_messages_are_kept_in_order(conversations):
    conversation_id = conversations.create_conversation("sess-1", {"name": "Collar"})

    conversations.append_message(conversation_id, "user", "Hola")
    conversations.append_message(conversation_id, "assistant", "¡Hola! ¿En qué te ayudo?", response_type="normal")

    assert conversations.get_history(conversation_id) == [
        {"role": "user", "content": "Hola"},
        {"role": "assistant", "content": "¡Hola! ¿En qué te ayudo?"},
    ]
    record = conversations.get_conversation(conversation_id)
    assert record.message_count == 2
    assert record.product_context == {"name": "Collar"}
    assert record.messages[1].response_type == "normal"
    assert record.last_message_at == record.messages[1].created_at


def test_append_to_unknown_conversation_raises(conversations):
    with pytest.raises(KeyError):
        conversations.append_message("missing", "user", "Hola")


def test_unknown_history_is_empty(conversations):
    assert conversations.get_history("missing") == []
    assert conversations.get_conversation("missing") is None


# ----------------------------
# Resolution
# ----------------------------

def test_ensure_conversation_reuses_known_ids(conversations):
    conversation_id = conversations.create_conversation("sess-1")

    assert conversations.ensure_conversation(conversation_id, "sess-1") == conversation_id


def test_ensure_conversation_creates_for_unknown_or_missing_ids(conversations):
    created = conversations.ensure_conversation("not-a-real-id", "sess-1")
    fresh = conversations.ensure_conversation(None, "sess-1")

    assert created != "not-a-real-id"
    assert conversations.get_conversation(created) is not None
    assert fresh != created


# ----------------------------
# State and persistence
# ----------------------------

def test_mark_emergency_sets_flag(conversations):
    conversation_id = conversations.create_conversation("sess-1")

    conversations.mark_emergency(conversation_id)

    assert conversations.get_conversation(conversation_id).has_emergency


def test_get_conversation_returns_a_copy(conversations):
    conversation_id = conversations.create_conversation("sess-1")
    conversations.append_message(conversation_id, "user", "Hola")

    copy = conversations.get_conversation(conversation_id)
    copy.messages.clear()

    assert conversations.get_conversation(conversation_id).message_count == 1
    assert len(conversations.get_conversation(conversation_id).messages) == 1


def test_turns_survive_a_restart(tmp_path):
    path = tmp_path / "conversations.json"
    first = ConversationStore(path)
    conversation_id = first.create_conversation("sess-1")
    first.append_message(conversation_id, "user", "Mi perro no respira")
    first.mark_emergency(conversation_id)

    second = ConversationStore(path)

    assert second.get_history(conversation_id) == [{"role": "user", "content": "Mi perro no respira"}]
    assert second.get_conversation(conversation_id).has_emergency


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "conversations.json"
    path.write_text("{oops", encoding="utf-8")

    store = ConversationStore(path)

    assert store.get_history("anything") == []
    assert store.create_conversation("sess-1")


def test_in_memory_store_without_path():
    store = ConversationStore()
    conversation_id = store.create_conversation("sess-1")
    store.append_message(conversation_id, "user", "Hola")

    assert store.get_history(conversation_id)[0]["content"] == "Hola"


def test_least_recent_conversations_are_pruned(tmp_path, monkeypatch):
    clock = itertools.count(1000)
    monkeypatch.setattr(conversation_store_module.time, "time", lambda: float(next(clock)))
    store = ConversationStore(tmp_path / "conversations.json", max_conversations=2)

    oldest = store.create_conversation("a")
    middle = store.create_conversation("b")
    store.append_message(oldest, "user", "sigo aquí")
    newest = store.create_conversation("c")

    assert store.get_conversation(middle) is None
    assert store.get_conversation(oldest) is not None
    assert store.get_conversation(newest) is not None
