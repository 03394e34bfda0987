"""
HTTP API Tests
==============

Purpose
-------
Exercise the FastAPI surface with the packaged data files and a stub
generator: request validation, chat routing, welcome/health endpoints and
conversation retrieval.

Scope
-----
- create_app(settings, generator) through fastapi.testclient.TestClient.
- Conversations are written to a temp file per test.
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Standard libraries
import dataclasses                 # Settings overrides

# Third-party libraries
import pytest                      # Fixtures
from fastapi.testclient import TestClient

# Local modules
from mia_assistant.app import INTERNAL_ERROR_MESSAGE, create_app
from mia_assistant.config import DEFAULT_DATA_DIR, load_settings
from mia_assistant.templates import get_welcome_message


@pytest.fixture
def settings(tmp_path):
    return dataclasses.replace(
        load_settings(DEFAULT_DATA_DIR),
        conversations_path=tmp_path / "conversations.json",
    )


@pytest.fixture
def client(settings, generator):
    return TestClient(create_app(settings, generator=generator))


# ----------------------------
# Static endpoints
# ----------------------------

def test_welcome(client):
    response = client.get("/api/chat/welcome")

    assert response.status_code == 200
    assert response.json() == {"message": get_welcome_message(), "response_type": "welcome"}


def test_health_reports_catalog_and_clinics(client):
    body = client.get("/api/chat/health").json()

    assert body["status"] == "ok"
    assert body["products"] == 13
    assert body["clinics"] == 3


# ----------------------------
# Chat
# ----------------------------

def test_emergency_chat(client):
    response = client.post("/api/chat", json={"session_id": "s1", "message": "Mi perro no respira"})

    assert response.status_code == 200
    body = response.json()
    assert body["response_type"] == "emergency_warning"
    assert body["awaiting_postal_code"] is True
    assert body["severity"] == "emergency"


def test_product_chat_returns_cards_with_catalog_urls(client):
    response = client.post(
        "/api/chat",
        json={"session_id": "s1", "message": "Busco un condroprotector para mi perro"},
    )

    body = response.json()
    assert body["response_type"] == "normal"
    assert [card["id"] for card in body["products"]] == [201]
    assert "(https://www.mundomascotix.com/condrovet-force-ha)" in body["message"]


def test_postal_code_chat_returns_clinic_cards(client):
    body = client.post("/api/chat", json={"session_id": "s1", "message": "28009"}).json()

    assert body["response_type"] == "clinic_recommendation"
    assert body["clinics"][0]["name"] == "Hospital Veterinario Urgencias 24h Madrid"


@pytest.mark.parametrize(
    "payload",
    [
        {"session_id": "s1", "message": "   "},
        {"session_id": "  ", "message": "Hola"},
        {"message": "Hola"},
        {"session_id": "s1", "message": "x" * 2001},
    ],
)
def test_invalid_requests_are_rejected(client, payload):
    assert client.post("/api/chat", json=payload).status_code == 422


def test_configured_message_limit_is_enforced(settings, generator):
    client = TestClient(create_app(dataclasses.replace(settings, max_message_chars=10), generator=generator))

    response = client.post("/api/chat", json={"session_id": "s1", "message": "Un mensaje demasiado largo"})

    assert response.status_code == 422


def test_unexpected_failure_returns_generic_error(settings, make_generator):
    client = TestClient(create_app(settings, generator=make_generator(error=RuntimeError("bug"))))

    response = client.post("/api/chat", json={"session_id": "s1", "message": "Busco un condroprotector"})

    assert response.status_code == 500
    assert response.json() == {"error": INTERNAL_ERROR_MESSAGE}


# ----------------------------
# Conversations
# ----------------------------

def test_conversation_can_be_fetched(client):
    chat = client.post("/api/chat", json={"session_id": "s1", "message": "Mi perro no respira"}).json()

    response = client.get(f"/api/conversations/{chat['conversation_id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] == "s1"
    assert body["has_emergency"] is True
    assert [message["role"] for message in body["messages"]] == ["user", "assistant"]


def test_follow_up_uses_the_same_conversation(client):
    first = client.post("/api/chat", json={"session_id": "s1", "message": "Hola"}).json()
    second = client.post(
        "/api/chat",
        json={"session_id": "s1", "message": "Busco pienso", "conversation_id": first["conversation_id"]},
    ).json()

    assert second["conversation_id"] == first["conversation_id"]
    assert client.get(f"/api/conversations/{first['conversation_id']}").json()["message_count"] == 4


def test_unknown_conversation_is_404(client):
    assert client.get("/api/conversations/does-not-exist").status_code == 404
