from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

MAX_MESSAGE_CHARS = 2000

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class ProductPageContext(BaseModel):
    """Product page the user opened the chat from."""
    name: Optional[str] = None
    price: Optional[Union[float, str]] = None
    category: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None


class ChatRequest(BaseModel):
    """Request payload for the chat API."""
    session_id: str
    message: str
    conversation_id: Optional[str] = Field(default=None)
    product_context: Optional[ProductPageContext] = Field(default=None)

    @field_validator("session_id")
    @classmethod
    def _session_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("session_id is required")
        return value

    @field_validator("message")
    @classmethod
    def _message_bounds(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message must not be empty")
        if len(value) > MAX_MESSAGE_CHARS:
            raise ValueError(f"message must be at most {MAX_MESSAGE_CHARS} characters")
        return value


class ProductCard(BaseModel):
    """Product card rendered under an assistant message."""
    id: Any
    name: str
    brand: str = ""
    price: Optional[float] = None
    species: str = ""
    category: str = ""
    image_url: str = ""
    product_url: str = ""
    add_to_cart_url: str = ""
    requires_prescription: bool = False
    indications: str = ""


class ClinicCard(BaseModel):
    """Partner clinic card returned for postal-code lookups."""
    id: Any
    name: str
    address: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    is_emergency: bool = False


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    conversation_id: str
    message: str
    response_type: str
    products: List[ProductCard] = Field(default_factory=list)
    clinics: List[ClinicCard] = Field(default_factory=list)
    tokens_used: Optional[int] = None
    processing_time_ms: int = 0
    severity: Optional[str] = None
    awaiting_postal_code: bool = False


class WelcomeResponse(BaseModel):
    message: str
    response_type: str = "welcome"


class StoredMessage(BaseModel):
    """Persisted message record with routing and usage metadata."""
    role: str
    content: str
    created_at: float
    response_type: Optional[str] = None
    red_flags_detected: Optional[List[str]] = None
    products_recommended: Optional[List[str]] = None
    tokens_used: Optional[int] = None
    processing_time_ms: Optional[int] = None


class ConversationRecord(BaseModel):
    """Persisted conversation with its messages in chronological order."""
    id: str
    session_id: str
    product_context: Optional[Dict[str, Any]] = None
    has_emergency: bool = False
    message_count: int = 0
    created_at: float
    last_message_at: float
    messages: List[StoredMessage] = Field(default_factory=list)
