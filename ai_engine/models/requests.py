# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Bodies accepted by the two AI endpoints. Clients send camelCase keys
# (`systemPrompt`, `skipCache`, `sessionId`, ...); the alias generator maps
# them onto snake_case attributes, and populate_by_name lets Python callers
# and tests use either form.
#
# Validation failures are rendered as 400 by the handler in main.py.
# =============================================================================

import enum
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ai_engine.services.llm import EngineName

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EngineAction(str, enum.Enum):
    """
    Every operation the unified engine accepts.

    The action participates in the cache key and decides whether the model
    output is also parsed into a JSON `data` object.
    """

    GENERATE_QUESTIONS = "generate_questions"
    CHAT = "chat"
    GENERATE_DOCUMENT = "generate_document"
    ANALYZE_FILE = "analyze_file"
    GENERATE_SIMULATION = "generate_simulation"
    EXTRACT_QUESTIONS = "extract_questions"
    EXTRACT_QUESTIONS_DETAILED = "extract_questions_detailed"

    @property
    def produces_json(self) -> bool:
        return self in _JSON_ACTIONS


_JSON_ACTIONS = frozenset({
    EngineAction.GENERATE_QUESTIONS,
    EngineAction.GENERATE_SIMULATION,
    EngineAction.EXTRACT_QUESTIONS,
})


class ChatAction(str, enum.Enum):
    """Tutor chat modes; each selects a user-prompt template."""

    GENERATE_DOCUMENT = "generate_document"
    ANALYZE_FILE = "analyze_file"
    CHAT = "chat"


class PromptMessage(BaseModel):
    """One chat-style message supplied by the caller."""

    role: Literal["system", "user", "assistant"]
    content: str


class EngineRequest(BaseModel):
    """
    Request body for POST /unified-ai-engine.

    Either `messages` or `prompt` (optionally with `systemPrompt`) must carry
    some text; that check happens in the service so the error message can
    be specific.

    Example:
        {
            "action": "generate_questions",
            "prompt": "Gere 5 questões sobre o Sistema Financeiro Nacional",
            "preferredEngine": "gemini"
        }
    """

    model_config = _CAMEL

    action: EngineAction
    prompt: str | None = Field(default=None, max_length=50_000)
    system_prompt: str | None = Field(default=None, max_length=50_000)
    messages: list[PromptMessage] | None = None

    # Free-form; part of the cache key
    context: dict[str, Any] | None = None

    preferred_engine: EngineName | None = None

    # Force a live call; the fresh answer still replaces the cache entry
    skip_cache: bool = False

    # Audit attribution; defaults to the authenticated subject
    user_id: str | None = None


class ChatContext(BaseModel):
    """Extra inputs for the tutor's document and file-analysis modes."""

    model_config = _CAMEL

    document_type: str | None = Field(default=None, max_length=100)
    topic: str | None = Field(default=None, max_length=500)
    file_content: str | None = Field(default=None, max_length=50_000)


class ChatRequest(BaseModel):
    """
    Request body for POST /ai-agent-chat.

    Example:
        {
            "message": "Como a CESGRANRIO cobra o SFN?",
            "sessionId": "6f1c8a3e-3c1b-4c39-9a86-1d2f0f5d2b7e",
            "action": "chat"
        }
    """

    model_config = _CAMEL

    message: str | None = Field(default=None, max_length=10_000)
    session_id: uuid.UUID | None = None
    action: ChatAction | None = None
    context: ChatContext | None = None
