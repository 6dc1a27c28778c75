# =============================================================================
# Tutor Chat Service — Session Checks, Prompt Assembly, Fallback, Persistence
# =============================================================================
#
# FLOW (POST /ai-agent-chat):
#   1. sessionId given → the session must exist (404) and belong to the
#      caller (403)
#   2. system prompt = persona + knowledge base + student context + files
#   3. user prompt from the action template
#   4. history = last 20 turns of the session, oldest first
#   5. FallbackOrchestrator.for_chat(): gateway, then Gemini model variants
#   6. every candidate failed → 503
#   7. success with a session → store both turns, touch the session;
#      generate_document also saves the document
#
# Chat calls do not go through the response cache and are not written to
# the engine request log.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ai_engine.models.requests import ChatAction, ChatRequest
from ai_engine.services.chat_store import ChatStore, GeneratedDocumentRecord
from ai_engine.services.errors import ServiceError
from ai_engine.services.orchestrator import FallbackOrchestrator
from ai_engine.services.prompts import (
    build_system_prompt,
    build_user_prompt,
    document_title,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
FILES_LIMIT = 5

SESSION_NOT_FOUND = "Sessão não encontrada"
SESSION_FORBIDDEN = "Acesso negado a esta sessão"
MESSAGE_MISSING = "Nenhuma mensagem fornecida"
SERVICE_UNAVAILABLE = (
    "O serviço de IA está temporariamente indisponível. "
    "Por favor, tente novamente em alguns segundos."
)
PROCESSING_ERROR = "Erro ao processar solicitação. Tente novamente."


@dataclass
class ChatResult:
    response: str
    action: str | None
    engine: str
    fallback_used: bool


class ChatService:
    """The tutor: one answer per request, grounded in the knowledge base."""

    def __init__(
        self,
        store: ChatStore,
        orchestrator_factory: Callable[[], FallbackOrchestrator] = FallbackOrchestrator.for_chat,
    ) -> None:
        self._store = store
        self._orchestrator_factory = orchestrator_factory

    async def respond(self, user_id: str | None, request: ChatRequest) -> ChatResult:
        """
        Answer one tutor message.

        Args:
            user_id: Authenticated subject; None only when auth is disabled,
                in which case session ownership is not enforced.
            request: The validated request body.

        Raises:
            ServiceError 400: No message for a plain chat turn.
            ServiceError 403: The session belongs to another user.
            ServiceError 404: The session does not exist.
            ServiceError 503: Every candidate engine failed.
        """
        session_id = request.session_id
        owner_id = user_id

        if session_id is not None:
            session = await self._store.get_session(session_id)
            if session is None:
                raise ServiceError(404, SESSION_NOT_FOUND)
            if user_id is not None and session.user_id != user_id:
                logger.warning("User %s denied access to session %s", user_id, session_id)
                raise ServiceError(403, SESSION_FORBIDDEN)
            owner_id = session.user_id

        user_prompt = build_user_prompt(request.action, request.message, request.context)
        if not user_prompt:
            raise ServiceError(400, MESSAGE_MISSING)

        messages = await self._build_messages(request, user_prompt)

        logger.info(
            "Chat request: action=%s, session=%s, history=%d",
            request.action.value if request.action else "chat",
            session_id,
            len(messages) - 2,
        )

        result = await self._orchestrator_factory().call_with_fallback(messages)
        if not result.success:
            logger.error("All chat engines failed: %s", result.error)
            raise ServiceError(503, SERVICE_UNAVAILABLE)

        content = result.content or ""
        await self._persist(request, owner_id, user_prompt, content)

        return ChatResult(
            response=content,
            action=request.action.value if request.action else None,
            engine=result.label,
            fallback_used=result.fallback_used,
        )

    async def _build_messages(
        self,
        request: ChatRequest,
        user_prompt: str,
    ) -> list[dict[str, str]]:
        # Knowledge base is best effort: a failed read means no KB block
        try:
            knowledge = await self._store.list_knowledge_documents()
        except Exception as e:
            logger.warning("Knowledge base unavailable: %s", e)
            knowledge = []

        files = []
        history = []
        if request.session_id is not None:
            files = await self._store.list_session_files(request.session_id, FILES_LIMIT)
            history = await self._store.recent_messages(request.session_id, HISTORY_LIMIT)

        context = (
            request.context.model_dump(by_alias=True, exclude_none=True)
            if request.context
            else None
        )
        system_prompt = build_system_prompt(knowledge, files, context)

        return [
            {"role": "system", "content": system_prompt},
            *(
                {
                    "role": "user" if m.role == "user" else "assistant",
                    "content": m.content,
                }
                for m in history
            ),
            {"role": "user", "content": user_prompt},
        ]

    async def _persist(
        self,
        request: ChatRequest,
        owner_id: str | None,
        user_prompt: str,
        reply: str,
    ) -> None:
        """Record the exchange; failures are logged, the answer still returns."""
        session_id = request.session_id
        try:
            if session_id is not None:
                await self._store.append_message(
                    session_id, "user", request.message or user_prompt,
                )
                await self._store.append_message(session_id, "assistant", reply)
                await self._store.touch_session(session_id)

            if request.action is ChatAction.GENERATE_DOCUMENT and owner_id:
                titulo, tipo = document_title(request.context)
                await self._store.save_generated_document(
                    GeneratedDocumentRecord(
                        user_id=owner_id,
                        session_id=session_id,
                        titulo=titulo,
                        tipo=tipo,
                        conteudo=reply,
                    )
                )
        except Exception as e:
            logger.warning("Failed to persist chat exchange: %s", e)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Lazily build the chat service over the configured store backend."""
    global _service
    if _service is None:
        from ai_engine.services.stores import get_stores

        _service = ChatService(store=get_stores().chat)
    return _service
