# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# Two groups of tables:
#
# ORCHESTRATION (owned and written by this service):
#
# ┌─────────────────────┐  ┌─────────────────────┐  ┌──────────────────────┐
# │ ai_response_cache   │  │ ai_engine_metrics   │  │ ai_engine_logs       │
# ├─────────────────────┤  ├─────────────────────┤  ├──────────────────────┤
# │ prompt_hash (UQ)    │  │ engine_name (UQ)    │  │ user_id              │
# │ prompt_preview      │  │ request_count       │  │ engine_used          │
# │ action              │  │ success_count       │  │ action               │
# │ engine_used         │  │ failure_count       │  │ prompt_hash          │
# │ response_data (json)│  │ total_tokens        │  │ cache_hit            │
# │ tokens_used         │  │ avg_response_time_ms│  │ fallback_used/reason │
# │ expires_at          │  │ last_used_at        │  │ response_time_ms     │
# │ hit_count           │  │ last_error          │  │ tokens_used          │
# └─────────────────────┘  │ is_healthy          │  │ success/error_message│
#                          └─────────────────────┘  └──────────────────────┘
#
# TUTOR CHAT (read for prompt context; messages/documents appended):
#
#   ai_agent_sessions ──1:N──▶ ai_agent_messages
#                     ──1:N──▶ ai_agent_files
#                     ──1:N──▶ ai_agent_documents
#   agent_knowledge_documents (global, admin-curated)
#
# Column names follow the platform's existing (Portuguese) schema for the
# chat tables so the web client keeps reading the same rows.
#
# JSON columns use JSONB on PostgreSQL and plain JSON elsewhere.
# =============================================================================

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for every ORM model."""

    pass


# =============================================================================
# Orchestration Tables
# =============================================================================


class ResponseCache(Base):
    """
    One cached AI response per prompt hash.

    Written with upsert semantics (a new store replaces the old row and
    resets hit_count). Expiry is enforced only by filtering on expires_at
    at read time; nothing deletes expired rows.
    """

    __tablename__ = "ai_response_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # "<action>_<sha256 hex>", see services/cache.py
    prompt_hash: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True,
    )

    # First 500 chars of the prompt, for admin inspection only
    prompt_preview: Mapped[str] = mapped_column(Text, nullable=False, default="")

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    engine_used: Mapped[str] = mapped_column(String(50), nullable=False)

    # The response body minus per-request fields (cached, responseTimeMs)
    response_data: Mapped[dict] = mapped_column(JsonColumn, nullable=False)

    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ResponseCache(hash='{self.prompt_hash}', "
            f"engine='{self.engine_used}', hits={self.hit_count})>"
        )


class EngineMetric(Base):
    """Running health counters for one upstream engine."""

    __tablename__ = "ai_engine_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # "lovable" or "gemini"
    engine_name: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True,
    )

    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_response_time_ms: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )

    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # False once failure_count reaches the threshold; any success resets it
    is_healthy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<EngineMetric(engine='{self.engine_name}', "
            f"requests={self.request_count}, healthy={self.is_healthy})>"
        )


class EngineRequestLog(Base):
    """Append-only audit row, one per unified-engine request."""

    __tablename__ = "ai_engine_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    engine_used: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    prompt_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    cache_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fallback_used: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    fallback_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<EngineRequestLog(id={self.id}, engine='{self.engine_used}', "
            f"cache_hit={self.cache_hit}, success={self.success})>"
        )


# Supports "recent requests per engine" queries from the admin console
engine_log_engine_created_idx = Index(
    "idx_engine_log_engine_created",
    EngineRequestLog.engine_used,
    EngineRequestLog.created_at,
)


# =============================================================================
# Tutor Chat Tables
# =============================================================================


class ChatSession(Base):
    """A tutor conversation owned by one student."""

    __tablename__ = "ai_agent_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    titulo: Mapped[str | None] = mapped_column(String(300), nullable=True)

    # Touched after every successful exchange
    ultima_interacao: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
    )


class ChatMessage(Base):
    """One turn of a tutor conversation."""

    __tablename__ = "ai_agent_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("ai_agent_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )

    # "user" or "assistant"
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    session: Mapped["ChatSession"] = relationship(
        "ChatSession", back_populates="messages",
    )


chat_message_session_idx = Index(
    "idx_chat_message_session_created",
    ChatMessage.session_id,
    ChatMessage.created_at,
)


class SessionFile(Base):
    """A file a student attached to a conversation (text already extracted)."""

    __tablename__ = "ai_agent_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("ai_agent_sessions.id", ondelete="CASCADE"),
        nullable=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    nome_arquivo: Mapped[str] = mapped_column(String(500), nullable=False)
    tipo_arquivo: Mapped[str] = mapped_column(String(100), nullable=False)

    # Null for media files whose text could not be extracted
    texto_extraido: Mapped[str | None] = mapped_column(Text, nullable=True)
    processado: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class KnowledgeDocument(Base):
    """
    Admin-curated reference material injected into every tutor prompt.

    conteudo_extraido holds the processed text, split into sections with
    `=== RESUMO ===`, `=== CONCEITOS-CHAVE ===`, `=== TÓPICOS PRINCIPAIS ===`
    and `=== CONTEÚDO COMPLETO ===` headers.
    """

    __tablename__ = "agent_knowledge_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    titulo: Mapped[str] = mapped_column(String(500), nullable=False)
    nome_arquivo: Mapped[str] = mapped_column(String(500), nullable=False)
    tipo_arquivo: Mapped[str] = mapped_column(String(100), nullable=False)
    conteudo_extraido: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Only "concluido" (processing finished) documents are used
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pendente")
    ativo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class GeneratedDocument(Base):
    """Study material produced by the tutor's generate_document action."""

    __tablename__ = "ai_agent_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("ai_agent_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )

    titulo: Mapped[str] = mapped_column(String(600), nullable=False)
    tipo: Mapped[str] = mapped_column(String(100), nullable=False)
    conteudo: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
