# =============================================================================
# Chat Store — Tutor Sessions, History, Attachments, Knowledge Base
# =============================================================================
#
# Everything the tutor chat reads or writes, behind one Protocol so the
# service can be exercised without PostgreSQL.
#
# Reads:
#   get_session()               — owner check (None ⇒ 404)
#   list_knowledge_documents()  — ativo AND status='concluido', newest first
#   list_session_files()        — processado files of a session, newest first
#   recent_messages()           — last N turns of a session, oldest first
# Writes (after a successful reply):
#   append_message(), touch_session(), save_generated_document()
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_engine.db.engine import get_session_factory
from ai_engine.db.models import (
    ChatMessage,
    ChatSession,
    GeneratedDocument,
    KnowledgeDocument,
    SessionFile,
)
from ai_engine.services.clock import Clock, utcnow

logger = logging.getLogger(__name__)

KNOWLEDGE_READY_STATUS = "concluido"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class SessionRecord:
    id: uuid.UUID
    user_id: str
    titulo: str | None = None
    ultima_interacao: datetime | None = None


@dataclass
class MessageRecord:
    role: str
    content: str
    created_at: datetime | None = None


@dataclass
class FileRecord:
    nome_arquivo: str
    tipo_arquivo: str
    texto_extraido: str | None = None
    processado: bool = True
    created_at: datetime | None = None


@dataclass
class KnowledgeRecord:
    titulo: str
    nome_arquivo: str
    tipo_arquivo: str
    conteudo_extraido: str | None = None
    status: str = KNOWLEDGE_READY_STATUS
    ativo: bool = True
    created_at: datetime | None = None


@dataclass
class GeneratedDocumentRecord:
    user_id: str
    session_id: uuid.UUID | None
    titulo: str
    tipo: str
    conteudo: str
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class ChatStore(Protocol):
    async def get_session(self, session_id: uuid.UUID) -> SessionRecord | None:
        ...

    async def list_knowledge_documents(self) -> list[KnowledgeRecord]:
        ...

    async def list_session_files(
        self, session_id: uuid.UUID, limit: int = 5,
    ) -> list[FileRecord]:
        ...

    async def recent_messages(
        self, session_id: uuid.UUID, limit: int = 20,
    ) -> list[MessageRecord]:
        ...

    async def append_message(
        self, session_id: uuid.UUID, role: str, content: str,
    ) -> None:
        ...

    async def touch_session(self, session_id: uuid.UUID) -> None:
        ...

    async def save_generated_document(self, document: GeneratedDocumentRecord) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: In-Memory
# ---------------------------------------------------------------------------


class InMemoryChatStore:
    """
    Process-local store. Lists keep insertion order, which stands in for
    created_at ordering.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self.sessions: dict[uuid.UUID, SessionRecord] = {}
        self.messages: dict[uuid.UUID, list[MessageRecord]] = {}
        self.files: dict[uuid.UUID, list[FileRecord]] = {}
        self.knowledge: list[KnowledgeRecord] = []
        self.documents: list[GeneratedDocumentRecord] = []

    # -- Seeding helpers (admin tooling and tests) ----------------------

    def add_session(self, user_id: str, titulo: str | None = None) -> SessionRecord:
        record = SessionRecord(id=uuid.uuid4(), user_id=user_id, titulo=titulo)
        self.sessions[record.id] = record
        return record

    def add_file(self, session_id: uuid.UUID, file: FileRecord) -> None:
        self.files.setdefault(session_id, []).append(file)

    def add_knowledge_document(self, document: KnowledgeRecord) -> None:
        self.knowledge.append(document)

    # -- ChatStore -------------------------------------------------------

    async def get_session(self, session_id: uuid.UUID) -> SessionRecord | None:
        return self.sessions.get(session_id)

    async def list_knowledge_documents(self) -> list[KnowledgeRecord]:
        ready = [
            doc for doc in self.knowledge
            if doc.ativo and doc.status == KNOWLEDGE_READY_STATUS
        ]
        return list(reversed(ready))

    async def list_session_files(
        self, session_id: uuid.UUID, limit: int = 5,
    ) -> list[FileRecord]:
        processed = [f for f in self.files.get(session_id, []) if f.processado]
        return list(reversed(processed))[:limit]

    async def recent_messages(
        self, session_id: uuid.UUID, limit: int = 20,
    ) -> list[MessageRecord]:
        return list(self.messages.get(session_id, [])[-limit:])

    async def append_message(
        self, session_id: uuid.UUID, role: str, content: str,
    ) -> None:
        self.messages.setdefault(session_id, []).append(
            MessageRecord(role=role, content=content, created_at=self._clock()),
        )

    async def touch_session(self, session_id: uuid.UUID) -> None:
        session = self.sessions.get(session_id)
        if session is not None:
            session.ultima_interacao = self._clock()

    async def save_generated_document(self, document: GeneratedDocumentRecord) -> None:
        if document.created_at is None:
            document.created_at = self._clock()
        self.documents.append(document)


# ---------------------------------------------------------------------------
# Implementation 2: SQL
# ---------------------------------------------------------------------------


class SqlChatStore:
    """Reads and writes the ai_agent_* and agent_knowledge_documents tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock

    async def get_session(self, session_id: uuid.UUID) -> SessionRecord | None:
        async with self._session_factory() as session:
            row = await session.get(ChatSession, session_id)
            if row is None:
                return None
            return SessionRecord(
                id=row.id,
                user_id=row.user_id,
                titulo=row.titulo,
                ultima_interacao=row.ultima_interacao,
            )

    async def list_knowledge_documents(self) -> list[KnowledgeRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(KnowledgeDocument)
                .where(
                    KnowledgeDocument.ativo.is_(True),
                    KnowledgeDocument.status == KNOWLEDGE_READY_STATUS,
                )
                .order_by(KnowledgeDocument.created_at.desc())
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [
            KnowledgeRecord(
                titulo=row.titulo,
                nome_arquivo=row.nome_arquivo,
                tipo_arquivo=row.tipo_arquivo,
                conteudo_extraido=row.conteudo_extraido,
                status=row.status,
                ativo=row.ativo,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def list_session_files(
        self, session_id: uuid.UUID, limit: int = 5,
    ) -> list[FileRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(SessionFile)
                .where(
                    SessionFile.session_id == session_id,
                    SessionFile.processado.is_(True),
                )
                .order_by(SessionFile.created_at.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [
            FileRecord(
                nome_arquivo=row.nome_arquivo,
                tipo_arquivo=row.tipo_arquivo,
                texto_extraido=row.texto_extraido,
                processado=row.processado,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def recent_messages(
        self, session_id: uuid.UUID, limit: int = 20,
    ) -> list[MessageRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
        # Fetched newest first so LIMIT keeps the latest turns
        return [
            MessageRecord(role=row.role, content=row.content, created_at=row.created_at)
            for row in reversed(rows)
        ]

    async def append_message(
        self, session_id: uuid.UUID, role: str, content: str,
    ) -> None:
        async with self._session_factory() as session:
            session.add(ChatMessage(session_id=session_id, role=role, content=content))
            await session.commit()

    async def touch_session(self, session_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ChatSession)
                .where(ChatSession.id == session_id)
                .values(ultima_interacao=self._clock())
            )
            await session.commit()

    async def save_generated_document(self, document: GeneratedDocumentRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                GeneratedDocument(
                    user_id=document.user_id,
                    session_id=document.session_id,
                    titulo=document.titulo,
                    tipo=document.tipo,
                    conteudo=document.conteudo,
                )
            )
            await session.commit()
        logger.info("Saved generated document '%s'", document.titulo)
