# =============================================================================
# Tutor Prompts — Persona, Knowledge Base, Attachments, Action Templates
# =============================================================================
#
# The tutor's system prompt is assembled from four blocks:
#
#   1. PERSONA               — fixed mentor persona (pt-BR)
#   2. knowledge base block  — every ready knowledge document, condensed to
#                              its RESUMO / CONCEITOS-CHAVE / TÓPICOS
#                              PRINCIPAIS sections plus up to 8000 chars of
#                              CONTEÚDO COMPLETO
#   3. student context       — the request context as pretty JSON
#   4. attached files block  — up to 5 session files, 5000 chars each
#
# The user prompt depends on the action (generate_document, analyze_file,
# chat with "[arquivos anexados:" marker, or the raw message).
# =============================================================================

from __future__ import annotations

import json
import re
from typing import Any

from ai_engine.models.requests import ChatAction, ChatContext
from ai_engine.services.chat_store import FileRecord, KnowledgeRecord

FULL_CONTENT_MAX_CHARS = 8000
FILE_TEXT_MAX_CHARS = 5000
ATTACHMENT_MARKER = "[arquivos anexados:"

_RULE = "═" * 67
_DOC_SEPARATOR = "─" * 50

_SUMMARY = re.compile(r"=== RESUMO ===\n([\s\S]*?)(?:===|$)")
_CONCEPTS = re.compile(r"=== CONCEITOS-CHAVE ===\n([\s\S]*?)(?:===|$)")
_TOPICS = re.compile(r"=== TÓPICOS PRINCIPAIS ===\n([\s\S]*?)(?:===|$)")
_FULL_CONTENT = re.compile(r"=== CONTEÚDO COMPLETO ===\n([\s\S]*?)$")

PERSONA = """\
# 🎓 ESPECIALISTA DE ESTUDOS DO SISTEMA BANCÁRIO ÁGIL

Atue permanentemente como o **Especialista de Estudos do sistema Bancário \
Ágil**: mentor sênior, estrategista educacional e orientador humano, com \
domínio de concursos bancários no padrão da banca CESGRANRIO.

Você não é um chatbot genérico. Seu tom é educado, didático, estratégico e \
humano. Reconheça saudações, desabafos e perguntas vagas com uma resposta \
breve e acolhedora, e convide o aluno de volta aos estudos com elegância.

## 📚 FONTE DE DADOS
Baseie-se EXCLUSIVAMENTE nos documentos da plataforma, nas provas indexadas \
e no histórico do aluno. Não invente dados. Diferencie sempre o que vem dos \
dados, o que é inferência e quais são as limitações.

## 🚀 METODOLOGIA
- **Lei de Pareto (80/20)**: foco em Informática, Vendas e Negociação, \
Língua Portuguesa e Conhecimentos Bancários (≈75% da nota).
- **Engenharia Reversa**: comece pela lógica da prova e pelo padrão da banca.
- **Estudo Atômico**: explique apenas o necessário para corrigir o erro.
- **Acompanhamento Progressivo**: ajuste a rota de estudos do aluno.

## 📝 FORMATO DE RESPOSTA TÉCNICA
- 🏷️ **CATEGORIA PARETO**
- 🎯 **PULO DO GATO**
- 🔍 **ENGENHARIA REVERSA**
- 📖 **EXPLICAÇÃO ATÔMICA**
- ⚠️ **ALERTA DE PEGADINHA**
- 🧠 **DESAFIO DO MESTRE**
"""

CLOSING = """
---
**Responda SEMPRE em português brasileiro com formatação markdown rica.**"""


# ---------------------------------------------------------------------------
# System Prompt Blocks
# ---------------------------------------------------------------------------


def _section(pattern: re.Pattern[str], content: str) -> str:
    match = pattern.search(content)
    return match.group(1).strip() if match else ""


def render_knowledge_document(index: int, document: KnowledgeRecord) -> str:
    """Condense one knowledge document to its labelled sections."""
    content = document.conteudo_extraido or ""

    summary = _section(_SUMMARY, content)
    concepts = _section(_CONCEPTS, content)
    topics = _section(_TOPICS, content)

    full_match = _FULL_CONTENT.search(content)
    if full_match:
        full_content = full_match.group(1).strip()[:FULL_CONTENT_MAX_CHARS]
    else:
        full_content = content[:FULL_CONTENT_MAX_CHARS]

    lines = [
        f"📄 DOCUMENTO {index}: {document.titulo}",
        f"Arquivo: {document.nome_arquivo} ({document.tipo_arquivo})",
    ]
    if summary:
        lines.append(f"\n📝 RESUMO:\n{summary}")
    if concepts:
        lines.append(f"\n🔑 CONCEITOS-CHAVE:\n{concepts}")
    if topics:
        lines.append(f"\n📚 TÓPICOS:\n{topics}")
    lines.append(f"\n📖 CONTEÚDO:\n{full_content}")
    lines.append(_DOC_SEPARATOR)
    return "\n".join(lines)


def render_knowledge_base(documents: list[KnowledgeRecord]) -> str:
    """The knowledge base block, or an empty string when there are no documents."""
    if not documents:
        return ""

    body = "\n\n".join(
        render_knowledge_document(i, doc) for i, doc in enumerate(documents, start=1)
    )
    return (
        f"\n{_RULE}\n"
        f"📚 BASE DE CONHECIMENTO DO ESPECIALISTA ({len(documents)} documentos)\n"
        f"{_RULE}\n\n"
        "IMPORTANTE: Use TODO o conteúdo abaixo como sua fonte de conhecimento "
        "especializado. SEMPRE baseie suas respostas nestes materiais quando o "
        "tema estiver coberto.\n\n"
        f"{body}\n\n"
        f"{_RULE}\nFIM DA BASE DE CONHECIMENTO\n{_RULE}\n"
    )


def render_session_files(files: list[FileRecord]) -> str:
    """The attached-files block, or an empty string when nothing is attached."""
    if not files:
        return ""

    entries = []
    for i, f in enumerate(files, start=1):
        text = (
            f.texto_extraido[:FILE_TEXT_MAX_CHARS]
            if f.texto_extraido
            else "[Conteúdo não extraído - arquivo de mídia]"
        )
        entries.append(f"--- Arquivo {i}: {f.nome_arquivo} ({f.tipo_arquivo}) ---\n{text}")

    return (
        "\n\n📎 ARQUIVOS ANEXADOS PELO ALUNO NESTA CONVERSA:\n"
        + "\n\n".join(entries)
        + "\n\nIMPORTANTE: Analise TODOS os arquivos acima antes de responder."
    )


def render_student_context(context: dict[str, Any] | None) -> str:
    if not context:
        return "Nenhum contexto adicional fornecido"
    return json.dumps(context, indent=2, ensure_ascii=False)


def build_system_prompt(
    knowledge: list[KnowledgeRecord],
    files: list[FileRecord],
    context: dict[str, Any] | None,
) -> str:
    return (
        PERSONA
        + render_knowledge_base(knowledge)
        + "\n## 📊 CONTEXTO DO ALUNO\n"
        + render_student_context(context)
        + render_session_files(files)
        + CLOSING
    )


# ---------------------------------------------------------------------------
# User Prompt by Action
# ---------------------------------------------------------------------------


def build_user_prompt(
    action: ChatAction | None,
    message: str | None,
    context: ChatContext | None,
) -> str:
    """Pick the user-turn text for the requested action."""
    if action is ChatAction.GENERATE_DOCUMENT:
        document_type = (context.document_type if context else None) or "resumo"
        topic = (context.topic if context else None) or "tema geral"
        return (
            "📄 **SOLICITAÇÃO DE DOCUMENTO**\n\n"
            "O aluno solicitou a geração de um documento:\n"
            f"- **Tipo**: {document_type}\n"
            f"- **Tema**: {topic}\n\n"
            "Gere o conteúdo COMPLETO e bem formatado em markdown, seguindo a estrutura:\n"
            "1. Título e introdução\n"
            "2. Desenvolvimento por tópicos\n"
            "3. Pontos-chave para prova\n"
            "4. Questões típicas da banca\n"
            "5. Conclusão com dicas finais"
        )

    if action is ChatAction.ANALYZE_FILE:
        file_content = (
            (context.file_content if context else None)
            or "Conteúdo não disponível - verifique os arquivos anexados acima"
        )
        return (
            "📂 **ANÁLISE DE ARQUIVO SOLICITADA**\n\n"
            "O aluno enviou um arquivo para análise. Conteúdo detectado:\n\n"
            f"```\n{file_content}\n```\n\n"
            "Execute a análise COMPLETA seguindo o protocolo:\n\n"
            "📌 **DIAGNÓSTICO** — tipo de material, tópicos encontrados, qualidade\n"
            "📘 **EXPLICAÇÃO** — pontos principais e conceitos complexos\n"
            "🧠 **ESTRATÉGIA** — o que priorizar e quais pegadinhas evitar\n"
            "🗓️ **PLANO DE AÇÃO** — cronograma e exercícios recomendados\n"
            "✅ **PRÓXIMO PASSO** — uma ação concreta para agora"
        )

    if message and ATTACHMENT_MARKER in message.lower():
        return (
            "📎 **MENSAGEM COM ARQUIVOS ANEXADOS**\n\n"
            "O aluno enviou arquivos junto com esta mensagem:\n"
            f'"{message}"\n\n'
            'IMPORTANTE: Os arquivos estão disponíveis no contexto acima (seção '
            '"ARQUIVOS ANEXADOS").\n\n'
            "Analise os arquivos E responda à mensagem do aluno:\n"
            "- Leia TODO o conteúdo dos arquivos\n"
            "- Relacione com a dúvida do aluno\n"
            "- Forneça uma resposta COMPLETA e DIDÁTICA"
        )

    return message or ""


def document_title(context: ChatContext | None) -> tuple[str, str]:
    """
    Title and type for a saved generated document.

    Returns:
        ("Resumo - Juros compostos", "resumo") style pair.
    """
    document_type = (context.document_type if context else None) or "resumo"
    topic = (context.topic if context else None) or "tema geral"
    return f"{document_type.capitalize()} - {topic}", document_type
