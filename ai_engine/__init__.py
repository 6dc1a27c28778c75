# =============================================================================
# Bancário Ágil AI Engine
# =============================================================================
# Multi-engine LLM orchestration for a Brazilian banking-exam study platform:
# cached completions routed between an OpenAI-compatible AI gateway and
# Google Gemini by engine health, plus the study tutor chat.
#
# Package structure:
#   ai_engine/
#   ├── api/          → FastAPI routes (unified engine, tutor chat, metrics)
#   │                    and the auth dependency
#   ├── db/           → Async engine, session factory, ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Providers, fallback orchestrator, cache, health,
#   │                    request log, chat, prompts, store wiring
#   └── main.py       → FastAPI app, error handlers, /health
# =============================================================================
