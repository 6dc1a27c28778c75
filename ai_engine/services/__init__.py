# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Kept free of FastAPI route concerns:
#   - llm.py: provider adapters (AI gateway via openai SDK, Gemini via httpx)
#   - orchestrator.py: ordered fallback over provider candidates
#   - cache.py: prompt-hash response cache (in-memory / SQL)
#   - health.py: per-engine metrics and the engine selection policy
#   - request_log.py: audit rows + metrics updates
#   - engine.py: the unified engine request flow
#   - chat_store.py, prompts.py, chat.py: the study tutor
#   - auth.py, rate_limiter.py: caller identity and per-user limits
#   - stores.py: backend selection ("postgres" or "memory")
# =============================================================================
