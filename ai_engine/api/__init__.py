# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines an APIRouter:
#   - engine.py: POST /unified-ai-engine (cache + engine fallback)
#   - chat.py: POST /ai-agent-chat (study tutor)
#   - metrics.py: GET /engine-metrics (engine health panel)
# Shared pieces:
#   - deps.py: bearer-token auth dependency + rate limit
#   - access_log.py: per-request log line middleware
# =============================================================================
