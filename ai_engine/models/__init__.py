# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, separate from the ORM models in
# ai_engine/db/models.py. JSON keys are camelCase on the wire.
# =============================================================================
