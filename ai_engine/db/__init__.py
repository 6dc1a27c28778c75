# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine and session factory (engine.py) and the ORM models
# (models.py): response cache, engine metrics, request log, and the tutor's
# sessions, messages, files, knowledge documents and generated documents.
# =============================================================================
