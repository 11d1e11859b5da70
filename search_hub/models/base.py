from __future__ import annotations

from sqlalchemy import JSON, Text
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB / tsvector on PostgreSQL, portable fallbacks elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")
SearchVectorType = Text().with_variant(TSVECTOR(), "postgresql")
