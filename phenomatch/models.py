"""Core SQLAlchemy models (2.x style) for the reference catalog.

Using PostgreSQL with pgvector for reference face embeddings.
"""

from __future__ import annotations

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import EMBEDDING_DIM


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Phenotype(Base):
    """Reference phenotypes the query face is ranked against."""
    __tablename__ = "phenotypes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    regions: Mapped[list[str] | None] = mapped_column(JSON)  # Free-text geography tags
    reference_measurements: Mapped[dict | None] = mapped_column(JSON)
    reference_embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIM))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_phenotypes_created_at", "created_at"),
    )
