"""Reference phenotype catalog.

The catalog is loaded once and then only read, so a single instance can be
shared by concurrent matching requests without locking.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Sequence

import numpy as np
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from phenomatch import models
from phenomatch.config import settings
from phenomatch.errors import CatalogError
from phenomatch.pipelines.measurements import MeasurementSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """One entry of the reference catalog."""
    id: str
    name: str
    regions: tuple[str, ...] = ()
    description: str | None = None
    reference_measurements: MeasurementSet | None = None
    reference_embedding: tuple[float, ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def has_measurements(self) -> bool:
        return self.reference_measurements is not None

    @property
    def has_embedding(self) -> bool:
        return self.reference_embedding is not None


class Catalog:
    """Immutable, insertion-ordered collection of candidates."""

    def __init__(self, candidates: Iterable[Candidate]):
        self._candidates: tuple[Candidate, ...] = tuple(candidates)
        by_name: dict[str, Candidate] = {}
        for candidate in self._candidates:
            key = candidate.name.casefold()
            if key in by_name:
                logger.warning(f"Duplicate catalog name '{candidate.name}', keeping first entry")
                continue
            by_name[key] = candidate
        self._by_name = by_name

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._candidates)

    def __len__(self) -> int:
        return len(self._candidates)

    @property
    def candidates(self) -> tuple[Candidate, ...]:
        return self._candidates

    @property
    def names(self) -> list[str]:
        return [c.name for c in self._candidates]

    def find_by_name(self, name: str) -> Candidate | None:
        """Case-insensitive exact name lookup."""
        return self._by_name.get(name.strip().casefold())


def _embedding_tuple(raw: Any, candidate_id: str) -> tuple[float, ...] | None:
    if raw is None:
        return None
    vector = np.asarray(raw, dtype=np.float64).reshape(-1)
    if vector.shape[0] != settings.embeddings.dim:
        raise CatalogError(
            f"Phenotype {candidate_id} has a {vector.shape[0]}-dim reference embedding, "
            f"expected {settings.embeddings.dim}"
        )
    return tuple(float(v) for v in vector)


def candidate_from_record(record: Mapping[str, Any]) -> Candidate:
    """Build a Candidate from a plain mapping (seed data, DB row dicts)."""
    candidate_id = str(record["id"])
    regions = record.get("regions") or []
    return Candidate(
        id=candidate_id,
        name=str(record["name"]),
        regions=tuple(str(r) for r in regions if r),
        description=record.get("description"),
        reference_measurements=MeasurementSet.from_mapping(record.get("reference_measurements")),
        reference_embedding=_embedding_tuple(record.get("reference_embedding"), candidate_id),
        metadata=dict(record.get("metadata") or {}),
    )


def catalog_from_records(records: Sequence[Mapping[str, Any]]) -> Catalog:
    """Build a catalog from plain records.

    Raises:
        CatalogError: If the records are empty or malformed
    """
    if not records:
        raise CatalogError("Reference catalog is empty")
    try:
        candidates = [candidate_from_record(r) for r in records]
    except CatalogError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise CatalogError(f"Malformed catalog record: {e}") from e
    return Catalog(candidates)


async def load_catalog(session: AsyncSession) -> Catalog:
    """Load every phenotype from the database, ordered by name.

    Raises:
        CatalogError: If the catalog is unreadable or empty
    """
    try:
        result = await session.execute(select(models.Phenotype).order_by(models.Phenotype.name))
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Failed to read phenotype catalog: {e}")
        raise CatalogError(f"Reference catalog unreadable: {e}") from e

    records = [
        {
            "id": row.id,
            "name": row.name,
            "description": row.description,
            "regions": row.regions or [],
            "reference_measurements": row.reference_measurements,
            "reference_embedding": row.reference_embedding,
            "metadata": row.metadata_ or {},
        }
        for row in rows
    ]
    catalog = catalog_from_records(records)

    logger.info(
        f"Loaded catalog: {len(catalog)} phenotypes, "
        f"{sum(c.has_embedding for c in catalog)} with embeddings, "
        f"{sum(c.has_measurements for c in catalog)} with measurements"
    )
    return catalog
