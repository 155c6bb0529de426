"""Hybrid fusion: one calibrated ranking from three similarity signals.

For every catalog candidate the available signals are combined into a single
score in [0, 1]:

    hybrid = sum(w_s * score_s) / sum(w_s)    over signals s present for the pair

Weights are re-normalized over the signals actually present, so a candidate
scored by the embedding alone is not penalized against one that also has a
vision opinion. Candidates with no signal at all are left out of the ranking.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

import numpy as np

from ai.vision import VisionMatch, VisionVerdict
from phenomatch.catalog import Catalog
from phenomatch.config import settings
from phenomatch.errors import NoSignalAvailable
from phenomatch.pipelines.measurements import Incomparable, MeasurementSet, compare_measurements
from phenomatch.pipelines.similarity import as_vector, cosine_similarity

logger = logging.getLogger(__name__)


class Signal(str, Enum):
    """Independent sources of similarity evidence."""
    VISION = "vision"
    EMBEDDING = "embedding"
    MEASUREMENT = "measurement"


@dataclass(frozen=True)
class FusionWeights:
    """Relative signal weights; only their ratios matter."""
    vision: float = 0.5
    embedding: float = 0.3
    measurement: float = 0.2

    def __post_init__(self) -> None:
        values = (self.vision, self.embedding, self.measurement)
        if any(v < 0 or not math.isfinite(v) for v in values):
            raise ValueError(f"Fusion weights must be finite and non-negative: {values}")
        if sum(values) <= 0:
            raise ValueError("At least one fusion weight must be positive")

    @classmethod
    def from_settings(cls) -> FusionWeights:
        return cls(
            vision=settings.fusion.vision_weight,
            embedding=settings.fusion.embedding_weight,
            measurement=settings.fusion.measurement_weight,
        )

    def weight(self, signal: Signal) -> float:
        return getattr(self, signal.value)


@dataclass(frozen=True)
class HybridQuery:
    """Signals gathered for the query image; any of them may be missing."""
    embedding: Sequence[float] | np.ndarray | None = None
    measurements: MeasurementSet | None = None
    vision: VisionVerdict | None = None


@dataclass(frozen=True)
class MatchResult:
    """One ranked candidate with the provenance of its score."""
    candidate_id: str
    name: str
    rank: int
    hybrid_score: float
    contributing_signals: frozenset[Signal]
    confidence: str
    embedding_similarity: float | None = None
    measurement_similarity: float | None = None
    vision_confidence: float | None = None
    vision_reasoning: str | None = None
    vision_rank: int | None = None
    regions: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "name": self.name,
            "rank": self.rank,
            "hybrid_score": self.hybrid_score,
            "confidence": self.confidence,
            "embedding_similarity": self.embedding_similarity,
            "measurement_similarity": self.measurement_similarity,
            "vision_confidence": self.vision_confidence,
            "vision_reasoning": self.vision_reasoning,
            "vision_rank": self.vision_rank,
            # Fixed order for stable serialization
            "contributing_signals": [s.value for s in Signal if s in self.contributing_signals],
            "regions": list(self.regions),
        }


def confidence_tier(
    hybrid_score: float,
    high: float | None = None,
    medium: float | None = None,
) -> str:
    """Bucket a hybrid score into high / medium / low."""
    high = settings.fusion.high_confidence if high is None else high
    medium = settings.fusion.medium_confidence if medium is None else medium
    if hybrid_score > high:
        return "high"
    if hybrid_score > medium:
        return "medium"
    return "low"


def _vision_lookup(verdict: VisionVerdict | None) -> dict[str, VisionMatch]:
    lookup: dict[str, VisionMatch] = {}
    if verdict is None:
        return lookup
    for match in verdict.matches:
        # First (best ranked) mention of a name wins
        lookup.setdefault(match.name.casefold(), match)
    return lookup


def rank_candidates(
    query: HybridQuery,
    catalog: Catalog,
    *,
    top_n: int | None = None,
    weights: FusionWeights | None = None,
) -> list[MatchResult]:
    """Fuse the available signals and rank the catalog.

    Ordering: hybrid score descending, then candidates with a vision opinion,
    then higher embedding similarity, then catalog insertion order.

    Args:
        query: Signals for the query image
        catalog: Reference catalog
        top_n: Maximum results (default from config)
        weights: Relative signal weights (default from config)

    Returns:
        Ranked MatchResult list, ranks 1..n without gaps

    Raises:
        NoSignalAvailable: If no candidate received any signal
        LengthMismatch: If query and reference embeddings differ in dimension
    """
    top_n = settings.fusion.top_n if top_n is None else top_n
    if top_n < 1:
        raise ValueError(f"top_n must be positive, got {top_n}")
    weights = weights or FusionWeights.from_settings()

    query_vector = as_vector(query.embedding) if query.embedding is not None else None
    vision_by_name = _vision_lookup(query.vision)

    scored: list[tuple[tuple, dict[str, Any]]] = []
    matched_vision: set[str] = set()

    for index, candidate in enumerate(catalog):
        embedding_sim: float | None = None
        if query_vector is not None and candidate.reference_embedding is not None:
            embedding_sim = cosine_similarity(query_vector, candidate.reference_embedding)

        measurement_sim: float | None = None
        if query.measurements is not None and candidate.reference_measurements is not None:
            comparison = compare_measurements(query.measurements, candidate.reference_measurements)
            if not isinstance(comparison, Incomparable):
                measurement_sim = comparison

        vision_match = vision_by_name.get(candidate.name.casefold())
        if vision_match is not None:
            matched_vision.add(candidate.name.casefold())

        # Signal scores on a common [0, 1] scale
        signal_scores: list[tuple[Signal, float]] = []
        if vision_match is not None:
            signal_scores.append((Signal.VISION, vision_match.confidence / 100.0))
        if embedding_sim is not None:
            # Anti-correlated embeddings carry no positive evidence
            signal_scores.append((Signal.EMBEDDING, max(embedding_sim, 0.0)))
        if measurement_sim is not None:
            signal_scores.append((Signal.MEASUREMENT, measurement_sim))

        weighted = [(s, v, weights.weight(s)) for s, v in signal_scores if weights.weight(s) > 0]
        total_weight = sum(w for _, _, w in weighted)
        if total_weight <= 0:
            continue

        hybrid = sum(v * w for _, v, w in weighted) / total_weight
        hybrid = min(max(hybrid, 0.0), 1.0)

        sort_key = (
            -hybrid,
            0 if vision_match is not None else 1,
            -(embedding_sim if embedding_sim is not None else -math.inf),
            index,
        )
        scored.append((sort_key, {
            "candidate": candidate,
            "hybrid": hybrid,
            "signals": frozenset(s for s, _, _ in weighted),
            "embedding_sim": embedding_sim,
            "measurement_sim": measurement_sim,
            "vision": vision_match,
        }))

    if query.vision is not None:
        unmatched = [m.name for m in query.vision.matches if m.name.casefold() not in matched_vision]
        if unmatched:
            logger.warning(f"Vision labels not in catalog: {', '.join(unmatched)}")

    if not scored:
        raise NoSignalAvailable(
            f"No similarity signal available for any of {len(catalog)} candidates"
        )

    scored.sort(key=lambda item: item[0])

    results = []
    for position, (_, entry) in enumerate(scored[:top_n], start=1):
        candidate = entry["candidate"]
        vision: VisionMatch | None = entry["vision"]
        results.append(MatchResult(
            candidate_id=candidate.id,
            name=candidate.name,
            rank=position,
            hybrid_score=entry["hybrid"],
            contributing_signals=entry["signals"],
            confidence=confidence_tier(entry["hybrid"]),
            embedding_similarity=entry["embedding_sim"],
            measurement_similarity=entry["measurement_sim"],
            vision_confidence=vision.confidence if vision is not None else None,
            vision_reasoning=vision.reasoning if vision is not None else None,
            vision_rank=vision.rank if vision is not None else None,
            regions=candidate.regions,
        ))

    logger.info(
        f"Ranked {len(scored)} of {len(catalog)} candidates, returning top {len(results)}"
    )
    return results
