"""Matching pipeline: one image against the reference catalog.

Gathers the three similarity signals concurrently, each under its own
timeout, then fuses whatever arrived into a single ranking. The whole gather
runs under an overall budget; when it expires every outstanding call is
cancelled and no partial ranking is produced.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ai.embeddings import EmbeddingClient, EmbeddingError
from ai.landmarks import LandmarkClient, LandmarkServiceError
from ai.vision import VisionClassifier, VisionError, VisionVerdict
from phenomatch.catalog import Catalog
from phenomatch.config import settings
from phenomatch.errors import CatalogError, MatchingCancelled
from phenomatch.pipelines.fusion import FusionWeights, HybridQuery, MatchResult, rank_candidates
from phenomatch.pipelines.measurements import (
    DegenerateMeasurement,
    FacialFeatures,
    MeasurementSet,
    describe_features,
)
from phenomatch.resilience import SignalOutcome, gather_signal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HybridMatchReport:
    """Complete result of matching one image."""
    image_url: str
    matches: tuple[MatchResult, ...]
    signals: tuple[SignalOutcome, ...]
    measurements: MeasurementSet | None = None
    facial_features: FacialFeatures | None = None
    degenerate_features: tuple[DegenerateMeasurement, ...] = ()
    vision_analysis: str | None = None
    primary_region: str | None = None
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def signals_used(self) -> list[str]:
        return [o.signal for o in self.signals if o.available]

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_url": self.image_url,
            "matches": [m.to_dict() for m in self.matches],
            "signals": [o.to_dict() for o in self.signals],
            "measurements": dict(self.measurements.features) if self.measurements else None,
            "facial_features": self.facial_features.to_dict() if self.facial_features else None,
            "degenerate_features": [
                {"feature": d.feature, "reason": d.reason} for d in self.degenerate_features
            ],
            "vision_analysis": self.vision_analysis,
            "primary_region": self.primary_region,
            "computed_at": self.computed_at.isoformat(),
        }


async def gather_signals(
    image_url: str,
    catalog: Catalog,
    landmark_client: LandmarkClient,
    embedding_client: EmbeddingClient,
    vision_client: VisionClassifier,
) -> tuple[SignalOutcome, SignalOutcome, SignalOutcome]:
    """Run the measurement, embedding and vision calls concurrently.

    Never raises for a single failing signal; cancellation propagates.
    """
    regions = {c.name: c.regions for c in catalog}
    return await asyncio.gather(
        gather_signal(
            "measurement",
            landmark_client.extract(image_url),
            landmark_client.timeout_s,
            (LandmarkServiceError,),
        ),
        gather_signal(
            "embedding",
            embedding_client.embed(image_url),
            embedding_client.timeout_s,
            (EmbeddingError,),
        ),
        gather_signal(
            "vision",
            vision_client.classify(image_url, catalog.names, regions=regions),
            vision_client.timeout_s,
            (VisionError,),
        ),
    )


async def match_image(
    image_url: str,
    catalog: Catalog,
    *,
    top_n: int | None = None,
    landmark_client: LandmarkClient | None = None,
    embedding_client: EmbeddingClient | None = None,
    vision_client: VisionClassifier | None = None,
    weights: FusionWeights | None = None,
    overall_timeout_s: float | None = None,
) -> HybridMatchReport:
    """Match one image against the catalog with every available signal.

    Args:
        image_url: Image to match (validated by the caller)
        catalog: Reference catalog
        top_n: Maximum results (default from config)
        landmark_client: Landmark/measurement client
        embedding_client: Face embedding client
        vision_client: Vision classifier client
        weights: Fusion weights (default from config)
        overall_timeout_s: Budget for the whole gather (default from config)

    Returns:
        HybridMatchReport with the ranking and per-signal provenance

    Raises:
        CatalogError: If the catalog is empty
        MatchingCancelled: If the overall budget expires
        NoSignalAvailable: If no signal produced a score for any candidate
    """
    if len(catalog) == 0:
        raise CatalogError("Reference catalog is empty")

    landmark_client = landmark_client or LandmarkClient()
    embedding_client = embedding_client or EmbeddingClient()
    vision_client = vision_client or VisionClassifier()
    budget = settings.matching.overall_timeout_s if overall_timeout_s is None else overall_timeout_s

    logger.info(f"Matching image against {len(catalog)} phenotypes (budget {budget:.0f}s)")

    try:
        async with asyncio.timeout(budget):
            measurement, embedding, vision = await gather_signals(
                image_url, catalog, landmark_client, embedding_client, vision_client
            )
    except TimeoutError as e:
        logger.error(f"Matching cancelled after {budget:.1f}s")
        raise MatchingCancelled(f"Matching exceeded its {budget:.1f}s budget") from e

    measurements: MeasurementSet | None = measurement.value if measurement.available else None
    verdict: VisionVerdict | None = vision.value if vision.available else None

    query = HybridQuery(
        embedding=embedding.value if embedding.available else None,
        measurements=measurements,
        vision=verdict,
    )
    matches = rank_candidates(query, catalog, top_n=top_n, weights=weights)

    report = HybridMatchReport(
        image_url=image_url,
        matches=tuple(matches),
        signals=(vision, embedding, measurement),
        measurements=measurements,
        facial_features=describe_features(measurements) if measurements else None,
        degenerate_features=measurements.degenerate if measurements else (),
        vision_analysis=verdict.analysis if verdict else None,
        primary_region=verdict.primary_region if verdict else None,
    )
    logger.info(
        f"Match complete: {len(matches)} results, signals used: "
        f"{', '.join(report.signals_used) or 'none'}"
    )
    return report
