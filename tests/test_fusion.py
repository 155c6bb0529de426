import math

import pytest

from ai.vision import VisionMatch, VisionVerdict
from phenomatch.catalog import catalog_from_records
from phenomatch.errors import LengthMismatch, NoSignalAvailable
from phenomatch.pipelines.fusion import (
    FusionWeights,
    HybridQuery,
    Signal,
    confidence_tier,
    rank_candidates,
)
from phenomatch.pipelines.measurements import MeasurementSet

DIM = 512


def query_embedding() -> list[float]:
    return [1.0] + [0.0] * (DIM - 1)


def embedding_with_cosine(cos: float) -> list[float]:
    vec = [0.0] * DIM
    vec[0] = cos
    vec[1] = math.sqrt(1.0 - cos * cos)
    return vec


def record(name: str, embedding=None, measurements=None) -> dict:
    return {
        "id": name.lower(),
        "name": name,
        "regions": ["Somewhere"],
        "reference_embedding": embedding,
        "reference_measurements": measurements,
    }


def verdict(*matches: tuple[str, float]) -> VisionVerdict:
    return VisionVerdict(
        analysis="",
        matches=tuple(VisionMatch(name=n, confidence=c, rank=i) for i, (n, c) in enumerate(matches, 1)),
    )


def test_renormalized_weights_rank_embedding_only_candidate_first():
    catalog = catalog_from_records([
        record("X", embedding=embedding_with_cosine(0.92)),
        record("Y", embedding=embedding_with_cosine(0.40)),
    ])
    query = HybridQuery(embedding=query_embedding(), vision=verdict(("Y", 80.0)))

    results = rank_candidates(query, catalog)

    assert [r.name for r in results] == ["X", "Y"]
    x, y = results
    assert x.hybrid_score == pytest.approx(0.92)
    assert y.hybrid_score == pytest.approx(0.65)
    assert x.contributing_signals == frozenset({Signal.EMBEDDING})
    assert y.contributing_signals == frozenset({Signal.VISION, Signal.EMBEDDING})
    assert y.vision_confidence == 80.0


def test_zero_signal_candidates_are_excluded():
    catalog = catalog_from_records([
        record("A", embedding=embedding_with_cosine(0.7)),
        record("B", measurements={"facialIndex": 1.1}),
        record("C"),
    ])
    query = HybridQuery(
        embedding=query_embedding(),
        measurements=MeasurementSet({"facial_index": 1.0}),
    )

    names = [r.name for r in rank_candidates(query, catalog)]

    assert "C" not in names
    assert sorted(names) == ["A", "B"]


def test_degrades_without_vision():
    catalog = catalog_from_records([
        record("A", embedding=embedding_with_cosine(0.3), measurements={"facialIndex": 1.0}),
        record("B", embedding=embedding_with_cosine(0.9), measurements={"facialIndex": 1.0}),
        record("C", embedding=embedding_with_cosine(0.7)),
    ])
    query = HybridQuery(
        embedding=query_embedding(),
        measurements=MeasurementSet({"facial_index": 1.0}),
        vision=None,
    )

    results = rank_candidates(query, catalog)

    assert [r.name for r in results] == ["B", "C", "A"]
    assert [r.rank for r in results] == [1, 2, 3]
    assert all(Signal.VISION not in r.contributing_signals for r in results)
    # B: (0.3 * 0.9 + 0.2 * 1.0) / 0.5
    assert results[0].hybrid_score == pytest.approx(0.94)
    assert results[0].measurement_similarity == pytest.approx(1.0)


def test_ranking_is_deterministic():
    catalog = catalog_from_records([
        record(f"P{i}", embedding=embedding_with_cosine(0.1 * (i % 5)), measurements={"nasalIndex": 0.7 + i / 100})
        for i in range(12)
    ])
    query = HybridQuery(
        embedding=query_embedding(),
        measurements=MeasurementSet({"nasal_index": 0.75}),
        vision=verdict(("P3", 60.0), ("P7", 90.0)),
    )

    first = [r.to_dict() for r in rank_candidates(query, catalog, top_n=12)]
    second = [r.to_dict() for r in rank_candidates(query, catalog, top_n=12)]

    assert first == second


def test_ties_prefer_vision_then_insertion_order():
    catalog = catalog_from_records([
        record("EmbedFirst", embedding=query_embedding()),
        record("EmbedSecond", embedding=query_embedding()),
        record("Visual"),
    ])
    query = HybridQuery(embedding=query_embedding(), vision=verdict(("Visual", 100.0)))

    results = rank_candidates(query, catalog)

    assert [r.hybrid_score for r in results] == [1.0, 1.0, 1.0]
    assert [r.name for r in results] == ["Visual", "EmbedFirst", "EmbedSecond"]


def test_no_signal_available_is_an_error():
    catalog = catalog_from_records([record("A"), record("B")])
    with pytest.raises(NoSignalAvailable):
        rank_candidates(HybridQuery(embedding=query_embedding()), catalog)
    with pytest.raises(NoSignalAvailable):
        rank_candidates(HybridQuery(), catalog)


def test_unmatched_vision_labels_contribute_nothing():
    catalog = catalog_from_records([record("A"), record("B")])
    query = HybridQuery(vision=verdict(("Somebody Else", 90.0)))
    with pytest.raises(NoSignalAvailable):
        rank_candidates(query, catalog)


def test_vision_names_match_case_insensitively():
    catalog = catalog_from_records([record("Nordid"), record("Sinid")])
    results = rank_candidates(HybridQuery(vision=verdict(("nordid", 70.0))), catalog)
    assert [r.name for r in results] == ["Nordid"]
    assert results[0].vision_rank == 1


def test_top_n_truncates_with_dense_ranks():
    catalog = catalog_from_records([
        record(f"P{i}", embedding=embedding_with_cosine(0.9 - 0.1 * i)) for i in range(6)
    ])
    results = rank_candidates(HybridQuery(embedding=query_embedding()), catalog, top_n=3)

    assert [r.rank for r in results] == [1, 2, 3]
    assert [r.name for r in results] == ["P0", "P1", "P2"]
    with pytest.raises(ValueError):
        rank_candidates(HybridQuery(embedding=query_embedding()), catalog, top_n=0)


def test_negative_cosine_scores_zero_but_is_reported():
    catalog = catalog_from_records([record("Opposite", embedding=embedding_with_cosine(-0.5))])
    result = rank_candidates(HybridQuery(embedding=query_embedding()), catalog)[0]
    assert result.hybrid_score == 0.0
    assert result.embedding_similarity == pytest.approx(-0.5)
    assert result.confidence == "low"


def test_zero_weight_signal_is_ignored():
    catalog = catalog_from_records([record("A", measurements={"facialIndex": 1.0})])
    query = HybridQuery(measurements=MeasurementSet({"facial_index": 1.0}))
    weights = FusionWeights(vision=0.5, embedding=0.3, measurement=0.0)
    with pytest.raises(NoSignalAvailable):
        rank_candidates(query, catalog, weights=weights)


def test_embedding_dimension_mismatch_propagates():
    catalog = catalog_from_records([record("A", embedding=query_embedding())])
    with pytest.raises(LengthMismatch):
        rank_candidates(HybridQuery(embedding=[1.0, 0.0, 0.0]), catalog)


def test_invalid_weights_rejected():
    with pytest.raises(ValueError):
        FusionWeights(vision=0.0, embedding=0.0, measurement=0.0)
    with pytest.raises(ValueError):
        FusionWeights(vision=-0.1)


def test_confidence_tiers():
    assert confidence_tier(0.81) == "high"
    assert confidence_tier(0.80) == "medium"
    assert confidence_tier(0.66) == "medium"
    assert confidence_tier(0.65) == "low"
    assert confidence_tier(0.1) == "low"


def test_match_result_serializes_signals_in_fixed_order():
    catalog = catalog_from_records([
        record("A", embedding=query_embedding(), measurements={"facialIndex": 1.0}),
    ])
    query = HybridQuery(
        embedding=query_embedding(),
        measurements=MeasurementSet({"facial_index": 1.0}),
        vision=verdict(("A", 90.0)),
    )
    payload = rank_candidates(query, catalog)[0].to_dict()
    assert payload["contributing_signals"] == ["vision", "embedding", "measurement"]
    assert payload["confidence"] == "high"
