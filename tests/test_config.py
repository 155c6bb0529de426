import pytest
from pydantic import ValidationError

from phenomatch.config import EmbeddingSettings, FusionSettings, Settings, get_settings
from phenomatch.pipelines.fusion import FusionWeights


def test_defaults():
    settings = Settings()
    assert settings.embeddings.dim == 512
    assert settings.landmarks.timeout_s == 25.0
    assert settings.embeddings.timeout_s == 30.0
    assert settings.vision.timeout_s == 90.0
    assert (settings.fusion.vision_weight, settings.fusion.embedding_weight, settings.fusion.measurement_weight) == (
        0.5,
        0.3,
        0.2,
    )


def test_fusion_weights_must_not_all_be_zero():
    with pytest.raises(ValidationError):
        FusionSettings(vision_weight=0.0, embedding_weight=0.0, measurement_weight=0.0)
    with pytest.raises(ValidationError):
        FusionSettings(vision_weight=-0.5)


def test_confidence_tiers_must_be_ordered():
    with pytest.raises(ValidationError):
        FusionSettings(high_confidence=0.6, medium_confidence=0.7)


def test_embedding_dimension_is_fixed():
    with pytest.raises(ValidationError):
        EmbeddingSettings(dim=128)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("FUSION_TOP_N", "5")
    monkeypatch.setenv("VISION_API_URL", "http://vision.internal:8080")
    assert FusionSettings().top_n == 5
    assert Settings().vision.api_url == "http://vision.internal:8080"


def test_settings_are_cached():
    assert get_settings() is get_settings()


def test_fusion_weights_from_settings():
    settings = get_settings()
    weights = FusionWeights.from_settings()
    assert weights.vision == settings.fusion.vision_weight
    assert weights.embedding == settings.fusion.embedding_weight
    assert weights.measurement == settings.fusion.measurement_weight
