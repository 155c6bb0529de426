"""Anthropometric measurements derived from facial landmarks.

Covers three steps that share the feature vocabulary:
- turning a 3D face mesh into named ratios and angles,
- comparing two measurement sets with a weighted relative-difference metric,
- describing a measurement set in plain words (face shape, nose, jaw...).

All ratios are computed from distances measured in one landmark coordinate
system, so ratios from different images are comparable even though the raw
distances are not.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np

logger = logging.getLogger(__name__)


# Ratio/angle features and their comparison weights (sum to 1.0)
FEATURE_WEIGHTS: Mapping[str, float] = MappingProxyType({
    "face_width_to_height_ratio": 0.20,
    "jaw_to_face_width_ratio": 0.15,
    "eye_spacing_ratio": 0.12,
    "nose_width_ratio": 0.12,
    "mouth_width_ratio": 0.10,
    "facial_index": 0.12,
    "nasal_index": 0.10,
    "nasofrontal_angle_deg": 0.05,
    "gonial_angle_deg": 0.04,
})

# Stored reference measurements use the catalog's camelCase keys
FEATURE_ALIASES: Mapping[str, str] = MappingProxyType({
    "faceWidthToHeightRatio": "face_width_to_height_ratio",
    "jawToFaceWidthRatio": "jaw_to_face_width_ratio",
    "eyeSpacingRatio": "eye_spacing_ratio",
    "noseWidthRatio": "nose_width_ratio",
    "mouthWidthRatio": "mouth_width_ratio",
    "facialIndex": "facial_index",
    "nasalIndex": "nasal_index",
    "nasofrontalAngleDeg": "nasofrontal_angle_deg",
    "nasofrontalAngle": "nasofrontal_angle_deg",
    "gonialAngleDeg": "gonial_angle_deg",
    "gonialAngle": "gonial_angle_deg",
})

# Face mesh indices (478-point topology)
LANDMARK_INDICES: Mapping[str, int] = MappingProxyType({
    "left_cheek": 234,
    "right_cheek": 454,
    "forehead": 10,
    "chin": 152,
    "left_eye_inner": 133,
    "right_eye_inner": 362,
    "nose_tip": 1,
    "nose_bridge": 6,
    "nose_left_wing": 129,
    "nose_right_wing": 358,
    "mouth_left": 61,
    "mouth_right": 291,
    "left_jaw": 172,
    "right_jaw": 397,
})

REQUIRED_LANDMARKS = max(LANDMARK_INDICES.values()) + 1

_EPS = 1e-9


@dataclass(frozen=True)
class DegenerateMeasurement:
    """A feature that could not be computed for one extraction."""
    feature: str
    reason: str


@dataclass(frozen=True)
class MeasurementSet:
    """Immutable named mapping of ratio/angle features.

    Raw lengths are kept for reporting only and are never compared.
    """
    features: Mapping[str, float]
    raw_lengths: Mapping[str, float] = field(default_factory=dict)
    degenerate: tuple[DegenerateMeasurement, ...] = ()
    landmark_count: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", MappingProxyType(dict(self.features)))
        object.__setattr__(self, "raw_lengths", MappingProxyType(dict(self.raw_lengths)))
        object.__setattr__(self, "degenerate", tuple(self.degenerate))

    def __contains__(self, feature: object) -> bool:
        return feature in self.features

    def get(self, feature: str) -> float | None:
        return self.features.get(feature)

    @property
    def present_features(self) -> list[str]:
        return [name for name in FEATURE_WEIGHTS if name in self.features]

    def to_dict(self) -> dict[str, Any]:
        return {
            "features": dict(self.features),
            "raw_lengths": dict(self.raw_lengths),
            "degenerate": [
                {"feature": d.feature, "reason": d.reason} for d in self.degenerate
            ],
            "landmark_count": self.landmark_count,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> MeasurementSet | None:
        """Build a set from stored reference data, skipping unusable values.

        Accepts both snake_case and camelCase feature names. Returns None when
        nothing usable is left.
        """
        if not data:
            return None

        features: dict[str, float] = {}
        for key, raw in data.items():
            name = FEATURE_ALIASES.get(key, key)
            if name not in FEATURE_WEIGHTS:
                continue
            try:
                value = float(raw)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring non-numeric reference measurement {key}={raw!r}")
                continue
            if not math.isfinite(value):
                logger.warning(f"Ignoring non-finite reference measurement {key}={raw!r}")
                continue
            features[name] = value

        return cls(features=features) if features else None


class Incomparable:
    """Result of comparing two sets that share no present feature.

    Distinct from 0.0, which would claim maximal dissimilarity.
    """

    _instance: Incomparable | None = None

    def __new__(cls) -> Incomparable:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "INCOMPARABLE"


INCOMPARABLE = Incomparable()


def distance(p1: np.ndarray, p2: np.ndarray) -> float:
    """Euclidean distance between two 3D points."""
    return float(np.linalg.norm(np.asarray(p2, dtype=np.float64) - np.asarray(p1, dtype=np.float64)))


def angle_at(point1: np.ndarray, vertex: np.ndarray, point2: np.ndarray) -> float | None:
    """Angle in degrees at `vertex` between the arms to point1 and point2.

    Returns None when either arm has zero length.
    """
    v1 = np.asarray(point1, dtype=np.float64) - np.asarray(vertex, dtype=np.float64)
    v2 = np.asarray(point2, dtype=np.float64) - np.asarray(vertex, dtype=np.float64)
    denom = float(np.linalg.norm(v1) * np.linalg.norm(v2))
    if denom < _EPS:
        return None
    cosine = float(np.clip(np.dot(v1, v2) / denom, -1.0, 1.0))
    return float(np.degrees(np.arccos(cosine)))


def _ratio(
    feature: str,
    numerator: float,
    denominator: float,
    degenerate: list[DegenerateMeasurement],
) -> float | None:
    if not math.isfinite(numerator) or not math.isfinite(denominator) or denominator < _EPS:
        degenerate.append(
            DegenerateMeasurement(feature, f"degenerate denominator ({denominator:.3g})")
        )
        return None
    return numerator / denominator


def compute_measurements(landmarks: np.ndarray | list) -> MeasurementSet:
    """Derive ratio and angle features from one face mesh.

    Args:
        landmarks: (N, 3) array of normalized x, y, z landmark coordinates

    Returns:
        MeasurementSet; features whose denominator collapsed are omitted and
        listed in `degenerate`

    Raises:
        ValueError: If the mesh is too small or not three-dimensional
    """
    points = np.asarray(landmarks, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Expected (N, 3) landmarks, got shape {points.shape}")
    if points.shape[0] < REQUIRED_LANDMARKS:
        raise ValueError(
            f"Face mesh has {points.shape[0]} landmarks, need at least {REQUIRED_LANDMARKS}"
        )

    lm = {name: points[idx] for name, idx in LANDMARK_INDICES.items()}

    raw = {
        "face_width": distance(lm["left_cheek"], lm["right_cheek"]),
        "face_height": distance(lm["forehead"], lm["chin"]),
        "jaw_width": distance(lm["left_jaw"], lm["right_jaw"]),
        "nose_length": distance(lm["nose_bridge"], lm["nose_tip"]),
        "nose_width": distance(lm["nose_left_wing"], lm["nose_right_wing"]),
        "eye_distance": distance(lm["left_eye_inner"], lm["right_eye_inner"]),
        "mouth_width": distance(lm["mouth_left"], lm["mouth_right"]),
        "forehead_height": distance(lm["forehead"], lm["nose_bridge"]),
    }

    degenerate: list[DegenerateMeasurement] = []
    candidates = {
        "face_width_to_height_ratio": _ratio(
            "face_width_to_height_ratio", raw["face_width"], raw["face_height"], degenerate
        ),
        "jaw_to_face_width_ratio": _ratio(
            "jaw_to_face_width_ratio", raw["jaw_width"], raw["face_width"], degenerate
        ),
        "eye_spacing_ratio": _ratio(
            "eye_spacing_ratio", raw["eye_distance"], raw["face_width"], degenerate
        ),
        "nose_width_ratio": _ratio(
            "nose_width_ratio", raw["nose_width"], raw["face_width"], degenerate
        ),
        "mouth_width_ratio": _ratio(
            "mouth_width_ratio", raw["mouth_width"], raw["face_width"], degenerate
        ),
        "facial_index": _ratio(
            "facial_index", raw["face_height"], raw["face_width"], degenerate
        ),
        "nasal_index": _ratio(
            "nasal_index", raw["nose_width"], raw["nose_length"], degenerate
        ),
    }

    angles = {
        "nasofrontal_angle_deg": angle_at(lm["forehead"], lm["nose_bridge"], lm["nose_tip"]),
        "gonial_angle_deg": angle_at(lm["left_jaw"], lm["chin"], lm["right_jaw"]),
    }
    for name, value in angles.items():
        if value is None:
            degenerate.append(DegenerateMeasurement(name, "zero-length angle arm"))
        candidates[name] = value

    features = {name: value for name, value in candidates.items() if value is not None}
    if degenerate:
        logger.warning(
            f"Omitted {len(degenerate)} degenerate features: "
            f"{', '.join(d.feature for d in degenerate)}"
        )

    return MeasurementSet(
        features=features,
        raw_lengths=raw,
        degenerate=tuple(degenerate),
        landmark_count=int(points.shape[0]),
    )


def feature_similarity(v1: float, v2: float) -> float:
    """Symmetric relative-difference similarity in [0, 1]."""
    scale = max(abs(v1), abs(v2))
    if scale == 0.0:
        return 1.0
    return 1.0 - min(abs(v1 - v2) / scale, 1.0)


def compare_measurements(
    a: MeasurementSet,
    b: MeasurementSet,
    weights: Mapping[str, float] = FEATURE_WEIGHTS,
) -> float | Incomparable:
    """Weighted similarity of two measurement sets.

    Features missing from either side drop out of both the numerator and the
    weight sum, so the score is a weighted average over shared features only.

    Returns:
        Similarity in [0, 1], or INCOMPARABLE when no feature is shared
    """
    total = 0.0
    total_weight = 0.0

    for feature, weight in weights.items():
        v1 = a.get(feature)
        v2 = b.get(feature)
        if v1 is None or v2 is None or weight <= 0:
            continue
        total += feature_similarity(v1, v2) * weight
        total_weight += weight

    if total_weight == 0.0:
        return INCOMPARABLE
    return min(max(total / total_weight, 0.0), 1.0)


@dataclass(frozen=True)
class FacialFeatures:
    """Plain-language description of a measurement set."""
    face_shape: str
    nose_type: str
    jaw_type: str
    proportions: str
    characteristics: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "face_shape": self.face_shape,
            "nose_type": self.nose_type,
            "jaw_type": self.jaw_type,
            "proportions": self.proportions,
            "characteristics": list(self.characteristics),
        }


def describe_features(measurements: MeasurementSet) -> FacialFeatures:
    """Classify face shape, nose, jaw and proportions from the ratios.

    Features absent from a partial set are reported as "unknown".
    """
    characteristics: list[str] = []

    fwhr = measurements.get("face_width_to_height_ratio")
    if fwhr is None:
        face_shape = "unknown"
    elif fwhr > 0.85:
        face_shape = "round"
        characteristics.append("Broad facial structure")
    elif fwhr < 0.70:
        face_shape = "elongated"
        characteristics.append("Narrow, elongated facial structure")
    else:
        face_shape = "oval"
        characteristics.append("Balanced facial proportions")

    nasal = measurements.get("nasal_index")
    if nasal is None:
        nose_type = "unknown"
    elif nasal > 0.85:
        nose_type = "broad"
        characteristics.append("Wider nasal structure")
    elif nasal < 0.70:
        nose_type = "narrow"
        characteristics.append("Narrow nasal structure")
    else:
        nose_type = "medium"

    jaw = measurements.get("jaw_to_face_width_ratio")
    if jaw is None:
        jaw_type = "unknown"
    elif jaw > 0.90:
        jaw_type = "wide"
        characteristics.append("Prominent jaw structure")
    elif jaw < 0.75:
        jaw_type = "narrow"
        characteristics.append("Delicate jaw structure")
    else:
        jaw_type = "medium"

    facial_index = measurements.get("facial_index")
    if facial_index is None:
        proportions = "unknown"
    elif facial_index > 1.2:
        proportions = "leptoprosopic (narrow and tall)"
        characteristics.append("Vertically elongated features")
    elif facial_index < 0.9:
        proportions = "euryprosopic (wide and short)"
        characteristics.append("Horizontally broad features")
    else:
        proportions = "balanced"

    eye_spacing = measurements.get("eye_spacing_ratio")
    if eye_spacing is not None:
        if eye_spacing > 0.45:
            characteristics.append("Wide-set eyes")
        elif eye_spacing < 0.35:
            characteristics.append("Close-set eyes")

    nasofrontal = measurements.get("nasofrontal_angle_deg")
    if nasofrontal is not None:
        if nasofrontal > 140:
            characteristics.append("Prominent nasal bridge")
        elif nasofrontal < 125:
            characteristics.append("Flatter nasal profile")

    return FacialFeatures(
        face_shape=face_shape,
        nose_type=nose_type,
        jaw_type=jaw_type,
        proportions=proportions,
        characteristics=tuple(characteristics),
    )
