"""Plain-text summary of a hybrid match."""
from __future__ import annotations

from typing import Sequence

from phenomatch.pipelines.fusion import MatchResult
from phenomatch.pipelines.measurements import FacialFeatures, MeasurementSet

_KEY_MEASUREMENTS = (
    ("face_width_to_height_ratio", "Face Width-to-Height Ratio"),
    ("nasal_index", "Nasal Index"),
    ("facial_index", "Facial Index"),
    ("eye_spacing_ratio", "Eye Spacing Ratio"),
)


def _fmt(value: float | None) -> str:
    return f"{value:.2f}" if value is not None else "n/a"


def build_analysis_text(
    measurements: MeasurementSet | None,
    features: FacialFeatures | None,
    matches: Sequence[MatchResult] = (),
    max_matches: int = 3,
) -> str:
    """Render measurements, facial features and the top matches as text."""
    lines = ["Facial Analysis Results:", ""]

    if features is not None:
        lines += [
            f"Face Shape: {features.face_shape}",
            f"Face Proportions: {features.proportions}",
            f"Nasal Structure: {features.nose_type}",
            f"Jaw Structure: {features.jaw_type}",
            "",
        ]

    if measurements is not None:
        lines.append("Key Measurements:")
        lines += [f"• {label}: {_fmt(measurements.get(key))}" for key, label in _KEY_MEASUREMENTS]
        lines.append("")
        if measurements.degenerate:
            lines.append(
                "Omitted: " + ", ".join(d.feature for d in measurements.degenerate)
            )
            lines.append("")
    else:
        lines += ["No facial measurements available.", ""]

    if features is not None and features.characteristics:
        lines.append("Distinctive Characteristics:")
        lines += [f"• {c}" for c in features.characteristics]
        lines.append("")

    if matches:
        lines.append("Top Matches:")
        for match in matches[:max_matches]:
            signals = ", ".join(s.value for s in sorted(match.contributing_signals, key=lambda s: s.value))
            lines.append(
                f"{match.rank}. {match.name}: {match.hybrid_score * 100:.0f}% "
                f"({match.confidence} confidence; {signals})"
            )
        lines.append("")

    if measurements is not None and measurements.landmark_count:
        lines.append(f"Landmarks Detected: {measurements.landmark_count}")

    return "\n".join(lines).strip()
