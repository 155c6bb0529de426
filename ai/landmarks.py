"""Facial landmark client and measurement extractor.

The landmark service runs a face-mesh model and returns normalized 3D points;
the geometry that turns them into ratios lives in
`phenomatch.pipelines.measurements`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
import numpy as np

from phenomatch.config import settings
from phenomatch.pipelines.measurements import MeasurementSet, compute_measurements
from phenomatch.resilience import Absent

logger = logging.getLogger(__name__)


class LandmarkServiceError(Exception):
    """Raised when the landmark service cannot be reached or answers garbage."""
    pass


@dataclass(frozen=True)
class NoFaceDetected(Absent):
    """The image contained no detectable face; an expected outcome."""
    reason: str = "no face detected"


class LandmarkClient:
    """Async client for the face-mesh landmark service."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_s: float | None = None,
        min_landmarks: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.landmarks.service_url).rstrip("/")
        self.timeout_s = settings.landmarks.timeout_s if timeout_s is None else timeout_s
        self.min_landmarks = settings.landmarks.min_landmarks if min_landmarks is None else min_landmarks
        self._transport = transport

    async def detect(self, image_url: str) -> np.ndarray | NoFaceDetected:
        """Detect landmarks of the first face in the image.

        Returns:
            (N, 3) float array of x, y, z points, or NoFaceDetected

        Raises:
            LandmarkServiceError: On network/HTTP errors or malformed replies
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post("/api/landmarks/detect", json={"imageUrl": image_url})
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise LandmarkServiceError(
                f"Landmark service error ({e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise LandmarkServiceError(f"Landmark service unreachable: {e!r}") from e
        except ValueError as e:
            raise LandmarkServiceError(f"Landmark service returned invalid JSON: {e}") from e

        faces = data.get("faces") if isinstance(data, dict) else None
        if not isinstance(faces, list):
            raise LandmarkServiceError("Landmark reply has no 'faces' list")
        if not faces:
            logger.warning("No face detected in image")
            return NoFaceDetected()

        points = _parse_points(faces[0])
        if points.shape[0] < self.min_landmarks:
            raise LandmarkServiceError(
                f"Face mesh too small: {points.shape[0]} landmarks (need {self.min_landmarks})"
            )
        return points

    async def extract(self, image_url: str) -> MeasurementSet | NoFaceDetected:
        """Extract anthropometric measurements for the face in the image."""
        landmarks = await self.detect(image_url)
        if isinstance(landmarks, NoFaceDetected):
            return landmarks
        try:
            measurements = compute_measurements(landmarks)
        except ValueError as e:
            raise LandmarkServiceError(f"Unusable face mesh: {e}") from e

        logger.info(
            f"Extracted {len(measurements.features)} measurements "
            f"from {measurements.landmark_count} landmarks"
        )
        return measurements


def _parse_points(face: object) -> np.ndarray:
    raw = face.get("landmarks") if isinstance(face, dict) else face
    if not isinstance(raw, list):
        raise LandmarkServiceError("Face entry has no landmark list")
    try:
        points = [
            (float(p["x"]), float(p["y"]), float(p.get("z", 0.0))) if isinstance(p, dict)
            else (float(p[0]), float(p[1]), float(p[2]) if len(p) > 2 else 0.0)
            for p in raw
        ]
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise LandmarkServiceError(f"Malformed landmark point: {e}") from e
    array = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if not np.all(np.isfinite(array)):
        raise LandmarkServiceError("Landmarks contain non-finite coordinates")
    return array
