"""Face embedding client for the external ArcFace embedding service.

The contract with the service is "image in, 512 floats out": anything else is
a hard error for this signal, never silently accepted.
"""
from __future__ import annotations

import logging
import math

import httpx

from phenomatch.config import settings
from phenomatch.resilience import retry_policy

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when an embedding cannot be obtained."""
    pass


class EmbeddingServiceUnavailable(EmbeddingError):
    """Raised on network errors, timeouts or non-2xx replies."""
    pass


class InvalidEmbeddingShape(EmbeddingError):
    """Raised when the service returns a vector of the wrong length."""
    pass


class EmbeddingClient:
    """Async client for the embedding service.

    No caching. Retries only when `retry_attempts` > 1.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_s: float | None = None,
        dim: int | None = None,
        retry_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.embeddings.service_url).rstrip("/")
        self.timeout_s = settings.embeddings.timeout_s if timeout_s is None else timeout_s
        self.dim = settings.embeddings.dim if dim is None else dim
        self.retry_attempts = settings.embeddings.retry_attempts if retry_attempts is None else retry_attempts
        self._transport = transport

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_s,
            transport=self._transport,
        )

    async def embed(self, image_url: str) -> list[float]:
        """Compute the face embedding for one image.

        Args:
            image_url: Publicly reachable image URL

        Returns:
            Embedding vector of exactly `dim` floats

        Raises:
            EmbeddingServiceUnavailable: On network/timeout/HTTP errors
            InvalidEmbeddingShape: If the vector length is not `dim`
        """
        async for attempt in retry_policy(self.retry_attempts, (EmbeddingServiceUnavailable,)):
            with attempt:
                return await self._embed_once(image_url)
        raise EmbeddingServiceUnavailable("No embedding attempt was made")

    async def _embed_once(self, image_url: str) -> list[float]:
        try:
            async with self._client(self.timeout_s) as client:
                response = await client.post(
                    "/api/embeddings/generate",
                    json={"imageUrl": image_url},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error(f"Embedding service error ({e.response.status_code}): {detail}")
            raise EmbeddingServiceUnavailable(
                f"Embedding service error ({e.response.status_code}): {detail}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Embedding service unreachable: {e!r}")
            raise EmbeddingServiceUnavailable(f"Embedding service unreachable: {e!r}") from e
        except ValueError as e:
            raise EmbeddingServiceUnavailable(f"Embedding service returned invalid JSON: {e}") from e

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list):
            raise InvalidEmbeddingShape("Invalid embedding format received from service")
        if len(embedding) != self.dim:
            raise InvalidEmbeddingShape(
                f"Unexpected embedding dimensions: {len(embedding)} (expected {self.dim})"
            )
        try:
            vector = [float(v) for v in embedding]
        except (TypeError, ValueError) as e:
            raise InvalidEmbeddingShape(f"Non-numeric embedding values: {e}") from e
        if not all(math.isfinite(v) for v in vector):
            raise InvalidEmbeddingShape("Embedding contains non-finite values")

        metadata = data.get("metadata")
        score = metadata.get("detection_score") if isinstance(metadata, dict) else None
        logger.info(
            f"Generated {self.dim}D embedding (detection score: "
            f"{f'{score:.3f}' if isinstance(score, (int, float)) else 'n/a'})"
        )
        return vector

    async def health(self) -> bool:
        """Check that the service is up and its matcher model is loaded."""
        try:
            async with self._client(settings.embeddings.health_timeout_s) as client:
                response = await client.get("/health")
            if response.status_code != 200:
                return False
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Embedding service health check failed: {e!r}")
            return False
        return data.get("status") == "healthy" and data.get("matcher_loaded") is True


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or "Unknown error"
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("details") or "Unknown error")
    return str(payload)[:200]
