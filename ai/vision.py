"""Vision-LLM phenotype classifier client.

Sends the image plus a compact listing of catalog labels to a vision-capable
LLM service and turns its JSON reply into a typed VisionVerdict. Confidences
are the model's own percentages: an opinion, not a calibrated probability.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from rapidfuzz import fuzz, process

from phenomatch.config import settings
from phenomatch.resilience import Absent, parse_json_with_repair, repair_json, retry_policy

logger = logging.getLogger(__name__)


class VisionError(Exception):
    """Raised when the vision classifier yields no usable verdict."""
    pass


class VisionServiceError(VisionError):
    """Raised on network errors, timeouts or non-2xx replies."""
    pass


class NoResponse(VisionError):
    """Raised when the classifier answers with an empty body."""
    pass


class MalformedResponse(VisionError):
    """Raised when the reply is not valid verdict JSON even after repair."""
    pass


@dataclass(frozen=True)
class VisionMatch:
    """One catalog label the model picked, with its self-reported confidence."""
    name: str
    confidence: float  # 0-100
    reasoning: str | None = None
    rank: int | None = None


@dataclass(frozen=True)
class VisionVerdict:
    """Parsed classifier output for one (image, label list) request."""
    analysis: str
    matches: tuple[VisionMatch, ...]
    primary_region: str | None = None
    provider: str | None = None
    dropped_labels: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis": self.analysis,
            "primary_region": self.primary_region,
            "provider": self.provider,
            "matches": [
                {
                    "name": m.name,
                    "confidence": m.confidence,
                    "reasoning": m.reasoning,
                    "rank": m.rank,
                }
                for m in self.matches
            ],
            "dropped_labels": list(self.dropped_labels),
        }


# Wire schema

class MatchPayload(BaseModel):
    """One entry of the classifier's `matches` array."""
    model_config = ConfigDict(extra="ignore")

    phenotype: str = Field(validation_alias=AliasChoices("phenotype", "name"), min_length=1)
    confidence: float
    reasoning: str | None = Field(default=None, validation_alias=AliasChoices("reasoning", "reason"))
    rank: int | None = Field(default=None, ge=1)

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        if v != v:  # NaN
            raise ValueError("confidence is NaN")
        return min(max(v, 0.0), 100.0)


class VerdictPayload(BaseModel):
    """Top-level classifier reply."""
    model_config = ConfigDict(extra="ignore")

    analysis: str = ""
    primary_region: str | None = Field(
        default=None,
        validation_alias=AliasChoices("primary_region", "primaryRegion"),
    )
    matches: list[Any] = Field(default_factory=list)
    provider: str | None = None


def build_prompt(
    candidate_labels: Sequence[str],
    top_k: int,
    regions: Mapping[str, Sequence[str]] | None = None,
) -> str:
    """Build the classification prompt with a compact numbered label list."""
    max_regions = settings.vision.max_regions_per_label
    lines = []
    for idx, label in enumerate(candidate_labels, start=1):
        label_regions = list((regions or {}).get(label, []))[:max_regions]
        suffix = f" ({', '.join(label_regions)})" if label_regions else ""
        lines.append(f"{idx}. {label}{suffix}")

    return (
        "Looking at this portrait, what reference groups does the person resemble?\n\n"
        f"Here are {len(candidate_labels)} reference groups to choose from:\n"
        + "\n".join(lines)
        + f"\n\nPick at most {top_k} groups from the list above that match this person best.\n\n"
        "Return STRICT JSON only:\n"
        "{\n"
        '  "analysis": "Short description of the visible features",\n'
        '  "primary_region": "Most likely broad region",\n'
        '  "matches": [\n'
        '    {"phenotype": "GroupName", "confidence": 85, "reasoning": "Why this matches"}\n'
        "  ]\n"
        "}\n\n"
        "Use exact names from the list above. Confidence is 0-100."
    )


def _validate_payload(parsed: Any) -> VerdictPayload:
    if isinstance(parsed, list):
        parsed = {"matches": parsed}
    return VerdictPayload.model_validate(parsed)


def parse_verdict(
    content: str | None,
    candidate_labels: Sequence[str],
    top_k: int,
    provider: str | None = None,
) -> VisionVerdict:
    """Parse and validate a raw classifier reply against the label list.

    Names are matched to labels case-insensitively; unknown names and
    incomplete entries are dropped. At most `top_k` matches are kept.

    Raises:
        NoResponse: If the content is empty
        MalformedResponse: If no valid verdict can be recovered
    """
    if content is None or not content.strip():
        raise NoResponse("Vision classifier returned an empty response")

    parsed = parse_json_with_repair(content)
    if parsed is None:
        raise MalformedResponse("Vision classifier reply is not valid JSON, even after repair")

    try:
        payload = _validate_payload(parsed)
    except ValidationError as e:
        # Shape mismatch: give the repair path one chance on the raw text
        logger.warning(f"Vision reply failed schema validation: {e.error_count()} errors")
        repaired = parse_json_with_repair(repair_json(content))
        try:
            payload = _validate_payload(repaired)
        except ValidationError as e2:
            raise MalformedResponse(f"Vision reply does not match schema: {e2}") from e2

    labels_by_key = {label.strip().casefold(): label for label in candidate_labels}
    kept: list[VisionMatch] = []
    dropped: list[str] = []
    seen: set[str] = set()

    for position, raw_match in enumerate(payload.matches, start=1):
        if len(kept) >= top_k:
            break
        try:
            entry = MatchPayload.model_validate(raw_match)
        except ValidationError as e:
            logger.warning(f"Dropping incomplete vision match #{position}: {e.error_count()} errors")
            continue

        label = labels_by_key.get(entry.phenotype.strip().casefold())
        if label is None:
            suggestion = process.extractOne(entry.phenotype, candidate_labels, scorer=fuzz.WRatio)
            hint = f" (closest catalog name: {suggestion[0]!r})" if suggestion else ""
            logger.warning(f"Vision model returned unknown phenotype {entry.phenotype!r}{hint}")
            dropped.append(entry.phenotype)
            continue
        if label.casefold() in seen:
            continue
        seen.add(label.casefold())

        kept.append(VisionMatch(
            name=label,
            confidence=entry.confidence,
            reasoning=entry.reasoning,
            rank=entry.rank or position,
        ))

    logger.info(f"Vision classifier matched {len(kept)} catalog labels ({len(dropped)} dropped)")
    return VisionVerdict(
        analysis=payload.analysis,
        matches=tuple(kept),
        primary_region=payload.primary_region,
        provider=payload.provider or provider,
        dropped_labels=tuple(dropped),
    )


class VisionClassifier:
    """Async client for the vision classification service."""

    def __init__(
        self,
        api_url: str | None = None,
        *,
        provider: str | None = None,
        timeout_s: float | None = None,
        retry_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_url = api_url or settings.vision.api_url
        self.api_url = api_url.rstrip("/") if api_url else None
        self.provider = provider or settings.vision.provider
        self.timeout_s = settings.vision.timeout_s if timeout_s is None else timeout_s
        self.retry_attempts = settings.vision.retry_attempts if retry_attempts is None else retry_attempts
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.api_url is not None

    async def classify(
        self,
        image_url: str,
        candidate_labels: Sequence[str],
        top_k: int | None = None,
        regions: Mapping[str, Sequence[str]] | None = None,
    ) -> VisionVerdict | Absent:
        """Classify the image against the candidate labels.

        Returns:
            VisionVerdict, or Absent when the classifier is not configured

        Raises:
            VisionServiceError: On network/timeout/HTTP errors
            NoResponse: On an empty reply
            MalformedResponse: If the reply cannot be parsed or repaired
        """
        if not self.enabled:
            logger.warning("Vision classifier URL is not configured; skipping vision signal")
            return Absent("vision classifier not configured")
        if not candidate_labels:
            return Absent("no candidate labels")

        top_k = settings.vision.top_k if top_k is None else top_k
        body = {
            "image_url": image_url,
            "provider": self.provider,
            "top_k": top_k,
            "candidates": list(candidate_labels),
            "prompt": build_prompt(candidate_labels, top_k, regions),
        }

        async for attempt in retry_policy(self.retry_attempts, (VisionServiceError,)):
            with attempt:
                content = await self._post(body)
        return parse_verdict(content, candidate_labels, top_k, provider=self.provider)

    async def _post(self, body: dict[str, Any]) -> str:
        try:
            async with httpx.AsyncClient(
                base_url=self.api_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/classify-url",
                    json=body,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Vision classification failed: {e.response.status_code} {e.response.text[:200]}"
            )
            raise VisionServiceError(
                f"Vision classifier error ({e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise VisionServiceError(f"Vision classifier unreachable: {e!r}") from e
        return response.text
