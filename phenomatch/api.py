"""FastAPI app with health, matching and catalog endpoints, and error handling.

Implements image → phenotype matching wired to the hybrid pipeline.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ai.embeddings import EmbeddingClient
from ai.landmarks import LandmarkClient
from ai.vision import VisionClassifier
from config.region_colors import candidate_color

from .catalog import Catalog, load_catalog
from .config import settings
from .db import AsyncSessionMaker, database_ready
from .errors import CatalogError, MatchingCancelled, MatchingError, NoSignalAvailable
from .logging_config import setup_logging
from .pipelines.matching import match_image
from .pipelines.report import build_analysis_text
from .url_validator import InvalidImageUrl, sanitize_image_url

logger = logging.getLogger(__name__)


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    embedding_service: str
    vision_enabled: bool


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class MatchRequest(BaseModel):
    """Match an image against the catalog."""
    image_url: str = Field(min_length=1, max_length=2048)
    top_n: int | None = Field(default=None, ge=1, le=500)


class MatchResultDTO(BaseModel):
    """Single ranked phenotype."""
    candidate_id: str
    name: str
    rank: int
    hybrid_score: float
    confidence: str
    contributing_signals: list[str]
    embedding_similarity: float | None = None
    measurement_similarity: float | None = None
    vision_confidence: float | None = None
    vision_reasoning: str | None = None
    regions: list[str] = Field(default_factory=list)


class SignalDTO(BaseModel):
    """Outcome of one similarity signal."""
    signal: str
    status: str
    reason: str | None = None
    elapsed_ms: float


class MatchResponse(BaseModel):
    """Match response."""
    status: str
    matches: list[MatchResultDTO]
    signals: list[SignalDTO]
    measurements: dict[str, float] | None = None
    facial_features: dict | None = None
    degenerate_features: list[dict] = Field(default_factory=list)
    vision_analysis: str | None = None
    primary_region: str | None = None
    analysis_text: str
    computed_at: str
    message: str


class CatalogEntryDTO(BaseModel):
    """Catalog entry with the reference signals it carries."""
    id: str
    name: str
    regions: list[str]
    color: str
    has_embedding: bool
    has_measurements: bool


class CatalogResponse(BaseModel):
    """Catalog listing."""
    total: int
    phenotypes: list[CatalogEntryDTO]


async def read_catalog() -> Catalog:
    """Read the phenotype catalog from the database."""
    async with AsyncSessionMaker() as session:
        return await load_catalog(session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic.

    The catalog is loaded once here and shared read-only by every request;
    an empty or unreadable catalog aborts startup with CatalogError.
    """
    # Startup
    setup_logging()
    logger.info("Application starting up")
    if not settings.vision.api_url:
        logger.warning("VISION_API_URL not set; matching will run without the vision signal")
    app.state.catalog = await read_catalog()

    yield

    # Shutdown
    app.state.catalog = None
    logger.info("Application shutting down")


app = FastAPI(
    title="Hybrid Phenotype Matching",
    version=settings.version,
    description="Ranks reference phenotypes for a face image using vision, embedding and measurement signals",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],  # Frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependencies
def get_catalog(request: Request) -> Catalog:
    catalog = getattr(request.app.state, "catalog", None)
    if catalog is None:
        raise CatalogError("Reference catalog is not loaded")
    return catalog


def get_landmark_client() -> LandmarkClient:
    return LandmarkClient()


def get_embedding_client() -> EmbeddingClient:
    return EmbeddingClient()


def get_vision_client() -> VisionClassifier:
    return VisionClassifier()


async def get_database_status() -> bool:
    return await database_ready()


# Exception handlers
def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


@app.exception_handler(InvalidImageUrl)
async def invalid_url_handler(request, exc: InvalidImageUrl):
    """Handle rejected image URLs."""
    return _error(status.HTTP_400_BAD_REQUEST, "invalid_image_url", exc)


@app.exception_handler(NoSignalAvailable)
async def no_signal_handler(request, exc: NoSignalAvailable):
    """Handle images for which no similarity signal could be computed."""
    logger.warning(f"No signal available: {exc}")
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "no_signal_available", exc)


@app.exception_handler(CatalogError)
async def catalog_error_handler(request, exc: CatalogError):
    """Handle an empty or unreadable catalog."""
    logger.error(f"Catalog error: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "catalog_unavailable", exc)


@app.exception_handler(MatchingCancelled)
async def cancelled_handler(request, exc: MatchingCancelled):
    """Handle matches that ran out of time."""
    logger.error(f"Matching cancelled: {exc}")
    return _error(status.HTTP_504_GATEWAY_TIMEOUT, "matching_timeout", exc)


@app.exception_handler(MatchingError)
async def matching_error_handler(request, exc: MatchingError):
    """Handle any other matching pipeline error."""
    logger.error(f"Matching error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "matching_error", exc)


@app.get("/health", response_model=HealthResponse)
async def health(
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
    database_ok: bool = Depends(get_database_status),
) -> HealthResponse:
    """Health check endpoint.

    Reports "degraded" when the catalog database is unreachable; a missing
    embedding service only removes one signal.
    """
    embedding_ok = await embedding_client.health()
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        version=settings.version,
        database="ok" if database_ok else "unavailable",
        embedding_service="healthy" if embedding_ok else "unavailable",
        vision_enabled=bool(settings.vision.api_url),
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "match": "/match",
            "catalog": "/catalog",
            "docs": "/docs",
        },
    }


@app.get("/catalog", response_model=CatalogResponse)
async def list_catalog(catalog: Catalog = Depends(get_catalog)) -> CatalogResponse:
    """List catalog phenotypes and which reference signals each carries."""
    return CatalogResponse(
        total=len(catalog),
        phenotypes=[
            CatalogEntryDTO(
                id=c.id,
                name=c.name,
                regions=list(c.regions),
                color=candidate_color(c.metadata.get("haplogroup"), c.regions),
                has_embedding=c.has_embedding,
                has_measurements=c.has_measurements,
            )
            for c in catalog
        ],
    )


@app.post("/match", response_model=MatchResponse, status_code=status.HTTP_200_OK)
async def match(
    request: MatchRequest,
    catalog: Catalog = Depends(get_catalog),
    landmark_client: LandmarkClient = Depends(get_landmark_client),
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
    vision_client: VisionClassifier = Depends(get_vision_client),
) -> MatchResponse:
    """Match one face image against the phenotype catalog.

    This endpoint:
    1. Validates the image URL (SSRF protection)
    2. Gathers landmarks/measurements, face embedding and vision verdict concurrently
    3. Fuses the available signals into one ranking
    4. Returns the ranking with per-signal provenance
    """
    image_url = sanitize_image_url(request.image_url)
    logger.info(f"Matching image {image_url}")

    try:
        report = await match_image(
            image_url,
            catalog,
            top_n=request.top_n,
            landmark_client=landmark_client,
            embedding_client=embedding_client,
            vision_client=vision_client,
        )
    except MatchingError:
        # Re-raise to be caught by exception handlers
        raise
    except Exception as e:
        logger.error(f"Unexpected error matching image: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}",
        )

    payload = report.to_dict()
    return MatchResponse(
        status="success",
        matches=[MatchResultDTO(**m) for m in payload["matches"]],
        signals=[SignalDTO(**s) for s in payload["signals"]],
        measurements=payload["measurements"],
        facial_features=payload["facial_features"],
        degenerate_features=payload["degenerate_features"],
        vision_analysis=report.vision_analysis,
        primary_region=report.primary_region,
        analysis_text=build_analysis_text(report.measurements, report.facial_features, report.matches),
        computed_at=payload["computed_at"],
        message=f"Matched {len(report.matches)} phenotypes using {', '.join(report.signals_used)}",
    )
