import asyncio

import pytest
from fastapi.testclient import TestClient

from ai.vision import VisionMatch, VisionVerdict
from phenomatch import api
from phenomatch.catalog import catalog_from_records
from phenomatch.config import settings
from phenomatch.errors import CatalogError
from phenomatch.pipelines.measurements import MeasurementSet
from phenomatch.resilience import Absent

DIM = 512


def unit(index: int) -> list[float]:
    vec = [0.0] * DIM
    vec[index] = 1.0
    return vec


class StubLandmarks:
    timeout_s = 1.0

    def __init__(self, result):
        self.result = result

    async def extract(self, image_url):
        return self.result


class StubEmbeddings:
    timeout_s = 1.0

    def __init__(self, result, healthy=True, delay=0.0):
        self.result = result
        self.healthy = healthy
        self.delay = delay

    async def embed(self, image_url):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result

    async def health(self):
        return self.healthy


class StubVision:
    timeout_s = 1.0

    def __init__(self, result):
        self.result = result

    async def classify(self, image_url, candidate_labels, top_k=None, regions=None):
        return self.result


CATALOG = catalog_from_records([
    {"id": "nordid", "name": "Nordid", "regions": ["Northern Europe"],
     "reference_embedding": unit(0), "reference_measurements": {"facialIndex": 1.2},
     "metadata": {"haplogroup": "I1"}},
    {"id": "sinid", "name": "Sinid", "regions": ["East Asia"], "reference_embedding": unit(1)},
])


@pytest.fixture
def client():
    api.app.dependency_overrides[api.get_catalog] = lambda: CATALOG
    api.app.dependency_overrides[api.get_database_status] = lambda: True
    api.app.dependency_overrides[api.get_landmark_client] = lambda: StubLandmarks(
        MeasurementSet({"facial_index": 1.2})
    )
    api.app.dependency_overrides[api.get_embedding_client] = lambda: StubEmbeddings(unit(0))
    api.app.dependency_overrides[api.get_vision_client] = lambda: StubVision(VisionVerdict(
        analysis="Narrow face",
        primary_region="Northern Europe",
        matches=(VisionMatch("Nordid", 80.0, "Tall face", 1),),
    ))
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def test_root_lists_endpoints(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["endpoints"]["match"] == "/match"


def test_health_reports_embedding_service(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert body["embedding_service"] == "healthy"


def test_health_degraded_without_database(client):
    api.app.dependency_overrides[api.get_database_status] = lambda: False
    api.app.dependency_overrides[api.get_embedding_client] = lambda: StubEmbeddings(unit(0), healthy=False)

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["database"] == "unavailable"
    assert body["embedding_service"] == "unavailable"


def test_match_returns_ranking_with_provenance(client):
    response = client.post("/match", json={"image_url": "https://images.unsplash.com/face.jpg"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert [m["name"] for m in body["matches"]] == ["Nordid", "Sinid"]
    assert body["matches"][0]["rank"] == 1
    assert body["matches"][0]["contributing_signals"] == ["vision", "embedding", "measurement"]
    assert [s["signal"] for s in body["signals"]] == ["vision", "embedding", "measurement"]
    assert body["vision_analysis"] == "Narrow face"
    assert body["analysis_text"].startswith("Facial Analysis Results:")


def test_match_respects_top_n(client):
    response = client.post("/match", json={"image_url": "https://images.unsplash.com/face.jpg", "top_n": 1})
    assert response.status_code == 200
    assert len(response.json()["matches"]) == 1


def test_invalid_url_is_bad_request(client):
    response = client.post("/match", json={"image_url": "ftp://example.com/face.jpg"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_image_url"


def test_no_signal_is_unprocessable(client):
    api.app.dependency_overrides[api.get_landmark_client] = lambda: StubLandmarks(Absent("no face detected"))
    api.app.dependency_overrides[api.get_embedding_client] = lambda: StubEmbeddings(None)
    api.app.dependency_overrides[api.get_vision_client] = lambda: StubVision(Absent("not configured"))

    response = client.post("/match", json={"image_url": "https://images.unsplash.com/face.jpg"})

    assert response.status_code == 422
    assert response.json()["error"] == "no_signal_available"


def test_catalog_error_is_service_unavailable(client):
    def broken_catalog():
        raise CatalogError("Reference catalog unreadable")

    api.app.dependency_overrides[api.get_catalog] = broken_catalog

    response = client.post("/match", json={"image_url": "https://images.unsplash.com/face.jpg"})

    assert response.status_code == 503
    assert response.json()["error"] == "catalog_unavailable"


def test_overall_timeout_is_gateway_timeout(client, monkeypatch):
    monkeypatch.setattr(settings.matching, "overall_timeout_s", 0.05)
    api.app.dependency_overrides[api.get_embedding_client] = lambda: StubEmbeddings(unit(0), delay=0.5)

    response = client.post("/match", json={"image_url": "https://images.unsplash.com/face.jpg"})

    assert response.status_code == 504
    assert response.json()["error"] == "matching_timeout"


def test_catalog_listing(client):
    response = client.get("/catalog")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    nordid = body["phenotypes"][0]
    assert nordid["name"] == "Nordid"
    assert nordid["has_embedding"] is True
    assert nordid["has_measurements"] is True
    assert nordid["color"] == "#9B59B6"
    assert body["phenotypes"][1]["has_measurements"] is False


def test_catalog_is_loaded_once_and_shared(client, monkeypatch):
    loads = []

    async def read_catalog():
        loads.append(1)
        return CATALOG

    monkeypatch.setattr(api, "read_catalog", read_catalog)
    api.app.dependency_overrides.pop(api.get_catalog)

    with TestClient(api.app) as started:
        first = started.post("/match", json={"image_url": "https://images.unsplash.com/face.jpg"})
        second = started.post("/match", json={"image_url": "https://images.unsplash.com/face.jpg"})
        listing = started.get("/catalog")

    assert first.status_code == second.status_code == listing.status_code == 200
    assert listing.json()["total"] == 2
    assert len(loads) == 1


def test_empty_catalog_aborts_startup(monkeypatch):
    async def read_catalog():
        raise CatalogError("Reference catalog is empty")

    monkeypatch.setattr(api, "read_catalog", read_catalog)

    async def start():
        async with api.lifespan(api.app):
            pass

    with pytest.raises(CatalogError):
        asyncio.run(start())


def test_catalog_not_loaded_is_service_unavailable(client):
    api.app.dependency_overrides.pop(api.get_catalog)
    api.app.state.catalog = None

    response = client.get("/catalog")

    assert response.status_code == 503
    assert response.json()["error"] == "catalog_unavailable"
