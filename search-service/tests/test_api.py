"""Tests for the HTTP boundary."""
import pytest
from fastapi.testclient import TestClient

from search_service.backends.registry import BackendRegistry
from search_service.cache import InMemoryCacheStore, SearchCache
from search_service.dependencies import get_search_service
from search_service.domain.models import Backend
from search_service.main import app
from search_service.service import SearchService

from conftest import FakeBackend, FakeSocialGraph, fixture_posts


def build_service(index_available=True, relational_error=None) -> SearchService:
    graph = FakeSocialGraph()
    registry = BackendRegistry([
        FakeBackend(Backend.RELATIONAL, fixture_posts(), graph, error=relational_error),
        FakeBackend(Backend.INDEX, fixture_posts(), graph, available=index_available),
    ])
    cache = SearchCache(InMemoryCacheStore(), ttl=300, sweep_interval=0)
    return SearchService(registry, cache, graph)


@pytest.fixture
def make_client():
    def factory(raise_server_exceptions=True, **kwargs):
        service = build_service(**kwargs)
        app.dependency_overrides[get_search_service] = lambda: service
        return TestClient(app, raise_server_exceptions=raise_server_exceptions)

    yield factory
    app.dependency_overrides.clear()


class TestSearchEndpoint:
    def test_success_envelope(self, make_client):
        response = make_client().get("/api/v1/search/posts", params={"requester_id": 1, "q": "typescript"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["total_matches"] == 2
        assert data["total_pages"] == 1
        assert data["has_more"] is False
        assert data["backend"] == "relational"
        assert {hit["post"]["title"] for hit in data["posts"]} == {
            "Introduction to TypeScript",
            "Advanced TypeScript Patterns",
        }

    def test_cached_flag_on_repeat(self, make_client):
        client = make_client()
        params = {"requester_id": 1, "q": "typescript"}
        assert client.get("/api/v1/search/posts", params=params).json()["data"]["cached"] is False
        assert client.get("/api/v1/search/posts", params=params).json()["data"]["cached"] is True

    def test_page_size_clamped(self, make_client):
        response = make_client().get("/api/v1/search/posts", params={"requester_id": 1, "page_size": 500})
        assert response.status_code == 200
        assert response.json()["data"]["page_size"] == 100

    def test_comma_separated_tags(self, make_client):
        response = make_client().get("/api/v1/search/posts", params={"requester_id": 1, "tags": "ux,nodejs"})
        assert response.json()["data"]["total_matches"] == 2

    def test_missing_requester(self, make_client):
        response = make_client().get("/api/v1/search/posts")
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["kind"] == "validation_error"
        assert "requester_id" in body["error"]

    def test_invalid_sort(self, make_client):
        response = make_client().get("/api/v1/search/posts", params={"requester_id": 1, "sort_by": "random"})
        assert response.status_code == 400
        assert response.json()["kind"] == "validation_error"

    def test_unknown_requester(self, make_client):
        response = make_client().get("/api/v1/search/posts", params={"requester_id": 99})
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Unknown requester: 99", "kind": "invalid_requester"}

    def test_backend_unavailable(self, make_client):
        client = make_client(index_available=False)
        response = client.get("/api/v1/search/posts", params={"requester_id": 1, "backend": "index"})
        assert response.status_code == 503
        assert response.json()["kind"] == "backend_unavailable"

    def test_fallback(self, make_client):
        client = make_client(index_available=False)
        response = client.get(
            "/api/v1/search/posts",
            params={"requester_id": 1, "backend": "index", "allow_fallback": "true"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["backend"] == "relational"

    def test_unexpected_error_hides_details(self, make_client):
        client = make_client(raise_server_exceptions=False, relational_error=RuntimeError("secret detail"))
        response = client.get("/api/v1/search/posts", params={"requester_id": 1})
        assert response.status_code == 500
        body = response.json()
        assert body == {"success": False, "error": "Internal server error", "kind": "internal_error"}


class TestOtherEndpoints:
    def test_suggestions(self, make_client):
        client = make_client()
        short = client.get("/api/v1/search/suggestions", params={"requester_id": 1, "q": "t"})
        assert short.json() == {"success": True, "data": []}

        response = client.get("/api/v1/search/suggestions", params={"requester_id": 1, "q": "typ", "limit": 5})
        data = response.json()["data"]
        assert len(data) <= 5
        assert len(data) == len(set(data))

    def test_popular_tags(self, make_client):
        response = make_client().get("/api/v1/search/tags", params={"requester_id": 1, "limit": 2})
        assert response.json()["data"] == ["design", "typescript"]

    def test_trending_without_analytics(self, make_client):
        response = make_client().get("/api/v1/search/trending")
        assert response.json() == {"success": True, "data": []}

    def test_similar_posts(self, make_client):
        response = make_client().get("/api/v1/search/similar/5", params={"requester_id": 1})
        assert [post["id"] for post in response.json()["data"]] == [6]

    def test_invalidate(self, make_client):
        client = make_client()
        client.get("/api/v1/search/posts", params={"requester_id": 1})
        response = client.post("/api/v1/search/cache/invalidate", json={"requester_id": 1})
        assert response.json() == {"success": True, "data": {"requester_id": 1, "removed": 1}}

    def test_invalidate_all(self, make_client):
        response = make_client().post("/api/v1/search/cache/invalidate")
        assert response.json()["data"] == {"requester_id": None, "removed": 0}

    def test_health(self, make_client):
        response = make_client(index_available=False).get("/health")
        body = response.json()
        assert body["status"] == "healthy"
        assert body["backends"] == {"relational": True, "index": False}
