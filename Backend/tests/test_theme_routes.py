"""
HTTP tests: tenant middleware + theme routes + error envelope.

The app is built with the in-memory repository both for the resolution
middleware and for the route dependencies, so no database is needed.

Run with: pytest tests/test_theme_routes.py -v
"""

import asyncio
from types import SimpleNamespace

import pytest
from httpx import AsyncClient, ASGITransport

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from appointease.core.config import Settings
from appointease.core.request_context import AuthIdentity
from appointease.main import create_app
from appointease.themes.converter import DEFAULT_THEME
from appointease.themes.routes import get_repository
from appointease.themes.schema import CanonicalTheme
from appointease.tenancy.cache import NEGATIVE, CacheKeyspace, TenantCache


@pytest.fixture
def auth():
    """Stands in for the upstream auth layer; tests set `auth.identity`."""
    return SimpleNamespace(identity=None)


@pytest.fixture
def owner(auth):
    auth.identity = AuthIdentity(user_id="u-1", business_slug="acme")
    return auth.identity


@pytest.fixture
def app(repository, repository_factory, auth):
    settings = Settings(PLATFORM_BASE_DOMAIN="platform.example", LOG_LEVEL="WARNING")
    application = create_app(settings=settings, repository_factory=repository_factory, manage_database=False)
    application.dependency_overrides[get_repository] = lambda: repository

    @application.middleware("http")
    async def attach_identity(request, call_next):
        if auth.identity is not None:
            request.state.identity = auth.identity
        return await call_next(request)

    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://platform.example") as ac:
        yield ac


# ────────────────────────────────────────────────────────────────
# Test: Tenant resolution over HTTP
# ────────────────────────────────────────────────────────────────

class TestCurrentBusiness:
    @pytest.mark.asyncio
    async def test_custom_domain_request(self, client):
        response = await client.get("/api/current-business", headers={"host": "acme.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["id"] == 1
        assert body["data"]["businessSlug"] == "acme"
        assert "password" not in body["data"]

    @pytest.mark.asyncio
    async def test_subdomain_request(self, client):
        response = await client.get("/api/current-business", headers={"host": "globex.platform.example"})

        assert response.json()["data"]["id"] == 2

    @pytest.mark.asyncio
    async def test_platform_host_has_no_tenant(self, client):
        response = await client.get("/api/current-business")

        assert response.status_code == 200
        assert response.json() == {"data": None, "status": "success"}

    @pytest.mark.asyncio
    async def test_outage_does_not_fail_request(self, client, repository):
        repository.fail_on = {"find_tenant_by_slug", "find_tenant_by_custom_domain"}

        response = await client.get("/api/current-business", headers={"host": "acme.com"})

        assert response.status_code == 200
        assert response.json()["data"] is None

    @pytest.mark.asyncio
    async def test_identity_from_auth_layer(self, client, auth):
        auth.identity = AuthIdentity(user_id="u-2", business_slug="globex")

        response = await client.get("/api/current-business", headers={"host": "acme.com"})

        assert response.json()["data"]["id"] == 2

    @pytest.mark.asyncio
    async def test_health_reports_cache(self, client):
        await client.get("/api/current-business", headers={"host": "acme.com"})

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["tenant_cache"]["domain"]["live_entries"] == 1


# ────────────────────────────────────────────────────────────────
# Test: Theme reads
# ────────────────────────────────────────────────────────────────

class TestThemeReads:
    @pytest.mark.asyncio
    async def test_effective_theme_for_request_tenant(self, client, repository):
        repository.add_theme(1, "Summer", CanonicalTheme(primary="#FF8800"), is_active=True)

        response = await client.get("/api/theme", headers={"host": "acme.com"})

        data = response.json()["data"]
        assert data["name"] == "Summer"
        assert data["primary"] == "#FF8800"
        assert data["borderRadius"] == DEFAULT_THEME.border_radius

    @pytest.mark.asyncio
    async def test_no_tenant_gets_fallback(self, client):
        response = await client.get("/api/theme")

        assert response.json()["data"] == DEFAULT_THEME.model_dump(mode="json", by_alias=True)

    @pytest.mark.asyncio
    async def test_business_theme_by_id(self, client, repository):
        repository.businesses[2].theme_settings = {"primaryColor": "#123123", "spacing": "12px"}

        response = await client.get("/api/businesses/2/theme")

        data = response.json()["data"]
        assert data["name"] == "Legacy Theme"
        assert data["primary"] == "#123123"
        assert data["spacing"] == "12px"

    @pytest.mark.asyncio
    async def test_list_themes(self, client, repository):
        repository.add_theme(1, "A")
        repository.add_theme(1, "B")
        repository.add_theme(2, "C")

        response = await client.get("/api/businesses/1/themes")

        assert [t["name"] for t in response.json()["data"]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_legacy_view(self, client, repository):
        theme = repository.add_theme(1, "Sharp", CanonicalTheme(primary="#000000", border_radius="2px"))

        response = await client.get(f"/api/themes/{theme.id}/legacy")

        data = response.json()["data"]
        assert data["primaryColor"] == "#000000"
        assert data["borderRadius"] == 2
        assert data["spacing"] == 16
        assert "format" not in data

    @pytest.mark.asyncio
    async def test_legacy_view_missing_theme(self, client):
        response = await client.get("/api/themes/999/legacy")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_store_outage_is_service_unavailable(self, client, repository):
        repository.fail_on = {"find_theme_by_id"}

        response = await client.get("/api/themes/1/legacy")

        assert response.status_code == 503
        assert response.json() == {
            "error": {
                "code": "UPSTREAM_UNAVAILABLE",
                "message": "find_theme_by_id failed: connection refused",
                "details": {"operation": "find_theme_by_id"},
            },
            "status": "error",
        }


# ────────────────────────────────────────────────────────────────
# Test: Theme management
# ────────────────────────────────────────────────────────────────

class TestThemeManagement:
    @pytest.mark.asyncio
    async def test_create_from_legacy_payload(self, client, repository, owner):
        response = await client.post(
            "/api/businesses/1/themes",
            json={"name": "Imported", "payload": {"primaryColor": "#0000AA", "borderRadius": 6}, "isActive": True},
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["is_active"] is True
        assert data["payload"]["format"] == "canonical"
        assert data["payload"]["borderRadius"] == "6px"
        assert repository.flagged(1, "is_active") == [data["id"]]

    @pytest.mark.asyncio
    async def test_create_for_unknown_business(self, client, owner):
        response = await client.post("/api/businesses/404/themes", json={"name": "X", "payload": {}})

        assert response.status_code == 404
        assert response.json()["status"] == "error"

    @pytest.mark.asyncio
    async def test_create_rejects_bad_body(self, client, owner):
        response = await client.post("/api/businesses/1/themes", json={"payload": {"primary": "#000000"}})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_activate_and_set_default(self, client, repository, owner):
        house = repository.add_theme(1, "House", is_active=True, is_default=True)
        other = repository.add_theme(1, "Other")

        assert (await client.post(f"/api/themes/{other.id}/activate")).status_code == 200
        assert (await client.post(f"/api/themes/{other.id}/default")).status_code == 200

        assert repository.flagged(1, "is_active") == [other.id]
        assert repository.flagged(1, "is_default") == [other.id]
        assert repository.themes[house.id].is_active is False

    @pytest.mark.asyncio
    async def test_activate_missing_theme(self, client, owner):
        response = await client.post("/api/themes/999/activate")

        assert response.status_code == 404
        assert response.json()["error"]["details"] == {"theme_id": 999}

    @pytest.mark.asyncio
    async def test_update_theme(self, client, repository, owner):
        theme = repository.add_theme(1, "Draft")

        response = await client.patch(f"/api/themes/{theme.id}", json={"name": "Final", "payload": {"accent": "#EEEEEE"}})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["name"] == "Final"
        assert data["payload"]["accent"] == "#EEEEEE"

    @pytest.mark.asyncio
    async def test_delete_default_is_conflict(self, client, repository, owner):
        house = repository.add_theme(1, "House", is_default=True)

        response = await client.delete(f"/api/themes/{house.id}")

        assert response.status_code == 409
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "INVALID_OPERATION"
        assert house.id in repository.themes

    @pytest.mark.asyncio
    async def test_delete_theme(self, client, repository, owner):
        spare = repository.add_theme(1, "Spare")

        response = await client.delete(f"/api/themes/{spare.id}")

        assert response.json()["data"] == {"id": spare.id, "deleted": True}
        assert spare.id not in repository.themes

    @pytest.mark.asyncio
    async def test_create_rejects_non_hex_color(self, client, repository, owner):
        response = await client.post(
            "/api/businesses/1/themes",
            json={"name": "Named", "payload": {"primaryColor": "red"}},
        )

        assert response.status_code == 422
        assert repository.themes == {}


# ────────────────────────────────────────────────────────────────
# Test: Write access
# ────────────────────────────────────────────────────────────────

class TestWriteAccess:
    @pytest.mark.asyncio
    async def test_anonymous_write_is_unauthenticated(self, client, repository):
        theme = repository.add_theme(1, "Other")

        response = await client.post(f"/api/themes/{theme.id}/activate")

        assert response.status_code == 401
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "AUTHENTICATION_REQUIRED"
        assert repository.themes[theme.id].is_active is False

    @pytest.mark.asyncio
    async def test_reads_stay_public(self, client, repository):
        repository.add_theme(1, "A")

        assert (await client.get("/api/businesses/1/themes")).status_code == 200

    @pytest.mark.asyncio
    async def test_other_business_cannot_activate(self, client, repository, auth):
        house = repository.add_theme(1, "House", is_active=True, is_default=True)
        other = repository.add_theme(1, "Other")
        auth.identity = AuthIdentity(user_id="u-2", business_slug="globex")

        response = await client.post(f"/api/themes/{other.id}/activate")

        assert response.status_code == 403
        assert response.json()["error"] == {
            "code": "AUTHORIZATION_DENIED",
            "message": "Not allowed to manage this business",
            "details": {"business_id": 1},
        }
        assert repository.flagged(1, "is_active") == [house.id]

    @pytest.mark.asyncio
    async def test_other_business_cannot_delete_or_update(self, client, repository, auth):
        spare = repository.add_theme(1, "Spare")
        auth.identity = AuthIdentity(user_id="u-2", business_slug="globex")

        assert (await client.delete(f"/api/themes/{spare.id}")).status_code == 403
        assert (await client.patch(f"/api/themes/{spare.id}", json={"name": "Mine"})).status_code == 403
        assert (await client.post(f"/api/themes/{spare.id}/default")).status_code == 403

        assert repository.themes[spare.id].name == "Spare"
        assert repository.themes[spare.id].is_default is False

    @pytest.mark.asyncio
    async def test_other_business_cannot_create(self, client, repository, auth):
        auth.identity = AuthIdentity(user_id="u-2", business_slug="globex")

        response = await client.post("/api/businesses/1/themes", json={"name": "Hijack", "payload": {}})

        assert response.status_code == 403
        assert repository.themes == {}

    @pytest.mark.asyncio
    async def test_identity_without_business_is_denied(self, client, repository, auth):
        auth.identity = AuthIdentity(user_id="c-7", role="customer")

        response = await client.post("/api/businesses/1/themes", json={"name": "X", "payload": {}})

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_slug_match_ignores_case(self, client, repository, auth):
        auth.identity = AuthIdentity(user_id="u-1", business_slug="ACME")

        response = await client.post("/api/businesses/1/themes", json={"name": "Mine", "payload": {}})

        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_platform_admin_may_write_anywhere(self, client, repository, auth):
        theme = repository.add_theme(2, "Globex Blue")
        auth.identity = AuthIdentity(user_id="root", role="admin")

        response = await client.post(f"/api/themes/{theme.id}/activate")

        assert response.status_code == 200
        assert repository.flagged(2, "is_active") == [theme.id]


# ────────────────────────────────────────────────────────────────
# Test: Lifespan
# ────────────────────────────────────────────────────────────────

class TestLifespan:
    @pytest.mark.asyncio
    async def test_sweeper_runs_during_lifespan(self, repository_factory, clock):
        settings = Settings(
            TENANT_CACHE_TTL_SECONDS=1,
            TENANT_CACHE_SWEEP_INTERVAL_SECONDS=0.01,
            LOG_LEVEL="WARNING",
        )
        application = create_app(settings=settings, repository_factory=repository_factory, manage_database=False)
        cache = application.state.tenant_cache = TenantCache(ttl_seconds=1, clock=clock)
        cache.store("ghost", CacheKeyspace.SLUG, NEGATIVE)
        clock.advance(5)

        async with application.router.lifespan_context(application):
            await asyncio.sleep(0.05)
            assert cache.get_stats()["slug"]["total_entries"] == 0

    def test_fallback_theme_from_settings(self, repository_factory):
        settings = Settings(FALLBACK_THEME={"primary": "#101010"}, LOG_LEVEL="WARNING")

        application = create_app(settings=settings, repository_factory=repository_factory, manage_database=False)

        assert application.state.fallback_theme.primary == "#101010"
        assert application.state.fallback_theme.font == DEFAULT_THEME.font
