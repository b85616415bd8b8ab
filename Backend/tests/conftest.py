"""
Pytest configuration and shared fixtures.

Nothing here touches a real database: tenant resolution and theme management
only depend on the TenantRepository protocol, so the tests run against an
in-memory repository that counts calls and can be told to fail.
"""
import asyncio
import copy
import os
import sys
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from appointease.core.errors import UpstreamUnavailableError
from appointease.models import Business
from appointease.themes.schema import CanonicalTheme, LegacyTheme, ThemeRecord, parse_stored_payload


# ────────────────────────────────────────────────────────────────
# Test doubles
# ────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRepository:
    """
    In-memory TenantRepository.

    Every method yields to the event loop once so concurrent callers really
    interleave. ``fail_on`` holds method names that raise
    UpstreamUnavailableError, as a real repository does on an outage.
    """

    def __init__(self):
        self.businesses: dict[int, Business] = {}
        self.themes: dict[int, ThemeRecord] = {}
        self.calls: Counter = Counter()
        self.fail_on: set[str] = set()
        self.commits = 0
        self.rollbacks = 0
        self._next_id = 1
        self._tick = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        await asyncio.sleep(0)
        if name in self.fail_on:
            raise UpstreamUnavailableError(f"{name} failed: connection refused", details={"operation": name})

    def _now(self) -> datetime:
        self._tick += timedelta(seconds=1)
        return self._tick

    # Seeding helpers

    def add_business(
        self,
        business_id: int,
        slug: Optional[str],
        custom_domain: Optional[str] = None,
        theme_settings: Optional[dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> Business:
        business = Business(
            id=business_id,
            username=f"owner{business_id}",
            password="$2b$12$not-a-real-hash",
            email=f"owner{business_id}@example.com",
            business_name=name or (slug or f"Business {business_id}").title(),
            business_slug=slug,
            custom_domain=custom_domain,
            role="business",
            theme_settings=theme_settings,
        )
        self.businesses[business_id] = business
        return business

    def add_theme(
        self,
        business_id: int,
        name: str = "Theme",
        payload: Optional[CanonicalTheme | LegacyTheme] = None,
        is_active: bool = False,
        is_default: bool = False,
    ) -> ThemeRecord:
        now = self._now()
        record = ThemeRecord(
            id=self._next_id,
            business_id=business_id,
            name=name,
            is_active=is_active,
            is_default=is_default,
            payload=payload or CanonicalTheme(name=name, primary="#000000"),
            created_at=now,
            updated_at=now,
        )
        self.themes[record.id] = record
        self._next_id += 1
        return record

    def flagged(self, business_id: int, flag: str) -> list[int]:
        return sorted(t.id for t in self.themes.values() if t.business_id == business_id and getattr(t, flag))

    # Tenants

    async def find_tenant_by_slug(self, slug: str) -> Optional[Business]:
        await self._enter("find_tenant_by_slug")
        return next((b for b in self.businesses.values() if b.business_slug == slug), None)

    async def find_tenant_by_custom_domain(self, domain: str) -> Optional[Business]:
        await self._enter("find_tenant_by_custom_domain")
        return next((b for b in self.businesses.values() if b.custom_domain == domain), None)

    async def find_tenant_by_id(self, tenant_id: int) -> Optional[Business]:
        await self._enter("find_tenant_by_id")
        return self.businesses.get(tenant_id)

    # Themes (reads)

    async def find_active_theme(self, tenant_id: int) -> Optional[ThemeRecord]:
        await self._enter("find_active_theme")
        return next((t for t in self.themes.values() if t.business_id == tenant_id and t.is_active), None)

    async def find_default_theme(self, tenant_id: int) -> Optional[ThemeRecord]:
        await self._enter("find_default_theme")
        return next((t for t in self.themes.values() if t.business_id == tenant_id and t.is_default), None)

    async def find_legacy_settings(self, tenant_id: int) -> Optional[LegacyTheme]:
        await self._enter("find_legacy_settings")
        business = self.businesses.get(tenant_id)
        if business is None or not business.theme_settings:
            return None
        settings = parse_stored_payload({**business.theme_settings, "format": "legacy"})
        return None if settings.is_empty() else settings

    async def find_theme_by_id(self, theme_id: int) -> Optional[ThemeRecord]:
        await self._enter("find_theme_by_id")
        return self.themes.get(theme_id)

    async def list_themes(self, tenant_id: int) -> list[ThemeRecord]:
        await self._enter("list_themes")
        return [t for t in sorted(self.themes.values(), key=lambda t: t.id) if t.business_id == tenant_id]

    # Themes (writes)

    async def insert_theme(self, tenant_id, name, payload, is_active=False, is_default=False) -> ThemeRecord:
        await self._enter("insert_theme")
        return self.add_theme(tenant_id, name, payload, is_active=is_active, is_default=is_default)

    async def update_theme(self, theme_id: int, changes: dict[str, Any]) -> Optional[ThemeRecord]:
        await self._enter("update_theme")
        record = self.themes.get(theme_id)
        if record is None:
            return None
        updated = record.model_copy(update={**changes, "updated_at": self._now()})
        self.themes[theme_id] = updated
        return updated

    async def delete_theme(self, theme_id: int) -> bool:
        await self._enter("delete_theme")
        return self.themes.pop(theme_id, None) is not None

    async def clear_flag(self, tenant_id: int, flag: str, exclude_id: Optional[int] = None) -> int:
        await self._enter(f"clear_{flag}")
        cleared = 0
        for theme_id, record in list(self.themes.items()):
            if record.business_id == tenant_id and getattr(record, flag) and theme_id != exclude_id:
                self.themes[theme_id] = record.model_copy(update={flag: False, "updated_at": self._now()})
                cleared += 1
        return cleared

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy(self.themes)
        try:
            yield self
            self.commits += 1
        except BaseException:
            self.themes = snapshot
            self.rollbacks += 1
            raise


# ────────────────────────────────────────────────────────────────
# Fixtures
# ────────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository():
    """Two tenants: acme (slug + custom domain) and globex (slug only)."""
    repo = FakeRepository()
    repo.add_business(1, "acme", custom_domain="acme.com", name="Acme Salon")
    repo.add_business(2, "globex", name="Globex Barbers")
    return repo


@pytest.fixture
def repository_factory(repository):
    @asynccontextmanager
    async def factory():
        yield repository

    return factory
