"""
Repository port for tenants and themes, plus its SQLAlchemy implementation.

The resolvers and the theme mutator depend only on the TenantRepository
protocol. A miss is always ``None`` (or ``False`` for deletes); connectivity
problems and deadline overruns raise UpstreamUnavailableError.

Usage:
    async with AsyncSessionLocal() as session:
        repo = SqlAlchemyTenantRepository(session, timeout_seconds=5)
        business = await repo.find_tenant_by_slug("bishops-tempe")
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Optional, Protocol, Sequence, TypeVar, Union

from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import UpstreamUnavailableError
from ..models import Business, ThemeFormat, ThemeRow
from ..themes.schema import CanonicalTheme, LegacyTheme, ThemeRecord, parse_stored_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")

THEME_FLAGS = ("is_active", "is_default")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class TenantRepository(Protocol):
    """Everything tenant resolution and theme management need from storage."""

    async def find_tenant_by_slug(self, slug: str) -> Optional[Business]: ...

    async def find_tenant_by_custom_domain(self, domain: str) -> Optional[Business]: ...

    async def find_tenant_by_id(self, tenant_id: int) -> Optional[Business]: ...

    async def find_active_theme(self, tenant_id: int) -> Optional[ThemeRecord]: ...

    async def find_default_theme(self, tenant_id: int) -> Optional[ThemeRecord]: ...

    async def find_legacy_settings(self, tenant_id: int) -> Optional[LegacyTheme]: ...

    async def find_theme_by_id(self, theme_id: int) -> Optional[ThemeRecord]: ...

    async def list_themes(self, tenant_id: int) -> Sequence[ThemeRecord]: ...

    async def insert_theme(
        self,
        tenant_id: int,
        name: str,
        payload: Union[CanonicalTheme, LegacyTheme],
        is_active: bool = False,
        is_default: bool = False,
    ) -> ThemeRecord: ...

    async def update_theme(self, theme_id: int, changes: dict[str, Any]) -> Optional[ThemeRecord]: ...

    async def delete_theme(self, theme_id: int) -> bool: ...

    async def clear_flag(self, tenant_id: int, flag: str, exclude_id: Optional[int] = None) -> int: ...

    def transaction(self) -> Any:
        """Async context manager: commit on success, roll back on error."""
        ...


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────

def normalize_domain(domain: str) -> str:
    """Lower-case, drop any port and trailing dot: "Shop.Example.com:443." -> "shop.example.com"."""
    host = (domain or "").strip().lower()
    if host.startswith("["):
        # IPv6 literal, keep as-is without the port
        return host.split("]")[0] + "]"
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def pick_most_recent(records: Sequence[ThemeRecord], tenant_id: int, flag: str) -> Optional[ThemeRecord]:
    """
    Collapse the rows holding a per-tenant flag to one.

    More than one row means the single-active/single-default invariant was
    broken; log it and prefer the most recently updated row.
    """
    if not records:
        return None
    if len(records) > 1:
        logger.error(
            f"[INVARIANT] Tenant {tenant_id} has {len(records)} themes with {flag}=true: "
            f"ids={[r.id for r in records]}"
        )
    return max(records, key=lambda r: (r.updated_at or r.created_at or _EPOCH, r.id))


def theme_record_from_row(row: ThemeRow) -> ThemeRecord:
    payload = parse_stored_payload({**(row.tokens or {}), "format": row.format})
    return ThemeRecord(
        id=row.id,
        business_id=row.business_id,
        name=row.name,
        is_active=row.is_active,
        is_default=row.is_default,
        payload=payload,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _payload_columns(payload: Union[CanonicalTheme, LegacyTheme]) -> dict[str, Any]:
    fmt = ThemeFormat.LEGACY if isinstance(payload, LegacyTheme) else ThemeFormat.CANONICAL
    tokens = payload.model_dump(by_alias=True, exclude={"format"}, exclude_none=True)
    return {"format": fmt.value, "tokens": tokens}


# ────────────────────────────────────────────────────────────────
# SQLAlchemy implementation
# ────────────────────────────────────────────────────────────────

class SqlAlchemyTenantRepository:
    """
    TenantRepository over an AsyncSession.

    Writes only flush; ``transaction()`` owns commit/rollback so a mutation
    sequence either persists completely or not at all.
    """

    DEFAULT_TIMEOUT_SECONDS = 5.0

    def __init__(self, session: AsyncSession, timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS):
        self.session = session
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            if self.timeout_seconds:
                return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
            return await awaitable
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailableError(
                f"{operation} timed out after {self.timeout_seconds}s",
                details={"operation": operation},
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise UpstreamUnavailableError(
                f"{operation} failed: {e}",
                details={"operation": operation},
            ) from e

    async def _scalar_one_or_none(self, operation: str, stmt) -> Any:
        result = await self._call(operation, self.session.execute(stmt))
        return result.scalar_one_or_none()

    async def _scalars(self, operation: str, stmt) -> list:
        result = await self._call(operation, self.session.execute(stmt))
        return list(result.scalars().all())

    # Tenants

    async def find_tenant_by_slug(self, slug: str) -> Optional[Business]:
        stmt = select(Business).where(Business.business_slug == slug.strip().lower())
        return await self._scalar_one_or_none("find_tenant_by_slug", stmt)

    async def find_tenant_by_custom_domain(self, domain: str) -> Optional[Business]:
        stmt = select(Business).where(Business.custom_domain == normalize_domain(domain))
        return await self._scalar_one_or_none("find_tenant_by_custom_domain", stmt)

    async def find_tenant_by_id(self, tenant_id: int) -> Optional[Business]:
        stmt = select(Business).where(Business.id == tenant_id)
        return await self._scalar_one_or_none("find_tenant_by_id", stmt)

    # Themes (reads)

    async def _find_flagged(self, tenant_id: int, flag: str) -> Optional[ThemeRecord]:
        column = getattr(ThemeRow, flag)
        stmt = (
            select(ThemeRow)
            .where(ThemeRow.business_id == tenant_id, column.is_(True))
            .order_by(ThemeRow.updated_at.desc(), ThemeRow.id.desc())
        )
        rows = await self._scalars(f"find_{flag}_theme", stmt)
        return pick_most_recent([theme_record_from_row(r) for r in rows], tenant_id, flag)

    async def find_active_theme(self, tenant_id: int) -> Optional[ThemeRecord]:
        return await self._find_flagged(tenant_id, "is_active")

    async def find_default_theme(self, tenant_id: int) -> Optional[ThemeRecord]:
        return await self._find_flagged(tenant_id, "is_default")

    async def find_legacy_settings(self, tenant_id: int) -> Optional[LegacyTheme]:
        stmt = select(Business.theme_settings).where(Business.id == tenant_id)
        raw = await self._scalar_one_or_none("find_legacy_settings", stmt)
        if not raw or not isinstance(raw, dict):
            return None
        try:
            settings = parse_stored_payload({**raw, "format": "legacy"})
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable legacy theme settings for business {tenant_id}: {e}")
            return None
        return None if settings.is_empty() else settings

    async def find_theme_by_id(self, theme_id: int) -> Optional[ThemeRecord]:
        row = await self._scalar_one_or_none(
            "find_theme_by_id", select(ThemeRow).where(ThemeRow.id == theme_id)
        )
        return theme_record_from_row(row) if row else None

    async def list_themes(self, tenant_id: int) -> Sequence[ThemeRecord]:
        stmt = select(ThemeRow).where(ThemeRow.business_id == tenant_id).order_by(ThemeRow.id)
        return [theme_record_from_row(r) for r in await self._scalars("list_themes", stmt)]

    # Themes (writes)

    async def insert_theme(
        self,
        tenant_id: int,
        name: str,
        payload: Union[CanonicalTheme, LegacyTheme],
        is_active: bool = False,
        is_default: bool = False,
    ) -> ThemeRecord:
        row = ThemeRow(
            business_id=tenant_id,
            name=name,
            is_active=is_active,
            is_default=is_default,
            **_payload_columns(payload),
        )
        self.session.add(row)
        await self._call("insert_theme", self.session.flush())
        await self._call("insert_theme", self.session.refresh(row))
        return theme_record_from_row(row)

    async def update_theme(self, theme_id: int, changes: dict[str, Any]) -> Optional[ThemeRecord]:
        values: dict[str, Any] = {}
        for key, value in changes.items():
            if key == "payload":
                values.update(_payload_columns(value))
            elif key in ("name", "is_active", "is_default"):
                values[key] = value
            else:
                raise ValueError(f"Unsupported theme field: {key}")
        if values:
            values["updated_at"] = datetime.now(timezone.utc)
            await self._call(
                "update_theme",
                self.session.execute(update(ThemeRow).where(ThemeRow.id == theme_id).values(**values)),
            )
        row = await self._scalar_one_or_none(
            "update_theme", select(ThemeRow).where(ThemeRow.id == theme_id).execution_options(populate_existing=True)
        )
        return theme_record_from_row(row) if row else None

    async def delete_theme(self, theme_id: int) -> bool:
        result = await self._call(
            "delete_theme", self.session.execute(delete(ThemeRow).where(ThemeRow.id == theme_id))
        )
        return (result.rowcount or 0) > 0

    async def clear_flag(self, tenant_id: int, flag: str, exclude_id: Optional[int] = None) -> int:
        if flag not in THEME_FLAGS:
            raise ValueError(f"Unknown theme flag: {flag}")
        column = getattr(ThemeRow, flag)
        stmt = update(ThemeRow).where(ThemeRow.business_id == tenant_id, column.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(ThemeRow.id != exclude_id)
        result = await self._call(
            f"clear_{flag}",
            self.session.execute(stmt.values({flag: False, "updated_at": datetime.now(timezone.utc)})),
        )
        return result.rowcount or 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqlAlchemyTenantRepository"]:
        try:
            yield self
            await self._call("commit", self.session.commit())
        except BaseException:
            await self.session.rollback()
            raise
