"""
Theme writes that keep the per-business invariants:

    - at most one theme with is_active = true
    - at most one theme with is_default = true
    - the default theme cannot be deleted

Each flag-changing operation clears the flag on the other rows before setting
it on the target, inside one repository transaction and while holding a
per-business lock. Without store-level transactions the worst a crash can
leave behind is a business with no active (or default) theme, never two.

Errors propagate to the caller; nothing here degrades silently.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional, Sequence

from ..core.errors import InvalidOperationError, InvariantViolationError, NotFoundError
from .converter import ensure_canonical
from .schema import ThemeCreate, ThemeRecord, ThemeUpdate

if TYPE_CHECKING:
    from ..tenancy.repository import TenantRepository

logger = logging.getLogger(__name__)


class TenantLockRegistry:
    """
    One asyncio.Lock per business id, shared across requests in a process.

    Locks are held weakly: an entry lives only while some writer holds or
    waits on it, so the registry stays as small as the set of businesses
    being written to right now.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, business_id: int) -> asyncio.Lock:
        lock = self._locks.get(business_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[business_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class ThemeMutator:
    def __init__(self, repository: "TenantRepository", locks: Optional[TenantLockRegistry] = None):
        self.repository = repository
        self.locks = locks or TenantLockRegistry()

    @asynccontextmanager
    async def _locked_transaction(self, business_id: int) -> AsyncIterator["TenantRepository"]:
        async with self.locks.get(business_id):
            async with self.repository.transaction() as repo:
                yield repo

    async def _load(self, theme_id: int) -> ThemeRecord:
        theme = await self.repository.find_theme_by_id(theme_id)
        if theme is None:
            raise NotFoundError("Theme not found", details={"theme_id": theme_id})
        return theme

    async def _check_single(self, repo: "TenantRepository", business_id: int) -> None:
        """Refuse to commit if another writer slipped a second flagged row in."""
        themes = await repo.list_themes(business_id)
        for flag in ("is_active", "is_default"):
            flagged = [t.id for t in themes if getattr(t, flag)]
            if len(flagged) > 1:
                raise InvariantViolationError(
                    f"Business {business_id} would have {len(flagged)} themes with {flag}=true",
                    details={"business_id": business_id, "flag": flag, "theme_ids": flagged},
                )

    async def list_themes(self, business_id: int) -> Sequence[ThemeRecord]:
        return await self.repository.list_themes(business_id)

    async def create(self, business_id: int, data: ThemeCreate) -> ThemeRecord:
        business = await self.repository.find_tenant_by_id(business_id)
        if business is None:
            raise NotFoundError("Business not found", details={"business_id": business_id})

        payload = ensure_canonical(data.payload, name=data.name)
        async with self._locked_transaction(business_id) as repo:
            if data.is_active:
                await repo.clear_flag(business_id, "is_active")
            if data.is_default:
                await repo.clear_flag(business_id, "is_default")
            theme = await repo.insert_theme(
                business_id,
                data.name,
                payload,
                is_active=data.is_active,
                is_default=data.is_default,
            )
            await self._check_single(repo, business_id)

        logger.info(
            f"Created theme {theme.id} for business {business_id} "
            f"(active={theme.is_active}, default={theme.is_default})"
        )
        return theme

    async def _set_flag(self, theme_id: int, flag: str) -> ThemeRecord:
        theme = await self._load(theme_id)
        business_id = theme.business_id
        async with self._locked_transaction(business_id) as repo:
            await repo.clear_flag(business_id, flag, exclude_id=theme_id)
            updated = await repo.update_theme(theme_id, {flag: True})
            if updated is None:
                raise NotFoundError("Theme not found", details={"theme_id": theme_id})
            await self._check_single(repo, business_id)
        return updated

    async def activate(self, theme_id: int) -> ThemeRecord:
        theme = await self._set_flag(theme_id, "is_active")
        logger.info(f"Activated theme {theme_id} for business {theme.business_id}")
        return theme

    async def set_default(self, theme_id: int) -> ThemeRecord:
        theme = await self._set_flag(theme_id, "is_default")
        logger.info(f"Set theme {theme_id} as default for business {theme.business_id}")
        return theme

    async def update(self, theme_id: int, data: ThemeUpdate) -> ThemeRecord:
        existing = await self._load(theme_id)
        business_id = existing.business_id

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if data.payload is not None:
            changes["payload"] = ensure_canonical(data.payload, name=data.name or existing.name)
        if not changes:
            return existing

        async with self._locked_transaction(business_id) as repo:
            # Clear unconditionally; `existing` was read before the lock
            if data.is_active:
                await repo.clear_flag(business_id, "is_active", exclude_id=theme_id)
            if data.is_default:
                await repo.clear_flag(business_id, "is_default", exclude_id=theme_id)
            updated = await repo.update_theme(theme_id, changes)
            if updated is None:
                raise NotFoundError("Theme not found", details={"theme_id": theme_id})
            await self._check_single(repo, business_id)

        logger.info(f"Updated theme {theme_id} for business {business_id}: {sorted(changes)}")
        return updated

    async def delete(self, theme_id: int) -> None:
        theme = await self._load(theme_id)
        if theme.is_default:
            raise InvalidOperationError(
                "Cannot delete the default theme. Set another theme as default first.",
                details={"theme_id": theme_id},
            )
        async with self._locked_transaction(theme.business_id) as repo:
            # Re-check under the lock; set_default may have raced us
            current = await repo.find_theme_by_id(theme_id)
            if current is None:
                raise NotFoundError("Theme not found", details={"theme_id": theme_id})
            if current.is_default:
                raise InvalidOperationError(
                    "Cannot delete the default theme. Set another theme as default first.",
                    details={"theme_id": theme_id},
                )
            await repo.delete_theme(theme_id)
        logger.info(f"Deleted theme {theme_id} for business {theme.business_id}")
