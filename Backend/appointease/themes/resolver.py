"""
Effective theme resolution.

Precedence for a business, first hit wins:

    1. its active theme row
    2. its default theme row
    3. its legacy inline theme_settings, converted to the canonical shape
    4. the global fallback theme

This is a read path: storage errors are logged and the chain moves on to the
next step, so callers always get a theme back.
"""

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from ..core.errors import UpstreamUnavailableError
from .converter import build_fallback_theme, ensure_canonical, to_canonical
from .schema import CanonicalTheme

if TYPE_CHECKING:
    from ..tenancy.repository import TenantRepository

logger = logging.getLogger(__name__)


class ThemeResolver:
    def __init__(self, repository: "TenantRepository", fallback_theme: Optional[CanonicalTheme] = None):
        self.repository = repository
        self.fallback_theme = fallback_theme or build_fallback_theme()

    async def _safe(self, step: str, business_id: int, call: Callable[[int], Awaitable[Any]]) -> Any:
        try:
            return await call(business_id)
        except UpstreamUnavailableError as e:
            logger.warning(f"Theme lookup '{step}' failed for business {business_id}: {e.message}")
        except Exception:
            logger.exception(f"Unexpected error in theme lookup '{step}' for business {business_id}")
        return None

    async def resolve_effective_theme(self, business_id: int) -> CanonicalTheme:
        active = await self._safe("active", business_id, self.repository.find_active_theme)
        if active is not None:
            logger.debug(f"Business {business_id}: using active theme {active.id}")
            return ensure_canonical(active.payload, name=active.name)

        default = await self._safe("default", business_id, self.repository.find_default_theme)
        if default is not None:
            logger.debug(f"Business {business_id}: using default theme {default.id}")
            return ensure_canonical(default.payload, name=default.name)

        legacy = await self._safe("legacy", business_id, self.repository.find_legacy_settings)
        if legacy is not None and not legacy.is_empty():
            logger.debug(f"Business {business_id}: migrating legacy theme settings")
            return to_canonical(legacy)

        logger.debug(f"Business {business_id}: using global fallback theme")
        return self.fallback_theme.model_copy()
