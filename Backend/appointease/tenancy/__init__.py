"""
Multi-tenancy package for AppointEase.

Modules:
    context: TenantContext (sanitized tenant) and FastAPI dependencies
    cache: TTL tenant cache with negative entries and periodic sweep
    repository: storage port for tenants/themes and its SQLAlchemy implementation
    resolver: request -> tenant resolution and the middleware that runs it
"""

from .context import (
    TenantContext,
    TenantResolutionSource,
    get_business_context_or_none,
    require_business_context,
)
from .cache import (
    NEGATIVE,
    CacheKeyspace,
    TenantCache,
)
from .repository import (
    TenantRepository,
    SqlAlchemyTenantRepository,
    normalize_domain,
    pick_most_recent,
)
from .resolver import (
    TenantResolver,
    TenantResolutionMiddleware,
    extract_candidate_slug,
    is_platform_host,
    split_path,
)

__all__ = [
    # Context
    "TenantContext",
    "TenantResolutionSource",
    "get_business_context_or_none",
    "require_business_context",
    # Cache
    "NEGATIVE",
    "CacheKeyspace",
    "TenantCache",
    # Repository
    "TenantRepository",
    "SqlAlchemyTenantRepository",
    "normalize_domain",
    "pick_most_recent",
    # Resolution
    "TenantResolver",
    "TenantResolutionMiddleware",
    "extract_candidate_slug",
    "is_platform_host",
    "split_path",
]
