"""
Tenant resolution.

Works out which business a request belongs to. Resolution order (first match wins):

    1. Authenticated identity's own business slug (not for platform admins)
    2. First URL path segment, unless it is a reserved word  (/bishops-tempe/book)
    3. Host header as a custom domain, then its first label as a slug
    4. No tenant

Every slug/domain lookup goes cache -> repository -> cache. Misses are cached
as negative entries. Repository failures are logged and treated as a miss for
that attempt only; they are not cached and never fail the request.
"""

import dataclasses
import ipaddress
import logging
import re
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..core.errors import UpstreamUnavailableError
from ..core.request_context import AuthIdentity, get_auth_identity
from .cache import NEGATIVE, CacheKeyspace, TenantCache
from .context import TenantContext, TenantResolutionSource
from .repository import TenantRepository, normalize_domain

logger = logging.getLogger(__name__)


SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")

LOOPBACK_HOSTS = frozenset({"localhost", "localhost.localdomain"})


# ────────────────────────────────────────────────────────────────
# Path / Host Helpers
# ────────────────────────────────────────────────────────────────

def split_path(path: str) -> List[str]:
    """"/bishops-tempe/book?x=1" -> ["bishops-tempe", "book"]"""
    return [segment for segment in path.split("?", 1)[0].split("/") if segment]


def extract_candidate_slug(path_segments: Sequence[str], reserved_words: Iterable[str]) -> Optional[str]:
    """
    First path segment as a candidate slug.

    Returns None when there is no segment, it is a reserved word, or it does
    not look like a slug (e.g. "favicon.ico").
    """
    if not path_segments:
        return None
    candidate = path_segments[0].strip().lower()
    if candidate in reserved_words or not SLUG_PATTERN.match(candidate):
        return None
    return candidate


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def is_platform_host(host: str, base_domain: str) -> bool:
    """Loopback names, bare IPs and the platform's own domain never identify a tenant."""
    if not host:
        return True
    if host in LOOPBACK_HOSTS or host.endswith(".localhost"):
        return True
    if is_ip_literal(host):
        return True
    return host == normalize_domain(base_domain)


# ────────────────────────────────────────────────────────────────
# Resolver
# ────────────────────────────────────────────────────────────────

class TenantResolver:
    """
    Resolves a request to a TenantContext.

    Cheap to construct; build one per request around that request's
    repository and the process-wide cache.
    """

    def __init__(
        self,
        repository: TenantRepository,
        cache: TenantCache,
        reserved_words: Iterable[str] = (),
        base_domain: str = "",
    ):
        self.repository = repository
        self.cache = cache
        self.reserved_words: FrozenSet[str] = frozenset(w.lower() for w in reserved_words)
        self.base_domain = base_domain

    async def resolve(
        self,
        path_segments: Sequence[str],
        host: Optional[str],
        identity: Optional[AuthIdentity] = None,
    ) -> Optional[TenantContext]:
        # 1. Authenticated identity
        if identity is not None and identity.business_slug and not identity.is_platform_admin:
            ctx = await self.resolve_slug(identity.business_slug.lower(), TenantResolutionSource.AUTH_SESSION)
            if ctx:
                return ctx

        # 2. URL path slug
        slug = extract_candidate_slug(path_segments, self.reserved_words)
        if slug:
            ctx = await self.resolve_slug(slug, TenantResolutionSource.URL_SLUG)
            if ctx:
                return ctx

        # 3. Custom domain, then subdomain-as-slug
        normalized_host = normalize_domain(host or "")
        if not is_platform_host(normalized_host, self.base_domain):
            ctx = await self.resolve_domain(normalized_host)
            if ctx:
                return ctx
            label = normalized_host.split(".", 1)[0]
            if label and label not in self.reserved_words and SLUG_PATTERN.match(label):
                ctx = await self.resolve_slug(label, TenantResolutionSource.SUBDOMAIN)
                if ctx:
                    return ctx

        # 4. No tenant context
        return None

    async def resolve_slug(
        self,
        slug: str,
        source: TenantResolutionSource = TenantResolutionSource.URL_SLUG,
    ) -> Optional[TenantContext]:
        return await self._resolve(
            slug, CacheKeyspace.SLUG, source, self.repository.find_tenant_by_slug
        )

    async def resolve_domain(self, domain: str) -> Optional[TenantContext]:
        return await self._resolve(
            normalize_domain(domain),
            CacheKeyspace.DOMAIN,
            TenantResolutionSource.CUSTOM_DOMAIN,
            self.repository.find_tenant_by_custom_domain,
        )

    async def _resolve(
        self,
        key: str,
        keyspace: CacheKeyspace,
        source: TenantResolutionSource,
        lookup: Callable,
    ) -> Optional[TenantContext]:
        cached, found = self.cache.lookup(key, keyspace)
        if found:
            logger.debug(f"Tenant cache hit ({keyspace.value}={key}): {'miss' if cached is NEGATIVE else 'found'}")
            if cached is NEGATIVE:
                return None
            return dataclasses.replace(cached, source=source)

        try:
            business = await lookup(key)
        except UpstreamUnavailableError as e:
            logger.warning(f"Tenant lookup failed ({keyspace.value}={key}): {e.message}")
            return None
        except Exception:
            logger.exception(f"Unexpected error during tenant lookup ({keyspace.value}={key})")
            return None

        if business is None:
            logger.debug(f"No business for {keyspace.value}={key}")
            self.cache.store(key, keyspace, NEGATIVE)
            return None

        ctx = TenantContext.from_business(business, source=source)
        self.cache.store(key, keyspace, ctx)
        logger.debug(f"Resolved business from {source.value}: {key} -> business_id={ctx.business_id}")
        return ctx


# ────────────────────────────────────────────────────────────────
# Middleware
# ────────────────────────────────────────────────────────────────

class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """
    Attaches the resolved tenant (or None) to ``request.state.business``.

    ``repository_factory`` is an async context manager factory yielding a
    TenantRepository for the duration of the lookup.
    """

    def __init__(
        self,
        app,
        cache_getter: Callable[[], TenantCache],
        repository_factory: Callable,
        reserved_words: Iterable[str] = (),
        base_domain: str = "",
    ):
        super().__init__(app)
        self.cache_getter = cache_getter
        self.repository_factory = repository_factory
        self.reserved_words = frozenset(reserved_words)
        self.base_domain = base_domain

    async def dispatch(self, request: Request, call_next):
        request.state.business = None
        try:
            async with self.repository_factory() as repository:
                resolver = TenantResolver(
                    repository,
                    self.cache_getter(),
                    reserved_words=self.reserved_words,
                    base_domain=self.base_domain,
                )
                request.state.business = await resolver.resolve(
                    split_path(request.url.path),
                    request.headers.get("host"),
                    get_auth_identity(request),
                )
        except Exception:
            logger.exception(f"Tenant resolution failed for {request.url.path}")
        return await call_next(request)
