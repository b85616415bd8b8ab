"""
Theme API routes.

Read endpoints always answer with a theme (falling back to the global
default). Management endpoints map 1:1 onto ThemeMutator operations and report
failures through the standard error envelope. Writes need a signed-in
identity that owns the target business; platform admins may write anywhere.

Usage:
    GET    /api/current-business                 -> tenant for this request, or null
    GET    /api/theme                            -> effective theme for this request's tenant
    GET    /api/businesses/{business_id}/theme   -> effective theme for a business
    GET    /api/businesses/{business_id}/themes  -> all theme rows of a business
    POST   /api/businesses/{business_id}/themes  -> create a theme
    PATCH  /api/themes/{theme_id}                -> update a theme
    DELETE /api/themes/{theme_id}                -> delete a (non-default) theme
    POST   /api/themes/{theme_id}/activate       -> make it the active theme
    POST   /api/themes/{theme_id}/default        -> make it the default theme
    GET    /api/themes/{theme_id}/legacy         -> theme in the legacy flat shape
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.db import get_session
from ..core.errors import AuthorizationDeniedError, NotFoundError
from ..core.request_context import AuthIdentity, require_identity
from ..core.responses import success_response
from ..tenancy.context import TenantContext, get_business_context_or_none
from ..tenancy.repository import SqlAlchemyTenantRepository, TenantRepository
from .converter import ensure_canonical, to_legacy
from .mutator import TenantLockRegistry, ThemeMutator
from .resolver import ThemeResolver
from .schema import CanonicalTheme, ThemeCreate, ThemeRecord, ThemeUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["themes"])


# ────────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────────

async def get_repository(session: AsyncSession = Depends(get_session)) -> TenantRepository:
    return SqlAlchemyTenantRepository(session, timeout_seconds=get_settings().repository_timeout_seconds)


def get_theme_resolver(
    request: Request,
    repository: TenantRepository = Depends(get_repository),
) -> ThemeResolver:
    fallback = getattr(request.app.state, "fallback_theme", None)
    return ThemeResolver(repository, fallback_theme=fallback)


def get_theme_mutator(
    request: Request,
    repository: TenantRepository = Depends(get_repository),
) -> ThemeMutator:
    locks = getattr(request.app.state, "theme_locks", None)
    if locks is None:
        locks = request.app.state.theme_locks = TenantLockRegistry()
    return ThemeMutator(repository, locks=locks)


async def ensure_business_owner(identity: AuthIdentity, business_id: int, repository: TenantRepository) -> None:
    """Only the owning business (or a platform admin) may change its themes."""
    if identity.is_platform_admin:
        return
    business = await repository.find_tenant_by_id(business_id)
    if business is None:
        raise NotFoundError("Business not found", details={"business_id": business_id})
    own_slug = (identity.business_slug or "").strip().lower()
    if not own_slug or business.business_slug != own_slug:
        logger.warning(f"Denied theme write on business {business_id} for user {identity.user_id}")
        raise AuthorizationDeniedError("Not allowed to manage this business", details={"business_id": business_id})


async def require_business_owner(
    business_id: int,
    identity: AuthIdentity = Depends(require_identity),
    repository: TenantRepository = Depends(get_repository),
) -> AuthIdentity:
    await ensure_business_owner(identity, business_id, repository)
    return identity


async def require_theme_owner(
    theme_id: int,
    identity: AuthIdentity = Depends(require_identity),
    repository: TenantRepository = Depends(get_repository),
) -> AuthIdentity:
    record = await repository.find_theme_by_id(theme_id)
    if record is None:
        raise NotFoundError("Theme not found", details={"theme_id": theme_id})
    await ensure_business_owner(identity, record.business_id, repository)
    return identity


def _theme_json(theme: CanonicalTheme) -> dict:
    return theme.model_dump(mode="json", by_alias=True)


def _record_json(record: ThemeRecord) -> dict:
    return record.model_dump(mode="json", by_alias=True)


# ────────────────────────────────────────────────────────────────
# Read endpoints
# ────────────────────────────────────────────────────────────────

@router.get("/current-business")
async def current_business(ctx: Optional[TenantContext] = Depends(get_business_context_or_none)):
    return success_response(ctx.to_public_dict() if ctx else None)


@router.get("/theme")
async def current_theme(
    ctx: Optional[TenantContext] = Depends(get_business_context_or_none),
    resolver: ThemeResolver = Depends(get_theme_resolver),
):
    if ctx is None:
        return success_response(_theme_json(resolver.fallback_theme))
    theme = await resolver.resolve_effective_theme(ctx.business_id)
    return success_response(_theme_json(theme))


@router.get("/businesses/{business_id}/theme")
async def business_theme(business_id: int, resolver: ThemeResolver = Depends(get_theme_resolver)):
    theme = await resolver.resolve_effective_theme(business_id)
    return success_response(_theme_json(theme))


@router.get("/businesses/{business_id}/themes")
async def list_business_themes(business_id: int, mutator: ThemeMutator = Depends(get_theme_mutator)):
    themes = await mutator.list_themes(business_id)
    return success_response([_record_json(t) for t in themes])


@router.get("/themes/{theme_id}/legacy")
async def legacy_theme(theme_id: int, repository: TenantRepository = Depends(get_repository)):
    record = await repository.find_theme_by_id(theme_id)
    if record is None:
        raise NotFoundError("Theme not found", details={"theme_id": theme_id})
    legacy = to_legacy(ensure_canonical(record.payload, name=record.name))
    return success_response(legacy.model_dump(mode="json", by_alias=True, exclude={"format"}))


# ────────────────────────────────────────────────────────────────
# Management endpoints
# ────────────────────────────────────────────────────────────────

@router.post("/businesses/{business_id}/themes", status_code=status.HTTP_201_CREATED)
async def create_theme(
    business_id: int,
    body: ThemeCreate,
    _owner: AuthIdentity = Depends(require_business_owner),
    mutator: ThemeMutator = Depends(get_theme_mutator),
):
    theme = await mutator.create(business_id, body)
    return success_response(_record_json(theme))


@router.patch("/themes/{theme_id}")
async def update_theme(
    theme_id: int,
    body: ThemeUpdate,
    _owner: AuthIdentity = Depends(require_theme_owner),
    mutator: ThemeMutator = Depends(get_theme_mutator),
):
    theme = await mutator.update(theme_id, body)
    return success_response(_record_json(theme))


@router.delete("/themes/{theme_id}")
async def delete_theme(
    theme_id: int,
    _owner: AuthIdentity = Depends(require_theme_owner),
    mutator: ThemeMutator = Depends(get_theme_mutator),
):
    await mutator.delete(theme_id)
    return success_response({"id": theme_id, "deleted": True})


@router.post("/themes/{theme_id}/activate")
async def activate_theme(
    theme_id: int,
    _owner: AuthIdentity = Depends(require_theme_owner),
    mutator: ThemeMutator = Depends(get_theme_mutator),
):
    theme = await mutator.activate(theme_id)
    return success_response(_record_json(theme))


@router.post("/themes/{theme_id}/default")
async def set_default_theme(
    theme_id: int,
    _owner: AuthIdentity = Depends(require_theme_owner),
    mutator: ThemeMutator = Depends(get_theme_mutator),
):
    theme = await mutator.set_default(theme_id)
    return success_response(_record_json(theme))


__all__ = [
    "router",
    "get_repository",
    "get_theme_resolver",
    "get_theme_mutator",
    "require_business_owner",
    "require_theme_owner",
]
