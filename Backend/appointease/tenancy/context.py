"""
Multi-tenancy context module.

This module provides the TenantContext abstraction: the sanitized view of a
business that is attached to each request once the tenant has been resolved.
It never carries credential fields.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from fastapi import Request

from ..core.errors import NotFoundError

if TYPE_CHECKING:
    from ..models import Business

logger = logging.getLogger(__name__)


class TenantResolutionSource(str, Enum):
    """How the tenant context was determined."""

    AUTH_SESSION = "auth_session"     # From the authenticated identity's own slug
    URL_SLUG = "url_slug"             # From the first path segment (/<slug>/...)
    CUSTOM_DOMAIN = "custom_domain"   # From the Host header matching a custom domain
    SUBDOMAIN = "subdomain"           # From the first label of the Host header
    LOOKUP = "lookup"                 # Loaded directly by id


@dataclass(frozen=True)
class TenantContext:
    """
    Immutable, sanitized tenant for a request.

    Attributes:
        business_id: Database id of the business (users.id)
        business_slug: URL-safe identifier, may be None for businesses without one
        custom_domain: Normalized custom domain, if configured
        business_name: Human-readable name
        email: Contact email
        role: "business" for the owning account, "staff" for staff accounts
        created_at: When the business registered
        source: How this context was determined (for logging)
    """

    business_id: int
    business_slug: Optional[str] = None
    custom_domain: Optional[str] = None
    business_name: Optional[str] = None
    email: Optional[str] = None
    role: str = "business"
    created_at: Optional[datetime] = None
    source: TenantResolutionSource = TenantResolutionSource.LOOKUP

    def __post_init__(self):
        if self.business_id <= 0:
            raise ValueError(f"business_id must be positive, got {self.business_id}")

    @classmethod
    def from_business(
        cls,
        business: "Business",
        source: TenantResolutionSource = TenantResolutionSource.LOOKUP,
    ) -> "TenantContext":
        # Credential and legacy theme columns stay behind
        return cls(
            business_id=business.id,
            business_slug=business.business_slug,
            custom_domain=business.custom_domain,
            business_name=business.business_name,
            email=business.email,
            role=business.role,
            created_at=business.created_at,
            source=source,
        )

    def to_public_dict(self) -> dict:
        return {
            "id": self.business_id,
            "businessSlug": self.business_slug,
            "customDomain": self.custom_domain,
            "businessName": self.business_name,
            "email": self.email,
            "role": self.role,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

def get_business_context_or_none(request: Request) -> Optional[TenantContext]:
    """
    Tenant attached by TenantResolutionMiddleware, or None.

    Usage:
        @router.get("/api/theme")
        async def current_theme(ctx: Optional[TenantContext] = Depends(get_business_context_or_none)):
            ...
    """
    return getattr(request.state, "business", None)


def require_business_context(request: Request) -> TenantContext:
    """
    Strict variant: 404 when the request carries no tenant.

    Unknown slugs and requests without any tenant hint get the same response,
    so the error does not reveal whether a business exists.
    """
    ctx = get_business_context_or_none(request)
    if ctx is None:
        raise NotFoundError("Business not found")
    return ctx


__all__ = [
    "TenantContext",
    "TenantResolutionSource",
    "get_business_context_or_none",
    "require_business_context",
]
