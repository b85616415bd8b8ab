"""
Theme package: shapes, legacy conversion, effective-theme resolution and writes.
"""

from .schema import (
    CanonicalTheme,
    LegacyTheme,
    ThemeRecord,
    ThemeCreate,
    ThemeUpdate,
    parse_theme_payload,
    parse_stored_payload,
    tag_theme_payload,
)
from .converter import (
    DEFAULT_THEME,
    build_fallback_theme,
    ensure_canonical,
    to_canonical,
    to_legacy,
)
from .resolver import ThemeResolver
from .mutator import ThemeMutator, TenantLockRegistry

__all__ = [
    "CanonicalTheme",
    "LegacyTheme",
    "ThemeRecord",
    "ThemeCreate",
    "ThemeUpdate",
    "parse_theme_payload",
    "parse_stored_payload",
    "tag_theme_payload",
    "DEFAULT_THEME",
    "build_fallback_theme",
    "ensure_canonical",
    "to_canonical",
    "to_legacy",
    "ThemeResolver",
    "ThemeMutator",
    "TenantLockRegistry",
]
