"""
Conversion between the legacy flat theme shape and the canonical token shape.

Both directions are total: missing fields are filled from DEFAULT_THEME, which
is the single source of default values for either side. For a fully populated
input the round trip ``to_legacy(to_canonical(x))`` reproduces ``x`` exactly.
"""

from typing import Any, Optional, Union

from .schema import CanonicalTheme, LegacyTheme, extract_integer


LEGACY_THEME_NAME = "Legacy Theme"

# Unit-less integer used when a canonical length carries no digits at all
DEFAULT_UNITLESS_INTEGER = 8


DEFAULT_THEME = CanonicalTheme(
    name="Default",
    primary="#1E3A8A",
    secondary="#9333EA",
    accent="#F59E0B",
    background="#FFFFFF",
    text="#111827",
    font="Inter",
    border_radius="8px",
    spacing="16px",
    appearance="system",
    button_style="default",
    card_style="default",
    variant="professional",
)


def _pick(value: Optional[Any], default: Any) -> Any:
    return default if value is None else value


def _px(value: int) -> str:
    return f"{value}px"


def to_canonical(legacy: LegacyTheme, name: Optional[str] = None) -> CanonicalTheme:
    """Map legacy flat settings to a fully populated canonical theme."""
    d = DEFAULT_THEME
    return CanonicalTheme(
        name=name or LEGACY_THEME_NAME,
        primary=_pick(legacy.primary_color, d.primary),
        secondary=_pick(legacy.secondary_color, d.secondary),
        accent=_pick(legacy.accent_color, d.accent),
        background=_pick(legacy.background_color, d.background),
        text=_pick(legacy.text_color, d.text),
        font=_pick(legacy.font_family, d.font),
        border_radius=d.border_radius if legacy.border_radius is None else _px(legacy.border_radius),
        spacing=d.spacing if legacy.spacing is None else _px(legacy.spacing),
        appearance=_pick(legacy.appearance, d.appearance),
        button_style=_pick(legacy.button_style, d.button_style),
        card_style=_pick(legacy.card_style, d.card_style),
        variant=_pick(legacy.variant, d.variant),
    )


def to_legacy(canonical: CanonicalTheme) -> LegacyTheme:
    """Map a canonical theme to fully populated legacy flat settings."""
    d = DEFAULT_THEME
    return LegacyTheme(
        primary_color=_pick(canonical.primary, d.primary),
        secondary_color=_pick(canonical.secondary, d.secondary),
        accent_color=_pick(canonical.accent, d.accent),
        background_color=_pick(canonical.background, d.background),
        text_color=_pick(canonical.text, d.text),
        font_family=_pick(canonical.font, d.font),
        border_radius=extract_integer(
            _pick(canonical.border_radius, d.border_radius), DEFAULT_UNITLESS_INTEGER
        ),
        spacing=extract_integer(_pick(canonical.spacing, d.spacing), DEFAULT_UNITLESS_INTEGER),
        appearance=_pick(canonical.appearance, d.appearance),
        button_style=_pick(canonical.button_style, d.button_style),
        card_style=_pick(canonical.card_style, d.card_style),
        variant=_pick(canonical.variant, d.variant),
    )


def complete_canonical(theme: CanonicalTheme) -> CanonicalTheme:
    """Fill the gaps of a partial canonical theme from DEFAULT_THEME."""
    values = DEFAULT_THEME.model_dump(exclude={"format"})
    values.update(theme.model_dump(exclude={"format"}, exclude_none=True))
    return CanonicalTheme(**values)


def ensure_canonical(
    payload: Union[CanonicalTheme, LegacyTheme],
    name: Optional[str] = None,
) -> CanonicalTheme:
    """Return a fully populated canonical theme whichever shape ``payload`` is tagged with."""
    if isinstance(payload, LegacyTheme):
        return to_canonical(payload, name=name)
    theme = complete_canonical(payload)
    if name and payload.name is None:
        theme = theme.model_copy(update={"name": name})
    return theme


def build_fallback_theme(overrides: Optional[dict[str, Any]] = None) -> CanonicalTheme:
    """The global fallback theme: DEFAULT_THEME with optional configured overrides."""
    if not overrides:
        return DEFAULT_THEME.model_copy()
    return complete_canonical(CanonicalTheme.model_validate({**overrides, "format": "canonical"}))
