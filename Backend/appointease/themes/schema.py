"""
Theme shapes.

Two historical representations exist:

    legacy     flat fields (primaryColor, backgroundColor, ...) with unit-less
               integer borderRadius/spacing, as stored in users.theme_settings
    canonical  design-token fields (primary, background, ...) with string
               units ("8px"), as stored in the themes table

Every payload carries an explicit ``format`` tag so code downstream of the API
boundary never has to guess which shape it is holding.
"""

import logging
import re
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger(__name__)


Appearance = Literal["light", "dark", "system"]

# Six-digit hex, e.g. "#1E3A8A"
HexColor = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]

_INTEGER_RE = re.compile(r"\d+")

# Keys that only ever appear in the legacy flat shape
LEGACY_ONLY_KEYS = frozenset({
    "primaryColor",
    "secondaryColor",
    "accentColor",
    "backgroundColor",
    "textColor",
    "fontFamily",
    "primary_color",
    "secondary_color",
    "accent_color",
    "background_color",
    "text_color",
    "font_family",
})


def extract_integer(value: Any, default: int = 8) -> int:
    """First run of digits in ``value`` ("8px" -> 8), or ``default`` if there is none."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = _INTEGER_RE.search(str(value)) if value is not None else None
    return int(match.group(0)) if match else default


class LegacyTheme(BaseModel):
    """Flat theme settings. Every field is optional; absent means "use the default"."""

    model_config = ConfigDict(populate_by_name=True)

    format: Literal["legacy"] = "legacy"
    primary_color: Optional[HexColor] = Field(default=None, alias="primaryColor")
    secondary_color: Optional[HexColor] = Field(default=None, alias="secondaryColor")
    accent_color: Optional[HexColor] = Field(default=None, alias="accentColor")
    background_color: Optional[HexColor] = Field(default=None, alias="backgroundColor")
    text_color: Optional[HexColor] = Field(default=None, alias="textColor")
    font_family: Optional[str] = Field(default=None, alias="fontFamily")
    border_radius: Optional[int] = Field(default=None, alias="borderRadius", ge=0)
    spacing: Optional[int] = Field(default=None, ge=0)
    appearance: Optional[Appearance] = None
    button_style: Optional[str] = Field(default=None, alias="buttonStyle")
    card_style: Optional[str] = Field(default=None, alias="cardStyle")
    variant: Optional[str] = None

    @field_validator("border_radius", "spacing", mode="before")
    @classmethod
    def _unitless(cls, value: Any) -> Any:
        # Older rows sometimes stored "8px" here
        if isinstance(value, str):
            return extract_integer(value)
        return value

    def is_empty(self) -> bool:
        return not self.model_dump(exclude={"format"}, exclude_none=True)


class CanonicalTheme(BaseModel):
    """Design-token theme. Fully populated once it has passed through the converter."""

    model_config = ConfigDict(populate_by_name=True)

    format: Literal["canonical"] = "canonical"
    name: Optional[str] = None
    primary: Optional[HexColor] = None
    secondary: Optional[HexColor] = None
    accent: Optional[HexColor] = None
    background: Optional[HexColor] = None
    text: Optional[HexColor] = None
    font: Optional[str] = None
    border_radius: Optional[str] = Field(default=None, alias="borderRadius")
    spacing: Optional[str] = None
    appearance: Optional[Appearance] = None
    button_style: Optional[str] = Field(default=None, alias="buttonStyle")
    card_style: Optional[str] = Field(default=None, alias="cardStyle")
    variant: Optional[str] = None

    @field_validator("border_radius", "spacing", mode="before")
    @classmethod
    def _with_unit(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return f"{int(value)}px"
        return value


ThemePayload = Annotated[Union[CanonicalTheme, LegacyTheme], Field(discriminator="format")]

_payload_adapter = TypeAdapter(ThemePayload)


def tag_theme_payload(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Attach a ``format`` tag to an untagged payload.

    Only used at deserialization boundaries (API bodies, stored JSON without a
    tag). An explicit tag is always respected, so an unknown one fails validation.
    """
    if "format" in raw:
        return raw
    tagged = dict(raw)
    tagged["format"] = "legacy" if LEGACY_ONLY_KEYS.intersection(raw) else "canonical"
    return tagged


def parse_theme_payload(raw: Any) -> Union[CanonicalTheme, LegacyTheme]:
    """Validate a payload, tagging it first when it arrives as an untagged dict."""
    if isinstance(raw, (CanonicalTheme, LegacyTheme)):
        return raw
    if isinstance(raw, dict):
        raw = tag_theme_payload(raw)
    return _payload_adapter.validate_python(raw)


class ThemeRecord(BaseModel):
    """A row of the themes table with its payload decoded."""

    id: int
    business_id: int
    name: str
    is_active: bool = False
    is_default: bool = False
    payload: ThemePayload
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ────────────────────────────────────────────────────────────────
# API bodies
# ────────────────────────────────────────────────────────────────

class ThemeCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    payload: ThemePayload
    is_active: bool = Field(default=False, alias="isActive")
    is_default: bool = Field(default=False, alias="isDefault")

    @field_validator("payload", mode="before")
    @classmethod
    def _tag(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return tag_theme_payload(value)
        return value


class ThemeUpdate(BaseModel):
    """Partial update. Fields left as None are not touched."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    payload: Optional[ThemePayload] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    is_default: Optional[bool] = Field(default=None, alias="isDefault")

    @field_validator("payload", mode="before")
    @classmethod
    def _tag(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return tag_theme_payload(value)
        return value


def parse_stored_payload(raw: dict[str, Any]) -> Union[CanonicalTheme, LegacyTheme]:
    """
    Lenient parse for JSON already in the database.

    Rows written before colors and sizes were validated may hold values like
    "red" or -4. Those fields are dropped (the converter fills defaults) so one
    bad value never makes a whole theme unreadable.
    """
    try:
        return parse_theme_payload(raw)
    except ValidationError as e:
        bad_keys = {err["loc"][-1] for err in e.errors() if err["loc"]} & set(raw)
        bad_keys.discard("format")
        if not bad_keys:
            raise
        logger.warning(f"Dropping unreadable theme fields {sorted(bad_keys)}")
        return parse_theme_payload({k: v for k, v in raw.items() if k not in bad_keys})
