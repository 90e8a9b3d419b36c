"""Per-SmartLink tracking configuration, as stored on the SmartLink record."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from app.tracking.adapters import VendorType


class TrackingMode(str, Enum):
    GLOBAL = "global"
    HYBRID = "hybrid"
    CUSTOM = "custom"  # SmartLink identities only, never the account-wide fallback


class TrackingOverride(BaseModel):
    enabled: bool = False
    id: str | None = None

    @property
    def identity(self) -> str | None:
        """The override's id, only when it is enabled and non-blank."""
        if self.enabled and self.id and self.id.strip():
            return self.id.strip()
        return None


class TrackingOverrides(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ga4: TrackingOverride | None = None
    tag_container: TrackingOverride | None = Field(default=None, alias="tagContainer")
    social_pixel: TrackingOverride | None = Field(default=None, alias="socialPixel")
    short_video_pixel: TrackingOverride | None = Field(default=None, alias="shortVideoPixel")

    def for_vendor(self, vendor_type: VendorType) -> TrackingOverride | None:
        return {
            VendorType.GA4: self.ga4,
            VendorType.TAG_CONTAINER: self.tag_container,
            VendorType.SOCIAL_PIXEL: self.social_pixel,
            VendorType.SHORT_VIDEO_PIXEL: self.short_video_pixel,
        }[vendor_type]


class TrackingConfig(BaseModel):
    mode: TrackingMode = TrackingMode.GLOBAL
    overrides: TrackingOverrides = Field(default_factory=TrackingOverrides)

    @property
    def allows_global_fallback(self) -> bool:
        return self.mode != TrackingMode.CUSTOM

    @classmethod
    def from_stored(cls, raw: dict | None) -> "TrackingConfig":
        return cls.model_validate(raw or {})
