"""
Database models.

Design principles:
  - SmartLinks are mutable (edited in the admin, paused, archived)
  - platform_links / tracking_config are owned by the SmartLink row and are
    read-only to the rendering pipeline
  - platform_clicks is append-only (no updates/deletes)
"""

import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Entity tables
# ---------------------------------------------------------------------------

class Artist(Base):
    __tablename__ = "artists"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    smartlinks = relationship("SmartLink", back_populates="artist")


class SmartLink(Base):
    __tablename__ = "smartlinks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    artist_id = Column(Uuid, ForeignKey("artists.id"), nullable=False)
    slug = Column(String(150), nullable=False)

    track_title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    cover_image_url = Column(Text, nullable=True)

    # [{"platform": "Spotify", "url": "https://open.spotify.com/..."}]
    platform_links = Column(JSONType, nullable=False, default=list)

    # {"mode": "hybrid", "overrides": {"ga4": {"enabled": true, "id": "G-..."}, ...}}
    tracking_config = Column(JSONType, nullable=True)

    status = Column(String(20), default="published")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    artist = relationship("Artist", back_populates="smartlinks")

    __table_args__ = (
        Index("ix_smartlinks_slug", "slug", unique=True),
    )


# ---------------------------------------------------------------------------
# Event tables (append-only)
# ---------------------------------------------------------------------------

class PlatformClick(Base):
    """One row per tracked platform click (/s/{slug}/go/{platform})."""
    __tablename__ = "platform_clicks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    smartlink_id = Column(Uuid, ForeignKey("smartlinks.id"), nullable=False, index=True)

    platform_key = Column(String(50), nullable=False)
    destination_url = Column(Text, nullable=False)
    position = Column(Integer, nullable=True)            # 1-based slot in the rendered list
    reported_position = Column(Integer, nullable=True)   # ?pos= sent by the client, not trusted

    # --- Order context ---
    order_source = Column(String(20), nullable=True)     # custom, ab_test, regional, default
    ab_test_variant = Column(String(40), nullable=True)

    # --- Location ---
    country_code = Column(String(2), nullable=True)
    location_source = Column(String(20), nullable=True)  # remote-lookup, locale-heuristic, default

    # --- Attribution ---
    vendors = Column(JSONType, nullable=True)            # vendor keys the click was sent to
    is_duplicate = Column(Boolean, default=False)
    risk_score = Column(Float, nullable=True)

    user_agent = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.datetime.now(datetime.timezone.utc),
        index=True,
    )

    __table_args__ = (
        Index("ix_platform_clicks_smartlink_platform", "smartlink_id", "platform_key"),
    )
