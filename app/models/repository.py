"""
SmartLink data source — fetch-by-slug plus the append-only click log.

Routers depend on get_repository(); tests swap it for an in-memory fake via
dependency_overrides.
"""

from dataclasses import dataclass, field
from uuid import UUID

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.platforms import PlatformLink, parse_platform_links
from app.models.database import get_db
from app.models.tables import Artist, PlatformClick, SmartLink
from app.tracking.schema import TrackingConfig

import structlog

logger = structlog.get_logger()


@dataclass
class SmartLinkRecord:
    id: UUID
    slug: str
    track_title: str
    artist_name: str
    platform_links: list[PlatformLink] = field(default_factory=list)
    tracking_config: TrackingConfig = field(default_factory=TrackingConfig)
    description: str | None = None
    cover_image_url: str | None = None


@dataclass
class ClickRecord:
    smartlink_id: UUID
    platform_key: str
    destination_url: str
    position: int | None = None
    reported_position: int | None = None
    order_source: str | None = None
    ab_test_variant: str | None = None
    country_code: str | None = None
    location_source: str | None = None
    vendors: list[str] = field(default_factory=list)
    is_duplicate: bool = False
    risk_score: float | None = None
    user_agent: str | None = None


def _tracking_config(raw: dict | None, slug: str) -> TrackingConfig:
    try:
        return TrackingConfig.from_stored(raw)
    except ValidationError as e:
        logger.warning("tracking_config_invalid", slug=slug, errors=e.error_count())
        return TrackingConfig()


class SmartLinkRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_slug(self, slug: str) -> SmartLinkRecord | None:
        stmt = (
            select(SmartLink, Artist.name)
            .join(Artist, SmartLink.artist_id == Artist.id)
            .where(SmartLink.slug == slug, SmartLink.status == "published")
        )
        result = await self.db.execute(stmt)
        row = result.first()
        if row is None:
            return None

        link, artist_name = row
        return SmartLinkRecord(
            id=link.id,
            slug=link.slug,
            track_title=link.track_title,
            artist_name=artist_name,
            platform_links=parse_platform_links(link.platform_links),
            tracking_config=_tracking_config(link.tracking_config, link.slug),
            description=link.description,
            cover_image_url=link.cover_image_url,
        )

    async def record_click(self, click: ClickRecord) -> None:
        self.db.add(PlatformClick(
            smartlink_id=click.smartlink_id,
            platform_key=click.platform_key,
            destination_url=click.destination_url,
            position=click.position,
            reported_position=click.reported_position,
            order_source=click.order_source,
            ab_test_variant=click.ab_test_variant,
            country_code=click.country_code,
            location_source=click.location_source,
            vendors=click.vendors,
            is_duplicate=click.is_duplicate,
            risk_score=click.risk_score,
            user_agent=click.user_agent[:500] if click.user_agent else None,
        ))
        await self.db.commit()


async def get_repository(db: AsyncSession = Depends(get_db)) -> SmartLinkRepository:
    return SmartLinkRepository(db)
