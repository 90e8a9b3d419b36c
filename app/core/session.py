"""
SmartLink page session — one per rendered page or click hop.

Owns the page-level collaborators (pixel registry, page document, location
resolver, order resolver, tracking manager) and runs the pipeline:

    location → territory filter → platform order        (sequential)
    tracking initialization                             (concurrently)
    → one page-view event once both are done

close() is the "visitor navigated away" hook: every injected pixel is
cleaned up, and anything still loading is discarded.
"""

import asyncio
import random
from dataclasses import dataclass, field

import httpx

from app.core.bot_detection import VisitorVerdict, score_visitor
from app.core.errors import PlatformDataMissing
from app.core.location import LocationResolver, ResolvedLocation
from app.core.platform_order import OrderResult, PlatformOrderResolver
from app.core.platforms import PlatformLink, canonical_platform_key
from app.core.preferences import PreferenceStore
from app.core.territory import TerritoryFilterResult, filter_by_territory
from app.models.repository import SmartLinkRecord
from app.tracking.adapters import TrackingEvent
from app.tracking.document import PageDocument
from app.tracking.loader import ScriptLoader
from app.tracking.manager import TrackingManager
from app.tracking.registry import PixelRegistry

import structlog

logger = structlog.get_logger()


@dataclass
class Visitor:
    ip: str | None = None
    user_agent: str | None = None
    accept_language: str | None = None
    timezone: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    page_url: str | None = None
    page_path: str | None = None


@dataclass
class PreparedPage:
    record: SmartLinkRecord
    location: ResolvedLocation
    territory: TerritoryFilterResult
    order: OrderResult
    verdict: VisitorVerdict
    page_view_vendors: list[str] = field(default_factory=list)

    @property
    def platforms(self) -> list[PlatformLink]:
        return self.order.ordered

    @property
    def is_empty(self) -> bool:
        return not self.order.ordered


@dataclass
class ClickOutcome:
    link: PlatformLink
    position: int | None
    context: dict
    vendors: list[str]
    is_duplicate: bool
    reported_position: int | None = None


class SmartLinkSession:
    def __init__(
        self,
        record: SmartLinkRecord,
        visitor: Visitor,
        store: PreferenceStore,
        loader: ScriptLoader | None = None,
        geo_transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
        registry: PixelRegistry | None = None,
        document: PageDocument | None = None,
    ):
        self.record = record
        self.visitor = visitor
        self.registry = registry or PixelRegistry()
        self.document = document or PageDocument()
        self.location_resolver = LocationResolver(
            ip=visitor.ip,
            accept_language=visitor.accept_language,
            timezone_name=visitor.timezone,
            transport=geo_transport,
        )
        self.order_resolver = PlatformOrderResolver(store, rng=rng)
        self.tracking = TrackingManager(
            record.tracking_config,
            self.registry,
            self.document,
            loader=loader,
        )
        self.verdict = score_visitor(visitor.user_agent, visitor.headers)
        self.order_change_vendors: list[str] = []

    @property
    def instrumented(self) -> bool:
        return self.verdict.should_instrument

    async def locate(self) -> tuple[ResolvedLocation, TerritoryFilterResult]:
        location = await self.location_resolver.resolve()
        try:
            if not self.record.platform_links:
                raise PlatformDataMissing(f"smartlink {self.record.slug} has no platform links")
            territory = filter_by_territory(self.record.platform_links, location.country_code)
        except PlatformDataMissing as e:
            logger.info("smartlink_without_platforms", slug=self.record.slug, reason=str(e))
            territory = TerritoryFilterResult(
                filtered=[], total=0, kept=0, country=location.country_code,
            )
        return location, territory

    async def _resolve_platforms(self) -> tuple[ResolvedLocation, TerritoryFilterResult, OrderResult]:
        location, territory = await self.locate()
        order = self.order_resolver.resolve(territory.filtered, location.country_code)
        return location, territory, order

    async def prepare(self, emit_page_view: bool = True) -> PreparedPage:
        if self.instrumented:
            (location, territory, order), _ = await asyncio.gather(
                self._resolve_platforms(),
                self.tracking.initialize(),
            )
        else:
            logger.info("visitor_not_instrumented", slug=self.record.slug,
                        risk=self.verdict.risk_score, reason=self.verdict.reason)
            location, territory, order = await self._resolve_platforms()

        prepared = PreparedPage(
            record=self.record,
            location=location,
            territory=territory,
            order=order,
            verdict=self.verdict,
        )
        if emit_page_view and self.instrumented:
            prepared.page_view_vendors = self.tracking.emit_page_view(self.page_view_metadata(prepared))
        return prepared

    def page_view_metadata(self, prepared: PreparedPage) -> dict:
        return {
            "smartlink_id": str(self.record.id),
            "track_title": self.record.track_title,
            "artist_name": self.record.artist_name,
            "page_path": self.visitor.page_path,
            "page_url": self.visitor.page_url,
            "platforms_count": len(prepared.order.ordered),
            "country": prepared.location.country_code,
            "order_source": prepared.order.source.value,
            "ab_test_variant": prepared.order.variant.value if prepared.order.variant else None,
        }

    def click(
        self,
        prepared: PreparedPage,
        platform: str,
        reported_position: int | None = None,
        is_duplicate: bool = False,
    ) -> ClickOutcome | None:
        """
        Attribute a click on a rendered platform row. Returns None when the
        platform is not on this visitor's list (unknown or not available in
        their territory). The recorded position is the row's place in the
        resolved order; reported_position is kept alongside as a hint.
        """
        key = canonical_platform_key(platform)
        link = next((l for l in prepared.order.ordered if l.key == key), None)
        if link is None:
            return None

        context = self.order_resolver.click_context(link.platform, reported_position)
        vendors: list[str] = []
        if self.instrumented and not is_duplicate:
            vendors = self.tracking.emit_click(link.platform, link.url, {
                "smartlink_id": str(self.record.id),
                "track_title": self.record.track_title,
                "artist_name": self.record.artist_name,
                "country": prepared.location.country_code,
                **context,
            })
        return ClickOutcome(
            link=link,
            position=context["platform_position"],
            context=context,
            vendors=vendors,
            is_duplicate=is_duplicate,
            reported_position=reported_position,
        )

    # --- order preference mutations ---

    async def _locate_for_change(self) -> tuple[ResolvedLocation, TerritoryFilterResult]:
        if not self.instrumented:
            return await self.locate()
        located, _ = await asyncio.gather(self.locate(), self.tracking.initialize())
        return located

    def _order_changed(self, action: str, order_length: int) -> list[str]:
        if not self.instrumented:
            self.order_change_vendors = []
        else:
            self.order_change_vendors = self.tracking.emit_custom(TrackingEvent.ORDER_CHANGE, {
                "smartlink_id": str(self.record.id),
                "action": action,
                "order_length": order_length,
            })
        return self.order_change_vendors

    async def save_order(self, platforms: list[str]) -> OrderResult:
        location, territory = await self._locate_for_change()
        preference = self.order_resolver.save_custom_order(platforms)
        self._order_changed("user_customization", len(preference.order))
        return self.order_resolver.resolve(territory.filtered, location.country_code)

    async def reset_order(self) -> OrderResult:
        location, territory = await self._locate_for_change()
        result = self.order_resolver.reset(territory.filtered, location.country_code)
        self._order_changed("reset_to_default", len(result.order_used))
        return result

    async def force_variant(self, name: str) -> OrderResult:
        location, territory = await self.locate()
        self.order_resolver.force_variant(name)
        return self.order_resolver.resolve(territory.filtered, location.country_code)

    def close(self) -> None:
        self.tracking.cleanup_all()
