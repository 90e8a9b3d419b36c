"""Tests for the page session: pipeline wiring, page view, click attribution, teardown."""

import asyncio
import random
import uuid

import httpx

from app.core.location import LocationSource
from app.core.platform_order import OrderSource
from app.core.platforms import parse_platform_links
from app.core.preferences import InMemoryPreferenceStore
from app.core.session import SmartLinkSession, Visitor
from app.models.repository import SmartLinkRecord
from app.tracking.schema import TrackingConfig

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
BROWSER_HEADERS = {
    "accept-language": "fr-FR,fr;q=0.9",
    "sec-fetch-mode": "navigate",
    "sec-fetch-dest": "document",
}

PLATFORM_LINKS = [
    {"platform": "Spotify", "url": "https://open.spotify.com/track/1"},
    {"platform": "Apple Music", "url": "https://music.apple.com/album/1"},
    {"platform": "Boomplay", "url": "https://www.boomplay.com/songs/1"},
    {"platform": "Deezer", "url": "https://www.deezer.com/track/1"},
]


def _record(links=PLATFORM_LINKS, tracking=None):
    return SmartLinkRecord(
        id=uuid.uuid4(),
        slug="night-drive",
        track_title="Night Drive",
        artist_name="Nova",
        platform_links=parse_platform_links(links),
        tracking_config=TrackingConfig.from_stored(tracking),
    )


def _geo(country="FR"):
    return httpx.MockTransport(lambda r: httpx.Response(200, json={"country_code": country, "city": "Paris"}))


def _session(record=None, user_agent=CHROME_UA, headers=BROWSER_HEADERS, country="FR", store=None):
    visitor = Visitor(
        ip="81.2.69.160",
        user_agent=user_agent,
        accept_language=headers.get("accept-language"),
        headers=dict(headers),
        page_url="https://smartlink.local/s/night-drive",
        page_path="/s/night-drive",
    )
    return SmartLinkSession(
        record or _record(),
        visitor,
        store if store is not None else InMemoryPreferenceStore(),
        geo_transport=_geo(country),
        rng=random.Random(3),
    )


class TestPrepare:
    def test_pipeline_and_page_view(self):
        session = _session()
        prepared = asyncio.run(session.prepare())

        assert prepared.location.country_code == "FR"
        assert prepared.location.source == LocationSource.REMOTE_LOOKUP
        assert [l.key for l in prepared.platforms if l.key == "boomplay"] == []
        assert sorted(l.key for l in prepared.platforms) == ["applemusic", "deezer", "spotify"]
        assert prepared.territory.total == 4
        assert prepared.territory.kept == 3
        assert sorted(prepared.page_view_vendors) == ["ga4-G-GLOBAL", "gtm-GTM-GLOBAL"]
        assert "smartlink_page_view" in session.document.render_head()

    def test_individual_identity_used_for_page_view(self):
        record = _record(tracking={"mode": "hybrid", "overrides": {"ga4": {"enabled": True, "id": "G-IND"}}})
        session = _session(record)
        prepared = asyncio.run(session.prepare())
        assert "ga4-G-IND" in prepared.page_view_vendors
        assert "ga4-G-GLOBAL" not in prepared.page_view_vendors

    def test_crawler_gets_page_without_instrumentation(self):
        session = _session(user_agent="facebookexternalhit/1.1")
        prepared = asyncio.run(session.prepare())
        assert not session.instrumented
        assert prepared.platforms
        assert prepared.page_view_vendors == []
        assert session.document.elements == []

    def test_empty_platform_links_render_empty_state(self):
        session = _session(_record(links=[]))
        prepared = asyncio.run(session.prepare())
        assert prepared.is_empty
        assert prepared.territory.total == 0

    def test_everything_filtered_out(self):
        session = _session(_record(links=[{"platform": "Melon", "url": "https://melon.com/1"}]))
        prepared = asyncio.run(session.prepare())
        assert prepared.is_empty
        assert prepared.territory.total == 1

    def test_no_page_view_when_disabled(self):
        session = _session()
        prepared = asyncio.run(session.prepare(emit_page_view=False))
        assert prepared.page_view_vendors == []
        assert session.document.commands() == []


class TestClick:
    def test_click_reaches_ready_vendors(self):
        session = _session()

        async def run():
            prepared = await session.prepare(emit_page_view=False)
            return prepared, session.click(prepared, "deezer", reported_position=40)

        prepared, outcome = asyncio.run(run())
        assert outcome.link.url == "https://www.deezer.com/track/1"
        assert outcome.position == prepared.order.position_of("deezer")
        assert outcome.reported_position == 40
        assert outcome.context["order_source"] == prepared.order.source.value
        assert sorted(outcome.vendors) == ["ga4-G-GLOBAL", "gtm-GTM-GLOBAL"]
        assert '"platform_name":"Deezer"' in session.document.render_head()

    def test_position_derived_from_order(self):
        session = _session()

        async def run():
            prepared = await session.prepare(emit_page_view=False)
            return prepared, session.click(prepared, "Spotify")

        prepared, outcome = asyncio.run(run())
        assert outcome.position == prepared.order.position_of("Spotify")

    def test_platform_unavailable_in_territory(self):
        session = _session()

        async def run():
            prepared = await session.prepare(emit_page_view=False)
            return session.click(prepared, "boomplay")

        assert asyncio.run(run()) is None

    def test_duplicate_click_not_sent(self):
        session = _session()

        async def run():
            prepared = await session.prepare(emit_page_view=False)
            return session.click(prepared, "spotify", is_duplicate=True)

        outcome = asyncio.run(run())
        assert outcome.is_duplicate
        assert outcome.vendors == []


class TestPreferences:
    def test_save_then_reset(self):
        store = InMemoryPreferenceStore()

        saving = _session(store=store)
        saved = asyncio.run(saving.save_order(["Deezer", "Apple Music"]))
        assert saved.source == OrderSource.CUSTOM
        assert [l.key for l in saved.ordered] == ["deezer", "applemusic", "spotify"]
        assert sorted(saving.order_change_vendors) == ["ga4-G-GLOBAL", "gtm-GTM-GLOBAL"]
        commands = "\n".join(saving.document.commands())
        assert 'gtag("event","platform_order_change"' in commands
        assert '"action":"user_customization"' in commands
        assert '"order_length":2' in commands

        # a later page view in a new session sees the saved order
        prepared = asyncio.run(_session(store=store).prepare())
        assert prepared.order.source == OrderSource.CUSTOM

        resetting = _session(store=store)
        reset = asyncio.run(resetting.reset_order())
        assert reset.source != OrderSource.CUSTOM
        assert resetting.order_change_vendors
        assert any('"action":"reset_to_default"' in js for js in resetting.document.commands())

    def test_crawler_order_change_not_tracked(self):
        session = _session(user_agent="facebookexternalhit/1.1")
        asyncio.run(session.save_order(["Deezer"]))
        assert session.order_change_vendors == []
        assert session.document.elements == []

    def test_force_variant(self):
        store = InMemoryPreferenceStore()
        result = asyncio.run(_session(store=store).force_variant("conversion_optimized"))
        assert result.variant.value == "conversion_optimized"
        assert result.ordered[0].key == "applemusic"


class TestClose:
    def test_close_removes_every_pixel(self):
        session = _session()
        asyncio.run(session.prepare())
        assert session.registry.keys()
        session.close()
        assert len(session.registry) == 0
        assert session.document.elements == []
        assert session.tracking.torn_down
