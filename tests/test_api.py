"""HTTP tests for SmartLink pages, click hops and the preferences API."""

import random
import uuid
from unittest.mock import Mock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.api.deps import SessionOptions, get_session_options
from app.core.platforms import parse_platform_links
from app.main import app
from app.models.repository import SmartLinkRecord, get_repository
from app.tracking.loader import ClientSideLoader
from app.tracking.schema import TrackingConfig

BROWSER = {
    "user-agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "accept-language": "fr-FR,fr;q=0.9",
    "sec-fetch-mode": "navigate",
    "sec-fetch-dest": "document",
    "x-forwarded-for": "81.2.69.160",
}


def _record(slug="night-drive", links=None, tracking=None):
    return SmartLinkRecord(
        id=uuid.uuid4(),
        slug=slug,
        track_title="Night Drive",
        artist_name="Nova",
        platform_links=parse_platform_links(links if links is not None else [
            {"platform": "Spotify", "url": "https://open.spotify.com/track/1"},
            {"platform": "Apple Music", "url": "https://music.apple.com/album/1"},
            {"platform": "Boomplay", "url": "https://www.boomplay.com/songs/1"},
            {"platform": "Deezer", "url": "https://www.deezer.com/track/1"},
        ]),
        tracking_config=TrackingConfig.from_stored(tracking),
        cover_image_url="https://cdn.test/cover.jpg",
    )


class FakeRepository:
    def __init__(self, *records):
        self.records = {r.slug: r for r in records}
        self.clicks = []

    async def get_by_slug(self, slug):
        return self.records.get(slug)

    async def record_click(self, click):
        self.clicks.append(click)


@pytest.fixture
def repo():
    return FakeRepository(
        _record(),
        _record(slug="no-platforms", links=[]),
        _record(slug="own-pixels", tracking={
            "mode": "custom",
            "overrides": {"socialPixel": {"enabled": True, "id": "98765"}},
        }),
    )


@pytest.fixture
def client(repo):
    geo = httpx.MockTransport(lambda r: httpx.Response(200, json={"country_code": "FR", "city": "Paris"}))
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_session_options] = lambda: SessionOptions(
        loader=ClientSideLoader(), geo_transport=geo, rng=random.Random(1),
    )
    yield TestClient(app, base_url="https://testserver")
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["service"] == "smartlink"


class TestPage:
    def test_renders_territory_filtered_platforms(self, client):
        r = client.get("/s/night-drive", headers=BROWSER)
        assert r.status_code == 200
        assert 'data-platform="spotify"' in r.text
        assert 'data-platform="applemusic"' in r.text
        assert 'data-platform="deezer"' in r.text
        assert "boomplay" not in r.text
        assert 'data-country="FR"' in r.text

    def test_page_view_and_scripts(self, client):
        r = client.get("/s/night-drive", headers=BROWSER)
        assert "googletagmanager.com/gtag/js?id=G-GLOBAL" in r.text
        assert "smartlink_page_view" in r.text
        assert 'id="sl-event-queue"' in r.text

        csp = r.headers["content-security-policy"]
        assert "script-src 'nonce-" in csp
        nonce = csp.split("'nonce-")[1].split("'")[0]
        assert f'nonce="{nonce}"' in r.text

    def test_individual_pixels_only_in_custom_mode(self, client):
        r = client.get("/s/own-pixels", headers=BROWSER)
        assert r.status_code == 200
        assert 'fbq("init","98765")' in r.text
        assert "G-GLOBAL" not in r.text

    def test_experiment_assignment_cookie_set(self, client):
        r = client.get("/s/night-drive", headers=BROWSER)
        assert "sl_order_experiment" in r.headers.get("set-cookie", "")

    def test_private_cache_headers(self, client):
        r = client.get("/s/night-drive", headers=BROWSER)
        assert "no-store" in r.headers["cache-control"]
        assert r.headers["x-frame-options"] == "DENY"

    def test_unknown_slug(self, client):
        r = client.get("/s/missing", headers=BROWSER)
        assert r.status_code == 404
        assert "Link not found" in r.text

    def test_empty_state(self, client):
        r = client.get("/s/no-platforms", headers=BROWSER)
        assert r.status_code == 200
        assert 'class="sl-empty"' in r.text

    def test_crawler_page_not_instrumented(self, client):
        headers = {**BROWSER, "user-agent": "facebookexternalhit/1.1"}
        r = client.get("/s/night-drive", headers=headers)
        assert r.status_code == 200
        assert 'data-platform="spotify"' in r.text
        assert "gtag" not in r.text
        assert 'property="og:image"' in r.text


class TestClickHop:
    def test_click_redirects_and_records(self, client, repo):
        r = client.get("/s/night-drive/go/deezer?pos=3", headers=BROWSER)
        assert r.status_code == 200
        assert '"https://www.deezer.com/track/1"' in r.text
        assert "platform_click" in r.text
        assert r.headers["referrer-policy"] == "no-referrer"

        assert len(repo.clicks) == 1
        click = repo.clicks[0]
        assert click.platform_key == "deezer"
        assert click.reported_position == 3
        assert click.position in (1, 2, 3)
        assert click.country_code == "FR"
        assert click.location_source == "remote-lookup"
        assert click.order_source == "ab_test"
        assert click.ab_test_variant is not None
        assert sorted(click.vendors) == ["ga4-G-GLOBAL", "gtm-GTM-GLOBAL"]
        assert click.is_duplicate is False

    def test_click_hop_configures_ga4_before_the_event(self, client):
        r = client.get("/s/night-drive/go/deezer", headers=BROWSER)
        assert 'gtag("config","G-GLOBAL",{"send_page_view":false});' in r.text
        assert r.text.index('gtag("config","G-GLOBAL"') < r.text.index('gtag("event","platform_click"')

    def test_recorded_position_comes_from_the_rendered_order(self, client, repo):
        client.put("/v1/smartlinks/night-drive/order", json={"order": ["Deezer"]}, headers=BROWSER)
        client.get("/s/night-drive/go/deezer?pos=40", headers=BROWSER)
        click = repo.clicks[0]
        assert click.position == 1
        assert click.reported_position == 40

    def test_platform_not_available_in_territory(self, client, repo):
        r = client.get("/s/night-drive/go/boomplay", headers=BROWSER)
        assert r.status_code == 404
        assert repo.clicks == []

    def test_rejected_click_keeps_experiment_assignment(self, client):
        r = client.get("/s/night-drive/go/boomplay", headers=BROWSER)
        assert r.status_code == 404
        assert "sl_order_experiment" in r.headers.get("set-cookie", "")

    def test_unknown_platform(self, client, repo):
        r = client.get("/s/night-drive/go/napster", headers=BROWSER)
        assert r.status_code == 404

    def test_double_click_recorded_as_duplicate(self, client, repo):
        client.get("/s/night-drive/go/spotify", headers=BROWSER)
        r = client.get("/s/night-drive/go/spotify", headers=BROWSER)
        assert r.status_code == 200
        assert '"https://open.spotify.com/track/1"' in r.text
        assert repo.clicks[1].is_duplicate is True
        assert repo.clicks[1].vendors == []

    def test_bad_position(self, client):
        r = client.get("/s/night-drive/go/spotify?pos=0", headers=BROWSER)
        assert r.status_code == 422


class TestResolveApi:
    def test_resolve(self, client):
        r = client.get("/v1/smartlinks/night-drive/resolve", headers=BROWSER)
        assert r.status_code == 200
        body = r.json()
        assert body["location"]["country_code"] == "FR"
        assert body["territory"] == {
            "country": "FR",
            "total": 4,
            "kept": 3,
            "available": body["territory"]["available"],
        }
        keys = [p["key"] for p in body["order"]["platforms"]]
        assert sorted(keys) == ["applemusic", "deezer", "spotify"]
        assert [p["position"] for p in body["order"]["platforms"]] == [1, 2, 3]
        assert body["tracking"]["vendors"]["ga4"]["state"] == "ready"
        assert body["tracking"]["vendors"]["meta_pixel"]["state"] == "skipped"
        assert body["tracking"]["has_global_tracking"] is True

    def test_resolve_unknown(self, client):
        r = client.get("/v1/smartlinks/missing/resolve", headers=BROWSER)
        assert r.status_code == 404


class TestOrderApi:
    def test_save_then_resolve_uses_custom_order(self, client):
        r = client.put(
            "/v1/smartlinks/night-drive/order",
            json={"order": ["Deezer", "Apple Music"]},
            headers=BROWSER,
        )
        assert r.status_code == 200
        assert r.json()["source"] == "custom"
        assert [p["key"] for p in r.json()["platforms"]] == ["deezer", "applemusic", "spotify"]
        assert r.json()["tracking"]["event"] == "platform_order_change"
        assert sorted(r.json()["tracking"]["vendors"]) == ["ga4-G-GLOBAL", "gtm-GTM-GLOBAL"]
        assert "sl_platform_order" in r.headers["set-cookie"]

        r = client.get("/v1/smartlinks/night-drive/resolve", headers=BROWSER)
        assert r.json()["order"]["source"] == "custom"

        r = client.delete("/v1/smartlinks/night-drive/order", headers=BROWSER)
        assert r.status_code == 200
        assert r.json()["source"] != "custom"
        assert r.json()["tracking"]["vendors"]

    def test_empty_order_rejected(self, client):
        r = client.put("/v1/smartlinks/night-drive/order", json={"order": []}, headers=BROWSER)
        assert r.status_code == 422

    def test_corrupt_cookie_ignored(self, client):
        client.cookies.set("sl_platform_order", "%%%garbage%%%")
        r = client.get("/v1/smartlinks/night-drive/resolve", headers=BROWSER)
        assert r.status_code == 200
        assert r.json()["order"]["source"] != "custom"

    def test_preference_writes_rate_limited(self, client):
        for _ in range(20):
            client.delete("/v1/smartlinks/night-drive/order", headers=BROWSER)
        r = client.delete("/v1/smartlinks/night-drive/order", headers=BROWSER)
        assert r.status_code == 429


class TestExperimentApi:
    def test_force_variant(self, client):
        r = client.put(
            "/v1/smartlinks/night-drive/experiment",
            json={"variant": "conversion_optimized"},
            headers=BROWSER,
        )
        assert r.status_code == 200
        assert r.json()["variant"] == "conversion_optimized"
        assert r.json()["platforms"][0]["key"] == "applemusic"

        r = client.get("/v1/smartlinks/night-drive/resolve", headers=BROWSER)
        assert r.json()["order"]["variant"] == "conversion_optimized"

    def test_unknown_variant(self, client):
        r = client.put(
            "/v1/smartlinks/night-drive/experiment",
            json={"variant": "loudest_first"},
            headers=BROWSER,
        )
        assert r.status_code == 400

    def test_hidden_outside_debug(self, client):
        with patch("app.api.preferences.get_settings", return_value=Mock(debug=False)):
            r = client.put(
                "/v1/smartlinks/night-drive/experiment",
                json={"variant": "control"},
                headers=BROWSER,
            )
        assert r.status_code == 404
