"""Tests for the tiered location resolver."""

import asyncio
import json

import httpx
import pytest

from app.config import Settings
from app.core.location import LocationResolver, LocationSource, estimate_country

PUBLIC_IP = "81.2.69.160"


def _settings(**overrides):
    base = dict(
        geo_lookup_enabled=True,
        geo_lookup_url="https://geo.test/{ip}/json/",
        geo_lookup_timeout_seconds=1.0,
        default_country="US",
    )
    base.update(overrides)
    return Settings(**base)


def _transport(handler):
    calls = []

    def wrapped(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    return httpx.MockTransport(wrapped), calls


def _resolve(resolver):
    return asyncio.run(resolver.resolve())


class TestRemoteLookup:
    def test_success(self):
        transport, calls = _transport(lambda r: httpx.Response(200, json={
            "country_code": "gb",
            "country_name": "United Kingdom",
            "region": "England",
            "city": "London",
            "timezone": "Europe/London",
        }))
        resolver = LocationResolver(ip=PUBLIC_IP, transport=transport, settings=_settings())
        loc = _resolve(resolver)

        assert loc.country_code == "GB"
        assert loc.city == "London"
        assert loc.source == LocationSource.REMOTE_LOOKUP
        assert str(calls[0].url) == f"https://geo.test/{PUBLIC_IP}/json/"

    def test_http_error_falls_back_to_locale(self):
        transport, _ = _transport(lambda r: httpx.Response(503))
        resolver = LocationResolver(
            ip=PUBLIC_IP, accept_language="fr-FR,fr;q=0.9", transport=transport, settings=_settings(),
        )
        loc = _resolve(resolver)
        assert loc.country_code == "FR"
        assert loc.source == LocationSource.LOCALE_HEURISTIC

    def test_transport_failure_falls_back(self):
        def boom(request):
            raise httpx.ConnectError("unreachable", request=request)

        transport, _ = _transport(boom)
        resolver = LocationResolver(
            ip=PUBLIC_IP, accept_language="de-DE", transport=transport, settings=_settings(),
        )
        assert _resolve(resolver).country_code == "DE"

    def test_malformed_body_falls_back(self):
        transport, _ = _transport(lambda r: httpx.Response(200, content=b"<html>rate limited</html>"))
        resolver = LocationResolver(ip=PUBLIC_IP, transport=transport, settings=_settings())
        loc = _resolve(resolver)
        assert loc.source == LocationSource.DEFAULT
        assert loc.country_code == "US"

    def test_missing_country_code_falls_back(self):
        transport, _ = _transport(lambda r: httpx.Response(200, json={"error": True, "reason": "Reserved IP"}))
        resolver = LocationResolver(
            ip=PUBLIC_IP, timezone_name="Asia/Tokyo", transport=transport, settings=_settings(),
        )
        assert _resolve(resolver).country_code == "JP"

    def test_private_ip_skips_lookup(self):
        transport, calls = _transport(lambda r: httpx.Response(200, json={"country_code": "GB"}))
        resolver = LocationResolver(
            ip="192.168.1.10", accept_language="pt-BR", transport=transport, settings=_settings(),
        )
        assert _resolve(resolver).country_code == "BR"
        assert calls == []

    def test_disabled_lookup_skips_remote(self):
        transport, calls = _transport(lambda r: httpx.Response(200, json={"country_code": "GB"}))
        resolver = LocationResolver(
            ip=PUBLIC_IP, transport=transport, settings=_settings(geo_lookup_enabled=False),
        )
        assert _resolve(resolver).source == LocationSource.DEFAULT
        assert calls == []


class TestCaching:
    def test_result_is_cached(self):
        transport, calls = _transport(lambda r: httpx.Response(200, json={"country_code": "NG"}))
        resolver = LocationResolver(ip=PUBLIC_IP, transport=transport, settings=_settings())

        async def twice():
            first = await resolver.resolve()
            second = await resolver.resolve()
            return first, second

        first, second = asyncio.run(twice())
        assert first is second
        assert resolver.cached is first
        assert len(calls) == 1

    def test_refresh_bypasses_cache(self):
        transport, calls = _transport(lambda r: httpx.Response(200, json={"country_code": "NG"}))
        resolver = LocationResolver(ip=PUBLIC_IP, transport=transport, settings=_settings())

        async def run():
            await resolver.resolve()
            return await resolver.refresh()

        assert asyncio.run(run()).country_code == "NG"
        assert len(calls) == 2


class TestDefault:
    def test_no_signals_uses_default_country(self):
        resolver = LocationResolver(settings=_settings(default_country="fr"))
        loc = _resolve(resolver)
        assert loc.country_code == "FR"
        assert loc.country == "France"
        assert loc.source == LocationSource.DEFAULT

    def test_to_dict_is_json_serialisable(self):
        loc = _resolve(LocationResolver(settings=_settings()))
        data = loc.to_dict()
        assert data["source"] == "default"
        json.dumps(data)


class TestEstimateCountry:
    @pytest.mark.parametrize("language,tz,expected", [
        ("en-AU", None, "AU"),
        ("fr-FR", None, "FR"),
        ("fr", None, "FR"),
        ("en", "Europe/London", "GB"),
        ("de_CH", None, "CH"),
        (None, "America/Sao_Paulo", "BR"),
        ("ja", None, "JP"),
    ])
    def test_estimates(self, language, tz, expected):
        assert estimate_country(language, tz) == expected

    def test_nothing_usable(self):
        assert estimate_country(None, None) is None
        assert estimate_country("xx", "Mars/Olympus") is None
