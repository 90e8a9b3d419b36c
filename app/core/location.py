"""
Location resolver — visitor country via a layered fallback chain.

Tiers (first success wins):
  1. remote-lookup     → IP geolocation service, bounded timeout
  2. locale-heuristic  → Accept-Language tag + IANA timezone
  3. default           → settings.default_country

Every tier failure is caught and logged; resolve() never raises.
The result is cached on the resolver for the lifetime of the page render and
is never persisted. refresh() drops the cache and resolves again.
"""

import ipaddress
import re
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum

import httpx

from app.config import get_settings
from app.core.errors import LocationUnavailable

import structlog

logger = structlog.get_logger()


class LocationSource(str, Enum):
    REMOTE_LOOKUP = "remote-lookup"
    LOCALE_HEURISTIC = "locale-heuristic"
    DEFAULT = "default"


@dataclass(frozen=True)
class ResolvedLocation:
    country_code: str
    country: str
    region: str
    city: str
    timezone: str
    source: LocationSource
    resolved_at: datetime
    ip: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["source"] = self.source.value
        data["resolved_at"] = self.resolved_at.isoformat()
        return data


COUNTRY_NAMES: dict[str, str] = {
    "US": "United States", "CA": "Canada", "FR": "France", "DE": "Germany",
    "GB": "United Kingdom", "IT": "Italy", "ES": "Spain", "NL": "Netherlands",
    "JP": "Japan", "KR": "South Korea", "CN": "China", "IN": "India",
    "AU": "Australia", "NG": "Nigeria", "ZA": "South Africa", "KE": "Kenya",
    "GH": "Ghana", "BR": "Brazil", "MX": "Mexico", "AR": "Argentina",
    "AE": "United Arab Emirates", "SA": "Saudi Arabia", "EG": "Egypt",
    "BE": "Belgium", "CH": "Switzerland", "PT": "Portugal",
}

# Full tags first, then bare primary subtags.
LOCALE_COUNTRY: dict[str, str] = {
    "en-us": "US", "en-gb": "GB", "en-ca": "CA", "en-au": "AU", "en-in": "IN",
    "fr-ca": "CA", "pt-br": "BR", "pt-pt": "PT", "es-mx": "MX", "es-ar": "AR",
    "fr": "FR", "de": "DE", "es": "ES", "it": "IT", "nl": "NL",
    "ja": "JP", "ko": "KR", "zh": "CN", "hi": "IN", "pt": "BR",
}

TIMEZONE_COUNTRY: dict[str, str] = {
    "Europe/Paris": "FR", "Europe/Berlin": "DE", "Europe/London": "GB",
    "Europe/Rome": "IT", "Europe/Madrid": "ES", "Europe/Amsterdam": "NL",
    "America/New_York": "US", "America/Chicago": "US", "America/Denver": "US",
    "America/Los_Angeles": "US", "America/Toronto": "CA", "America/Vancouver": "CA",
    "America/Sao_Paulo": "BR", "America/Mexico_City": "MX",
    "America/Argentina/Buenos_Aires": "AR",
    "Asia/Tokyo": "JP", "Asia/Seoul": "KR", "Asia/Shanghai": "CN",
    "Asia/Kolkata": "IN", "Asia/Dubai": "AE", "Asia/Riyadh": "SA",
    "Australia/Sydney": "AU", "Australia/Melbourne": "AU",
    "Africa/Lagos": "NG", "Africa/Johannesburg": "ZA", "Africa/Nairobi": "KE",
    "Africa/Accra": "GH", "Africa/Cairo": "EG",
}

_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")


def _primary_language_tag(accept_language: str | None) -> str | None:
    """First tag of an Accept-Language header: 'fr-FR,fr;q=0.9' → 'fr-FR'."""
    if not accept_language:
        return None
    first = accept_language.split(",")[0].split(";")[0].strip()
    return first or None


def estimate_country(language: str | None, tz: str | None) -> str | None:
    """
    Best-guess country from a language tag and a timezone identifier.
    Returns None when neither carries a usable signal.
    """
    tag = (language or "").replace("_", "-").lower()
    if tag:
        if tag in LOCALE_COUNTRY:
            return LOCALE_COUNTRY[tag]
        parts = tag.split("-")
        # Explicit region subtag: en-AU, de-CH, ...
        if len(parts) > 1 and len(parts[1]) == 2 and parts[1].isalpha():
            return parts[1].upper()
    if tz and tz in TIMEZONE_COUNTRY:
        return TIMEZONE_COUNTRY[tz]
    if tag:
        primary = tag.split("-")[0]
        if primary in LOCALE_COUNTRY:
            return LOCALE_COUNTRY[primary]
    return None


def _is_public_ip(ip: str | None) -> bool:
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global


class LocationResolver:
    """One resolver per page render; caches its result."""

    def __init__(
        self,
        ip: str | None = None,
        accept_language: str | None = None,
        timezone_name: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings=None,
    ):
        self.ip = ip
        self.accept_language = accept_language
        self.timezone_name = timezone_name
        self._transport = transport
        self._settings = settings or get_settings()
        self._cached: ResolvedLocation | None = None

    @property
    def cached(self) -> ResolvedLocation | None:
        return self._cached

    async def resolve(self) -> ResolvedLocation:
        if self._cached is not None:
            return self._cached

        try:
            location = await self._remote_lookup()
        except LocationUnavailable as e:
            logger.info("location_remote_skipped", reason=str(e))
            location = None
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning("location_remote_failed", ip=self.ip, error=str(e))
            location = None

        if location is None:
            try:
                location = self._from_locale()
            except LocationUnavailable as e:
                logger.info("location_heuristic_failed", reason=str(e))
                location = self._default()

        self._cached = location
        logger.info(
            "location_resolved",
            country=location.country_code,
            source=location.source.value,
        )
        return location

    async def refresh(self) -> ResolvedLocation:
        self._cached = None
        return await self.resolve()

    # --- tiers ---

    async def _remote_lookup(self) -> ResolvedLocation:
        settings = self._settings
        if not settings.geo_lookup_enabled:
            raise LocationUnavailable("remote lookup disabled")
        if not _is_public_ip(self.ip):
            raise LocationUnavailable(f"no public client ip ({self.ip})")

        url = settings.geo_lookup_url.format(ip=self.ip)
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=settings.geo_lookup_timeout_seconds,
        ) as client:
            resp = await client.get(url, headers={"Accept": "application/json"})
            resp.raise_for_status()
            data = resp.json()

        if not isinstance(data, dict):
            raise ValueError("location response is not an object")
        code = str(data.get("country_code") or "").strip().upper()
        if not _COUNTRY_CODE.match(code):
            raise ValueError(f"location response has no usable country_code: {code!r}")

        return ResolvedLocation(
            country_code=code,
            country=str(data.get("country_name") or COUNTRY_NAMES.get(code, code)),
            region=str(data.get("region") or "Unknown"),
            city=str(data.get("city") or "Unknown"),
            timezone=str(data.get("timezone") or self.timezone_name or "UTC"),
            source=LocationSource.REMOTE_LOOKUP,
            resolved_at=datetime.now(timezone.utc),
            ip=self.ip,
        )

    def _from_locale(self) -> ResolvedLocation:
        language = _primary_language_tag(self.accept_language)
        code = estimate_country(language, self.timezone_name)
        if not code:
            raise LocationUnavailable(
                f"no country for language={language!r} timezone={self.timezone_name!r}"
            )
        return ResolvedLocation(
            country_code=code,
            country=COUNTRY_NAMES.get(code, code),
            region="Unknown",
            city="Unknown",
            timezone=self.timezone_name or "UTC",
            source=LocationSource.LOCALE_HEURISTIC,
            resolved_at=datetime.now(timezone.utc),
            ip=self.ip,
        )

    def _default(self) -> ResolvedLocation:
        code = self._settings.default_country.upper()
        return ResolvedLocation(
            country_code=code,
            country=COUNTRY_NAMES.get(code, code),
            region="Unknown",
            city="Unknown",
            timezone="UTC",
            source=LocationSource.DEFAULT,
            resolved_at=datetime.now(timezone.utc),
            ip=self.ip,
        )
