"""
Territorial availability — a hard gate on which platforms a visitor may see.

The filter never reorders and never lets through a platform that is missing
from the territory's allowed set. Ordering and personalisation happen later
and can only permute what survives here.
"""

from dataclasses import dataclass, field
from types import MappingProxyType

from app.config import get_settings
from app.core.platforms import PlatformLink, canonical_platform_key

import structlog

logger = structlog.get_logger()

_COMMON = ("spotify", "applemusic", "youtube", "youtubemusic")

TERRITORY_TABLE: MappingProxyType = MappingProxyType({
    # North America
    "US": _COMMON + ("amazon", "pandora", "tidal", "soundcloud", "napster"),
    "CA": _COMMON + ("amazon", "tidal", "soundcloud"),

    # Europe
    "FR": _COMMON + ("amazon", "deezer", "tidal", "soundcloud", "qobuz"),
    "DE": _COMMON + ("amazon", "deezer", "tidal", "soundcloud"),
    "GB": _COMMON + ("amazon", "tidal", "soundcloud"),
    "IT": _COMMON + ("amazon", "tidal", "soundcloud"),
    "ES": _COMMON + ("amazon", "tidal", "soundcloud"),
    "NL": _COMMON + ("amazon", "tidal", "soundcloud"),

    # Asia-Pacific
    "JP": _COMMON + ("amazon", "tidal", "soundcloud", "linemusic"),
    "KR": _COMMON + ("melon", "genie"),
    "CN": ("qq", "kugou", "kuwo", "netease"),
    "IN": _COMMON + ("amazon", "jiosaavn", "gaana"),
    "AU": _COMMON + ("amazon", "tidal", "soundcloud"),

    # Africa
    "NG": _COMMON + ("boomplay", "audiomack"),
    "ZA": _COMMON + ("deezer", "boomplay"),
    "KE": _COMMON + ("boomplay",),
    "GH": _COMMON + ("boomplay", "audiomack"),

    # Latin America
    "BR": _COMMON + ("amazon", "deezer", "tidal"),
    "MX": _COMMON + ("amazon", "tidal"),
    "AR": _COMMON + ("amazon", "tidal"),

    # Middle East
    "AE": _COMMON + ("anghami", "deezer"),
    "SA": _COMMON + ("anghami",),
    "EG": _COMMON + ("anghami",),
})


@dataclass
class TerritoryFilterResult:
    filtered: list[PlatformLink]
    total: int
    kept: int
    country: str
    available: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return self.kept == 0


def country_services(country_code: str | None, table=TERRITORY_TABLE) -> tuple[str, ...]:
    """Allowed canonical keys for a country, or the default country's set."""
    code = (country_code or "").upper()
    if code in table:
        return table[code]
    return table.get(get_settings().default_country.upper(), ())


def is_service_available(platform_name: str, country_code: str | None, table=TERRITORY_TABLE) -> bool:
    return canonical_platform_key(platform_name) in country_services(country_code, table)


def filter_by_territory(
    links: list[PlatformLink] | None,
    country_code: str | None,
    table=TERRITORY_TABLE,
) -> TerritoryFilterResult:
    """Keep only links whose platform is available in the territory, in input order."""
    links = list(links or [])
    available = country_services(country_code, table)
    allowed = set(available)

    filtered = []
    for link in links:
        if link.key in allowed:
            filtered.append(link)
        else:
            logger.debug("platform_unavailable", platform=link.platform, country=country_code)

    logger.info(
        "territory_filtered",
        country=country_code,
        total=len(links),
        kept=len(filtered),
    )
    return TerritoryFilterResult(
        filtered=filtered,
        total=len(links),
        kept=len(filtered),
        country=(country_code or "").upper(),
        available=available,
    )
