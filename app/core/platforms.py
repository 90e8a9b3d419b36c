"""
Streaming platform identity.

Every matching operation (territory tables, order lists, click routes) works on
the canonical platform key, never on the display name:

    "Apple Music"   → applemusic
    "YouTube Music" → youtubemusic
    "Amazon Music"  → amazon
    "appleMusic"    → applemusic   (Odesli-style keys)
"""

import re
from dataclasses import dataclass

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Squashed name → canonical key. Anything not listed is its own key.
PLATFORM_ALIASES: dict[str, str] = {
    "apple": "applemusic",
    "applemusic": "applemusic",
    "amazonmusic": "amazon",
    "amazonstore": "amazon",
    "amazon": "amazon",
    "itunesstore": "itunes",
    "itunes": "itunes",
    "youtube": "youtube",
    "youtubemusic": "youtubemusic",
    "ytmusic": "youtubemusic",
    "spotify": "spotify",
    "deezer": "deezer",
    "tidal": "tidal",
    "soundcloud": "soundcloud",
    "napster": "napster",
    "pandora": "pandora",
    "boomplay": "boomplay",
    "boomplaymusic": "boomplay",
    "audiomack": "audiomack",
    "anghami": "anghami",
    "jiosaavn": "jiosaavn",
    "saavn": "jiosaavn",
    "gaana": "gaana",
    "qobuz": "qobuz",
    "linemusic": "linemusic",
    "melon": "melon",
    "geniemusic": "genie",
    "genie": "genie",
    "qqmusic": "qq",
    "qq": "qq",
    "kugoumusic": "kugou",
    "kugou": "kugou",
    "kuwomusic": "kuwo",
    "kuwo": "kuwo",
    "neteasecloudmusic": "netease",
    "neteasemusic": "netease",
    "netease": "netease",
}


def canonical_platform_key(name: str | None) -> str:
    """Lowercase, strip whitespace/punctuation, then resolve known aliases."""
    if not name:
        return ""
    squashed = _NON_ALNUM.sub("", name.lower())
    return PLATFORM_ALIASES.get(squashed, squashed)


@dataclass(frozen=True)
class PlatformLink:
    platform: str  # vendor display name, as stored on the SmartLink
    url: str

    @property
    def key(self) -> str:
        return canonical_platform_key(self.platform)

    @classmethod
    def from_dict(cls, raw: dict) -> "PlatformLink":
        return cls(platform=str(raw.get("platform") or ""), url=str(raw.get("url") or ""))

    def to_dict(self) -> dict:
        return {"platform": self.platform, "url": self.url, "key": self.key}


def parse_platform_links(raw: list[dict] | None) -> list[PlatformLink]:
    """Build PlatformLinks from stored JSON, dropping rows without a name or URL."""
    links = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        link = PlatformLink.from_dict(item)
        if link.platform.strip() and link.url.strip():
            links.append(link)
    return links
