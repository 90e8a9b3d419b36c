"""
Visitor scoring — decides whether a page view or click gets instrumented.

SmartLink pages are public and must still render for crawlers (link previews
in chat apps and social feeds depend on it), so nothing here blocks. A
visitor at or above the risk threshold is served the page with no vendor
events, which keeps preview fetches and scripted traffic out of every
measurement account.

Signals:
  1. Automation UA (curl, python-requests, headless browsers) → risk 1.0
  2. Known crawler / link-preview UA                          → +0.6
  3. user-agents library bot flag                             → +0.4
  4. Missing Accept-Language                                  → +0.15
  5. Browser UA without Sec-Fetch-* headers                   → +0.2
"""

import re
from dataclasses import dataclass, field

from user_agents import parse as parse_ua

from app.config import get_settings

AUTOMATION_UA_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.IGNORECASE) for p in [
        r"curl/",
        r"wget/",
        r"python-requests",
        r"python-urllib",
        r"httpx",
        r"Go-http-client",
        r"scrapy",
        r"aiohttp",
        r"node-fetch",
        r"axios/",
        r"HeadlessChrome",
        r"PhantomJS",
        r"Selenium",
        r"puppeteer",
        r"Lighthouse",
    ]
]

# Crawlers that fetch SmartLinks to build previews / index them.
CRAWLER_UA_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.IGNORECASE) for p in [
        r"Googlebot",
        r"bingbot",
        r"DuckDuckBot",
        r"facebookexternalhit",
        r"Facebot",
        r"Twitterbot",
        r"LinkedInBot",
        r"Slackbot",
        r"TelegramBot",
        r"Discordbot",
        r"WhatsApp",
        r"Pinterestbot",
        r"redditbot",
        r"Applebot",
        r"SkypeUriPreview",
    ]
]


@dataclass
class VisitorSignals:
    automation_ua: bool = False
    crawler_ua: bool = False
    ua_is_bot_lib: bool = False
    missing_accept_language: bool = False
    missing_sec_fetch: bool = False
    details: dict = field(default_factory=dict)


@dataclass
class VisitorVerdict:
    risk_score: float
    signals: VisitorSignals
    reason: str = ""

    @property
    def should_instrument(self) -> bool:
        return self.risk_score < get_settings().bot_risk_flag_threshold


def score_visitor(user_agent: str | None, headers: dict[str, str]) -> VisitorVerdict:
    signals = VisitorSignals()
    ua_str = user_agent or ""
    lowered = {k.lower(): v for k, v in headers.items()}

    for pattern in AUTOMATION_UA_PATTERNS:
        if pattern.search(ua_str):
            signals.automation_ua = True
            return VisitorVerdict(risk_score=1.0, signals=signals, reason=f"automation UA: {pattern.pattern}")

    score = 0.0
    reasons = []

    for pattern in CRAWLER_UA_PATTERNS:
        if pattern.search(ua_str):
            signals.crawler_ua = True
            score += 0.6
            reasons.append(f"crawler UA: {pattern.pattern}")
            break

    if ua_str:
        if parse_ua(ua_str).is_bot:
            signals.ua_is_bot_lib = True
            score += 0.4
            reasons.append("ua parser bot flag")
    else:
        reasons.append("empty UA")
        score += 0.4

    if not lowered.get("accept-language"):
        signals.missing_accept_language = True
        score += 0.15

    has_sec_fetch = any(k.startswith("sec-fetch") for k in lowered)
    if not has_sec_fetch and "Mozilla" in ua_str:
        signals.missing_sec_fetch = True
        score += 0.2

    return VisitorVerdict(
        risk_score=round(min(score, 1.0), 3),
        signals=signals,
        reason="; ".join(reasons),
    )
