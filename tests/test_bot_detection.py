"""Tests for visitor scoring."""

import pytest
from app.core.bot_detection import score_visitor


REAL_CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

REAL_HEADERS = {
    "accept-language": "en-US,en;q=0.9",
    "sec-fetch-dest": "document",
    "sec-fetch-mode": "navigate",
    "sec-fetch-site": "cross-site",
}


class TestAutomation:
    """Obvious automation UAs are never instrumented (risk=1.0)."""

    @pytest.mark.parametrize("ua", [
        "curl/7.88.1",
        "python-requests/2.31.0",
        "Go-http-client/1.1",
        "Scrapy/2.11.0",
        "Mozilla/5.0 HeadlessChrome/120.0",
        "puppeteer",
    ])
    def test_automation_uas_not_instrumented(self, ua):
        v = score_visitor(ua, REAL_HEADERS)
        assert v.should_instrument is False
        assert v.risk_score == 1.0
        assert v.signals.automation_ua is True

    def test_real_browser_instrumented(self):
        v = score_visitor(REAL_CHROME_UA, REAL_HEADERS)
        assert v.should_instrument is True
        assert v.risk_score < 0.3


class TestCrawlers:
    """Link-preview and search crawlers: page renders, but no vendor events."""

    @pytest.mark.parametrize("ua", [
        "Googlebot/2.1 (+http://www.google.com/bot.html)",
        "facebookexternalhit/1.1",
        "Twitterbot/1.0",
        "LinkedInBot/1.0",
        "Slackbot-LinkExpanding 1.0 (+https://api.slack.com/robots)",
    ])
    def test_crawlers_flagged(self, ua):
        v = score_visitor(ua, REAL_HEADERS)
        assert v.signals.crawler_ua is True
        assert v.risk_score >= 0.5
        assert v.should_instrument is False


class TestHeaderSanity:
    def test_missing_accept_language_adds_risk(self):
        headers = {k: v for k, v in REAL_HEADERS.items() if k != "accept-language"}
        v = score_visitor(REAL_CHROME_UA, headers)
        assert v.risk_score > 0.0
        assert v.signals.missing_accept_language is True

    def test_missing_sec_fetch_adds_risk(self):
        headers = {"accept-language": "en-US"}
        v = score_visitor(REAL_CHROME_UA, headers)
        assert v.signals.missing_sec_fetch is True
        assert v.risk_score > 0.0
        assert v.should_instrument is True

    def test_header_names_case_insensitive(self):
        headers = {k.title(): v for k, v in REAL_HEADERS.items()}
        assert score_visitor(REAL_CHROME_UA, headers).risk_score == 0.0

    def test_empty_ua(self):
        v = score_visitor(None, REAL_HEADERS)
        assert v.risk_score == 0.4
        assert "empty UA" in v.reason


class TestCleanTraffic:
    def test_perfect_request_scores_zero(self):
        v = score_visitor(REAL_CHROME_UA, REAL_HEADERS)
        assert v.risk_score == 0.0
        assert v.should_instrument is True
