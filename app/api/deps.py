"""Request → SmartLinkSession wiring shared by the page and JSON routers."""

import random
from dataclasses import dataclass

import httpx
from fastapi import Request

from app.config import get_settings
from app.core.preferences import CookiePreferenceStore
from app.core.session import SmartLinkSession, Visitor
from app.middleware.rate_limit import get_real_ip
from app.models.repository import SmartLinkRecord
from app.tracking.loader import ClientSideLoader, ProbingScriptLoader, ScriptLoader

TIMEZONE_COOKIE = "sl_tz"


@dataclass
class SessionOptions:
    loader: ScriptLoader
    geo_transport: httpx.AsyncBaseTransport | None = None
    rng: random.Random | None = None


def get_session_options() -> SessionOptions:
    """FastAPI dependency — tests override it with mock transports."""
    settings = get_settings()
    if settings.vendor_script_probe:
        loader = ProbingScriptLoader(timeout=settings.vendor_script_timeout_seconds)
    else:
        loader = ClientSideLoader()
    return SessionOptions(loader=loader)


def visitor_from_request(request: Request) -> Visitor:
    # The page script stores Intl's timezone in a cookie; API clients may send a header.
    tz = request.cookies.get(TIMEZONE_COOKIE) or request.headers.get("x-timezone")
    return Visitor(
        ip=get_real_ip(request),
        user_agent=request.headers.get("user-agent"),
        accept_language=request.headers.get("accept-language"),
        timezone=tz,
        headers={k.lower(): v for k, v in request.headers.items()},
        page_url=str(request.url),
        page_path=request.url.path,
    )


def preference_store(request: Request) -> CookiePreferenceStore:
    return CookiePreferenceStore(request.cookies, get_settings().preference_cookie_max_age)


def open_session(
    record: SmartLinkRecord,
    request: Request,
    store: CookiePreferenceStore,
    options: SessionOptions,
) -> SmartLinkSession:
    return SmartLinkSession(
        record,
        visitor_from_request(request),
        store,
        loader=options.loader,
        geo_transport=options.geo_transport,
        rng=options.rng,
    )
