"""
SmartLink pages — the visitor-facing surface.

GET /s/{slug}
  1. Fetch the SmartLink (404 page when unknown or unpublished)
  2. Location → territory filter → platform order, concurrently with
     tracking initialization for all four vendors
  3. One page-view event to every READY, non-suspended pixel
  4. Render: vendor scripts + event queue in <head>, ordered platform rows
     (or the empty state), noscript pixels in <body>
  5. Clean up all pixels, flush preference cookies (experiment assignment)

GET /s/{slug}/go/{platform_key}?pos=N
  Click hop. Same pipeline minus the page view, then one platform_click
  event, a platform_clicks row, and an immediate redirect. Platforms not on
  this visitor's list (unknown, or unavailable in their territory) → 404.
  A repeat inside the dedupe window still redirects but is not re-sent to
  vendors.
"""

import secrets

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse

from app.api.deps import SessionOptions, get_session_options, open_session, preference_store
from app.core.session import PreparedPage
from app.middleware.rate_limit import check_click_dedupe, get_real_ip, rate_limit_ip
from app.models.repository import ClickRecord, SmartLinkRepository, get_repository
from app.tracking.document import PageDocument, html_escape, js_value

import structlog

logger = structlog.get_logger()
router = APIRouter()

VENDOR_SCRIPT_HOSTS = (
    "https://www.googletagmanager.com",
    "https://connect.facebook.net",
    "https://analytics.tiktok.com",
)
VENDOR_CONNECT_HOSTS = VENDOR_SCRIPT_HOSTS + (
    "https://*.google-analytics.com",
    "https://*.analytics.google.com",
    "https://www.facebook.com",
)

EMPTY_STATE_MESSAGE = "This release isn't available on any streaming platform in your region yet."


def _csp(nonce: str) -> str:
    hosts = " ".join(VENDOR_SCRIPT_HOSTS)
    connect = " ".join(VENDOR_CONNECT_HOSTS)
    return (
        f"default-src 'self'; script-src 'nonce-{nonce}' {hosts}; "
        f"img-src 'self' https: data:; connect-src 'self' {connect}; "
        f"frame-src https://www.googletagmanager.com; style-src 'self' 'unsafe-inline'; "
        f"frame-ancestors 'none'"
    )


def _not_found_html() -> str:
    return """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<meta name="robots" content="noindex,nofollow">
<title>Link not found</title>
</head>
<body>
<main class="sl-not-found">
<h1>Link not found</h1>
<p>This SmartLink doesn't exist or is no longer available.</p>
</main>
</body>
</html>"""


def _platform_rows(prepared: PreparedPage) -> str:
    if prepared.is_empty:
        return f'<p class="sl-empty">{html_escape(EMPTY_STATE_MESSAGE)}</p>'

    slug = prepared.record.slug
    rows = []
    for pos, link in enumerate(prepared.platforms, start=1):
        rows.append(
            f'<li><a class="sl-platform" data-platform="{html_escape(link.key)}" '
            f'href="/s/{html_escape(slug)}/go/{html_escape(link.key)}?pos={pos}" rel="nofollow">'
            f'{html_escape(link.platform)}</a></li>'
        )
    return '<ul class="sl-platforms">\n' + "\n".join(rows) + "\n</ul>"


def _render_page(prepared: PreparedPage, document: PageDocument, nonce: str) -> str:
    record = prepared.record
    title = f"{record.track_title} by {record.artist_name}"
    cover = ""
    if record.cover_image_url:
        cover = (
            f'<img class="sl-cover" src="{html_escape(record.cover_image_url)}" '
            f'alt="{html_escape(title)}">'
        )
    og_image = (
        f'<meta property="og:image" content="{html_escape(record.cover_image_url)}">'
        if record.cover_image_url else ""
    )
    description = html_escape(record.description or f"Listen to {title}")

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<title>{html_escape(title)}</title>
<meta property="og:title" content="{html_escape(title)}">
<meta property="og:description" content="{description}">
{og_image}
<script nonce="{nonce}">
try {{
  var tz = Intl.DateTimeFormat().resolvedOptions().timeZone;
  if (tz) document.cookie = "sl_tz=" + encodeURIComponent(tz) + ";path=/;max-age=31536000;samesite=lax";
}} catch(e) {{}}
</script>
{document.render_head(nonce)}
</head>
<body>
<main class="sl-page" data-country="{html_escape(prepared.location.country_code)}">
{cover}
<h1 class="sl-title">{html_escape(record.track_title)}</h1>
<p class="sl-artist">{html_escape(record.artist_name)}</p>
{_platform_rows(prepared)}
</main>
{document.render_body(nonce)}
</body>
</html>"""


def _render_hop(destination: str, document: PageDocument, nonce: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<meta name="robots" content="noindex,nofollow">
<title>Redirecting…</title>
{document.render_head(nonce)}
</head>
<body>
<noscript>
<p>Redirecting… <a href="{html_escape(destination)}">Click here</a> if not redirected.</p>
</noscript>
{document.render_body(nonce)}
<script nonce="{nonce}">
(function() {{
  var dest = {js_value(destination)};
  // Give queued vendor beacons a moment before leaving the page
  setTimeout(function() {{ window.location.replace(dest); }}, 300);
}})();
</script>
</body>
</html>"""


@router.get("/s/{slug}")
async def smartlink_page(
    slug: str,
    request: Request,
    repo: SmartLinkRepository = Depends(get_repository),
    options: SessionOptions = Depends(get_session_options),
):
    rate_limit_ip(request)

    record = await repo.get_by_slug(slug)
    if record is None:
        logger.info("smartlink_not_found", slug=slug)
        return HTMLResponse(content=_not_found_html(), status_code=404)

    store = preference_store(request)
    session = open_session(record, request, store, options)
    try:
        prepared = await session.prepare()
        nonce = secrets.token_urlsafe(16)
        html = _render_page(prepared, session.document, nonce)
    finally:
        session.close()

    logger.info(
        "smartlink_rendered",
        slug=slug,
        country=prepared.location.country_code,
        location_source=prepared.location.source.value,
        platforms=len(prepared.platforms),
        filtered_out=prepared.territory.total - prepared.territory.kept,
        order_source=prepared.order.source.value,
        instrumented=session.instrumented,
        vendors=prepared.page_view_vendors,
    )

    response = HTMLResponse(content=html, headers={"Content-Security-Policy": _csp(nonce)})
    store.apply(response)
    return response


@router.get("/s/{slug}/go/{platform_key}")
async def platform_click(
    slug: str,
    platform_key: str,
    request: Request,
    pos: int | None = Query(default=None, ge=1),
    repo: SmartLinkRepository = Depends(get_repository),
    options: SessionOptions = Depends(get_session_options),
):
    rate_limit_ip(request)

    record = await repo.get_by_slug(slug)
    if record is None:
        return HTMLResponse(content=_not_found_html(), status_code=404)

    ua = request.headers.get("user-agent", "")
    is_duplicate = check_click_dedupe(get_real_ip(request), slug, platform_key, ua)

    store = preference_store(request)
    session = open_session(record, request, store, options)
    try:
        prepared = await session.prepare(emit_page_view=False)
        outcome = session.click(prepared, platform_key, reported_position=pos, is_duplicate=is_duplicate)
        if outcome is None:
            logger.info("platform_click_rejected", slug=slug, platform=platform_key,
                        country=prepared.location.country_code)
            response = HTMLResponse(content=_not_found_html(), status_code=404)
            store.apply(response)
            return response

        nonce = secrets.token_urlsafe(16)
        html = _render_hop(outcome.link.url, session.document, nonce)
    finally:
        session.close()

    await repo.record_click(ClickRecord(
        smartlink_id=record.id,
        platform_key=outcome.link.key,
        destination_url=outcome.link.url,
        position=outcome.position,
        reported_position=outcome.reported_position,
        order_source=outcome.context["order_source"],
        ab_test_variant=outcome.context["ab_test_variant"],
        country_code=prepared.location.country_code,
        location_source=prepared.location.source.value,
        vendors=outcome.vendors,
        is_duplicate=is_duplicate,
        risk_score=session.verdict.risk_score,
        user_agent=ua,
    ))

    logger.info(
        "platform_click",
        slug=slug,
        platform=outcome.link.key,
        position=outcome.position,
        order_source=outcome.context["order_source"],
        duplicate=is_duplicate,
        vendors=outcome.vendors,
    )

    response = HTMLResponse(
        content=html,
        headers={
            "Content-Security-Policy": _csp(nonce),
            "X-Robots-Tag": "noindex, nofollow",
        },
    )
    store.apply(response)
    return response
