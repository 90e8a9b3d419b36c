"""
SmartLink JSON API — pipeline inspection and visitor order preferences.

GET    /v1/smartlinks/{slug}/resolve      location, territory stats, ordered platforms, tracking status
PUT    /v1/smartlinks/{slug}/order        save the visitor's custom platform order
DELETE /v1/smartlinks/{slug}/order        drop it (back to experiment / regional / default)
PUT    /v1/smartlinks/{slug}/experiment   force an experiment variant (debug only)

Preferences live in cookies; every response flushes pending writes.
Order saves and resets emit platform_order_change to the analytics vendors,
and the response lists the identities that received it.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.api.deps import SessionOptions, get_session_options, open_session, preference_store
from app.config import get_settings
from app.core.platform_order import OrderResult, Variant
from app.core.session import SmartLinkSession
from app.middleware.rate_limit import rate_limit_ip, rate_limit_preferences
from app.models.repository import SmartLinkRecord, SmartLinkRepository, get_repository
from app.tracking.adapters import TrackingEvent

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/smartlinks")


class OrderUpdate(BaseModel):
    order: list[str] = Field(min_length=1, max_length=50)


class ExperimentUpdate(BaseModel):
    variant: str


def _order_json(result: OrderResult) -> dict:
    return {
        "platforms": [
            {**link.to_dict(), "position": i}
            for i, link in enumerate(result.ordered, start=1)
        ],
        "source": result.source.value,
        "order_used": list(result.order_used),
        "variant": result.variant.value if result.variant else None,
    }


def _order_change_json(session: SmartLinkSession) -> dict:
    return {"event": TrackingEvent.ORDER_CHANGE.value, "vendors": session.order_change_vendors}


async def _load(slug: str, repo: SmartLinkRepository) -> SmartLinkRecord:
    record = await repo.get_by_slug(slug)
    if record is None:
        raise HTTPException(status_code=404, detail="SmartLink not found")
    return record


@router.get("/{slug}/resolve")
async def resolve_smartlink(
    slug: str,
    request: Request,
    repo: SmartLinkRepository = Depends(get_repository),
    options: SessionOptions = Depends(get_session_options),
):
    rate_limit_ip(request)
    record = await _load(slug, repo)

    store = preference_store(request)
    session = open_session(record, request, store, options)
    try:
        prepared = await session.prepare(emit_page_view=False)
        tracking = {
            "vendors": session.tracking.status(),
            "active_pixels": session.tracking.active_pixels(),
            "has_individual_tracking": session.tracking.has_individual_tracking(),
            "has_global_tracking": session.tracking.has_global_tracking(),
            "instrumented": session.instrumented,
        }
    finally:
        session.close()

    body = {
        "slug": record.slug,
        "track_title": record.track_title,
        "artist_name": record.artist_name,
        "location": prepared.location.to_dict(),
        "territory": {
            "country": prepared.territory.country,
            "total": prepared.territory.total,
            "kept": prepared.territory.kept,
            "available": list(prepared.territory.available),
        },
        "order": _order_json(prepared.order),
        "tracking": tracking,
    }
    response = JSONResponse(body)
    store.apply(response)
    return response


@router.put("/{slug}/order")
async def save_platform_order(
    slug: str,
    update: OrderUpdate,
    request: Request,
    repo: SmartLinkRepository = Depends(get_repository),
    options: SessionOptions = Depends(get_session_options),
):
    rate_limit_preferences(request)
    record = await _load(slug, repo)

    store = preference_store(request)
    session = open_session(record, request, store, options)
    try:
        result = await session.save_order(update.order)
    finally:
        session.close()
    logger.info("order_preference_updated", slug=slug, order_length=len(update.order),
                vendors=session.order_change_vendors)

    response = JSONResponse({**_order_json(result), "tracking": _order_change_json(session)})
    store.apply(response)
    return response


@router.delete("/{slug}/order")
async def reset_platform_order(
    slug: str,
    request: Request,
    repo: SmartLinkRepository = Depends(get_repository),
    options: SessionOptions = Depends(get_session_options),
):
    rate_limit_preferences(request)
    record = await _load(slug, repo)

    store = preference_store(request)
    session = open_session(record, request, store, options)
    try:
        result = await session.reset_order()
    finally:
        session.close()

    response = JSONResponse({**_order_json(result), "tracking": _order_change_json(session)})
    store.apply(response)
    return response


@router.put("/{slug}/experiment")
async def force_experiment_variant(
    slug: str,
    update: ExperimentUpdate,
    request: Request,
    repo: SmartLinkRepository = Depends(get_repository),
    options: SessionOptions = Depends(get_session_options),
):
    if not get_settings().debug:
        raise HTTPException(status_code=404, detail="Not found")
    rate_limit_preferences(request)
    record = await _load(slug, repo)

    store = preference_store(request)
    session = open_session(record, request, store, options)
    try:
        result = await session.force_variant(update.variant)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown variant. Expected one of: {', '.join(v.value for v in Variant)}",
        )

    response = JSONResponse(_order_json(result))
    store.apply(response)
    return response
