"""
Tracking instrumentation manager — per-vendor pixel lifecycle.

Per vendor (four run independently and concurrently):

    IDLE → RESOLVING → INJECTING → READY
    IDLE → RESOLVING → SKIPPED            no identity available
    IDLE → RESOLVING → INJECTING → FAILED script did not load (non-fatal)

Resolution, per vendor:
  1. SmartLink override enabled with an id  → that id, mode=individual
  2. fallback allowed and a global id set    → global id, mode=global_fallback
  3. otherwise                               → SKIPPED

De-duplication:
  - before an individual identity goes in, every live global_fallback entry of
    the same vendor is suspended (kept, but inert), so each event is measured
    by exactly one identity per vendor
  - a global that finishes loading, or is asked for again, while an individual
    of its vendor is live or loading stays suspended
  - events fan out over live registry entries, so a directly injected
    identity receives them as soon as it is registered
  - inject() is idempotent per (vendor, identity); concurrent requests for a
    pending identity share one load
  - after cleanup_all() a late-settling load never reaches READY and leaves no
    element behind
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

import httpx

from app.config import get_settings
from app.core.errors import VendorScriptLoadFailure
from app.tracking.adapters import ADAPTERS, TrackingEvent, VendorAdapter, VendorType
from app.tracking.document import PageDocument
from app.tracking.loader import ClientSideLoader, ScriptLoader, ScriptLoadError
from app.tracking.registry import PixelMode, PixelRegistry, PixelRegistryEntry
from app.tracking.schema import TrackingConfig

import structlog

logger = structlog.get_logger()


class VendorState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    INJECTING = "injecting"
    READY = "ready"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class VendorSlot:
    vendor_type: VendorType
    state: VendorState = VendorState.IDLE
    identity: str | None = None
    mode: PixelMode | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "identity": self.identity,
            "mode": self.mode.value if self.mode else None,
            "error": self.error,
        }


def global_ids_from_settings(settings=None) -> dict[VendorType, str]:
    settings = settings or get_settings()
    return {
        VendorType.GA4: settings.global_ga4_id,
        VendorType.TAG_CONTAINER: settings.global_gtm_id,
        VendorType.SOCIAL_PIXEL: settings.global_meta_pixel_id,
        VendorType.SHORT_VIDEO_PIXEL: settings.global_tiktok_pixel_id,
    }


def _noop() -> None:
    return None


class TrackingManager:
    def __init__(
        self,
        tracking_config: TrackingConfig,
        registry: PixelRegistry,
        document: PageDocument,
        loader: ScriptLoader | None = None,
        global_ids: dict[VendorType, str] | None = None,
        global_fallback_enabled: bool | None = None,
        load_timeout: float | None = None,
        adapters: dict[VendorType, type[VendorAdapter]] = ADAPTERS,
    ):
        settings = get_settings()
        self.config = tracking_config
        self.registry = registry
        self.document = document
        self.loader = loader or ClientSideLoader()
        self.global_ids = global_ids if global_ids is not None else global_ids_from_settings(settings)
        self.global_fallback_enabled = (
            settings.global_fallback_enabled if global_fallback_enabled is None else global_fallback_enabled
        )
        self.load_timeout = load_timeout or settings.vendor_script_timeout_seconds
        self._adapters = adapters

        self.slots: dict[VendorType, VendorSlot] = {v: VendorSlot(vendor_type=v) for v in VendorType}
        self.torn_down = False
        self._pending: dict[tuple[VendorType, str], asyncio.Future] = {}
        self._pending_adapters: dict[tuple[VendorType, str], VendorAdapter] = {}
        self._pending_modes: dict[tuple[VendorType, str], PixelMode] = {}

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_identity(self, vendor_type: VendorType) -> tuple[str, PixelMode] | None:
        override = self.config.overrides.for_vendor(vendor_type)
        if override is not None and override.identity:
            return override.identity, PixelMode.INDIVIDUAL

        if self.global_fallback_enabled and self.config.allows_global_fallback:
            global_id = (self.global_ids.get(vendor_type) or "").strip()
            if global_id:
                return global_id, PixelMode.GLOBAL_FALLBACK
        return None

    async def initialize(self) -> dict[VendorType, VendorSlot]:
        """Resolve and inject all four vendors concurrently."""
        await asyncio.gather(*(self._initialize_vendor(v) for v in VendorType))
        logger.info(
            "tracking_initialized",
            ready=[s.vendor_type.value for s in self.slots.values() if s.state == VendorState.READY],
            skipped=[s.vendor_type.value for s in self.slots.values() if s.state == VendorState.SKIPPED],
            failed=[s.vendor_type.value for s in self.slots.values() if s.state == VendorState.FAILED],
        )
        return self.slots

    async def _initialize_vendor(self, vendor_type: VendorType) -> None:
        slot = self.slots[vendor_type]
        slot.state = VendorState.RESOLVING

        target = self.resolve_identity(vendor_type)
        if target is None:
            slot.state = VendorState.SKIPPED
            logger.debug("pixel_skipped", vendor=vendor_type.value)
            return

        identity, mode = target
        slot.identity, slot.mode = identity, mode
        slot.state = VendorState.INJECTING
        try:
            await self.inject(vendor_type, identity, mode)
        except VendorScriptLoadFailure as e:
            slot.state = VendorState.FAILED
            slot.error = e.reason
            logger.warning(
                "pixel_load_failed",
                vendor=vendor_type.value,
                identity=identity,
                mode=mode.value,
                reason=e.reason,
            )
            return

        if self.torn_down:
            return
        entry = self.registry.get(vendor_type, identity)
        if entry is not None and entry.suspended and slot.identity == identity:
            # an individual identity of this vendor owns the slot
            slot.state = VendorState.SKIPPED
            slot.error = "suspended"
        elif slot.state != VendorState.READY:
            slot.state = VendorState.READY

    # ------------------------------------------------------------------
    # Injection
    # ------------------------------------------------------------------

    async def inject(self, vendor_type: VendorType, identity: str, mode: PixelMode) -> Callable[[], None]:
        if mode == PixelMode.INDIVIDUAL:
            self._suspend_globals(vendor_type, keep=identity)

        existing = self.registry.get(vendor_type, identity)
        if existing is not None:
            if existing.suspended:
                if self._individual_live_or_pending(vendor_type, other_than=identity):
                    logger.info("pixel_kept_suspended", vendor=vendor_type.value, identity=identity)
                    return existing.cleanup
                existing.resume()
                self._promote(existing)
                logger.info("pixel_resumed", vendor=vendor_type.value, identity=identity)
            logger.debug("pixel_already_injected", vendor=vendor_type.value, identity=identity)
            return existing.cleanup

        key = (vendor_type, identity)
        if key in self._pending:
            return await asyncio.shield(self._pending[key])

        task = asyncio.ensure_future(self._inject(vendor_type, identity, mode))
        self._pending[key] = task
        self._pending_modes[key] = mode
        try:
            return await task
        finally:
            self._pending.pop(key, None)
            self._pending_modes.pop(key, None)

    async def _inject(self, vendor_type: VendorType, identity: str, mode: PixelMode) -> Callable[[], None]:
        key = (vendor_type, identity)
        adapter = self._adapters[vendor_type](self.document)
        try:
            primary = adapter.init(identity)
        except ValueError as e:
            adapter.teardown()
            raise VendorScriptLoadFailure(vendor_type.value, identity, str(e)) from e

        logger.info("pixel_injecting", vendor=vendor_type.value, identity=identity, mode=mode.value)
        self._pending_adapters[key] = adapter
        try:
            await asyncio.wait_for(self.loader.load(primary), timeout=self.load_timeout)
        except (ScriptLoadError, httpx.HTTPError, asyncio.TimeoutError) as e:
            adapter.teardown()
            raise VendorScriptLoadFailure(vendor_type.value, identity, str(e) or type(e).__name__) from e
        finally:
            self._pending_adapters.pop(key, None)

        if self.torn_down:
            adapter.teardown()
            logger.info("pixel_discarded_after_teardown", vendor=vendor_type.value, identity=identity)
            return _noop

        entry = PixelRegistryEntry(vendor_type=vendor_type, identity=identity, mode=mode, adapter=adapter)

        def cleanup() -> None:
            if self.registry.get(vendor_type, identity) is entry:
                self.registry.remove(vendor_type, identity)
            adapter.teardown()
            logger.debug("pixel_cleaned", vendor=vendor_type.value, identity=identity)

        entry.cleanup = cleanup
        if mode == PixelMode.INDIVIDUAL:
            self._suspend_globals(vendor_type, keep=identity)
        elif self._individual_live_or_pending(vendor_type, other_than=identity):
            entry.suspend()
            logger.info("global_pixel_suspended", vendor=vendor_type.value, identity=identity)
        self.registry.register(entry)
        if not entry.suspended:
            self._promote(entry)
        logger.info("pixel_ready", vendor=vendor_type.value, identity=identity, mode=mode.value,
                    suspended=entry.suspended)
        return cleanup

    def _individual_live_or_pending(self, vendor_type: VendorType, other_than: str) -> bool:
        if any(e.identity != other_than for e in self.registry.live_individuals(vendor_type)):
            return True
        return any(
            v == vendor_type and identity != other_than and mode == PixelMode.INDIVIDUAL
            for (v, identity), mode in self._pending_modes.items()
        )

    def _promote(self, entry: PixelRegistryEntry) -> None:
        if self.torn_down:
            return
        slot = self.slots[entry.vendor_type]
        slot.identity, slot.mode = entry.identity, entry.mode
        slot.state = VendorState.READY
        slot.error = None

    def _suspend_globals(self, vendor_type: VendorType, keep: str) -> None:
        for entry in self.registry.live_globals(vendor_type):
            if entry.identity == keep:
                continue
            entry.suspend()
            logger.info("global_pixel_suspended", vendor=vendor_type.value, identity=entry.identity)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _ready(self, custom_only: bool = False):
        for entry in self.registry.entries():
            if entry.suspended:
                continue
            if custom_only and not entry.adapter.supports_custom_events:
                continue
            yield entry

    def _fan_out(self, event, payload: dict, custom_only: bool = False) -> list[str]:
        if self.torn_down:
            return []
        delivered = []
        for entry in self._ready(custom_only):
            try:
                entry.adapter.emit(event, payload)
            except (TypeError, ValueError) as e:
                logger.warning("pixel_emit_failed", vendor=entry.vendor_type.value, identity=entry.identity, error=str(e))
                continue
            delivered.append(entry.vendor_key)
        return delivered

    def emit_page_view(self, metadata: dict) -> list[str]:
        payload = {**metadata, "timestamp": datetime.now(timezone.utc).isoformat()}
        delivered = self._fan_out(TrackingEvent.PAGE_VIEW, payload)
        logger.info("page_view_emitted", smartlink_id=metadata.get("smartlink_id"), vendors=delivered)
        return delivered

    def emit_click(self, platform: str, url: str, metadata: dict | None = None) -> list[str]:
        payload = {
            **(metadata or {}),
            "platform_name": platform,
            "destination_url": url,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        delivered = self._fan_out(TrackingEvent.PLATFORM_CLICK, payload)
        logger.info("platform_click_emitted", platform=platform, vendors=delivered)
        return delivered

    def emit_custom(self, event_name: str, data: dict | None = None) -> list[str]:
        payload = {**(data or {}), "timestamp": datetime.now(timezone.utc).isoformat()}
        return self._fan_out(event_name, payload, custom_only=True)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cleanup_all(self) -> None:
        self.torn_down = True
        for entry in self.registry.entries():
            entry.cleanup()
        for adapter in list(self._pending_adapters.values()):
            adapter.teardown()
        self.registry.clear()
        logger.info("tracking_cleaned_up")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def active_pixels(self) -> list[str]:
        return [e.vendor_key for e in self.registry.entries() if not e.suspended]

    def is_pixel_active(self, vendor_type: VendorType, identity: str) -> bool:
        entry = self.registry.get(vendor_type, identity)
        return entry is not None and not entry.suspended

    def has_individual_tracking(self) -> bool:
        return any(
            s.state == VendorState.READY and s.mode == PixelMode.INDIVIDUAL for s in self.slots.values()
        )

    def has_global_tracking(self) -> bool:
        return any(
            s.state == VendorState.READY and s.mode == PixelMode.GLOBAL_FALLBACK for s in self.slots.values()
        )

    def status(self) -> dict:
        return {v.value: slot.to_dict() for v, slot in self.slots.items()}
