"""
Platform order resolver — decides the display order of territory-filtered links.

Precedence (first match wins):
  1. custom    → the visitor's saved OrderPreference
  2. ab_test   → sticky ExperimentAssignment variant (when experiments are on)
  3. regional  → region-optimised order for the visitor's country
  4. default   → static default order

Whatever tier wins, the merge step only permutes its input: every filtered
link appears exactly once, in the chosen order first, then the leftovers in
their original relative order.
"""

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable

from app.config import get_settings
from app.core.errors import PreferenceStoreCorrupt
from app.core.platforms import PlatformLink, canonical_platform_key
from app.core.preferences import (
    EXPERIMENT_KEY,
    ORDER_PREFERENCE_KEY,
    PreferenceStore,
    read_json,
    write_json,
)

import structlog

logger = structlog.get_logger()

PREFERENCE_VERSION = "1.0"


class OrderSource(str, Enum):
    CUSTOM = "custom"
    AB_TEST = "ab_test"
    REGIONAL = "regional"
    DEFAULT = "default"


def _keys(names: Iterable[str]) -> tuple[str, ...]:
    return tuple(canonical_platform_key(n) for n in names)


# Ranked by worldwide popularity.
DEFAULT_ORDER: tuple[str, ...] = _keys([
    "Spotify", "Apple Music", "YouTube Music", "Deezer", "Amazon Music",
    "Tidal", "SoundCloud", "YouTube", "iTunes", "Napster", "Pandora",
    "Audiomack", "Anghami", "Boomplay",
])

REGIONAL_ORDERS: dict[str, tuple[str, ...]] = {
    "US": _keys(["Spotify", "Apple Music", "Amazon Music", "YouTube Music", "Pandora", "Tidal"]),
    "FR": _keys(["Spotify", "Deezer", "Apple Music", "YouTube Music", "Amazon Music", "Tidal"]),
    "GB": _keys(["Spotify", "Apple Music", "Amazon Music", "YouTube Music", "Deezer", "Tidal"]),
    "DE": _keys(["Spotify", "Apple Music", "Amazon Music", "YouTube Music", "Deezer", "Tidal"]),
    "BR": _keys(["Spotify", "YouTube Music", "Deezer", "Apple Music", "Amazon Music", "SoundCloud"]),
    "IN": _keys(["Spotify", "YouTube Music", "Apple Music", "JioSaavn", "Amazon Music", "Deezer"]),
    "MX": _keys(["Spotify", "YouTube Music", "Apple Music", "Deezer", "Amazon Music", "SoundCloud"]),
}


class Variant(str, Enum):
    CONTROL = "control"
    STREAMING_FIRST = "streaming_first"
    REGIONAL_OPTIMIZED = "regional_optimized"
    CONVERSION_OPTIMIZED = "conversion_optimized"


VARIANT_ORDERS: dict[Variant, tuple[str, ...]] = {
    Variant.CONTROL: DEFAULT_ORDER,
    Variant.STREAMING_FIRST: _keys(["Spotify", "Apple Music", "YouTube Music", "Deezer", "Tidal", "Amazon Music"]),
    Variant.REGIONAL_OPTIMIZED: (),  # resolved per country, see variant_order()
    Variant.CONVERSION_OPTIMIZED: _keys(["Apple Music", "Spotify", "Amazon Music", "YouTube Music", "Deezer", "Tidal"]),
}


def regional_order(country_code: str | None, table=REGIONAL_ORDERS) -> tuple[str, ...] | None:
    return table.get((country_code or "").upper())


def variant_order(variant: Variant, country_code: str | None, table=REGIONAL_ORDERS) -> tuple[str, ...]:
    if variant is Variant.REGIONAL_OPTIMIZED:
        return regional_order(country_code, table) or DEFAULT_ORDER
    return VARIANT_ORDERS[variant]


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OrderPreference:
    order: list[str]
    updated_at: str
    version: str = PREFERENCE_VERSION

    def to_dict(self) -> dict:
        return {"order": list(self.order), "updatedAt": self.updated_at, "version": self.version}

    @classmethod
    def from_dict(cls, data: dict) -> "OrderPreference":
        order = data.get("order")
        if not isinstance(order, list) or not all(isinstance(k, str) for k in order):
            raise PreferenceStoreCorrupt(ORDER_PREFERENCE_KEY, "order is not a list of strings")
        return cls(
            order=[canonical_platform_key(k) for k in order],
            updated_at=str(data.get("updatedAt") or ""),
            version=str(data.get("version") or PREFERENCE_VERSION),
        )


@dataclass
class ExperimentAssignment:
    variant: Variant
    assigned_at: str
    session_id: str
    forced: bool = False

    def to_dict(self) -> dict:
        return {
            "variant": self.variant.value,
            "assignedAt": self.assigned_at,
            "sessionId": self.session_id,
            "forced": self.forced,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExperimentAssignment":
        try:
            variant = Variant(data.get("variant"))
        except ValueError as e:
            raise PreferenceStoreCorrupt(EXPERIMENT_KEY, f"unknown variant {data.get('variant')!r}") from e
        return cls(
            variant=variant,
            assigned_at=str(data.get("assignedAt") or ""),
            session_id=str(data.get("sessionId") or ""),
            forced=bool(data.get("forced", False)),
        )


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:16]}"


def assign_variant(
    existing: ExperimentAssignment | None,
    rng: random.Random,
    now: datetime,
) -> ExperimentAssignment:
    """
    Sticky assignment: an existing assignment always wins; otherwise draw one
    variant uniformly from `rng`. Pure — persisting the result is the caller's job.
    """
    if existing is not None:
        return existing
    variants = list(Variant)
    return ExperimentAssignment(
        variant=variants[rng.randrange(len(variants))],
        assigned_at=now.isoformat(),
        session_id=new_session_id(),
        forced=False,
    )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def merge_order(links: list[PlatformLink], order: Iterable[str]) -> list[PlatformLink]:
    """Chosen order first, leftovers after in their original relative order."""
    remaining = list(links)
    ordered: list[PlatformLink] = []
    for key in order:
        for i, link in enumerate(remaining):
            if link.key == key:
                ordered.append(remaining.pop(i))
                break
    ordered.extend(remaining)
    return ordered


@dataclass
class OrderResult:
    ordered: list[PlatformLink]
    source: OrderSource
    order_used: tuple[str, ...] = field(default_factory=tuple)
    variant: Variant | None = None

    def position_of(self, platform: str) -> int | None:
        key = canonical_platform_key(platform)
        for i, link in enumerate(self.ordered, start=1):
            if link.key == key:
                return i
        return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class PlatformOrderResolver:
    def __init__(
        self,
        store: PreferenceStore,
        experiment_enabled: bool | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _now,
        regional_orders: dict[str, tuple[str, ...]] = REGIONAL_ORDERS,
    ):
        self.store = store
        self.regional_orders = regional_orders
        self.experiment_enabled = (
            get_settings().experiment_enabled if experiment_enabled is None else experiment_enabled
        )
        self._rng = rng or random.Random()
        self._clock = clock
        self.last_result: OrderResult | None = None

    # --- stored state ---

    def custom_order(self) -> OrderPreference | None:
        try:
            data = read_json(self.store, ORDER_PREFERENCE_KEY)
            return OrderPreference.from_dict(data) if data is not None else None
        except PreferenceStoreCorrupt as e:
            logger.warning("order_preference_corrupt", key=e.key, reason=e.reason)
            return None

    def stored_assignment(self) -> ExperimentAssignment | None:
        try:
            data = read_json(self.store, EXPERIMENT_KEY)
            return ExperimentAssignment.from_dict(data) if data is not None else None
        except PreferenceStoreCorrupt as e:
            logger.warning("experiment_assignment_corrupt", key=e.key, reason=e.reason)
            return None

    def assignment(self) -> ExperimentAssignment:
        """Fetch the sticky assignment, drawing and persisting one on first visit."""
        existing = self.stored_assignment()
        assigned = assign_variant(existing, self._rng, self._clock())
        if existing is None:
            write_json(self.store, EXPERIMENT_KEY, assigned.to_dict())
            logger.info("experiment_assigned", variant=assigned.variant.value, session_id=assigned.session_id)
        return assigned

    # --- resolution ---

    def resolve(self, filtered_links: list[PlatformLink], country_code: str | None) -> OrderResult:
        preference = self.custom_order()
        if preference is not None and preference.order:
            result = OrderResult(
                ordered=merge_order(filtered_links, preference.order),
                source=OrderSource.CUSTOM,
                order_used=tuple(preference.order),
            )
        elif self.experiment_enabled:
            variant = self.assignment().variant
            order = variant_order(variant, country_code, self.regional_orders)
            result = OrderResult(
                ordered=merge_order(filtered_links, order),
                source=OrderSource.AB_TEST,
                order_used=order,
                variant=variant,
            )
        elif regional_order(country_code, self.regional_orders):
            order = regional_order(country_code, self.regional_orders)
            result = OrderResult(
                ordered=merge_order(filtered_links, order),
                source=OrderSource.REGIONAL,
                order_used=order,
            )
        else:
            result = OrderResult(
                ordered=merge_order(filtered_links, DEFAULT_ORDER),
                source=OrderSource.DEFAULT,
                order_used=DEFAULT_ORDER,
            )

        self.last_result = result
        logger.debug(
            "platform_order_resolved",
            source=result.source.value,
            variant=result.variant.value if result.variant else None,
            count=len(result.ordered),
        )
        return result

    # --- mutations ---

    def save_custom_order(self, ordered: Iterable[PlatformLink | str]) -> OrderPreference:
        keys = [
            item.key if isinstance(item, PlatformLink) else canonical_platform_key(item)
            for item in ordered
        ]
        preference = OrderPreference(order=[k for k in keys if k], updated_at=self._clock().isoformat())
        write_json(self.store, ORDER_PREFERENCE_KEY, preference.to_dict())
        logger.info("platform_order_saved", action="user_customization", order_length=len(preference.order))
        return preference

    def reset(self, filtered_links: list[PlatformLink], country_code: str | None) -> OrderResult:
        self.store.delete(ORDER_PREFERENCE_KEY)
        logger.info("platform_order_reset", action="reset_to_default")
        return self.resolve(filtered_links, country_code)

    def force_variant(self, name: str) -> ExperimentAssignment:
        """Operator/debug override; bypasses the random draw."""
        variant = Variant(name)  # ValueError on unknown variant
        assigned = ExperimentAssignment(
            variant=variant,
            assigned_at=self._clock().isoformat(),
            session_id=new_session_id(),
            forced=True,
        )
        write_json(self.store, EXPERIMENT_KEY, assigned.to_dict())
        logger.info("experiment_variant_forced", variant=variant.value)
        return assigned

    def click_context(self, platform: str, reported_position: int | None = None) -> dict:
        """
        Analytics context attached to a platform click. The position comes from
        the resolved order; a position reported by the client is used only
        when nothing has been resolved yet.
        """
        result = self.last_result
        position = result.position_of(platform) if result is not None else reported_position
        return {
            "platform_key": canonical_platform_key(platform),
            "platform_position": position,
            "order_source": result.source.value if result else None,
            "ab_test_variant": result.variant.value if result and result.variant else None,
        }
