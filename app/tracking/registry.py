"""
Pixel registry — the page's record of injected vendor identities.

One live entry per (vendor_type, identity). The registry is an explicit
object owned by the page session and handed to the tracking manager; it is
mutated only synchronously inside inject/cleanup.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from app.tracking.adapters import VendorAdapter, VendorType


class PixelMode(str, Enum):
    INDIVIDUAL = "individual"
    GLOBAL_FALLBACK = "global_fallback"


def _noop() -> None:
    return None


@dataclass
class PixelRegistryEntry:
    vendor_type: VendorType
    identity: str
    mode: PixelMode
    adapter: VendorAdapter
    cleanup: Callable[[], None] = field(default=_noop)
    suspended: bool = False

    @property
    def vendor_key(self) -> str:
        return f"{self.vendor_type.value}-{self.identity}"

    def suspend(self) -> None:
        self.adapter.suspend()
        self.suspended = True

    def resume(self) -> None:
        self.adapter.resume()
        self.suspended = False


class PixelRegistry:
    def __init__(self):
        self._entries: dict[tuple[VendorType, str], PixelRegistryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: tuple[VendorType, str]) -> bool:
        return key in self._entries

    def get(self, vendor_type: VendorType, identity: str) -> PixelRegistryEntry | None:
        return self._entries.get((vendor_type, identity))

    def register(self, entry: PixelRegistryEntry) -> None:
        key = (entry.vendor_type, entry.identity)
        if key in self._entries:
            raise ValueError(f"{entry.vendor_key} is already registered")
        self._entries[key] = entry

    def remove(self, vendor_type: VendorType, identity: str) -> PixelRegistryEntry | None:
        return self._entries.pop((vendor_type, identity), None)

    def entries(self, vendor_type: VendorType | None = None) -> list[PixelRegistryEntry]:
        return [
            e for e in self._entries.values()
            if vendor_type is None or e.vendor_type == vendor_type
        ]

    def live_globals(self, vendor_type: VendorType) -> list[PixelRegistryEntry]:
        return [
            e for e in self.entries(vendor_type)
            if e.mode == PixelMode.GLOBAL_FALLBACK and not e.suspended
        ]

    def live_individuals(self, vendor_type: VendorType) -> list[PixelRegistryEntry]:
        return [
            e for e in self.entries(vendor_type)
            if e.mode == PixelMode.INDIVIDUAL and not e.suspended
        ]

    def keys(self) -> list[str]:
        return [e.vendor_key for e in self._entries.values()]

    def clear(self) -> None:
        self._entries.clear()
