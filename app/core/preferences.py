"""
Key/value preference store — visitor preferences that survive across sessions.

Two logical keys live here (custom platform order, experiment assignment),
both JSON-encoded and both optional. Over HTTP the store is the visitor's
cookie jar; values are base64url-wrapped so the JSON survives cookie quoting.
"""

import base64
import binascii
import json
from typing import Mapping, Protocol

from app.core.errors import PreferenceStoreCorrupt

ORDER_PREFERENCE_KEY = "sl_platform_order"
EXPERIMENT_KEY = "sl_order_experiment"


class PreferenceStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryPreferenceStore:
    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


_DELETED = object()


class CookiePreferenceStore:
    """
    Reads from the request's cookies, buffers writes until apply(response).
    Reads see buffered writes, so a save followed by a resolve in the same
    request observes the new value.
    """

    def __init__(self, cookies: Mapping[str, str], max_age: int):
        self._cookies = dict(cookies)
        self._pending: dict[str, object] = {}
        self.max_age = max_age

    def get(self, key: str) -> str | None:
        if key in self._pending:
            value = self._pending[key]
            return None if value is _DELETED else value
        raw = self._cookies.get(key)
        if raw is None:
            return None
        try:
            padded = raw + "=" * (-len(raw) % 4)
            return base64.urlsafe_b64decode(padded.encode()).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise PreferenceStoreCorrupt(key, f"bad cookie encoding: {e}") from e

    def set(self, key: str, value: str) -> None:
        self._pending[key] = value

    def delete(self, key: str) -> None:
        self._pending[key] = _DELETED

    @property
    def dirty(self) -> bool:
        return bool(self._pending)

    def apply(self, response) -> None:
        """Flush buffered writes onto a Starlette response."""
        for key, value in self._pending.items():
            if value is _DELETED:
                response.delete_cookie(key, path="/")
                continue
            encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode().rstrip("=")
            response.set_cookie(
                key=key,
                value=encoded,
                max_age=self.max_age,
                path="/",
                samesite="lax",
                secure=True,
                httponly=True,
            )
        self._pending.clear()


def read_json(store: PreferenceStore, key: str) -> dict | None:
    """Stored JSON object, None when absent; PreferenceStoreCorrupt when unreadable."""
    raw = store.get(key)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise PreferenceStoreCorrupt(key, str(e)) from e
    if not isinstance(data, dict):
        raise PreferenceStoreCorrupt(key, "not a JSON object")
    return data


def write_json(store: PreferenceStore, key: str, data: dict) -> None:
    store.set(key, json.dumps(data, separators=(",", ":")))
