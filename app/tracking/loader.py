"""
Script loaders — await a vendor script's "load".

The browser does the real loading of a server-rendered page, so the default
loader resolves immediately. ProbingScriptLoader checks the vendor endpoint
first, so a dead or blocked vendor lands in FAILED before the page ships.
"""

from typing import Protocol

import httpx

from app.tracking.document import ScriptElement

import structlog

logger = structlog.get_logger()


class ScriptLoadError(Exception):
    pass


class ScriptLoader(Protocol):
    async def load(self, element: ScriptElement) -> None: ...


class ClientSideLoader:
    """Loading is the browser's job; the element is ready once it is in the document."""

    async def load(self, element: ScriptElement) -> None:
        return None


class ProbingScriptLoader:
    def __init__(self, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport

    async def load(self, element: ScriptElement) -> None:
        if not element.src:
            return None
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self.timeout,
            follow_redirects=True,
        ) as client:
            resp = await client.head(element.src)
        if resp.status_code >= 400:
            raise ScriptLoadError(f"{element.src} answered {resp.status_code}")
        logger.debug("vendor_script_probed", element=element.element_id, status=resp.status_code)
