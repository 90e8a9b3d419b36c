"""
Page document — the server-side stand-in for the browser DOM.

Vendor adapters inject script / noscript elements here and queue their
native event calls. Element ids are deterministic ("ga4-G-XXXX"), so a
duplicate injection is visible by inspection and rejected on append.

Rendering rules:
  - suspended elements render inert (type="text/plain"), so the browser
    never executes them
  - queued commands render only while their owning element is present and
    not suspended
"""

import json
from dataclasses import dataclass


def js_value(value) -> str:
    """JSON-encode a value for inline <script> use."""
    return (
        json.dumps(value, separators=(",", ":"), default=str)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def js_call(fn: str, *args) -> str:
    return f"{fn}({','.join(js_value(a) for a in args)});"


def html_escape(s: str) -> str:
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


@dataclass
class ScriptElement:
    element_id: str
    src: str | None = None
    inline: str | None = None
    tag: str = "script"       # script | noscript
    placement: str = "head"   # head | body
    disabled: bool = False

    def render(self, nonce: str | None = None) -> str:
        eid = html_escape(self.element_id)
        if self.tag == "noscript":
            return f'<noscript id="{eid}">{self.inline or ""}</noscript>'

        attrs = [f'id="{eid}"']
        if self.disabled:
            attrs.append('type="text/plain" data-suspended="1"')
        if self.src:
            attrs.append(f'async src="{html_escape(self.src)}"')
        if nonce and self.inline:
            attrs.append(f'nonce="{html_escape(nonce)}"')
        return f"<script {' '.join(attrs)}>{self.inline or ''}</script>"


@dataclass
class _Command:
    owner_id: str
    js: str


class PageDocument:
    def __init__(self):
        self._elements: dict[str, ScriptElement] = {}
        self._commands: list[_Command] = []

    # --- elements ---

    def append(self, element: ScriptElement) -> ScriptElement:
        if element.element_id in self._elements:
            raise ValueError(f"duplicate element id: {element.element_id}")
        self._elements[element.element_id] = element
        return element

    def remove(self, element_id: str) -> bool:
        removed = self._elements.pop(element_id, None) is not None
        if removed:
            self._commands = [c for c in self._commands if c.owner_id != element_id]
        return removed

    def get(self, element_id: str) -> ScriptElement | None:
        return self._elements.get(element_id)

    def has(self, element_id: str) -> bool:
        return element_id in self._elements

    def set_disabled(self, element_id: str, disabled: bool) -> None:
        element = self._elements.get(element_id)
        if element is not None:
            element.disabled = disabled

    @property
    def elements(self) -> list[ScriptElement]:
        return list(self._elements.values())

    def scripts_matching(self, prefix: str) -> list[ScriptElement]:
        return [e for e in self._elements.values() if e.element_id.startswith(prefix)]

    # --- commands ---

    def push_command(self, owner_id: str, js: str) -> None:
        self._commands.append(_Command(owner_id=owner_id, js=js))

    def commands(self) -> list[str]:
        live = []
        for cmd in self._commands:
            owner = self._elements.get(cmd.owner_id)
            if owner is not None and not owner.disabled:
                live.append(cmd.js)
        return live

    # --- rendering ---

    def render_head(self, nonce: str | None = None) -> str:
        parts = [e.render(nonce) for e in self._elements.values() if e.placement == "head"]
        commands = self.commands()
        if commands:
            nonce_attr = f' nonce="{html_escape(nonce)}"' if nonce else ""
            body = "\n".join(f"try{{{js}}}catch(e){{}}" for js in commands)
            parts.append(f'<script id="sl-event-queue"{nonce_attr}>\n{body}\n</script>')
        return "\n".join(parts)

    def render_body(self, nonce: str | None = None) -> str:
        return "\n".join(e.render(nonce) for e in self._elements.values() if e.placement == "body")
