"""
Vendor adapters — one per measurement vendor.

Each adapter hides a vendor's script bootstrap and native event API behind
the same three calls:

    init(identity)          → inject elements, return the element to await
    emit(event, payload)    → queue the vendor-native call
    teardown()              → remove everything this adapter injected

Native calls per vendor:
  ga4           gtag('config', id) at init without a page view, again with
                send_page_view for page views, gtag('event', ...) otherwise
  gtm           dataLayer.push({event: ...})
  meta_pixel    fbq('trackSingle', id, 'ViewContent' | 'Lead', ...)
  tiktok_pixel  ttq.instance(id).track('ViewContent' | 'ClickButton', ...)

Calls are always addressed to the adapter's own identity, so a second
instance of the same vendor on the page never receives them.
"""

from abc import ABC, abstractmethod
from enum import Enum

from app.tracking.document import PageDocument, ScriptElement, html_escape, js_call, js_value


class VendorType(str, Enum):
    GA4 = "ga4"
    TAG_CONTAINER = "gtm"
    SOCIAL_PIXEL = "meta_pixel"
    SHORT_VIDEO_PIXEL = "tiktok_pixel"


class TrackingEvent(str, Enum):
    PAGE_VIEW = "smartlink_page_view"
    PLATFORM_CLICK = "platform_click"
    ORDER_CHANGE = "platform_order_change"


class VendorAdapter(ABC):
    vendor_type: VendorType
    supports_custom_events: bool = False

    def __init__(self, document: PageDocument):
        self.document = document
        self.identity: str | None = None
        self._element_ids: list[str] = []

    @property
    def element_id(self) -> str:
        return f"{self.vendor_type.value}-{self.identity}"

    @property
    def element_ids(self) -> list[str]:
        return list(self._element_ids)

    def _append(self, element: ScriptElement) -> ScriptElement:
        self.document.append(element)
        self._element_ids.append(element.element_id)
        return element

    def _push(self, js: str) -> None:
        self.document.push_command(self.element_id, js)

    @abstractmethod
    def init(self, identity: str) -> ScriptElement:
        ...

    @abstractmethod
    def emit(self, event: str, payload: dict) -> None:
        ...

    def teardown(self) -> None:
        for element_id in self._element_ids:
            self.document.remove(element_id)
        self._element_ids.clear()

    def suspend(self) -> None:
        for element_id in self._element_ids:
            self.document.set_disabled(element_id, True)

    def resume(self) -> None:
        for element_id in self._element_ids:
            self.document.set_disabled(element_id, False)


def _event_name(event) -> str:
    return event.value if isinstance(event, Enum) else str(event)


def _music_content(payload: dict) -> dict:
    return {
        "content_name": payload.get("track_title"),
        "content_category": "Music",
    }


# ---------------------------------------------------------------------------
# Web-analytics measurement pixel
# ---------------------------------------------------------------------------

class GA4Adapter(VendorAdapter):
    vendor_type = VendorType.GA4
    supports_custom_events = True

    def init(self, identity: str) -> ScriptElement:
        self.identity = identity
        self._append(ScriptElement(
            element_id=f"{self.element_id}-bootstrap",
            inline=(
                "window.dataLayer=window.dataLayer||[];"
                "window.gtag=window.gtag||function(){dataLayer.push(arguments);};"
                "gtag('js',new Date());"
                + js_call("gtag", "config", identity, {"send_page_view": False})
            ),
        ))
        return self._append(ScriptElement(
            element_id=self.element_id,
            src=f"https://www.googletagmanager.com/gtag/js?id={identity}",
        ))

    def emit(self, event: str, payload: dict) -> None:
        if event == TrackingEvent.PAGE_VIEW:
            params = {
                "send_page_view": True,
                "page_title": payload.get("track_title"),
                "page_location": payload.get("page_url"),
                "page_path": payload.get("page_path"),
                "custom_map": {
                    "dimension1": "smartlink_id",
                    "dimension2": "track_title",
                    "dimension3": "artist_name",
                },
                **payload,
            }
            self._push(js_call("gtag", "config", self.identity, params))
            return
        self._push(js_call("gtag", "event", _event_name(event), {**payload, "send_to": self.identity}))


# ---------------------------------------------------------------------------
# Tag-container pixel
# ---------------------------------------------------------------------------

class TagContainerAdapter(VendorAdapter):
    vendor_type = VendorType.TAG_CONTAINER
    supports_custom_events = True

    def init(self, identity: str) -> ScriptElement:
        self.identity = identity
        self._append(ScriptElement(
            element_id=f"{self.element_id}-bootstrap",
            inline=(
                "window.dataLayer=window.dataLayer||[];"
                "window.dataLayer.push({'gtm.start':new Date().getTime(),event:'gtm.js'});"
            ),
        ))
        element = self._append(ScriptElement(
            element_id=self.element_id,
            src=f"https://www.googletagmanager.com/gtm.js?id={identity}",
        ))
        self._append(ScriptElement(
            element_id=f"{self.element_id}-noscript",
            tag="noscript",
            placement="body",
            inline=(
                f'<iframe src="https://www.googletagmanager.com/ns.html?id={html_escape(identity)}" '
                'height="0" width="0" style="display:none;visibility:hidden"></iframe>'
            ),
        ))
        return element

    def emit(self, event: str, payload: dict) -> None:
        self._push(f"window.dataLayer.push({js_value({'event': _event_name(event), 'gtm_container': self.identity, **payload})});")


# ---------------------------------------------------------------------------
# Social-ad pixel
# ---------------------------------------------------------------------------

_FBQ_STUB = (
    "!function(f){if(f.fbq)return;var n=f.fbq=function(){n.callMethod?"
    "n.callMethod.apply(n,arguments):n.queue.push(arguments)};"
    "if(!f._fbq)f._fbq=n;n.push=n;n.loaded=!0;n.version='2.0';n.queue=[];}(window);"
)


class SocialPixelAdapter(VendorAdapter):
    vendor_type = VendorType.SOCIAL_PIXEL

    def init(self, identity: str) -> ScriptElement:
        self.identity = identity
        self._append(ScriptElement(
            element_id=f"{self.element_id}-bootstrap",
            inline=_FBQ_STUB + js_call("fbq", "init", identity),
        ))
        return self._append(ScriptElement(
            element_id=self.element_id,
            src="https://connect.facebook.net/en_US/fbevents.js",
        ))

    def emit(self, event: str, payload: dict) -> None:
        if event == TrackingEvent.PAGE_VIEW:
            name = "ViewContent"
            data = {
                **_music_content(payload),
                "content_ids": [payload.get("smartlink_id")],
                "artist_name": payload.get("artist_name"),
            }
        elif event == TrackingEvent.PLATFORM_CLICK:
            name = "Lead"
            data = {
                **_music_content(payload),
                "platform": payload.get("platform_name"),
                "value": 1,
            }
        else:
            return
        self._push(js_call("fbq", "trackSingle", self.identity, name, data))


# ---------------------------------------------------------------------------
# Short-video-ad pixel
# ---------------------------------------------------------------------------

_TTQ_STUB = (
    "!function(w,t){w.TiktokAnalyticsObject=t;var ttq=w[t]=w[t]||[];"
    "ttq.methods=['page','track','identify','instances','debug','on','off','once','ready'];"
    "ttq.setAndDefer=function(o,m){o[m]=function(){o.push([m].concat(Array.prototype.slice.call(arguments,0)))}};"
    "for(var i=0;i<ttq.methods.length;i++)ttq.setAndDefer(ttq,ttq.methods[i]);"
    "ttq._i=ttq._i||{};"
    "ttq.instance=function(id){var e=ttq._i[id]||[];for(var n=0;n<ttq.methods.length;n++)ttq.setAndDefer(e,ttq.methods[n]);return e};"
    "}(window,'ttq');"
)


class ShortVideoPixelAdapter(VendorAdapter):
    vendor_type = VendorType.SHORT_VIDEO_PIXEL

    def init(self, identity: str) -> ScriptElement:
        self.identity = identity
        self._append(ScriptElement(
            element_id=f"{self.element_id}-bootstrap",
            inline=_TTQ_STUB + f"ttq._i[{js_value(identity)}]=ttq._i[{js_value(identity)}]||[];",
        ))
        return self._append(ScriptElement(
            element_id=self.element_id,
            src=f"https://analytics.tiktok.com/i18n/pixel/events.js?sdkid={identity}&lib=ttq",
        ))

    def emit(self, event: str, payload: dict) -> None:
        if event == TrackingEvent.PAGE_VIEW:
            name = "ViewContent"
            data = {**_music_content(payload), "content_id": payload.get("smartlink_id")}
        elif event == TrackingEvent.PLATFORM_CLICK:
            name = "ClickButton"
            data = {**_music_content(payload), "button_text": payload.get("platform_name")}
        else:
            return
        self._push(f"ttq.instance({js_value(self.identity)}).track({js_value(name)},{js_value(data)});")


ADAPTERS: dict[VendorType, type[VendorAdapter]] = {
    VendorType.GA4: GA4Adapter,
    VendorType.TAG_CONTAINER: TagContainerAdapter,
    VendorType.SOCIAL_PIXEL: SocialPixelAdapter,
    VendorType.SHORT_VIDEO_PIXEL: ShortVideoPixelAdapter,
}
