"""
Error taxonomy for the SmartLink pipeline.

Only a missing SmartLink record is ever user-visible. Everything else is
recovered where it happens:

  LocationUnavailable      → silently use the default country
  PlatformDataMissing      → render the empty state
  VendorScriptLoadFailure  → vendor goes to FAILED, others keep going
  PreferenceStoreCorrupt   → treat the stored record as absent
"""


class SmartLinkError(Exception):
    """Base class for pipeline errors."""


class LocationUnavailable(SmartLinkError):
    """A location tier could not produce a country."""


class PlatformDataMissing(SmartLinkError):
    """The SmartLink has no platform links."""


class VendorScriptLoadFailure(SmartLinkError):
    def __init__(self, vendor_type: str, identity: str, reason: str = ""):
        super().__init__(f"{vendor_type} script for {identity} failed to load: {reason}")
        self.vendor_type = vendor_type
        self.identity = identity
        self.reason = reason


class PreferenceStoreCorrupt(SmartLinkError):
    def __init__(self, key: str, reason: str = ""):
        super().__init__(f"stored value for {key!r} is unreadable: {reason}")
        self.key = key
        self.reason = reason
