"""
Error kinds raised by the capture and device layers.

The control loop maps each kind to a retry rule, so none of these ever reach
the user; they only end a device session or delay the next discovery.
"""


class AmbilightError(Exception):
    """Base class for recoverable ambilight failures."""


class DeviceNotFound(AmbilightError):
    """No HID device with the expected vendor/product id is attached."""


class DeviceOpenFailed(AmbilightError):
    """The device exists but exclusive access was denied (busy, permissions)."""


class DeviceIoError(AmbilightError):
    """A report write failed mid-session; the session is no longer usable."""


class CaptureError(AmbilightError):
    """The screen grab failed."""
