"""
USB HID session with the light bar.

One HidSession is one open-to-close lifetime of the device: find it by
vendor/product id, claim its HID interface exclusively, write fixed-size
reports, release everything on close.
"""

import logging

import usb.core
import usb.util

import config
from errors import DeviceIoError, DeviceNotFound, DeviceOpenFailed

logger = logging.getLogger(__name__)

HID_CLASS = 0x03
HID_SET_REPORT = 0x09
HID_REPORT_TYPE_OUTPUT = 0x02
# host-to-device | class | interface
HID_REQUEST_TYPE_OUT = 0x21


class HidSession:
    """Exclusive write-only connection to one HID device."""

    def __init__(self, vendor_id=config.VENDOR_ID, product_id=config.PRODUCT_ID,
                 timeout=config.USB_TIMEOUT_MS):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.timeout = timeout

        self.device = None
        self.interface_number = None
        self.endpoint_out = None
        self._detached_kernel_driver = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def is_open(self) -> bool:
        return self.device is not None

    def discover(self):
        """Return the first attached device matching the ids, or None."""
        try:
            return usb.core.find(idVendor=self.vendor_id, idProduct=self.product_id)
        except usb.core.NoBackendError as e:
            logger.debug("[USB] No libusb backend available: %s", e)
            return None

    def open(self):
        """Find the device and claim its HID interface exclusively."""
        if self.is_open:
            return self

        device = self.discover()
        if device is None:
            raise DeviceNotFound(
                f"No device {self.vendor_id:04x}:{self.product_id:04x}"
            )

        number = None
        detached = False
        try:
            interface = self._hid_interface(device)
            number = interface.bInterfaceNumber

            try:
                if device.is_kernel_driver_active(number):
                    device.detach_kernel_driver(number)
                    detached = True
            except NotImplementedError:
                # Not supported by the Windows/macOS backends
                pass

            usb.util.claim_interface(device, number)
        except (usb.core.USBError, ValueError) as e:
            if detached:
                # Hand the device back to the OS driver
                try:
                    device.attach_kernel_driver(number)
                except (usb.core.USBError, NotImplementedError) as attach_error:
                    logger.debug("[USB] Reattach error (ignored): %s", attach_error)
            usb.util.dispose_resources(device)
            raise DeviceOpenFailed(f"Could not claim HID interface: {e}") from e

        self.device = device
        self.interface_number = number
        self._detached_kernel_driver = detached
        self.endpoint_out = usb.util.find_descriptor(
            interface,
            custom_match=lambda ep: usb.util.endpoint_direction(ep.bEndpointAddress)
            == usb.util.ENDPOINT_OUT,
        )

        route = (
            f"OUT 0x{self.endpoint_out.bEndpointAddress:02x}"
            if self.endpoint_out is not None
            else "SET_REPORT"
        )
        logger.info(
            "[USB] Opened %04x:%04x interface %d via %s",
            self.vendor_id, self.product_id, number, route,
        )
        return self

    def _hid_interface(self, device):
        try:
            cfg = device.get_active_configuration()
        except usb.core.USBError:
            device.set_configuration()
            cfg = device.get_active_configuration()

        interface = usb.util.find_descriptor(cfg, bInterfaceClass=HID_CLASS)
        if interface is None:
            raise ValueError("device exposes no HID interface")
        return interface

    def write(self, report):
        """Send one report; any failure closes the session."""
        if not self.is_open:
            raise DeviceIoError("Session is not open")

        try:
            if self.endpoint_out is not None:
                written = self.endpoint_out.write(report, timeout=self.timeout)
            else:
                written = self.device.ctrl_transfer(
                    HID_REQUEST_TYPE_OUT,
                    HID_SET_REPORT,
                    (HID_REPORT_TYPE_OUTPUT << 8) | report[0],
                    self.interface_number,
                    report,
                    timeout=self.timeout,
                )
        except usb.core.USBError as e:
            self.close()
            raise DeviceIoError(f"Report write failed: {e}") from e

        if written != len(report):
            self.close()
            raise DeviceIoError(f"Short write: {written}/{len(report)} bytes")
        return written

    def close(self):
        """Release the interface and the device handle. Safe to call twice."""
        device = self.device
        if device is None:
            return

        self.device = None
        self.endpoint_out = None
        try:
            usb.util.release_interface(device, self.interface_number)
            if self._detached_kernel_driver:
                device.attach_kernel_driver(self.interface_number)
        except (usb.core.USBError, NotImplementedError) as e:
            logger.debug("[USB] Release error (ignored): %s", e)
        finally:
            usb.util.dispose_resources(device)
            self._detached_kernel_driver = False
            logger.info("[USB] Session closed")
