"""
Screen capture for the ambilight loop.

Grabs a fixed window centered on the configured desktop resolution and exposes
it as a read-only BGR pixel buffer with an explicit row stride, the same layout
a 24bpp Windows DIB uses.
"""

import logging
from contextlib import contextmanager

import numpy as np
from PIL import ImageGrab

import config
from errors import CaptureError

logger = logging.getLogger(__name__)

BYTES_PER_PIXEL = 3


def aligned_stride(width):
    """Row size in bytes for 24bpp pixels padded to a 4-byte boundary."""
    return (width * BYTES_PER_PIXEL + 3) & ~3


def capture_origin(screen_width, screen_height,
                   width=config.CAPTURE_WIDTH, height=config.CAPTURE_HEIGHT):
    """Top-left corner of a width x height window centered on the screen."""
    start_x = max(0, (screen_width - width) // 2)
    start_y = max(0, (screen_height - height) // 2)
    return start_x, start_y


class PixelBuffer:
    """Read-only, bounds-checked view over row-major BGR pixels."""

    def __init__(self, data, width: int, height: int, stride: int = None):
        if width < 0 or height < 0:
            raise ValueError(f"Invalid buffer size {width}x{height}")
        if stride is None:
            stride = aligned_stride(width)
        if stride < width * BYTES_PER_PIXEL:
            raise ValueError(f"Stride {stride} too small for width {width}")

        data = bytes(data)
        needed = stride * (height - 1) + width * BYTES_PER_PIXEL if height else 0
        if len(data) < needed:
            raise ValueError(f"Buffer holds {len(data)} bytes, need {needed}")

        self.width = width
        self.height = height
        self.stride = stride
        self._data = data

    @classmethod
    def from_image(cls, image):
        """Build a BGR buffer from a Pillow image, padding rows to the stride."""
        rgb = np.asarray(image.convert("RGB"), dtype=np.uint8)
        height, width = rgb.shape[:2]
        stride = aligned_stride(width)

        rows = np.zeros((height, stride), dtype=np.uint8)
        rows[:, : width * BYTES_PER_PIXEL] = rgb[:, :, ::-1].reshape(
            height, width * BYTES_PER_PIXEL
        )
        return cls(rows.tobytes(), width, height, stride)

    @property
    def released(self) -> bool:
        return self._data is None

    def _checked_data(self):
        if self._data is None:
            raise ValueError("Pixel buffer has been released")
        return self._data

    def pixel(self, x: int, y: int):
        """Return the (b, g, r) bytes of one pixel."""
        data = self._checked_data()
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height}")
        offset = y * self.stride + x * BYTES_PER_PIXEL
        return data[offset], data[offset + 1], data[offset + 2]

    def as_array(self):
        """Read-only (height, width, 3) BGR array, stride padding excluded."""
        data = self._checked_data()
        if not self.width or not self.height:
            return np.zeros((self.height, self.width, BYTES_PER_PIXEL), dtype=np.uint8)

        flat = np.frombuffer(data, dtype=np.uint8, count=self.stride * (self.height - 1)
                             + self.width * BYTES_PER_PIXEL)
        padded = np.zeros(self.stride * self.height, dtype=np.uint8)
        padded[: flat.size] = flat
        rows = padded.reshape(self.height, self.stride)[:, : self.width * BYTES_PER_PIXEL]
        pixels = rows.reshape(self.height, self.width, BYTES_PER_PIXEL)
        pixels.flags.writeable = False
        return pixels

    def release(self):
        self._data = None


@contextmanager
def grab_center(screen_width, screen_height,
                width=config.CAPTURE_WIDTH, height=config.CAPTURE_HEIGHT):
    """Capture the centered window; the buffer is released when the block exits."""
    start_x, start_y = capture_origin(screen_width, screen_height, width, height)
    bbox = (start_x, start_y, start_x + width, start_y + height)

    try:
        image = ImageGrab.grab(bbox=bbox)
    except Exception as e:
        raise CaptureError(f"Screen grab of {bbox} failed: {e}") from e

    try:
        buffer = PixelBuffer.from_image(image)
    finally:
        image.close()

    try:
        yield buffer
    finally:
        buffer.release()
