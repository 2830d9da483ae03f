"""
Color pipeline: reduce a captured window to one color, smooth it over time and
scale it to the user's brightness.
"""

from typing import NamedTuple

import numpy as np

import config


class RawColor(NamedTuple):
    """Channel sums of one sampling pass plus the number of samples taken."""

    r: int
    g: int
    b: int
    count: int

    def mean(self):
        if self.count == 0:
            return 0, 0, 0
        return self.r // self.count, self.g // self.count, self.b // self.count


# ============================================================================
# REDUCER
# ============================================================================


def reduce_color(buffer, step=config.SAMPLE_STEP) -> RawColor:
    """Sum every step-th pixel on both axes of a BGR buffer."""
    pixels = buffer.as_array()[::step, ::step]
    count = pixels.shape[0] * pixels.shape[1]
    if count == 0:
        return RawColor(0, 0, 0, 0)

    # BGR byte order: blue first, red last
    b, g, r = pixels.reshape(-1, 3).sum(axis=0, dtype=np.uint64)
    return RawColor(int(r), int(g), int(b), count)


# ============================================================================
# SMOOTHING
# ============================================================================


def ema(current, raw, factor=config.SMOOTH_FACTOR):
    """One step of an exponential moving average."""
    return current + (raw - current) * factor


class ColorSmoother:
    """Per-channel EMA carried across ticks of one device session."""

    def __init__(self, factor=config.SMOOTH_FACTOR):
        self.factor = factor
        self.reset()

    def reset(self):
        self.cur_r = 0.0
        self.cur_g = 0.0
        self.cur_b = 0.0

    @property
    def state(self):
        return self.cur_r, self.cur_g, self.cur_b

    def update(self, rgb):
        r, g, b = rgb
        self.cur_r = ema(self.cur_r, r, self.factor)
        self.cur_g = ema(self.cur_g, g, self.factor)
        self.cur_b = ema(self.cur_b, b, self.factor)
        return self.state


# ============================================================================
# BRIGHTNESS
# ============================================================================


def clamp_percent(percent):
    return max(0, min(100, int(percent)))


def effective_limit(brightness_percent):
    """Hardware ceiling scaled by the brightness percent, rounded down."""
    return config.HARDWARE_MAX_BRIGHTNESS * clamp_percent(brightness_percent) // 100


def scale_brightness(smoothed, brightness_percent):
    """Truncate smoothed channels and cap them at the effective limit."""
    limit = effective_limit(brightness_percent)
    return tuple(
        max(0, min(255, min(int(channel), limit))) for channel in smoothed
    )
