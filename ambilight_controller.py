"""
Ambilight service loop.

Searches for the light bar, streams the smoothed screen color to it while the
user has it switched on, sends black while it is paused, and starts over after
any failure. Nothing here ever gives up: errors only decide how long to wait
before the next attempt.
"""

import enum
import logging
import threading
from dataclasses import dataclass

import config
import screen_capture
from connection_manager import HidSession
from errors import (
    AmbilightError,
    CaptureError,
    DeviceIoError,
    DeviceNotFound,
    DeviceOpenFailed,
)
from image_processor import ColorSmoother, reduce_color, scale_brightness
from packet_codec import (
    build_black_packet,
    build_mode_packet,
    build_stream_packet,
    stream_payload,
)

logger = logging.getLogger(__name__)


class LoopState(enum.Enum):
    SEARCHING = "searching"
    RUNNING = "running"
    PAUSED = "paused"


# ============================================================================
# RETRY POLICY
# ============================================================================


@dataclass(frozen=True)
class RetryRule:
    delay: float
    next_state: LoopState = LoopState.SEARCHING


class RetryPolicy:
    """Maps an error kind to how long to back off and where to resume."""

    def __init__(self, rules=None, fallback=None):
        self.rules = dict(rules) if rules is not None else {
            DeviceNotFound: RetryRule(config.SEARCH_RETRY_DELAY),
            DeviceOpenFailed: RetryRule(config.SEARCH_RETRY_DELAY),
            DeviceIoError: RetryRule(config.SEARCH_RETRY_DELAY),
            CaptureError: RetryRule(config.SEARCH_RETRY_DELAY),
        }
        self.fallback = fallback or RetryRule(config.SUPERVISOR_BACKOFF)

    def rule_for(self, exc) -> RetryRule:
        for kind in type(exc).__mro__:
            if kind in self.rules:
                return self.rules[kind]
        return self.fallback


# ============================================================================
# SERVICE
# ============================================================================


class AmbilightService:
    """Runs the capture-to-device loop on a single worker thread."""

    def __init__(self, store, session_factory=HidSession,
                 grabber=screen_capture.grab_center, sleep=None, policy=None):
        self.store = store
        self.session_factory = session_factory
        self.grabber = grabber
        self.policy = policy or RetryPolicy()
        self.smoother = ColorSmoother()

        self._stop = threading.Event()
        self._sleep = sleep or self._stop.wait
        self._thread = None

        self.state = LoopState.SEARCHING
        self.last_color = (0, 0, 0)
        self.frame_count = 0

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self):
        """Run the supervisor on a daemon worker thread."""
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="ambilight-worker", daemon=True
        )
        self._thread.start()
        return self._thread

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout=None):
        if self._thread:
            self._thread.join(timeout)

    def stop(self, timeout=None):
        """Ask the loop to finish; waits for the worker when one is running."""
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    # ===== Supervisor =====

    def run_forever(self):
        """Restart the state machine after any error until stop() is called."""
        logger.info("[Loop] Service started")
        while not self.stopped:
            try:
                self.run()
            except Exception as e:
                rule = self.policy.rule_for(e)
                logger.exception(
                    "[Loop] Unhandled error, restarting in %.1fs", rule.delay
                )
                self.state = rule.next_state
                self._sleep(rule.delay)
        self.state = LoopState.SEARCHING
        logger.info("[Loop] Service stopped")

    def run(self):
        """Search, stream, and search again after every recoverable failure."""
        while not self.stopped:
            try:
                self.run_session()
            except AmbilightError as e:
                rule = self.policy.rule_for(e)
                if isinstance(e, (DeviceIoError, CaptureError)):
                    logger.warning("[Loop] Session lost: %s", e)
                else:
                    logger.debug("[Loop] %s, retrying in %.1fs", e, rule.delay)
                self.state = rule.next_state
                self._sleep(rule.delay)

    # ===== Session =====

    def run_session(self):
        """One open-to-close device lifetime."""
        self.state = LoopState.SEARCHING
        session = self.session_factory()
        with session:
            session.open()

            self.smoother.reset()
            self.last_color = (0, 0, 0)
            session.write(build_mode_packet(self.last_color))
            logger.info("[Loop] Device connected")

            while not self.stopped:
                settings = self.store.snapshot()
                if settings.running:
                    self.state = LoopState.RUNNING
                    self.tick(session, settings)
                    self._sleep(config.FRAME_DELAY)
                else:
                    self.state = LoopState.PAUSED
                    session.write(build_black_packet())
                    self._sleep(config.PAUSED_DELAY)

    def tick(self, session, settings):
        """Capture, reduce, smooth, scale, then write mode and stream reports."""
        with self.grabber(settings.screen_width, settings.screen_height) as buffer:
            raw = reduce_color(buffer)

        smoothed = self.smoother.update(raw.mean())
        color = scale_brightness(smoothed, settings.brightness_percent)

        # The device expects the mode report on every frame, not only at init
        session.write(build_mode_packet(color))
        stream = build_stream_packet(color)
        session.write(stream)

        self.last_color = color
        self.frame_count += 1
        if self.frame_count % 500 == 0:
            segments = stream_payload(stream)
            logger.debug(
                "[Frame %d] %d segments, first=%s", self.frame_count, len(segments), segments[0]
            )
        return color
