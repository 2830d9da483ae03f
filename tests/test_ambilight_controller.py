"""Tests for the service state machine with a fake device and screen."""

from contextlib import contextmanager

import pytest
from PIL import Image

from ambilight_controller import AmbilightService, LoopState, RetryPolicy, RetryRule
from errors import CaptureError, DeviceIoError, DeviceNotFound, DeviceOpenFailed
from packet_codec import build_black_packet, build_mode_packet, build_stream_packet
from screen_capture import PixelBuffer
from settings_store import Settings, SettingsStore


class FakeSession:
    def __init__(self, fail_on_write=None, open_error=None):
        self.fail_on_write = fail_on_write
        self.open_error = open_error
        self.writes = []
        self.opened = False
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def open(self):
        if self.open_error:
            raise self.open_error
        self.opened = True
        return self

    def write(self, report):
        if self.fail_on_write is not None and len(self.writes) + 1 == self.fail_on_write:
            self.close()
            raise DeviceIoError("Pipe error")
        self.writes.append(report)
        return len(report)

    def close(self):
        self.closed = True


class SessionFactory:
    """Hands out prepared sessions in order, then healthy ones."""

    def __init__(self, *sessions):
        self.pending = list(sessions)
        self.created = []

    def __call__(self):
        session = self.pending.pop(0) if self.pending else FakeSession()
        if isinstance(session, Exception):
            raise session
        self.created.append(session)
        return session


class FakeScreen:
    def __init__(self, rgb=(100, 150, 200), fail=False):
        self.rgb = rgb
        self.fail = fail
        self.grabs = []
        self.buffers = []

    @contextmanager
    def __call__(self, screen_width, screen_height):
        self.grabs.append((screen_width, screen_height))
        if self.fail:
            raise CaptureError("grab failed")
        buffer = PixelBuffer.from_image(Image.new("RGB", (200, 150), self.rgb))
        self.buffers.append(buffer)
        try:
            yield buffer
        finally:
            buffer.release()


class SleepRecorder:
    """Records requested delays and stops the service after a number of them."""

    def __init__(self, limit):
        self.limit = limit
        self.delays = []
        self.service = None

    def __call__(self, delay):
        self.delays.append(delay)
        if len(self.delays) >= self.limit:
            self.service.stop()
        return self.service.stopped


def make_service(settings, factory, screen=None, sleeps=10):
    sleep = SleepRecorder(sleeps)
    store = SettingsStore(path="unused.json", settings=settings)
    service = AmbilightService(
        store, session_factory=factory, grabber=screen or FakeScreen(), sleep=sleep
    )
    sleep.service = service
    return service, sleep


def test_end_to_end_two_ticks():
    session = FakeSession()
    screen = FakeScreen((100, 150, 200))
    service, sleep = make_service(
        Settings(brightness_percent=50), SessionFactory(session), screen, sleeps=2
    )

    service.run_forever()

    assert session.writes == [
        build_mode_packet((0, 0, 0)),
        build_mode_packet((20, 30, 40)),
        build_stream_packet((20, 30, 40)),
        build_mode_packet((36, 54, 72)),
        build_stream_packet((36, 54, 72)),
    ]
    assert sleep.delays == [0.01, 0.01]
    assert session.closed
    assert all(buffer.released for buffer in screen.buffers)


def test_capture_uses_configured_resolution():
    screen = FakeScreen()
    service, _ = make_service(
        Settings(screen_width=1920, screen_height=1080), SessionFactory(), screen, sleeps=1
    )

    service.run_forever()

    assert screen.grabs == [(1920, 1080)]


def test_paused_sends_black_without_capture():
    session = FakeSession()
    screen = FakeScreen()
    service, sleep = make_service(
        Settings(running=False), SessionFactory(session), screen, sleeps=3
    )

    service.run_forever()

    assert session.writes[0] == build_mode_packet((0, 0, 0))
    assert session.writes[1:] == [build_black_packet()] * 3
    assert all(not any(report[5:62]) for report in session.writes[1:])
    assert sleep.delays == [0.5, 0.5, 0.5]
    assert screen.grabs == []


def test_resume_after_pause_uses_latest_snapshot():
    session = FakeSession()
    service, sleep = make_service(Settings(running=False), SessionFactory(session), sleeps=3)

    def flip_on_first_sleep(delay, original=sleep.__call__):
        if not sleep.delays:
            service.store.set_running(True)
        return original(delay)

    service._sleep = flip_on_first_sleep
    service.run_forever()

    assert sleep.delays == [0.5, 0.01, 0.01]
    assert session.writes[1] == build_black_packet()
    assert session.writes[2] == build_mode_packet((20, 30, 40))


def test_device_not_found_retries_every_two_seconds():
    factory = SessionFactory(
        FakeSession(open_error=DeviceNotFound("none")),
        FakeSession(open_error=DeviceOpenFailed("busy")),
    )
    service, sleep = make_service(Settings(), factory, sleeps=3)

    service.run_forever()

    assert sleep.delays == [2.0, 2.0, 0.01]
    assert all(session.closed for session in factory.created)
    assert factory.created[2].opened


def test_write_failure_reconnects_with_fresh_smoothing():
    broken = FakeSession(fail_on_write=4)  # init, mode, stream, then the next mode fails
    healthy = FakeSession()
    service, sleep = make_service(
        Settings(brightness_percent=50), SessionFactory(broken, healthy), sleeps=3
    )

    service.run_forever()

    assert broken.closed
    assert healthy.opened
    # Smoothing restarted from zero on the new session
    assert healthy.writes[:3] == [
        build_mode_packet((0, 0, 0)),
        build_mode_packet((20, 30, 40)),
        build_stream_packet((20, 30, 40)),
    ]
    assert sleep.delays == [0.01, 2.0, 0.01]


def test_capture_failure_closes_session():
    first = FakeSession()
    screen = FakeScreen(fail=True)
    service, sleep = make_service(Settings(), SessionFactory(first), screen, sleeps=1)

    service.run_forever()

    assert first.closed
    assert first.writes == [build_mode_packet((0, 0, 0))]
    assert sleep.delays == [2.0]


def test_supervisor_survives_unexpected_errors():
    factory = SessionFactory(RuntimeError("driver crashed"))
    service, sleep = make_service(Settings(), factory, sleeps=2)

    service.run_forever()

    assert sleep.delays == [5.0, 0.01]
    assert factory.created[0].opened


class CrashingScreen(FakeScreen):
    """Raises an unexpected error on one grab, then behaves."""

    def __init__(self, rgb=(100, 150, 200), crash_on=2):
        super().__init__(rgb)
        self.crash_on = crash_on
        self.calls = 0

    @contextmanager
    def __call__(self, screen_width, screen_height):
        self.calls += 1
        if self.calls == self.crash_on:
            raise RuntimeError("display driver reset")
        with FakeScreen.__call__(self, screen_width, screen_height) as buffer:
            yield buffer


def test_unexpected_error_mid_session_closes_and_restarts():
    first = FakeSession()
    second = FakeSession()
    service, sleep = make_service(
        Settings(brightness_percent=50),
        SessionFactory(first, second),
        CrashingScreen(),
        sleeps=3,
    )

    service.run_forever()

    assert first.closed
    assert first.writes[-1] == build_stream_packet((20, 30, 40))
    assert sleep.delays == [0.01, 5.0, 0.01]
    # Fresh session starts from a zeroed smoother
    assert second.writes[:3] == [
        build_mode_packet((0, 0, 0)),
        build_mode_packet((20, 30, 40)),
        build_stream_packet((20, 30, 40)),
    ]


def test_state_follows_run_flag():
    service, _ = make_service(Settings(running=False), SessionFactory(), sleeps=1)
    seen = []
    original = service._sleep

    def record_state(delay):
        seen.append(service.state)
        return original(delay)

    service._sleep = record_state
    service.run_forever()

    assert seen == [LoopState.PAUSED]
    assert service.state == LoopState.SEARCHING


def test_retry_policy_matches_subclasses_and_falls_back():
    class StaleHandle(DeviceIoError):
        pass

    policy = RetryPolicy()
    assert policy.rule_for(DeviceNotFound()) == RetryRule(2.0)
    assert policy.rule_for(StaleHandle()) == RetryRule(2.0)
    assert policy.rule_for(KeyError()) == RetryRule(5.0)

    custom = RetryPolicy({CaptureError: RetryRule(0.1)}, fallback=RetryRule(3.0))
    assert custom.rule_for(CaptureError()).delay == pytest.approx(0.1)
    assert custom.rule_for(DeviceIoError()).delay == pytest.approx(3.0)


def test_start_and_stop_worker_thread():
    store = SettingsStore(path="unused.json", settings=Settings(running=False))
    service = AmbilightService(store, session_factory=SessionFactory(), grabber=FakeScreen())

    service.start()
    assert service.is_alive()
    service.stop(timeout=5.0)

    assert not service.is_alive()
