"""Tests for the JSON-backed settings store."""

import json

from settings_store import Settings, SettingsStore


def test_defaults_without_file(tmp_path):
    store = SettingsStore(path=str(tmp_path / "missing.json"))
    settings = store.load()

    assert settings == Settings(3840, 2160, 80, True)


def test_load_reads_persisted_values(tmp_path):
    path = tmp_path / "ambilight_config.json"
    path.write_text(json.dumps(
        {"screen_width": 2560, "screen_height": 1440, "brightness_percent": 35}
    ))

    settings = SettingsStore(path=str(path)).load()

    assert (settings.screen_width, settings.screen_height) == (2560, 1440)
    assert settings.brightness_percent == 35


def test_load_clamps_brightness_and_skips_bad_values(tmp_path):
    path = tmp_path / "ambilight_config.json"
    path.write_text(json.dumps(
        {"screen_width": -5, "screen_height": "abc", "brightness_percent": 180}
    ))

    settings = SettingsStore(path=str(path)).load()

    assert settings.screen_width == 3840
    assert settings.screen_height == 2160
    assert settings.brightness_percent == 100


def test_corrupt_file_keeps_defaults(tmp_path):
    path = tmp_path / "ambilight_config.json"
    path.write_text("{not json")

    assert SettingsStore(path=str(path)).load() == Settings()


def test_update_persists_without_run_flag(tmp_path):
    path = tmp_path / "ambilight_config.json"
    store = SettingsStore(path=str(path))

    store.update(screen_width="1920", screen_height=1080, brightness_percent=-3)
    store.set_running(False)

    assert json.loads(path.read_text()) == {
        "screen_width": 1920,
        "screen_height": 1080,
        "brightness_percent": 0,
    }
    assert store.snapshot().running is False


def test_snapshots_are_immutable_copies(tmp_path):
    store = SettingsStore(path=str(tmp_path / "s.json"))
    before = store.snapshot()

    store.update(brightness_percent=10)

    assert before.brightness_percent == 80
    assert store.snapshot().brightness_percent == 10


def test_toggle_running(tmp_path):
    store = SettingsStore(path=str(tmp_path / "s.json"))

    assert store.toggle_running().running is False
    assert store.toggle_running().running is True
