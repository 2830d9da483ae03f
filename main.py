"""
Screen Ambilight - entry point.

Starts the capture worker and the tray UI. Runs until Exit is chosen from the
tray (or Ctrl+C with --headless).
"""

import argparse
import ctypes
import logging
import socket
import sys

import config
from ambilight_controller import AmbilightService
from settings_store import SettingsStore

logger = logging.getLogger("ambilight")


def enable_dpi_awareness():
    """Capture in physical pixels on scaled Windows desktops."""
    if sys.platform != "win32":
        return
    try:
        ctypes.windll.shcore.SetProcessDpiAwareness(2)
    except (AttributeError, OSError):
        pass  # Pre-8.1 Windows


def acquire_single_instance(port=config.INSTANCE_LOCK_PORT):
    """Bind a loopback port as a process lock; None if another copy holds it."""
    lock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        lock.bind(("127.0.0.1", port))
    except OSError:
        lock.close()
        return None
    return lock


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Screen ambilight for a USB HID light bar")
    parser.add_argument("--config", help="Path of the JSON settings file")
    parser.add_argument("--headless", action="store_true",
                        help="Run without tray icon or settings window")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format=config.LOG_FORMAT,
    )

    enable_dpi_awareness()

    instance_lock = acquire_single_instance()
    if instance_lock is None:
        # Already running, leave quietly
        logger.info("Another instance is already running")
        return 0

    store = SettingsStore(path=args.config)
    store.load()
    service = AmbilightService(store)

    try:
        if args.headless:
            service.start()
            try:
                while service.is_alive():
                    service.join(0.5)
            except KeyboardInterrupt:
                logger.info("Interrupted")
        else:
            import ttkbootstrap as ttk
            from gui import AmbilightTray

            service.start()
            # "darkly", "superhero", "solar", "cyborg" are good dark themes
            root = ttk.Window(themename="darkly")
            AmbilightTray(root, store, service)
            root.mainloop()
    finally:
        service.stop(timeout=2.0)
        instance_lock.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
