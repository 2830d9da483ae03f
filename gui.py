import tkinter as tk
import logging
import threading

import ttkbootstrap as ttk
from PIL import Image, ImageDraw

from ambilight_controller import LoopState
from screen_capture import capture_origin
import config

logger = logging.getLogger(__name__)

# Optional import for system tray
try:
    import pystray

    TRAY_AVAILABLE = True
except ImportError:
    TRAY_AVAILABLE = False
    logger.warning("pystray not installed. System tray mode disabled.")

STATUS_TEXT = {
    LoopState.SEARCHING: "Searching for device...",
    LoopState.RUNNING: "Running",
    LoopState.PAUSED: "Paused",
}


class AmbilightTray:
    """Tray icon plus a small settings flyout. Only writes to the settings store."""

    def __init__(self, root, store, service):
        self.root = root
        self.store = store
        self.service = service

        self.tray_icon = None
        self.settings_window = None
        self.overlay = None

        self.width_var = tk.StringVar()
        self.height_var = tk.StringVar()
        self.brightness_var = tk.IntVar()
        self.status_var = tk.StringVar()
        self.show_zone_var = tk.BooleanVar(value=False)

        self.root.withdraw()
        self._setup_tray()
        self._poll_status()

    # ===== System Tray Methods =====

    def _setup_tray(self):
        """Setup system tray icon and menu."""
        if not TRAY_AVAILABLE:
            # No tray: keep the settings window as the only way in
            self.root.after(0, self.show_settings)
            return

        icon_size = 64
        icon_image = Image.new("RGB", (icon_size, icon_size), color=(32, 32, 32))
        draw = ImageDraw.Draw(icon_image)
        draw.rectangle([6, 26, 58, 38], fill=(255, 50, 50), outline=(255, 120, 120))

        menu = pystray.Menu(
            pystray.MenuItem("Settings", self._tray_settings, default=True),
            pystray.MenuItem(
                "Enabled",
                self._tray_toggle,
                checked=lambda item: self.store.snapshot().running,
            ),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Exit", self._quit_app),
        )

        self.tray_icon = pystray.Icon(
            "Ambilight", icon_image, "Screen Ambilight", menu
        )
        # Run tray icon in background thread
        threading.Thread(target=self.tray_icon.run, daemon=True).start()

    def _tray_settings(self, icon=None, item=None):
        self.root.after(0, self.toggle_settings)

    def _tray_toggle(self, icon=None, item=None):
        self.store.toggle_running()
        self.root.after(0, self._refresh_toggle)

    def _quit_app(self, icon=None, item=None):
        """Stop the service and close everything."""
        logger.info("[App] Exit requested")
        self.service.stop(timeout=2.0)
        if self.tray_icon:
            self.tray_icon.stop()
        self.root.after(0, self.root.destroy)

    # ===== Settings Window =====

    def toggle_settings(self):
        if self.settings_window is not None and self.settings_window.winfo_exists():
            self.settings_window.destroy()
            self.settings_window = None
        else:
            self.show_settings()

    def show_settings(self):
        settings = self.store.snapshot()
        self.width_var.set(str(settings.screen_width))
        self.height_var.set(str(settings.screen_height))
        self.brightness_var.set(settings.brightness_percent)

        win = ttk.Toplevel(title="Ambilight")
        win.resizable(False, False)
        win.attributes("-topmost", True)
        win.protocol("WM_DELETE_WINDOW", self.toggle_settings)
        self.settings_window = win

        frame = ttk.Frame(win, padding=15)
        frame.pack(fill="both", expand=True)

        ttk.Label(frame, text="Screen Ambilight", font=("Segoe UI", 12, "bold"),
                  bootstyle="danger").grid(row=0, column=0, columnspan=3, sticky="w")
        self.toggle_btn = ttk.Button(frame, width=5, command=self._on_toggle_clicked)
        self.toggle_btn.grid(row=0, column=3, sticky="e")
        self._refresh_toggle()

        ttk.Label(frame, text="Monitor Resolution:").grid(
            row=1, column=0, columnspan=4, sticky="w", pady=(12, 4)
        )
        ttk.Entry(frame, textvariable=self.width_var, width=7).grid(row=2, column=0)
        ttk.Label(frame, text="x").grid(row=2, column=1, padx=4)
        ttk.Entry(frame, textvariable=self.height_var, width=7).grid(row=2, column=2)
        ttk.Button(frame, text="Apply", bootstyle="secondary",
                   command=self._apply_resolution).grid(row=2, column=3, padx=(8, 0))

        self.brightness_label = ttk.Label(frame)
        self.brightness_label.grid(row=3, column=0, columnspan=4, sticky="w", pady=(12, 4))
        ttk.Scale(frame, from_=0, to=100, variable=self.brightness_var, length=240,
                  command=self._on_brightness_changed).grid(row=4, column=0, columnspan=4)
        self._update_brightness_label()

        ttk.Checkbutton(frame, text="Show Capture Zone", variable=self.show_zone_var,
                        command=self._toggle_overlay).grid(
            row=5, column=0, columnspan=4, sticky="w", pady=(10, 0)
        )

        ttk.Label(frame, textvariable=self.status_var, bootstyle="secondary").grid(
            row=6, column=0, columnspan=4, sticky="w", pady=(10, 0)
        )
        ttk.Button(frame, text="Exit", bootstyle="link", command=self._quit_app).grid(
            row=7, column=0, columnspan=4, pady=(10, 0)
        )

    def _on_toggle_clicked(self):
        self.store.toggle_running()
        self._refresh_toggle()

    def _refresh_toggle(self):
        if self.settings_window is None or not self.settings_window.winfo_exists():
            return
        running = self.store.snapshot().running
        self.toggle_btn.configure(
            text="ON" if running else "OFF",
            bootstyle="success" if running else "danger",
        )

    def _apply_resolution(self):
        settings = self.store.update(
            screen_width=self.width_var.get(), screen_height=self.height_var.get()
        )
        # Show what was actually accepted
        self.width_var.set(str(settings.screen_width))
        self.height_var.set(str(settings.screen_height))
        self._place_overlay()

    def _on_brightness_changed(self, value):
        percent = int(float(value))
        if percent != self.store.snapshot().brightness_percent:
            self.store.update(brightness_percent=percent)
        self._update_brightness_label()

    def _update_brightness_label(self):
        self.brightness_label.configure(text=f"Brightness: {self.brightness_var.get()}%")

    # ===== Capture Zone Overlay =====

    def _toggle_overlay(self):
        if self.show_zone_var.get():
            if self.overlay is None or not self.overlay.winfo_exists():
                self.overlay = tk.Toplevel(self.root)
                self.overlay.overrideredirect(True)
                self.overlay.attributes("-topmost", True)
                self.overlay.configure(bg="red")
                inner = tk.Frame(self.overlay, bg="magenta")
                inner.pack(fill="both", expand=True, padx=4, pady=4)
                try:
                    self.overlay.attributes("-transparentcolor", "magenta")
                except tk.TclError:
                    # Only Windows supports color keyed transparency
                    self.overlay.attributes("-alpha", 0.3)
            self._place_overlay()
            self.overlay.deiconify()
        elif self.overlay is not None and self.overlay.winfo_exists():
            self.overlay.withdraw()

    def _place_overlay(self):
        if self.overlay is None or not self.overlay.winfo_exists():
            return
        settings = self.store.snapshot()
        x, y = capture_origin(settings.screen_width, settings.screen_height)
        self.overlay.geometry(f"{config.CAPTURE_WIDTH}x{config.CAPTURE_HEIGHT}+{x}+{y}")

    # ===== Status =====

    def _poll_status(self):
        state = self.service.state
        text = STATUS_TEXT.get(state, str(state))
        if state == LoopState.RUNNING:
            r, g, b = self.service.last_color
            text = f"{text}  RGB({r}, {g}, {b})"
        self.status_var.set(text)
        if self.tray_icon is not None:
            self.tray_icon.title = f"Screen Ambilight - {STATUS_TEXT.get(state, '')}"
        self.root.after(500, self._poll_status)
