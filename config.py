# ============================================================================
# CONFIGURATION
# ============================================================================

# USB HID light bar
VENDOR_ID = 0x0B05
PRODUCT_ID = 0x1AC8
REPORT_SIZE = 65
USB_TIMEOUT_MS = 1000

# Capture window (centered on the configured resolution)
CAPTURE_WIDTH = 200
CAPTURE_HEIGHT = 150
SAMPLE_STEP = 10

# Color pipeline
SMOOTH_FACTOR = 0.2
HARDWARE_MAX_BRIGHTNESS = 200  # device ceiling

# Loop timing (seconds)
SEARCH_RETRY_DELAY = 2.0
PAUSED_DELAY = 0.5
FRAME_DELAY = 0.01
SUPERVISOR_BACKOFF = 5.0

# Default settings
DEFAULT_SCREEN_WIDTH = 3840
DEFAULT_SCREEN_HEIGHT = 2160
DEFAULT_BRIGHTNESS = 80

# Settings file path
SETTINGS_FILE = "ambilight_config.json"

# Single instance guard (loopback port)
INSTANCE_LOCK_PORT = 47613

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
