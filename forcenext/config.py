import os

# === CONFIGURATION ===
HEADLESS: bool = os.getenv("FN_HEADLESS", "false").lower() in {"1", "true", "yes"}
START_URL: str = os.getenv("FN_START_URL", "https://www.primevideo.com/")
BROWSER: str = os.getenv("FN_BROWSER", "chrome").lower()
DRIVER_PATH: str = os.getenv("FN_DRIVER_PATH", "")
POLL_INTERVAL: float = float(os.getenv("FN_POLL_INTERVAL", "0.1"))
HOLD_TIMEOUT_MS: int = int(os.getenv("FN_HOLD_TIMEOUT_MS", "1000"))
WAIT_TIMEOUT: int = int(os.getenv("FN_WAIT_TIMEOUT", "25"))
MAX_RESTARTS: int = int(os.getenv("FN_MAX_RESTARTS", "2"))
LOG_LEVEL: str = os.getenv("FN_LOG_LEVEL", "INFO").upper()

DATA_DIR = os.getenv(
    "FN_DATA_DIR", os.path.join(os.path.expanduser("~"), ".forcenext")
)
OPTIONS_DB_FILE = os.path.join(DATA_DIR, "options.json")
STATE_DB_FILE = os.path.join(DATA_DIR, "state.json")
PROFILE_DIR = os.path.join(DATA_DIR, "profile")

SCRIPT_VERSION = "1.0.0"

# === TIMING (ms) ===
USER_CLOSE_GRACE_MS = 200
ATTENUATION_MS = 2000
CONTINUATION_DELAY_MS = 1500
NAVIGATE_DELAY_MS = 200
VOLUME_RESTORE_WINDOW_MS = 5000
HOOK_READY_WINDOW_MS = 10000

CACHE_CAPACITY = 20
