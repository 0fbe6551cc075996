"""
Shared constants used across all dialspeed modules.

Centralises endpoints, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers (browser-like, required by Ookla servers)
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Origin": "https://www.speedtest.net",
    "Referer": "https://www.speedtest.net/",
}

# ---------------------------------------------------------------------------
# Catalog endpoints
# ---------------------------------------------------------------------------

BASE_URL = "https://www.speedtest.net"
SERVERS_URL = "https://www.speedtest.net/api/js/servers"
CATALOG_TIMEOUT = 10.0
DEFAULT_CATALOG_LIMIT = 10

# ---------------------------------------------------------------------------
# Ping phase
# ---------------------------------------------------------------------------

DEFAULT_PING_COUNT = 10
PING_TIMEOUT = 5.0               # per round-trip
PING_INTERVAL = 0.1              # fixed delay between attempts
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100

# ---------------------------------------------------------------------------
# Download / upload phases
# ---------------------------------------------------------------------------

DEFAULT_DURATION = 10.0          # seconds for download / upload
MIN_DURATION = 1.0
MAX_DURATION = 300.0

MB = 1024 * 1024
DOWNLOAD_CHUNK_SIZES = (1 * MB, 2 * MB, 5 * MB)
READ_CHUNK_SIZE = 256 * 1024     # streaming read size for download bodies
UPLOAD_PAYLOAD_SIZE = 1 * MB
UPLOAD_TIMEOUT = 30.0

DEFAULT_CONCURRENCY = 3
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 3
DEFAULT_UPLOAD_FAILURE_LIMIT = 3

# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------

CONNECT_DELAY = 2.0              # settle time in the connecting phase
DECAY_DURATION = 0.5             # cosmetic wind-down after upload
DECAY_STEPS = 4
CANCEL_GRACE = 1.0               # max wait for cancelled probes to unwind
HISTORY_LENGTH = 20              # points kept per speed chart

# ---------------------------------------------------------------------------
# Geography
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM = 6371.0
