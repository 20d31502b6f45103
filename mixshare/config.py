"""
Configuration constants for the mixshare file exchange engine.
"""

import os

VERSION = "0.3.0"

# --- Networking ---
SERVING_PORT = 7070          # TCP port the serving transport binds to
DOWNLOAD_PORT = 7071         # TCP port of the download transport in individual mode
BIND_HOST = "0.0.0.0"        # Interface the transports listen on
CONNECT_TIMEOUT = 10         # Seconds before an outgoing send gives up
MAX_FRAME_SIZE = 64 * 1024 * 1024  # Largest frame a transport accepts

# --- Protocol loops ---
SERVE_INTERVAL = 0.3         # Seconds between serving loop drains
SEND_INTERVAL = 0.2          # Seconds between send-pending passes
RECEIVE_INTERVAL = 0.1       # Seconds between reply drains

# Reply-path provisioning hints: extra reply blocks the transport should
# pre-allocate.  A file reply may need several.
FILE_REQUEST_REPLY_HINT = 10
ADVERTISE_REPLY_HINT = 5

# --- File Storage ---
DOWNLOAD_DIR = os.path.join(os.getcwd(), "downloads")
LOG_FILE = "debug.log"

# --- UI policy ---
MESSAGE_DURATION = 3.0       # Seconds an inline status message stays visible
POPUP_DURATION = 5.0         # Seconds a popup message stays visible
DOWNLOAD_RESEND_COOLDOWN = 60  # Seconds before an unanswered download may be resent
EXPLORE_RESEND_COOLDOWN = 30   # Seconds before an unanswered explore may be resent
