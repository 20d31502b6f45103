"""
Small shared helpers: logging setup, display formatting, filename hygiene.
"""

import logging
import os
import re
import sys
import time

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Windows reserved device names that must never be used as filenames.
_WINDOWS_RESERVED = re.compile(
    r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])(\.|$)", re.IGNORECASE
)


def init_logging(log_file: str, debug: bool = False, console: bool = False) -> None:
    """Send all ``mixshare.*`` records to *log_file*.

    The dashboard owns the terminal, so stderr output is opt-in.
    """
    logger = logging.getLogger("mixshare")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)


def format_size(size_bytes: int | float) -> str:
    """Human-readable file size."""
    for unit in ("B", "KB", "MB", "GB"):
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


def time_ago(instant: float, now: float | None = None) -> str:
    """Describe how long ago a ``time.monotonic()`` instant was."""
    if now is None:
        now = time.monotonic()
    elapsed = int(max(0.0, now - instant))
    if elapsed < 60:
        return f"{elapsed} seconds ago"
    if elapsed < 3600:
        return f"{elapsed // 60} minutes ago"
    if elapsed < 86400:
        return f"{elapsed // 3600} hours ago"
    return f"{elapsed // 86400} days ago"


def safe_filename(filename: str) -> str | None:
    """Sanitize an untrusted filename.

    Strips directory components and null bytes.  Returns None when nothing
    usable is left or the name is a Windows reserved device name.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    name = name.replace("\x00", "")
    if name in ("", ".", ".."):
        return None
    if _WINDOWS_RESERVED.match(name):
        return None
    return name
