"""
Application state shared between the protocol loops and the UI.

The loops read the advertise flag and the download directory, and report
progress through ``set_message`` / ``set_popup_message``.  Both are plain
attribute writes so they never block a loop.
"""

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import DOWNLOAD_DIR, MESSAGE_DURATION, POPUP_DURATION
from .records import RequestBook
from .shareable import ShareRegistry
from .transport import SocketMode


class Tab(Enum):
    SHARE = "share"
    DOWNLOAD = "download"
    EXPLORE = "explore"


@dataclass
class TimedMessage:
    """A status text that disappears *duration* seconds after being set."""

    duration: float
    text: str = ""
    expires_at: float | None = None

    def set(self, text: str, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        self.text = text
        self.expires_at = now + self.duration

    def clear(self) -> None:
        self.expires_at = None

    def is_visible(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.monotonic() if now is None else now
        return now < self.expires_at


class AppState:
    """Everything the UI and the protocol loops share."""

    def __init__(self, download_dir: str | Path = DOWNLOAD_DIR, advertise_mode: bool = False):
        self.download_dir = Path(download_dir)
        self.advertise_mode = advertise_mode
        self.download_socket_mode = SocketMode.ANONYMOUS
        self.serving_addr = ""
        self.start_time = time.time()

        self.shareables = ShareRegistry()
        self.requests = RequestBook()

        self.active_tab = Tab.SHARE
        self.messages = {tab: TimedMessage(MESSAGE_DURATION) for tab in Tab}
        self.popups = {tab: TimedMessage(POPUP_DURATION) for tab in Tab}

    def ensure_download_dir(self) -> Path:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        return self.download_dir

    # --- messages for the active tab ---

    def set_message(self, text: str) -> None:
        self.messages[self.active_tab].set(text)

    def set_popup_message(self, text: str) -> None:
        self.popups[self.active_tab].set(text)

    def clear_message(self) -> None:
        self.messages[self.active_tab].clear()

    def clear_popup_message(self) -> None:
        self.popups[self.active_tab].clear()

    def visible_message(self) -> str | None:
        message = self.messages[self.active_tab]
        return message.text if message.is_visible() else None

    def visible_popup(self) -> str | None:
        popup = self.popups[self.active_tab]
        return popup.text if popup.is_visible() else None
