"""
mixshare - P2P File Exchange

Share files with peers and fetch theirs over a pluggable, possibly anonymous
transport, from a terminal dashboard or headless.
"""

__version__ = "0.3.0"

from .config import (
    DOWNLOAD_DIR,
    DOWNLOAD_PORT,
    SERVING_PORT,
)
from .client import DownloadingLoop
from .helpers import format_size, safe_filename, time_ago
from .lifecycle import Network, NotInitializedError, ShutdownSignal, supervise
from .protocol import Command, Frame, MalformedMessage, decode, encode
from .records import DownloadRequest, ExploreRequest, RequestBook
from .server import ServingLoop
from .shareable import InvalidShareableFile, ShareableFile, ShareRegistry
from .state import AppState
from .transport import LoopbackNetwork, SocketMode, TcpTransport, Transport

__all__ = [
    "SERVING_PORT",
    "DOWNLOAD_PORT",
    "DOWNLOAD_DIR",
    "AppState",
    "Command",
    "Frame",
    "MalformedMessage",
    "encode",
    "decode",
    "DownloadRequest",
    "ExploreRequest",
    "RequestBook",
    "ShareableFile",
    "ShareRegistry",
    "InvalidShareableFile",
    "Transport",
    "TcpTransport",
    "LoopbackNetwork",
    "SocketMode",
    "Network",
    "NotInitializedError",
    "ShutdownSignal",
    "supervise",
    "ServingLoop",
    "DownloadingLoop",
    "format_size",
    "safe_filename",
    "time_ago",
]
