"""
mixshare: anonymous-capable P2P file exchange.

Main entry point.  Brings up both transports, starts the serving and
downloading loops, and then either the TUI dashboard or a headless status
printer.

Usage:
    mixshare                                  # start TUI mode (default)
    mixshare --headless --share notes.txt     # serve a file without a UI
    mixshare --headless --fetch 10.0.0.5:7070 notes.txt
    mixshare --headless --advertise --share a.txt --share b.txt
"""

import argparse
import asyncio
import logging
import sys

from .client import DownloadingLoop
from .config import (
    BIND_HOST,
    DOWNLOAD_DIR,
    DOWNLOAD_PORT,
    LOG_FILE,
    SERVING_PORT,
    VERSION,
)
from .helpers import init_logging
from .lifecycle import Network, supervise, tcp_transport_factory
from .server import ServingLoop
from .shareable import InvalidShareableFile
from .state import AppState
from .transport import SocketMode, parse_address

logger = logging.getLogger("mixshare.peer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mixshare", description="mixshare P2P file exchange"
    )
    parser.add_argument(
        "--port", type=int, default=SERVING_PORT, help="TCP port of the serving transport"
    )
    parser.add_argument(
        "--download-port",
        type=int,
        default=DOWNLOAD_PORT,
        help="TCP port of the download transport in individual mode",
    )
    parser.add_argument("--host", default=BIND_HOST, help="Address to bind to")
    parser.add_argument(
        "--public-host",
        default=None,
        help="Address peers should use to reach this process (default: first LAN IP)",
    )
    parser.add_argument(
        "--download-dir", default=DOWNLOAD_DIR, help="Where downloaded files are saved"
    )
    parser.add_argument(
        "--advertise", action="store_true", help="Answer explore requests from peers"
    )
    parser.add_argument(
        "--individual",
        action="store_true",
        help="Start the download transport in individual mode",
    )
    parser.add_argument("--log-file", default=LOG_FILE, help="Debug log path")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    parser.add_argument(
        "--headless", action="store_true", help="Run without the TUI dashboard"
    )
    parser.add_argument(
        "--share", action="append", default=[], metavar="PATH", help="File to share"
    )
    parser.add_argument(
        "--fetch",
        action="append",
        nargs=2,
        default=[],
        metavar=("ADDR", "FILE"),
        help="Download FILE from the peer at ADDR",
    )
    parser.add_argument(
        "--explore",
        action="append",
        default=[],
        metavar="ADDR",
        help="Ask the peer at ADDR for its file list",
    )
    parser.add_argument("--version", action="version", version=f"mixshare {VERSION}")
    return parser


async def _seed(state: AppState, args: argparse.Namespace) -> None:
    """Register shares and queue the requests given on the command line."""
    for path in args.share:
        try:
            shareable = await state.shareables.add(path, active=args.headless)
        except InvalidShareableFile as e:
            print(f"  [!] {e}", file=sys.stderr)
            continue
        print(f"  Sharing {shareable.name}" if shareable.active else f"  Added {shareable.name}")

    for address, filename in args.fetch:
        try:
            parse_address(address)
        except ValueError as e:
            print(f"  [!] {e}", file=sys.stderr)
            continue
        await state.requests.add_download(address, filename)

    for address in args.explore:
        try:
            parse_address(address)
        except ValueError as e:
            print(f"  [!] {e}", file=sys.stderr)
            continue
        await state.requests.add_explore(address)


async def watch_headless(state: AppState, interval: float = 1.0) -> None:
    """Print every status change of the request records until cancelled."""
    seen: dict[str, str] = {}
    while True:
        for request in list(state.requests.downloads):
            status = request.status
            if seen.get(request.request_id) != status:
                seen[request.request_id] = status
                print(f"  [{status:>9}] {request.filename} from {request.peer}")
        for request in list(state.requests.explores):
            status = request.status
            if seen.get(request.request_id) != status:
                seen[request.request_id] = status
                line = f"  [{status:>9}] explore {request.peer}"
                if request.completed:
                    line += f": {', '.join(request.advertise_files) or '(no files)'}"
                print(line)
        await asyncio.sleep(interval)


async def run(args: argparse.Namespace) -> int:
    state = AppState(download_dir=args.download_dir, advertise_mode=args.advertise)
    if args.individual:
        state.download_socket_mode = SocketMode.INDIVIDUAL
    state.ensure_download_dir()

    factory = tcp_transport_factory(
        host=args.host,
        serving_port=args.port,
        download_port=args.download_port,
        advertised_host=args.public_host,
    )
    network = Network(state, factory)
    try:
        await network.initialize_sockets()
    except OSError as e:
        logger.error("Failed to initialize sockets: %s", e)
        print(f"  [!] Failed to initialize sockets: {e}", file=sys.stderr)
        await network.close()
        return 1

    await _seed(state, args)

    tasks = [
        asyncio.create_task(
            supervise(ServingLoop(state, network).run(), "serving_manager")
        ),
        asyncio.create_task(
            supervise(DownloadingLoop(state, network).run(), "download_manager")
        ),
    ]

    try:
        if args.headless:
            print(f"  mixshare started  [serving at {state.serving_addr}]")
            print(f"  Downloads go to: {state.download_dir}")
            print("  Press Ctrl+C to stop.\n")
            await watch_headless(state)
        else:
            from .tui import run_tui

            await run_tui(state, network)
    finally:
        network.stop()
        await asyncio.gather(*tasks)
        await network.close()
    return 0


def main() -> None:
    args = build_parser().parse_args()
    init_logging(args.log_file, debug=args.debug, console=args.headless)

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n  Interrupted. Shutting down...")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
