"""
Downloading loop: sends pending requests and applies the replies.

Two jobs share one task:
  - send_pending (every SEND_INTERVAL): transmit every record that has not
    been sent yet.  A failed send is simply retried on the next pass.
  - receive_replies (every RECEIVE_INTERVAL): drain the download transport
    and update the matching records.

Replies may arrive late, twice, or out of order.  A second ACK is ignored,
and a payload that overtakes its ACK is still accepted.
"""

import asyncio
import logging
from pathlib import Path

from .config import (
    ADVERTISE_REPLY_HINT,
    FILE_REQUEST_REPLY_HINT,
    RECEIVE_INTERVAL,
    SEND_INTERVAL,
)
from .helpers import safe_filename
from .lifecycle import ProtocolLoop, Role
from .protocol import Command, Frame, MalformedMessage, decode, encode
from .transport import InboundMessage, Transport

logger = logging.getLogger("mixshare.client")


class DownloadingLoop(ProtocolLoop):
    """Issues download/explore requests and tracks their replies."""

    name = "download_manager"

    def jobs(self):
        return [
            (SEND_INTERVAL, self.send_pending),
            (RECEIVE_INTERVAL, self.receive_replies),
        ]

    def check_initialized(self) -> None:
        self.network.require(Role.DOWNLOAD)

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    async def send_pending(self) -> None:
        transport = self.network.download
        if transport is None:
            return

        # The book lock is never held across a send.
        book = self.state.requests
        async with book.lock:
            downloads = [
                (r, encode(Command.FILE_REQUEST, r.request_id, r.filename), r.peer)
                for r in book.unsent_downloads()
            ]
            explores = [
                (r, encode(Command.ADVERTISE, r.request_id), r.peer)
                for r in book.unsent_explores()
            ]

        for request, data, peer in downloads:
            if await _send(transport, data, peer, FILE_REQUEST_REPLY_HINT):
                if await self._mark_sent(request, book.find_download):
                    logger.info(
                        "[*] Sent download request for '%s' to %s",
                        request.filename, peer,
                    )
            else:
                logger.info(
                    "[*] Failed to send download request for '%s' to %s",
                    request.filename, peer,
                )

        for request, data, peer in explores:
            if await _send(transport, data, peer, ADVERTISE_REPLY_HINT):
                if await self._mark_sent(request, book.find_explore):
                    logger.info("[*] Sent explore request to %s", peer)
            else:
                logger.info("[*] Failed to send explore request to %s", peer)

    async def _mark_sent(self, request, find) -> bool:
        """Record a successful send unless the UI removed the request meanwhile."""
        async with self.state.requests.lock:
            if find(request.request_id) is not request:
                logger.debug("Request '%s' removed while sending", request.request_id)
                return False
            # A reply may already have marked it sent.
            if not request.sent:
                request.mark_sent()
        return True

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    async def receive_replies(self) -> None:
        transport = self.network.download
        if transport is None:
            return

        async with transport.lock:
            messages = transport.drain()

        for message in messages:
            await self.handle_message(message)

    async def handle_message(self, message: InboundMessage) -> None:
        """Apply one reply to the request records.  Never raises."""
        try:
            frame = decode(message.data)
            if frame.command is Command.ACK_FILE_REQUEST:
                await self._handle_file_ack(frame)
            elif frame.command is Command.ACK_ADVERTISE_REQUEST:
                await self._handle_advertise_ack(frame)
            elif frame.command is Command.GETFILE:
                await self._handle_getfile(frame)
            elif frame.command is Command.GETADVERTISE:
                await self._handle_getadvertise(frame)
            else:
                logger.warning("[*] Unknown command received: '%s'", frame.tag)
        except MalformedMessage as e:
            logger.warning("Invalid message format from %s: %s", message.sender, e)
        except Exception:
            logger.exception("Error applying reply from %s", message.sender)

    async def _handle_file_ack(self, frame: Frame) -> None:
        request_id = frame.read_str()
        logger.info("Received ACK for request '%s'", request_id)

        book = self.state.requests
        async with book.lock:
            request = book.find_download(request_id)
            if request is None:
                logger.debug("No download request with id '%s'", request_id)
                return
            if not request.mark_accepted():
                logger.info("ACK for '%s' arrived again, ignoring", request_id)
                return
            filename = request.filename
        self.state.set_message(f"Request for '{filename}' accepted")

    async def _handle_advertise_ack(self, frame: Frame) -> None:
        request_id = frame.read_str()
        logger.info("Received ACK_ADVERTISE_REQUEST for request '%s'", request_id)

        book = self.state.requests
        async with book.lock:
            request = book.find_explore(request_id)
            if request is None:
                logger.debug("No explore request with id '%s'", request_id)
                return
            if not request.mark_accepted():
                logger.info(
                    "ACK_ADVERTISE_REQUEST for '%s' arrived late (already accepted earlier)",
                    request_id,
                )
                return
        self.state.set_message(f"ACK_ADVERTISE_REQUEST for '{request_id}' accepted")

    async def _handle_getfile(self, frame: Frame) -> None:
        request_id = frame.read_str()
        data = frame.read_bytes()

        book = self.state.requests
        async with book.lock:
            request = book.find_download(request_id)
            if request is None:
                logger.debug("No download request with id '%s'", request_id)
                return
            filename = request.filename

        name = safe_filename(filename)
        if name is None:
            logger.warning("Refusing to save '%s': unusable file name", filename)
            self.state.set_message(f"Refused to save '{filename}'")
            return
        destination = self.state.download_dir / name
        try:
            await asyncio.to_thread(_write_file, destination, data)
        except OSError as e:
            logger.warning("Failed to save '%s': %s", filename, e)
            self.state.set_message(f"Failed to save '{filename}'")
            return
        logger.info("Saved '%s' to '%s'", filename, destination)

        async with book.lock:
            request.mark_completed()
        self.state.set_message(f"Downloaded file '{filename}'")

    async def _handle_getadvertise(self, frame: Frame) -> None:
        request_id = frame.read_str()
        names = frame.read_str_list()
        logger.info("[*] Received GETADVERTISE for request '%s': %s", request_id, names)

        book = self.state.requests
        async with book.lock:
            request = book.find_explore(request_id)
            if request is None:
                logger.debug("No explore request with id '%s'", request_id)
                return
            if request.mark_accepted():
                logger.info("No ACK received before GETADVERTISE; auto-marking ACK")
            request.advertise_files = names
            request.mark_completed()
            peer = request.peer
        self.state.set_message(f"Discovered {len(names)} files on {peer}")


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def _send(transport: Transport, data: bytes, peer: str, reply_hint: int) -> bool:
    async with transport.lock:
        return await transport.send(data, peer, reply_hint=reply_hint)
