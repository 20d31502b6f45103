"""
Serving loop: answers FILE_REQUEST and ADVERTISE messages from peers.

Every tick drains the serving transport in one batch, then handles each
message in arrival order.  The transport lock is held only for the drain and
for each individual send.

File request flow:
  1. Peer sends FILE_REQUEST(request_id, filename).
  2. If an active shareable file has that base name, reply
     ACK_FILE_REQUEST(request_id); otherwise stay silent.
  3. Read the file and reply GETFILE(request_id, bytes).
  A failure at any step ends the exchange there.  The requester may end up
  with an ACK but no file; its request records tolerate that.

Advertise flow (only when advertise mode is on):
  1. Peer sends ADVERTISE(request_id).
  2. Reply ACK_ADVERTISE_REQUEST(request_id), then
     GETADVERTISE(request_id, [names of active files]).
"""

import asyncio
import logging

from .config import SERVE_INTERVAL
from .lifecycle import ProtocolLoop, Role
from .protocol import Command, Frame, MalformedMessage, decode, encode
from .transport import InboundMessage, Transport

logger = logging.getLogger("mixshare.server")


class ServingLoop(ProtocolLoop):
    """Answers requests for locally shared files."""

    name = "serving_manager"

    def jobs(self):
        return [(SERVE_INTERVAL, self.serve_pending)]

    def check_initialized(self) -> None:
        self.network.require(Role.SERVING)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def serve_pending(self) -> None:
        transport = self.network.serving
        if transport is None:
            return

        async with transport.lock:
            messages = transport.drain()

        for message in messages:
            await self.handle_message(transport, message)

    async def handle_message(self, transport: Transport, message: InboundMessage) -> None:
        """Handle one inbound message.  Never raises."""
        try:
            frame = decode(message.data)
            if frame.command is Command.FILE_REQUEST:
                await self._handle_file_request(transport, frame, message.sender)
            elif frame.command is Command.ADVERTISE:
                await self._handle_advertise(transport, frame, message.sender)
            else:
                logger.info("Unknown command received: %s", frame.tag)
        except MalformedMessage as e:
            logger.warning("Invalid message format from %s: %s", message.sender, e)
        except Exception:
            logger.exception("Error handling message from %s", message.sender)

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def _handle_file_request(self, transport: Transport, frame: Frame, sender: str) -> None:
        request_id = frame.read_str()
        filename = frame.read_str()
        logger.info("[*] Received FILE_REQUEST for '%s' (id=%s)", filename, request_id)

        registry = self.state.shareables
        async with registry.lock:
            shareable = registry.find(filename)
        if shareable is None:
            logger.info("File %s not found or inactive", filename)
            return

        ack = encode(Command.ACK_FILE_REQUEST, request_id)
        if not await _send(transport, ack, sender):
            logger.warning("Failed to send ACK for '%s'", filename)
            return
        logger.info("Sent ACK for '%s' (id=%s)", filename, request_id)

        try:
            data = await asyncio.to_thread(shareable.read_bytes)
        except OSError as e:
            logger.warning("Failed to read '%s': %s", filename, e)
            return

        reply = encode(Command.GETFILE, request_id, data)
        if not await _send(transport, reply, sender):
            logger.warning("Failed to send file %s", filename)
            return

        async with registry.lock:
            shareable.downloads += 1
        logger.info("Sent file %s (%d bytes) to %s", filename, len(data), sender)

    async def _handle_advertise(self, transport: Transport, frame: Frame, sender: str) -> None:
        logger.info("[*] Received ADVERTISE")
        if not self.state.advertise_mode:
            logger.info("Skip ADVERTISE, not in advertise mode")
            return

        request_id = frame.read_str()

        ack = encode(Command.ACK_ADVERTISE_REQUEST, request_id)
        if not await _send(transport, ack, sender):
            logger.warning("Failed to send ACK_ADVERTISE_REQUEST for '%s'", request_id)
            return
        logger.info("Sent ACK_ADVERTISE_REQUEST for (id=%s)", request_id)

        registry = self.state.shareables
        async with registry.lock:
            listed = [f for f in registry.files if f.active]
        names = [f.name for f in listed]

        reply = encode(Command.GETADVERTISE, request_id, names)
        if not await _send(transport, reply, sender):
            logger.info("[*] Failed to send GETADVERTISE to %s", sender)
            return
        logger.info("[*] Sent GETADVERTISE %s to %s", names, sender)

        async with registry.lock:
            for shareable in listed:
                shareable.advertise += 1


async def _send(transport: Transport, data: bytes, peer: str) -> bool:
    async with transport.lock:
        return await transport.send(data, peer)
