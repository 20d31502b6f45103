"""
Transports: the message-oriented delivery layer under the protocol loops.

The loops only need three things from a transport: ``send(data, peer)``
returning whether the message was handed off, a non-blocking ``drain()`` of
everything received so far, and ``local_address()``.  Delivery is never
guaranteed; a successful send only means the message left this process.

Two implementations ship here:

  - TcpTransport: store-and-forward over TCP.  Every message opens a fresh
    connection, writes one length-prefixed frame and closes.  The frame
    carries the sender's reply address so the receiver can answer.
  - LoopbackTransport: in-process delivery through a LoopbackNetwork, with
    optional random loss.  Used by the tests and for local experiments.
"""

import asyncio
import itertools
import logging
import random
import socket
from collections import deque
from dataclasses import dataclass
from enum import Enum

import psutil
from typing_extensions import Protocol, runtime_checkable

from .config import BIND_HOST, CONNECT_TIMEOUT
from .protocol import MalformedMessage, decode, encode, pack_frame, read_frame

logger = logging.getLogger("mixshare.transport")

ENVELOPE_TAG = "ENVELOPE"


class SocketMode(Enum):
    """Addressing mode of a transport.

    ANONYMOUS transports get a throwaway address on every initialization;
    INDIVIDUAL transports keep a stable, shareable one.
    """

    ANONYMOUS = "anonymous"
    INDIVIDUAL = "individual"


@dataclass(frozen=True)
class InboundMessage:
    data: bytes
    sender: str


@runtime_checkable
class Transport(Protocol):
    """What the protocol loops require from a transport."""

    mode: SocketMode
    lock: asyncio.Lock

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def send(self, data: bytes, peer: str, reply_hint: int | None = None) -> bool: ...

    def drain(self) -> list[InboundMessage]: ...

    def local_address(self) -> str | None: ...


def get_local_ip() -> str:
    """First non-loopback IPv4 address of this host, for sharing."""
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return addr.address
    return "127.0.0.1"


def parse_address(address: str) -> tuple[str, int]:
    """Split a 'host:port' string.  Raises ValueError."""
    host, sep, port_str = address.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"Address must look like host:port, got {address!r}")
    port = int(port_str)
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in {address!r}")
    return host, port


# ---------------------------------------------------------------------------
# TCP
# ---------------------------------------------------------------------------


class TcpTransport:
    """Connectionless message delivery on top of short-lived TCP streams."""

    def __init__(
        self,
        mode: SocketMode,
        host: str = BIND_HOST,
        port: int = 0,
        advertised_host: str | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self.mode = mode
        self.host = host
        self.port = port
        self.advertised_host = advertised_host
        self.connect_timeout = connect_timeout
        self.lock = asyncio.Lock()
        self._inbound: deque[InboundMessage] = deque()
        self._server: asyncio.AbstractServer | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bind and start the background listener."""
        self._server = await asyncio.start_server(
            self._handle_connection, self.host, self.port
        )
        self.port = self._server.sockets[0].getsockname()[1]
        if self.advertised_host is None:
            if self.host in ("", "0.0.0.0"):
                self.advertised_host = get_local_ip()
            else:
                self.advertised_host = self.host
        logger.info(
            "TCP transport (%s) listening on %s:%d",
            self.mode.value, self.host, self.port,
        )

    async def close(self) -> None:
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        await server.wait_closed()
        logger.info("TCP transport on port %d closed", self.port)

    def local_address(self) -> str | None:
        if self._server is None:
            return None
        return f"{self.advertised_host}:{self.port}"

    # ------------------------------------------------------------------
    # Send / receive
    # ------------------------------------------------------------------

    async def send(self, data: bytes, peer: str, reply_hint: int | None = None) -> bool:
        try:
            host, port = parse_address(peer)
        except ValueError as e:
            logger.warning("Cannot send to %r: %s", peer, e)
            return False

        if reply_hint:
            # Plain TCP needs no pre-allocated reply paths.
            logger.debug("Reply hint %d for %s ignored by TCP transport", reply_hint, peer)

        envelope = encode(ENVELOPE_TAG, self.local_address() or "", data)
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), self.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("Could not reach %s: %s", peer, e)
            return False

        try:
            writer.write(pack_frame(envelope))
            await asyncio.wait_for(writer.drain(), self.connect_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("Failed to deliver %d bytes to %s: %s", len(data), peer, e)
            return False
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
        return True

    def drain(self) -> list[InboundMessage]:
        messages = list(self._inbound)
        self._inbound.clear()
        return messages

    async def _handle_connection(self, reader, writer) -> None:
        peername = writer.get_extra_info("peername")
        try:
            while True:
                frame = await read_frame(reader)
                if frame is None:
                    break
                try:
                    envelope = decode(frame)
                    if envelope.tag != ENVELOPE_TAG:
                        raise MalformedMessage(f"Unexpected envelope tag {envelope.tag!r}")
                    reply_to = envelope.read_str()
                    payload = envelope.read_bytes()
                except MalformedMessage as e:
                    logger.warning("Dropped malformed frame from %s: %s", peername, e)
                    continue
                self._inbound.append(InboundMessage(payload, reply_to))
        except MalformedMessage as e:
            logger.warning("Closing connection from %s: %s", peername, e)
        except OSError as e:
            logger.debug("Connection from %s failed: %s", peername, e)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass


# ---------------------------------------------------------------------------
# In-process loopback
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Impairment:
    loss_rate: float = 0.0

    def should_drop(self) -> bool:
        return random.random() < self.loss_rate


class LoopbackNetwork:
    """Routes messages between LoopbackTransports of one process."""

    def __init__(self, impairment: Impairment | None = None):
        self.impairment = impairment or Impairment()
        self.endpoints: dict[str, "LoopbackTransport"] = {}
        self._ids = itertools.count(1)

    def transport(self, mode: SocketMode, address: str | None = None) -> "LoopbackTransport":
        if address is None:
            prefix = "anon" if mode is SocketMode.ANONYMOUS else "peer"
            address = f"{prefix}-{next(self._ids)}"
        return LoopbackTransport(self, mode, address)

    def deliver(self, data: bytes, sender: str, peer: str) -> bool:
        target = self.endpoints.get(peer)
        if target is None:
            return False
        if self.impairment.should_drop():
            # Lost in transit; the sender cannot tell.
            logger.debug("Loopback dropped %d bytes from %s to %s", len(data), sender, peer)
            return True
        target.inject(data, sender)
        return True


class LoopbackTransport:
    """A transport whose peers live in the same LoopbackNetwork."""

    def __init__(self, network: LoopbackNetwork, mode: SocketMode, address: str):
        self.network = network
        self.mode = mode
        self.address = address
        self.lock = asyncio.Lock()
        self.fail_sends = False
        # Every accepted send as (data, peer, reply_hint), for inspection.
        self.sent: list[tuple[bytes, str, int | None]] = []
        self._inbound: deque[InboundMessage] = deque()
        self._running = False

    async def start(self) -> None:
        self.network.endpoints[self.address] = self
        self._running = True

    async def close(self) -> None:
        self._running = False
        if self.network.endpoints.get(self.address) is self:
            del self.network.endpoints[self.address]

    def local_address(self) -> str | None:
        return self.address if self._running else None

    async def send(self, data: bytes, peer: str, reply_hint: int | None = None) -> bool:
        if self.fail_sends or not self._running:
            return False
        if not self.network.deliver(data, self.address, peer):
            return False
        self.sent.append((data, peer, reply_hint))
        return True

    def inject(self, data: bytes, sender: str) -> None:
        """Queue *data* as if it had arrived from *sender*."""
        self._inbound.append(InboundMessage(data, sender))

    def drain(self) -> list[InboundMessage]:
        messages = list(self._inbound)
        self._inbound.clear()
        return messages
