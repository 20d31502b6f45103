"""
Process lifecycle: transport ownership, the shutdown broadcast and the
ticking machinery both protocol loops run on.

One Network object is created at startup and handed to both loops.  It owns
the serving transport, the download transport and the shutdown signal.
Re-initializing a transport installs a fresh instance and closes the old one
in the background; requests already sent through the old instance will not
see their replies.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from .config import BIND_HOST, DOWNLOAD_PORT, SERVING_PORT
from .state import AppState
from .transport import SocketMode, TcpTransport, Transport

logger = logging.getLogger("mixshare.lifecycle")


class NotInitializedError(RuntimeError):
    """A loop was started before the network it depends on."""


class SignalClosed(Exception):
    """The shutdown channel was closed."""


class Role(Enum):
    SERVING = "serving"
    DOWNLOAD = "download"


# ---------------------------------------------------------------------------
# Shutdown broadcast
# ---------------------------------------------------------------------------

_CLOSED = object()


class ShutdownReceiver:
    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    async def recv(self) -> bool:
        """Wait for the next broadcast value.  Raises SignalClosed."""
        value = await self._queue.get()
        if value is _CLOSED:
            raise SignalClosed("shutdown channel closed")
        return value


class ShutdownSignal:
    """Broadcasts a boolean to every subscriber.  True means stop.

    A stop is latched: subscribers that join after it receive True at once.
    """

    def __init__(self):
        self._queues: list[asyncio.Queue] = []
        self.closed = False
        self.stopped = False

    def subscribe(self) -> ShutdownReceiver:
        queue: asyncio.Queue = asyncio.Queue()
        if self.closed:
            queue.put_nowait(_CLOSED)
        elif self.stopped:
            queue.put_nowait(True)
        self._queues.append(queue)
        return ShutdownReceiver(queue)

    def send(self, value: bool) -> int:
        """Broadcast *value*.  Returns the number of subscribers reached."""
        if self.closed:
            return 0
        if value:
            self.stopped = True
        for queue in self._queues:
            queue.put_nowait(value)
        return len(self._queues)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for queue in self._queues:
            queue.put_nowait(_CLOSED)


# ---------------------------------------------------------------------------
# Transport ownership
# ---------------------------------------------------------------------------

TransportFactory = Callable[[Role, SocketMode], Transport]


def tcp_transport_factory(
    host: str = BIND_HOST,
    serving_port: int = SERVING_PORT,
    download_port: int = DOWNLOAD_PORT,
    advertised_host: str | None = None,
) -> TransportFactory:
    """Build TcpTransports: the serving one on a fixed port, the download
    one on a fixed port in individual mode and an ephemeral one otherwise."""

    def factory(role: Role, mode: SocketMode) -> Transport:
        if role is Role.SERVING:
            port = serving_port
        elif mode is SocketMode.INDIVIDUAL:
            port = download_port
        else:
            port = 0
        return TcpTransport(mode, host=host, port=port, advertised_host=advertised_host)

    return factory


class Network:
    """Owns both transports and the shutdown signal of this process."""

    def __init__(self, state: AppState, factory: TransportFactory | None = None):
        self.state = state
        self.factory = factory or tcp_transport_factory()
        self.serving: Transport | None = None
        self.download: Transport | None = None
        self.shutdown: ShutdownSignal | None = None
        self._init_lock = asyncio.Lock()
        self._retiring: set[asyncio.Task] = set()

    def handle(self, role: Role) -> Transport | None:
        return self.serving if role is Role.SERVING else self.download

    def require(self, role: Role) -> Transport:
        transport = self.handle(role)
        if transport is None:
            raise NotInitializedError(f"{role.value} transport not initialized")
        return transport

    def subscribe(self) -> ShutdownReceiver:
        if self.shutdown is None:
            raise NotInitializedError("Stop signal not initialized")
        return self.shutdown.subscribe()

    async def initialize(self, role: Role, mode: SocketMode) -> Transport:
        """Start a fresh transport for *role* and install it.

        Raises OSError if the transport cannot bind.
        """
        async with self._init_lock:
            if self.shutdown is None:
                self.shutdown = ShutdownSignal()

            transport = self.factory(role, mode)
            await transport.start()

            previous = self.handle(role)
            if role is Role.SERVING:
                self.serving = transport
                self.state.serving_addr = transport.local_address() or ""
            else:
                self.download = transport
                self.state.download_socket_mode = mode
            if previous is not None:
                self._retire(previous)

        logger.info(
            "[*] Initialized %s transport (%s) at %s",
            role.value, mode.value, transport.local_address(),
        )
        return transport

    async def initialize_sockets(self) -> None:
        """Bring up the download transport and the serving transport."""
        logger.info("[*] Started initialize_sockets")
        await self.initialize(Role.DOWNLOAD, self.state.download_socket_mode)
        await self.initialize(Role.SERVING, SocketMode.INDIVIDUAL)
        self.state.set_message("Sockets initialized successfully")

    async def reinitialize_download(self, mode: SocketMode) -> Transport:
        return await self.initialize(Role.DOWNLOAD, mode)

    def stop(self) -> None:
        """Ask every loop to finish its current batch and exit."""
        if self.shutdown is not None:
            self.shutdown.send(True)

    async def close(self) -> None:
        self.stop()
        for role in Role:
            transport = self.handle(role)
            if transport is not None:
                await _close_quietly(transport)
        if self._retiring:
            await asyncio.gather(*self._retiring)
        if self.shutdown is not None:
            self.shutdown.close()

    def _retire(self, transport: Transport) -> None:
        task = asyncio.create_task(_close_quietly(transport))
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)


async def _close_quietly(transport: Transport) -> None:
    try:
        await transport.close()
    except OSError as e:
        logger.warning("Error closing transport %s: %s", transport.local_address(), e)


# ---------------------------------------------------------------------------
# Loop machinery
# ---------------------------------------------------------------------------


class ProtocolLoop:
    """A long-lived task that runs periodic jobs until shutdown.

    Subclasses list their jobs in ``jobs()`` as (interval, coroutine function)
    pairs.  Every job runs once immediately, then every *interval* seconds.
    A shutdown value of True, or a closed channel, ends the loop after the
    job in progress has finished.
    """

    name = "protocol loop"

    def __init__(self, state: AppState, network: Network):
        self.state = state
        self.network = network
        self.logger = logging.getLogger(type(self).__module__)

    def jobs(self) -> list[tuple[float, Callable[[], Awaitable[None]]]]:
        raise NotImplementedError

    def check_initialized(self) -> None:
        """Raise NotInitializedError if a required transport is missing."""

    async def run(self) -> None:
        receiver = self.network.subscribe()
        self.check_initialized()
        self.logger.info("[*] Started %s", self.name)

        loop = asyncio.get_running_loop()
        schedule = [[loop.time(), interval, job] for interval, job in self.jobs()]
        stop_task = asyncio.ensure_future(receiver.recv())
        try:
            while True:
                timeout = max(0.0, min(entry[0] for entry in schedule) - loop.time())
                done, _ = await asyncio.wait({stop_task}, timeout=timeout)

                if stop_task in done:
                    try:
                        value = stop_task.result()
                    except SignalClosed as e:
                        self.logger.info("[*] Stop signal error: %s", e)
                        return
                    if value:
                        self.logger.info("[*] Stopping %s", self.name)
                        return
                    stop_task = asyncio.ensure_future(receiver.recv())
                    continue

                for entry in schedule:
                    due, interval, job = entry
                    if loop.time() < due:
                        continue
                    try:
                        await job()
                    except Exception:
                        self.logger.exception("Error in %s", self.name)
                    entry[0] = loop.time() + interval
        finally:
            stop_task.cancel()


async def supervise(coro: Awaitable[None], name: str) -> None:
    """Await a loop, logging how it ended instead of letting it escape."""
    try:
        await coro
    except NotInitializedError as e:
        logger.error("%s error: %s", name, e)
    except Exception:
        logger.exception("%s crashed", name)
