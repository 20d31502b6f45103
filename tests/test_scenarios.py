"""
End-to-end exchanges between two peers with all four loops running, over
the loopback network.
"""

import asyncio

from mixshare.client import DownloadingLoop
from mixshare.lifecycle import Network, supervise
from mixshare.protocol import Command, encode
from mixshare.records import DownloadRequest, ExploreRequest
from mixshare.server import ServingLoop
from mixshare.state import AppState
from mixshare.transport import Impairment, LoopbackNetwork


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class Peer:
    def __init__(self, net, download_dir, advertise=False):
        self.state = AppState(download_dir=download_dir, advertise_mode=advertise)
        self.network = Network(self.state, lambda role, mode: net.transport(mode))
        self.tasks = []

    @property
    def address(self):
        return self.state.serving_addr

    async def start(self):
        await self.network.initialize_sockets()
        self.tasks = [
            asyncio.create_task(supervise(ServingLoop(self.state, self.network).run(), "serving")),
            asyncio.create_task(supervise(DownloadingLoop(self.state, self.network).run(), "download")),
        ]

    async def stop(self):
        self.network.stop()
        await asyncio.wait_for(asyncio.gather(*self.tasks), 2.0)
        await self.network.close()


async def eventually(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


def exchange(tmp_path, body, advertise=False, net=None):
    """Start an owner and a requester peer, run ``body(owner, requester)``."""
    net = net or LoopbackNetwork()

    async def main():
        owner = Peer(net, tmp_path / "owner-downloads", advertise=advertise)
        requester = Peer(net, tmp_path / "downloads")
        await owner.start()
        await requester.start()
        try:
            return await body(owner, requester)
        finally:
            await requester.stop()
            await owner.stop()

    return asyncio.run(main())


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestDownloadScenarios:
    def test_shared_file_is_downloaded(self, tmp_path):
        content = b"%PDF-1.7\n" + bytes(range(256)) * 40
        (tmp_path / "report.pdf").write_bytes(content)

        async def body(owner, requester):
            await owner.state.shareables.add(tmp_path / "report.pdf", active=True)
            request = DownloadRequest(peer=owner.address, filename="report.pdf", request_id="id1")
            requester.state.requests.downloads.append(request)
            await eventually(lambda: request.completed)
            return request, owner.state.shareables.find("report.pdf")

        request, shareable = exchange(tmp_path, body)
        assert request.sent and request.accepted and request.completed
        assert (tmp_path / "downloads" / "report.pdf").read_bytes() == content
        assert shareable.downloads == 1

    def test_missing_file_stays_sent(self, tmp_path):
        async def body(owner, requester):
            request = await requester.state.requests.add_download(owner.address, "missing.txt")
            await eventually(lambda: request.sent)
            await asyncio.sleep(0.8)
            return request

        request = exchange(tmp_path, body)
        assert request.sent
        assert not request.accepted
        assert not request.completed
        assert not (tmp_path / "downloads" / "missing.txt").exists()

    def test_payload_without_ack(self, tmp_path):
        async def body(owner, requester):
            request = DownloadRequest(peer=owner.address, filename="early.bin", request_id="id3")
            request.mark_sent()
            requester.state.requests.downloads.append(request)
            async with requester.network.download.lock:
                requester.network.download.inject(
                    encode(Command.GETFILE, "id3", b"payload"), owner.address
                )
            await eventually(lambda: request.completed)
            return request

        request = exchange(tmp_path, body)
        assert request.completed
        assert (tmp_path / "downloads" / "early.bin").read_bytes() == b"payload"

    def test_resend_after_loss(self, tmp_path):
        net = LoopbackNetwork(Impairment(loss_rate=1.0))
        (tmp_path / "a.txt").write_bytes(b"second time lucky")

        async def body(owner, requester):
            await owner.state.shareables.add(tmp_path / "a.txt", active=True)
            request = await requester.state.requests.add_download(owner.address, "a.txt")
            await eventually(lambda: request.sent)
            await asyncio.sleep(0.5)
            assert not request.accepted

            net.impairment = Impairment()
            assert await requester.state.requests.resend(request.request_id, 0) is None
            await eventually(lambda: request.completed)
            return request

        request = exchange(tmp_path, body, net=net)
        assert request.accepted
        assert (tmp_path / "downloads" / "a.txt").read_bytes() == b"second time lucky"


class TestExploreScenarios:
    def test_explore_lists_active_files(self, tmp_path):
        for name in ("x.txt", "y.txt", "z.txt"):
            (tmp_path / name).write_text(name)

        async def body(owner, requester):
            x = await owner.state.shareables.add(tmp_path / "x.txt", active=True)
            y = await owner.state.shareables.add(tmp_path / "y.txt", active=True)
            z = await owner.state.shareables.add(tmp_path / "z.txt")
            request = ExploreRequest(peer=owner.address, request_id="id4")
            requester.state.requests.explores.append(request)
            await eventually(lambda: request.completed)
            return request, (x.advertise, y.advertise, z.advertise)

        request, counters = exchange(tmp_path, body, advertise=True)
        assert request.accepted
        assert request.advertise_files == ["x.txt", "y.txt"]
        assert counters == (1, 1, 0)

    def test_explore_without_advertise_mode(self, tmp_path):
        (tmp_path / "x.txt").write_text("x")

        async def body(owner, requester):
            await owner.state.shareables.add(tmp_path / "x.txt", active=True)
            request = await requester.state.requests.add_explore(owner.address)
            await eventually(lambda: request.sent)
            await asyncio.sleep(0.6)
            return request

        request = exchange(tmp_path, body)
        assert request.sent
        assert not request.accepted
        assert request.advertise_files == []

    def test_explore_then_download_everything(self, tmp_path):
        (tmp_path / "x.txt").write_text("xx")
        (tmp_path / "y.txt").write_text("yy")

        async def body(owner, requester):
            await owner.state.shareables.add(tmp_path / "x.txt", active=True)
            await owner.state.shareables.add(tmp_path / "y.txt", active=True)
            book = requester.state.requests
            explore = await book.add_explore(owner.address)
            await eventually(lambda: explore.completed)
            downloads = [
                await book.add_download(explore.peer, name) for name in explore.advertise_files
            ]
            await eventually(lambda: all(d.completed for d in downloads))

        exchange(tmp_path, body, advertise=True)
        assert (tmp_path / "downloads" / "x.txt").read_text() == "xx"
        assert (tmp_path / "downloads" / "y.txt").read_text() == "yy"
