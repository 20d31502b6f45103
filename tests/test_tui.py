"""
Tests for tui.py: dashboard actions against the shared state, run headless
through Textual's test pilot.
"""

import asyncio

from textual.widgets import DataTable

from mixshare.lifecycle import Network
from mixshare.state import AppState, Tab
from mixshare.transport import LoopbackNetwork, SocketMode
from mixshare.tui import MixshareApp


def make_app(tmp_path):
    net = LoopbackNetwork()
    state = AppState(download_dir=tmp_path / "downloads")
    network = Network(state, lambda role, mode: net.transport(mode))
    return MixshareApp(state, network), state, network


class TestShareTab:
    def test_lists_and_activates_shares(self, tmp_path):
        (tmp_path / "a.txt").write_text("abc")
        app, state, _ = make_app(tmp_path)

        async def scenario():
            shareable = await state.shareables.add(tmp_path / "a.txt")
            async with app.run_test() as pilot:
                await pilot.pause()
                rows = app.query_one("#share-table", DataTable).row_count
                await app.run_action("toggle_active")
                await pilot.pause()
            return rows, shareable.active

        rows, active = asyncio.run(scenario())
        assert rows == 1
        assert active is True

    def test_remove_share(self, tmp_path):
        (tmp_path / "a.txt").write_text("abc")
        app, state, _ = make_app(tmp_path)

        async def scenario():
            await state.shareables.add(tmp_path / "a.txt")
            async with app.run_test() as pilot:
                await pilot.pause()
                await app.run_action("remove_selected")
                await pilot.pause()

        asyncio.run(scenario())
        assert state.shareables.files == []


class TestRequestTabs:
    def test_resend_refused_before_send(self, tmp_path):
        app, state, _ = make_app(tmp_path)

        async def scenario():
            await state.requests.add_download("peer-9", "a.txt")
            async with app.run_test() as pilot:
                await pilot.pause()
                state.active_tab = Tab.DOWNLOAD
                app._refresh()
                await app.run_action("resend_selected")
                return state.visible_message()

        assert asyncio.run(scenario()) == "Cannot resend: Request not yet sent"

    def test_fetch_discovered_files(self, tmp_path):
        app, state, _ = make_app(tmp_path)

        async def scenario():
            explore = await state.requests.add_explore("peer-9")
            explore.mark_accepted()
            explore.advertise_files = ["x.txt", "y.txt"]
            explore.mark_completed()
            async with app.run_test() as pilot:
                await pilot.pause()
                state.active_tab = Tab.EXPLORE
                app._refresh()
                await app.run_action("fetch_discovered")

        asyncio.run(scenario())
        assert [(r.peer, r.filename) for r in state.requests.downloads] == [
            ("peer-9", "x.txt"),
            ("peer-9", "y.txt"),
        ]


class TestToggles:
    def test_advertise_and_socket_mode(self, tmp_path):
        app, state, network = make_app(tmp_path)

        async def scenario():
            await network.initialize_sockets()
            async with app.run_test() as pilot:
                await pilot.pause()
                await app.run_action("toggle_advertise")
                await app.run_action("toggle_socket_mode")
                await pilot.pause()
            await network.close()

        asyncio.run(scenario())
        assert state.advertise_mode is True
        assert state.download_socket_mode is SocketMode.INDIVIDUAL
