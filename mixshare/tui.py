"""
mixshare TUI: a terminal dashboard over the shared application state.

Built with Textual.  The dashboard runs on the same event loop as the two
protocol loops; it only reads the request records and shareable registry,
creates new records, and resets records for a manual resend.
"""

from __future__ import annotations

from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Vertical
from textual.screen import ModalScreen
from textual.widgets import (
    Button,
    DataTable,
    Footer,
    Header,
    Input,
    Label,
    Static,
    TabbedContent,
    TabPane,
)

from .config import (
    DOWNLOAD_RESEND_COOLDOWN,
    EXPLORE_RESEND_COOLDOWN,
    POPUP_DURATION,
    VERSION,
)
from .helpers import format_size, time_ago
from .lifecycle import Network
from .records import DownloadRequest, ExploreRequest
from .shareable import InvalidShareableFile
from .state import AppState, Tab
from .transport import SocketMode, parse_address


# ==============================================================================
# Help Modal
# ==============================================================================


class HelpScreen(ModalScreen):
    """Full help overlay."""

    BINDINGS = [Binding("escape", "dismiss", "Close")]

    def compose(self) -> ComposeResult:
        with Container(id="help-dialog"):
            yield Label("MIXSHARE  -  Help", id="help-title")
            yield Static(
                "[bold]Share[/]     type a file path and press Enter to offer it.\n"
                "          New files are inactive until you press [b]a[/].\n"
                "[bold]Download[/]  type [i]host:port filename[/] and press Enter.\n"
                "[bold]Explore[/]   type [i]host:port[/] to ask a peer for its files,\n"
                "          then [b]g[/] fetches every discovered file.\n"
                "\n"
                "  [b]a[/]   activate / deactivate the selected shared file\n"
                "  [b]x[/]   remove the selected row\n"
                "  [b]r[/]   resend the selected request (after a cooldown)\n"
                "  [b]v[/]   toggle advertise mode\n"
                "  [b]m[/]   switch the download socket between anonymous\n"
                "      and individual mode\n"
                "  [b]q[/]   quit\n",
                id="help-content",
            )
            yield Button("Close  (Esc)", id="help-close-btn")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "help-close-btn":
            self.dismiss()


# ==============================================================================
# Main TUI App
# ==============================================================================


class MixshareApp(App):
    """mixshare: file exchange dashboard."""

    TITLE = "MIXSHARE"
    SUB_TITLE = f"P2P file exchange v{VERSION}"
    ENABLE_COMMAND_PALETTE = False

    CSS = """
    #info-bar {
        height: 1;
        padding: 0 1;
        background: $boost;
    }
    #status-line {
        height: 1;
        padding: 0 1;
        color: $warning;
    }
    DataTable {
        height: 1fr;
    }
    #help-dialog {
        width: 64;
        height: auto;
        padding: 1 2;
        border: thick $primary;
        background: $surface;
    }
    HelpScreen {
        align: center middle;
    }
    """

    BINDINGS = [
        Binding("f1", "show_help", "Help", show=True),
        Binding("a", "toggle_active", "Activate", show=True),
        Binding("x", "remove_selected", "Remove", show=True),
        Binding("r", "resend_selected", "Resend", show=True),
        Binding("g", "fetch_discovered", "Fetch all", show=True),
        Binding("v", "toggle_advertise", "Advertise", show=True),
        Binding("m", "toggle_socket_mode", "Socket mode", show=True),
        Binding("q", "quit_app", "Quit", show=True),
    ]

    def __init__(self, state: AppState, network: Network):
        super().__init__()
        self.state = state
        self.network = network
        self._shown_popup: float | None = None

    # --------------------------------------------------------------------------
    # Layout
    # --------------------------------------------------------------------------

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="info-bar")

        with TabbedContent(initial=Tab.SHARE.value):
            with TabPane("Share", id=Tab.SHARE.value):
                with Vertical():
                    yield Input(placeholder="Path of a file to share...", id="share-input")
                    yield DataTable(id="share-table")
            with TabPane("Download", id=Tab.DOWNLOAD.value):
                with Vertical():
                    yield Input(placeholder="host:port filename", id="download-input")
                    yield DataTable(id="download-table")
            with TabPane("Explore", id=Tab.EXPLORE.value):
                with Vertical():
                    yield Input(placeholder="host:port of the peer to explore", id="explore-input")
                    yield DataTable(id="explore-table")

        yield Static("", id="status-line")
        yield Footer()

    def on_mount(self) -> None:
        self._setup_table("share-table", "File", "Size", "Active", "Advertised", "Downloads")
        self._setup_table("download-table", "File", "Peer", "Status", "Sent")
        self._setup_table("explore-table", "Peer", "Status", "Sent", "Files")
        self.set_interval(0.5, self._refresh)
        self._refresh()

    def _setup_table(self, table_id: str, *columns: str) -> None:
        table = self.query_one(f"#{table_id}", DataTable)
        table.add_columns(*columns)
        table.cursor_type = "row"
        table.zebra_stripes = True

    # --------------------------------------------------------------------------
    # Periodic refresh
    # --------------------------------------------------------------------------

    def _refresh(self) -> None:
        state = self.state
        advertise = "on" if state.advertise_mode else "off"
        self.query_one("#info-bar", Static).update(
            f"Serving address: [b]{state.serving_addr or '-'}[/]   "
            f"Download socket: {state.download_socket_mode.value}   "
            f"Advertise: {advertise}   "
            f"Downloads to: {state.download_dir}"
        )

        self._fill(
            "share-table",
            (
                (f.name, f.name, format_size(f.size() or 0), "yes" if f.active else "no",
                 str(f.advertise), str(f.downloads))
                for f in state.shareables.files
            ),
        )
        self._fill(
            "download-table",
            (
                (r.request_id, r.filename, r.peer, r.status, _sent_label(r))
                for r in state.requests.downloads
            ),
        )
        self._fill(
            "explore-table",
            (
                (r.request_id, r.peer, r.status, _sent_label(r),
                 ", ".join(r.advertise_files) if r.completed else "")
                for r in state.requests.explores
            ),
        )

        self.query_one("#status-line", Static).update(state.visible_message() or "")

        popup = state.popups[state.active_tab]
        if popup.is_visible() and popup.expires_at != self._shown_popup:
            self._shown_popup = popup.expires_at
            self.notify(popup.text, timeout=POPUP_DURATION)

    def _fill(self, table_id: str, rows) -> None:
        table = self.query_one(f"#{table_id}", DataTable)
        cursor = table.cursor_row
        table.clear()
        for key, *cells in rows:
            table.add_row(*cells, key=key)
        if table.row_count:
            table.move_cursor(row=min(cursor, table.row_count - 1))

    def _selected_key(self, table_id: str) -> str | None:
        table = self.query_one(f"#{table_id}", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return row_key.value

    # --------------------------------------------------------------------------
    # Tabs and input
    # --------------------------------------------------------------------------

    def on_tabbed_content_tab_activated(self, event: TabbedContent.TabActivated) -> None:
        active = self.query_one(TabbedContent).active
        if active:
            self.state.active_tab = Tab(active)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        raw = event.value.strip()
        event.input.value = ""
        if not raw:
            return

        if event.input.id == "share-input":
            await self._add_shareable(raw)
        elif event.input.id == "download-input":
            await self._add_download(raw)
        elif event.input.id == "explore-input":
            await self._add_explore(raw)
        self._refresh()

    async def _add_shareable(self, raw: str) -> None:
        try:
            shareable = await self.state.shareables.add(Path(raw).expanduser())
        except InvalidShareableFile as e:
            self.state.set_popup_message(str(e))
            return
        self.state.set_message(f"Added {shareable.name} (inactive, press a to share)")

    async def _add_download(self, raw: str) -> None:
        tokens = raw.split(maxsplit=1)
        if len(tokens) < 2:
            self.state.set_popup_message("Usage: host:port filename")
            return
        address, filename = tokens
        try:
            parse_address(address)
        except ValueError as e:
            self.state.set_popup_message(str(e))
            return
        await self.state.requests.add_download(address, filename)
        self.state.set_message(f"Queued download of '{filename}' from {address}")

    async def _add_explore(self, raw: str) -> None:
        try:
            parse_address(raw)
        except ValueError as e:
            self.state.set_popup_message(str(e))
            return
        await self.state.requests.add_explore(raw)
        self.state.set_message(f"Queued explore request to {raw}")

    # --------------------------------------------------------------------------
    # Actions
    # --------------------------------------------------------------------------

    def action_show_help(self) -> None:
        self.push_screen(HelpScreen())

    async def action_toggle_active(self) -> None:
        if self.state.active_tab is not Tab.SHARE:
            return
        name = self._selected_key("share-table")
        if name is None:
            return
        shareable = self.state.shareables.find(name, active_only=False)
        if shareable is None:
            return
        await self.state.shareables.set_active(name, not shareable.active)
        verb = "Sharing" if shareable.active else "Stopped sharing"
        self.state.set_message(f"{verb} {name}")
        self._refresh()

    async def action_remove_selected(self) -> None:
        tab = self.state.active_tab
        if tab is Tab.SHARE:
            name = self._selected_key("share-table")
            if name and await self.state.shareables.remove(name):
                self.state.set_message(f"Removed {name}")
        else:
            table_id = "download-table" if tab is Tab.DOWNLOAD else "explore-table"
            request_id = self._selected_key(table_id)
            if request_id and await self.state.requests.remove(request_id):
                self.state.set_message("Request removed")
        self._refresh()

    async def action_resend_selected(self) -> None:
        tab = self.state.active_tab
        if tab is Tab.DOWNLOAD:
            request_id = self._selected_key("download-table")
            cooldown = DOWNLOAD_RESEND_COOLDOWN
        elif tab is Tab.EXPLORE:
            request_id = self._selected_key("explore-table")
            cooldown = EXPLORE_RESEND_COOLDOWN
        else:
            return
        if request_id is None:
            return
        reason = await self.state.requests.resend(request_id, cooldown)
        if reason:
            self.state.set_message(f"Cannot resend: {reason}")
        else:
            self.state.set_message("Request queued for resend")
        self._refresh()

    async def action_fetch_discovered(self) -> None:
        if self.state.active_tab is not Tab.EXPLORE:
            return
        request_id = self._selected_key("explore-table")
        if request_id is None:
            return
        explore = self.state.requests.find_explore(request_id)
        if explore is None or not explore.completed:
            self.state.set_message("Nothing discovered yet")
            return
        for filename in explore.advertise_files:
            await self.state.requests.add_download(explore.peer, filename)
        self.state.set_message(
            f"Queued {len(explore.advertise_files)} downloads from {explore.peer}"
        )

    def action_toggle_advertise(self) -> None:
        self.state.advertise_mode = not self.state.advertise_mode
        mode = "enabled" if self.state.advertise_mode else "disabled"
        self.state.set_message(f"Advertise mode {mode}")
        self._refresh()

    async def action_toggle_socket_mode(self) -> None:
        if self.state.download_socket_mode is SocketMode.ANONYMOUS:
            mode = SocketMode.INDIVIDUAL
        else:
            mode = SocketMode.ANONYMOUS
        try:
            await self.network.reinitialize_download(mode)
        except OSError as e:
            self.state.set_popup_message(f"Could not switch socket mode: {e}")
            return
        self.state.set_message(f"Switched to {mode.value} mode")
        self._refresh()

    def action_quit_app(self) -> None:
        self.exit()


def _sent_label(request: DownloadRequest | ExploreRequest) -> str:
    if request.sent_time is None:
        return "-"
    return time_ago(request.sent_time)


async def run_tui(state: AppState, network: Network) -> None:
    """Run the dashboard until the user quits."""
    await MixshareApp(state, network).run_async()
