"""Textual front end rendering the sync engine's state."""

from typing import List, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.widgets import DataTable, Footer, Label, ListItem, ListView, Static

from termail.core.models.message import CachedLabel, CachedMessage, WellKnownLabel
from termail.core.sync.engine import SyncEngine
from termail.core.sync.poller import RefreshPoller
from termail.core.sync.state import StateSnapshot
from termail.tui.compose import ComposeScreen, reply_draft
from termail.utils.logging import get_logger

logger = get_logger(__name__)

RENDER_INTERVAL = 0.25

HELP_TEXT = (
    "j/k or arrows: move  o/enter: open  a: archive  d: delete  "
    "c: compose  r: reply  f: refresh  ?: help  q: quit"
)


def _format_row(message: CachedMessage) -> tuple:
    marker = "*" if message.is_unread else " "
    star = "+" if message.is_starred else " "
    when = message.internal_at.astimezone().strftime("%Y-%m-%d %H:%M")
    return (f"{marker}{star}", when, message.from_addr, message.subject or "(no subject)")


class MessageTable(DataTable):
    """Message list whose cursor follows the engine's selection.

    Cursor keys are turned into :class:`MessageTable.Move` requests instead of
    moving the table cursor directly; the app moves the selection in the
    engine and the next render puts the cursor on it.
    """

    class Move(Message):
        def __init__(self, step: int) -> None:
            super().__init__()
            self.step = step

    def _page(self) -> int:
        return max(self.scrollable_content_region.height - 1, 1)

    def action_cursor_down(self) -> None:
        self.post_message(self.Move(1))

    def action_cursor_up(self) -> None:
        self.post_message(self.Move(-1))

    def action_page_down(self) -> None:
        self.post_message(self.Move(self._page()))

    def action_page_up(self) -> None:
        self.post_message(self.Move(-self._page()))

    def action_scroll_top(self) -> None:
        self.post_message(self.Move(-self.row_count))

    def action_scroll_bottom(self) -> None:
        self.post_message(self.Move(self.row_count))


class TermailApp(App):
    """Label list, message list, reader pane and a one-line status bar."""

    TITLE = "termail"

    CSS = """
    #labels { width: 24; border-right: solid $primary; }
    #messages { height: 2fr; }
    #reader { height: 1fr; border-top: solid $primary; overflow-y: auto; }
    #status { height: 1; background: $boost; }
    #help { height: auto; display: none; background: $panel; }
    #help.visible { display: block; }
    """

    BINDINGS = [
        Binding("j", "next", "Next", show=False),
        Binding("k", "previous", "Previous", show=False),
        Binding("o", "open", "Open"),
        Binding("a", "archive", "Archive"),
        Binding("d", "delete", "Delete"),
        Binding("c", "compose", "Compose"),
        Binding("r", "reply", "Reply"),
        Binding("f", "refresh", "Refresh"),
        Binding("question_mark", "toggle_help", "Help"),
        Binding("q,ctrl+q", "quit", "Quit"),
    ]

    # Disabled while the compose screen is up
    MAILBOX_ACTIONS = frozenset(
        {
            "next",
            "previous",
            "open",
            "archive",
            "delete",
            "compose",
            "reply",
            "refresh",
            "toggle_help",
        }
    )

    def __init__(self, engine: SyncEngine, poller: Optional[RefreshPoller] = None):
        super().__init__()
        self.engine = engine
        self.poller = poller
        self._label_ids: List[str] = []
        self._rendered: Optional[StateSnapshot] = None

    def check_action(self, action: str, parameters: tuple) -> Optional[bool]:
        if action in self.MAILBOX_ACTIONS and isinstance(self.screen, ComposeScreen):
            return False
        return True

    def compose(self) -> ComposeResult:
        yield Horizontal(
            ListView(id="labels"),
            Vertical(
                MessageTable(id="messages", cursor_type="row", zebra_stripes=True),
                Static(id="reader"),
            ),
        )
        yield Static(HELP_TEXT, id="help")
        yield Static(id="status")
        yield Footer()

    async def on_mount(self) -> None:
        table = self.query_one("#messages", DataTable)
        table.add_columns("", "Date", "From", "Subject")

        self.engine.resize(self.size.height)
        await self.engine.store.initialise()
        labels = await self.engine.load_labels()
        await self._render_labels(labels)
        await self.engine.select_label(WellKnownLabel.INBOX.value)

        if self.poller is not None:
            self.poller.start()
        self.set_interval(RENDER_INTERVAL, self.render_state)
        table.focus()

    async def on_unmount(self) -> None:
        if self.poller is not None:
            self.poller.stop()
        await self.engine.shutdown()
        await self.engine.store.close()

    async def on_resize(self, event: events.Resize) -> None:
        await self.engine.apply_resize(event.size.height)

    ## Rendering

    async def _render_labels(self, labels: List[CachedLabel]) -> None:
        ids = [label.id for label in labels]
        if ids == self._label_ids:
            return

        self._label_ids = ids
        label_list = self.query_one("#labels", ListView)
        await label_list.clear()
        for label in labels:
            await label_list.append(ListItem(Label(label.name)))

    async def render_state(self) -> None:
        # Queries only reach the active screen; redraw once compose is closed
        if isinstance(self.screen, ComposeScreen):
            return

        snapshot = await self.engine.state.snapshot()
        if snapshot == self._rendered:
            return
        self._rendered = snapshot

        await self._render_labels(list(snapshot.labels))

        status = snapshot.status or ""
        pending = len(self.engine.mutator.pending())
        if pending:
            status = f"{status}  [{pending} unconfirmed]".strip()
        self.query_one("#status", Static).update(status)

        table = self.query_one("#messages", DataTable)
        table.clear()
        view = snapshot.view
        if view is None:
            return

        for message in view.messages:
            table.add_row(*_format_row(message), key=message.id)
        if view.selected is not None:
            table.move_cursor(row=view.selected)

    async def _show_selected(self) -> None:
        view = await self.engine.state.view()
        message = view.selected_message if view else None
        reader = self.query_one("#reader", Static)
        if message is None:
            reader.update("")
            return

        full = await self.engine.open_message(message.id)
        if full is None:
            return
        reader.update(
            f"From: {full.from_addr}\nTo: {full.to_addr}\nDate: {full.raw_date}\n"
            f"Subject: {full.subject}\n\n{full.body_text or full.body_html or full.snippet}"
        )

    ## Actions

    async def on_list_view_selected(self, event: ListView.Selected) -> None:
        index = event.list_view.index
        if index is None or index >= len(self._label_ids):
            return
        await self.engine.select_label(self._label_ids[index])
        self.query_one("#reader", Static).update("")

    async def action_next(self) -> None:
        await self.engine.state.clear_status()
        await self.engine.move_selection(1)

    async def action_previous(self) -> None:
        await self.engine.state.clear_status()
        await self.engine.move_selection(-1)

    async def action_open(self) -> None:
        await self.engine.state.clear_status()
        await self._show_selected()

    async def on_message_table_move(self, event: MessageTable.Move) -> None:
        await self.engine.state.clear_status()
        await self.engine.move_selection(event.step)
        await self.render_state()

    async def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Enter or a click opens the row it was on."""
        await self.engine.state.clear_status()
        if event.row_key.value is not None:
            await self.engine.select_message(event.row_key.value)
        await self._show_selected()

    async def _selected_id(self) -> Optional[str]:
        view = await self.engine.state.view()
        return view.selected_id if view else None

    async def action_archive(self) -> None:
        await self.engine.state.clear_status()
        message_id = await self._selected_id()
        if message_id:
            await self.engine.archive(message_id)

    async def action_delete(self) -> None:
        await self.engine.state.clear_status()
        message_id = await self._selected_id()
        if message_id:
            await self.engine.delete(message_id)

    async def action_refresh(self) -> None:
        await self.engine.state.clear_status()
        label_id = await self.engine.state.current_label()
        if label_id:
            self.engine.spawn_refresh(label_id)

    def action_compose(self) -> None:
        self.push_screen(ComposeScreen(self.engine))

    async def action_reply(self) -> None:
        await self.engine.state.clear_status()
        message_id = await self._selected_id()
        if not message_id:
            return

        full = await self.engine.open_message(message_id)
        if full is None:
            return
        self.push_screen(ComposeScreen(self.engine, reply_draft(full)))

    def action_toggle_help(self) -> None:
        self.query_one("#help", Static).toggle_class("visible")
