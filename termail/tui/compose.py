"""Compose and reply screen."""

from dataclasses import dataclass
from typing import Optional

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Static, TextArea

from termail.core.models.message import CachedMessage
from termail.core.sync.engine import SyncEngine


@dataclass(frozen=True)
class Draft:
    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    body: str = ""


def reply_draft(message: CachedMessage) -> Draft:
    """Pre-fill a reply: sender as recipient, original recipients on Cc,
    ``Re:`` subject and the original body quoted below two blank lines."""
    subject = message.subject or ""
    if not subject.lower().startswith("re:"):
        subject = f"Re: {subject}".rstrip()

    original = message.body_text or message.snippet or ""
    quoted = "".join(f"> {line}\n" for line in original.splitlines())

    return Draft(
        to=message.from_addr,
        cc=message.to_addr,
        subject=subject,
        body=f"\n\n{quoted}" if quoted else "",
    )


class ComposeScreen(ModalScreen[bool]):
    """Modal message editor; dismisses with True once the message is sent.

    A failed send keeps the screen open with the engine's status shown, so
    the draft is not lost.
    """

    DEFAULT_CSS = """
    ComposeScreen { align: center middle; }
    #compose { width: 90%; height: 90%; border: thick $primary; padding: 0 1; }
    #compose-body { height: 1fr; }
    #compose-error { height: 1; color: $error; }
    #compose-actions { height: 3; }
    """

    BINDINGS = [
        Binding("ctrl+s", "send", "Send"),
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, engine: SyncEngine, draft: Optional[Draft] = None):
        super().__init__()
        self.engine = engine
        self.draft = draft or Draft()

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Reply" if self.draft.to else "New message", classes="title"),
            Input(self.draft.to, placeholder="To", id="compose-to"),
            Input(self.draft.cc, placeholder="Cc", id="compose-cc"),
            Input(self.draft.bcc, placeholder="Bcc", id="compose-bcc"),
            Input(self.draft.subject, placeholder="Subject", id="compose-subject"),
            TextArea(self.draft.body, id="compose-body"),
            Static(id="compose-error"),
            Horizontal(
                Button("Send", variant="primary", id="compose-send"),
                Button("Cancel", id="compose-cancel"),
                id="compose-actions",
            ),
            id="compose",
        )

    def on_mount(self) -> None:
        # Replies start in the body, new messages at the recipient
        if self.draft.to:
            body = self.query_one("#compose-body", TextArea)
            body.focus()
            body.move_cursor((0, 0))
        else:
            self.query_one("#compose-to", Input).focus()

    def _value(self, field_id: str) -> str:
        return self.query_one(f"#{field_id}", Input).value.strip()

    async def action_send(self) -> None:
        error = self.query_one("#compose-error", Static)
        to = self._value("compose-to")
        if not to:
            error.update("A recipient is required")
            self.query_one("#compose-to", Input).focus()
            return

        error.update("Sending...")
        sent = await self.engine.send(
            to,
            self._value("compose-subject"),
            self.query_one("#compose-body", TextArea).text,
            cc=self._value("compose-cc") or None,
            bcc=self._value("compose-bcc") or None,
        )
        if sent:
            self.dismiss(True)
        else:
            error.update(await self.engine.state.status() or "Failed to send message")

    def action_cancel(self) -> None:
        self.dismiss(False)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "compose-send":
            await self.action_send()
        else:
            self.action_cancel()
