"""
Tests for the Textual front end, driven through the app pilot

Tests cover:
- Startup rendering of labels and the inbox
- Cursor keys, archive and open acting on the highlighted row
- Compose and reply screens
- Help panel toggle
"""
from textual.widgets import DataTable, Input, ListView, Static, TextArea

from helpers import make_message
from termail.core.sync.engine import SyncEngine
from termail.tui.app import TermailApp
from termail.tui.compose import ComposeScreen, reply_draft
from termail.utils.errors import RemoteServiceError


async def _settle(app, engine, pilot):
    await pilot.pause()
    await engine.drain()
    await app.render_state()
    await pilot.pause()


def _inbox(fake_client, count):
    for i in range(count):
        message = make_message(f"m{i}", minutes=i)
        fake_client.messages[message.id] = message


class TestTermailApp:
    """Tests for TermailApp"""

    async def test_startup_shows_labels_and_inbox(self, store, fake_client):
        """Test the inbox and label list are rendered on startup"""
        _inbox(fake_client, 3)
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            assert app.query_one("#messages", DataTable).row_count == 3
            assert len(app.query_one("#labels", ListView)) == 5

        assert fake_client.closed is True

    async def test_archive_key_removes_row(self, store, fake_client):
        """Test 'a' archives the selected message"""
        _inbox(fake_client, 2)
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("a")
            await _settle(app, engine, pilot)

            assert app.query_one("#messages", DataTable).row_count == 1
            assert fake_client.modify_calls == [("m1", (), ("INBOX",))]
            assert await engine.state.status() == "Message archived"

    async def test_open_key_fetches_body(self, store, fake_client):
        """Test 'o' fetches and shows the full body"""
        fake_client.messages["m0"] = make_message("m0")
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)
            fake_client.messages["m0"] = make_message("m0", body_text="Full body text")

            await pilot.press("o")
            await pilot.pause()
            await pilot.pause()

            assert fake_client.full_calls == ["m0"]
            assert "Full body text" in str(app.query_one("#reader", Static).render())


class TestCursorFollowsSelection:
    """Tests keeping the table cursor and the engine selection on one message"""

    async def test_down_then_archive_targets_highlighted_row(self, store, fake_client):
        """Test archiving after an arrow key acts on the row under the cursor"""
        _inbox(fake_client, 3)
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("down")
            await _settle(app, engine, pilot)

            table = app.query_one("#messages", DataTable)
            view = await engine.state.view()
            assert table.cursor_row == 1
            assert view.selected_id == "m1"

            await pilot.press("a")
            await _settle(app, engine, pilot)

            assert fake_client.modify_calls == [("m1", (), ("INBOX",))]

    async def test_up_at_top_stays_on_first_row(self, store, fake_client):
        """Test moving up from the first row keeps the selection there"""
        _inbox(fake_client, 2)
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("up")
            await _settle(app, engine, pilot)

            assert (await engine.state.view()).selected_id == "m1"
            assert app.query_one("#messages", DataTable).cursor_row == 0

    async def test_enter_opens_highlighted_row(self, store, fake_client):
        """Test Enter opens the row under the cursor"""
        _inbox(fake_client, 3)
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("down", "enter")
            await _settle(app, engine, pilot)

            assert fake_client.full_calls == ["m1"]
            assert "Subject m1" in str(app.query_one("#reader", Static).render())


class TestCompose:
    """Tests for composing and replying"""

    async def test_compose_and_send(self, store, fake_client):
        """Test a new message is sent from the compose screen"""
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("c")
            await pilot.pause()
            assert isinstance(app.screen, ComposeScreen)

            app.screen.query_one("#compose-to", Input).value = "carol@example.com"
            app.screen.query_one("#compose-subject", Input).value = "Lunch"
            app.screen.query_one("#compose-body", TextArea).load_text("Noon?")
            await pilot.press("ctrl+s")
            await _settle(app, engine, pilot)

            assert fake_client.sent == [
                {
                    "to": "carol@example.com",
                    "subject": "Lunch",
                    "body": "Noon?",
                    "cc": None,
                    "bcc": None,
                }
            ]
            assert not isinstance(app.screen, ComposeScreen)
            assert await engine.state.status() == "Message sent"

    async def test_send_without_recipient_keeps_draft(self, store, fake_client):
        """Test sending with an empty To field stays on the compose screen"""
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("c")
            await pilot.pause()
            await pilot.press("ctrl+s")
            await pilot.pause()

            assert fake_client.sent == []
            assert isinstance(app.screen, ComposeScreen)
            error = app.screen.query_one("#compose-error", Static)
            assert "recipient" in str(error.render())

    async def test_failed_send_keeps_draft(self, store, fake_client):
        """Test a failed send leaves the draft open with the error shown"""
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)
            fake_client.fail_with = RemoteServiceError("Gmail API returned 500")

            await pilot.press("c")
            await pilot.pause()
            app.screen.query_one("#compose-to", Input).value = "carol@example.com"
            app.screen.query_one("#compose-body", TextArea).load_text("Draft text")
            await pilot.press("ctrl+s")
            await pilot.pause()

            assert isinstance(app.screen, ComposeScreen)
            assert app.screen.query_one("#compose-body", TextArea).text == "Draft text"
            error = app.screen.query_one("#compose-error", Static)
            assert "Gmail API returned 500" in str(error.render())
            fake_client.fail_with = None

    async def test_escape_cancels(self, store, fake_client):
        """Test escape closes the compose screen without sending"""
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("c")
            await pilot.pause()
            await pilot.press("escape")
            await pilot.pause()

            assert not isinstance(app.screen, ComposeScreen)
            assert fake_client.sent == []

    async def test_mailbox_keys_disabled_while_composing(self, store, fake_client):
        """Test mailbox keys and redraws pause while composing"""
        _inbox(fake_client, 1)
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("c")
            await pilot.pause()

            assert app.check_action("archive", ()) is False
            assert app.check_action("quit", ()) is True

            await app.render_state()
            assert isinstance(app.screen, ComposeScreen)

    async def test_reply_prefills_from_selected_message(self, store, fake_client):
        """Test 'r' opens a reply addressed to the sender with the body quoted"""
        message = make_message("m0", body_text="line one\nline two")
        fake_client.messages[message.id] = message
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)

            await pilot.press("r")
            await pilot.pause()
            await pilot.pause()

            assert isinstance(app.screen, ComposeScreen)
            screen = app.screen
            assert screen.query_one("#compose-to", Input).value == message.from_addr
            assert screen.query_one("#compose-cc", Input).value == message.to_addr
            assert screen.query_one("#compose-subject", Input).value == "Re: Subject m0"
            body = screen.query_one("#compose-body", TextArea).text
            assert body == "\n\n> line one\n> line two\n"


class TestReplyDraft:
    """Tests for reply pre-filling"""

    def test_subject_prefixed_once(self):
        """Test an existing Re: prefix is not doubled"""
        message = make_message("m0", subject="RE: Budget")

        assert reply_draft(message).subject == "RE: Budget"

    def test_snippet_quoted_without_body(self):
        """Test the snippet is quoted when no body is cached"""
        message = make_message("m0", body_text=None, snippet="short text")

        assert reply_draft(message).body == "\n\n> short text\n"

    def test_empty_original(self):
        """Test a message with nothing to quote gives an empty body"""
        message = make_message("m0", body_text="", snippet="", subject="")

        draft = reply_draft(message)

        assert draft.body == ""
        assert draft.subject == "Re:"


class TestHelp:
    """Tests for the help panel"""

    async def test_question_mark_toggles_help(self, store, fake_client):
        """Test '?' shows and hides the key summary"""
        engine = SyncEngine(store, fake_client)
        app = TermailApp(engine)

        async with app.run_test() as pilot:
            await _settle(app, engine, pilot)
            help_panel = app.query_one("#help", Static)

            await pilot.press("question_mark")
            assert help_panel.has_class("visible")

            await pilot.press("question_mark")
            assert not help_panel.has_class("visible")
