"""Textual integration tests for pw plan. Drives real UI via app.run_test() + Pilot.

Gated behind --run-textual-integration flag (see conftest.py).

Run commands:
    pytest                                    # fast, skips integration tests
    pytest --run-textual-integration          # full, includes integration tests
    pytest --run-textual-integration -m textual_integration  # integration tests only
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from textual.widgets import Button, Static

from planwright.bridge import LocalChannel
from planwright.config import default_config
from planwright.controller import PanelState
from planwright.mentions import BROWSE_FOLDERS
from planwright.telemetry import InMemoryTelemetrySink, TelemetryReporter
from planwright.tui.app import MessageLog, PlanApp, PlanEditor
from planwright.tui.widgets import MentionMenu, MessagePanel, ModelSelector, StreamingPanel, WaitingPanel

pytestmark = pytest.mark.textual_integration

PATHS = ["/src/", "/src/app.py", "/README.md"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def wait_until(pilot, predicate, *, timeout: float = 2.0, interval: float = 0.05):
    """Poll *predicate* until it returns True or *timeout* expires.

    Calls ``pilot.pause()`` between attempts so Textual processes events.
    """
    elapsed = 0.0
    while elapsed < timeout:
        await pilot.pause(delay=interval)
        if predicate():
            return
        elapsed += interval
    raise TimeoutError(f"Predicate not satisfied after {timeout}s")


async def type_text(pilot, text: str) -> None:
    for char in text:
        await pilot.press("space" if char == " " else char)


class FakeClipboard:
    def __init__(self) -> None:
        self.copied: list[str] = []

    def __call__(self, text: str) -> None:
        self.copied.append(text)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def channel() -> LocalChannel:
    return LocalChannel()


@pytest.fixture()
def sink() -> InMemoryTelemetrySink:
    return InMemoryTelemetrySink()


@pytest.fixture()
def clipboard() -> FakeClipboard:
    return FakeClipboard()


@pytest.fixture()
def app(tmp_path: Path, channel: LocalChannel, sink: InMemoryTelemetrySink, clipboard: FakeClipboard) -> PlanApp:
    return PlanApp(
        base=tmp_path,
        config=default_config(),
        channel=channel,
        paths=PATHS,
        telemetry=TelemetryReporter(sink),
        clipboard=clipboard,
    )


def plan_response(text: str | None, partial: bool) -> dict:
    payload = {"type": "planResponse", "partial": partial}
    if text is not None:
        payload["text"] = text
    return payload


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


class TestLayout:
    async def test_header_and_controls(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)):
            header = app.query_one("#header-bar", Static)
            assert "Start Planning" in str(header.render())
            editor = app.query_one("#plan-editor", PlanEditor)
            assert editor.has_focus
            assert str(editor.placeholder) == "Start writing plan..."
            button = app.query_one("#submit-plan", Button)
            assert str(button.label) == "Submit Plan"
            assert button.disabled

    async def test_typing_enables_submit(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "cache it")
            await wait_until(pilot, lambda: app.controller.draft == "cache it")
            assert app.controller.state is PanelState.COMPOSING
            assert not app.query_one("#submit-plan", Button).disabled


# ---------------------------------------------------------------------------
# Submission and streaming
# ---------------------------------------------------------------------------


class TestSubmission:
    async def test_enter_submits(self, app: PlanApp, channel: LocalChannel) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "plan")
            await wait_until(pilot, lambda: app.controller.draft == "plan")
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.generating)

            assert channel.outbox[-1]["type"] == "generatePlan"
            editor = app.query_one("#plan-editor", PlanEditor)
            assert editor.read_only
            assert editor.text == "plan"
            assert app.query_one("#submit-plan", Button).disabled
            await wait_until(pilot, lambda: len(app.query(WaitingPanel)) == 1)

    async def test_shift_enter_inserts_newline(self, app: PlanApp, channel: LocalChannel) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "a")
            await pilot.press("shift+enter")
            await type_text(pilot, "b")
            await wait_until(pilot, lambda: app.controller.draft == "a\nb")
            assert list(channel.outbox) == []

    async def test_button_submits(self, app: PlanApp, channel: LocalChannel) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "go")
            await wait_until(pilot, lambda: not app.query_one("#submit-plan", Button).disabled)
            await pilot.click("#submit-plan")
            await wait_until(pilot, lambda: app.controller.generating)
            assert [p["type"] for p in channel.outbox] == ["generatePlan"]

    async def test_streamed_response_renders(self, app: PlanApp, channel: LocalChannel) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "go")
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.generating)

            channel.deliver(plan_response("Step 1", partial=True))
            await wait_until(pilot, lambda: len(app.query(StreamingPanel)) == 1)
            await wait_until(pilot, lambda: len(app.query(WaitingPanel)) == 0)

            channel.deliver(plan_response("Step 1\nStep 2", partial=True))
            await wait_until(pilot, lambda: app.query_one(StreamingPanel).content_text == "Step 1\nStep 2")

            channel.deliver(plan_response("Step 1\nStep 2\nStep 3", partial=False))
            await wait_until(pilot, lambda: len(app.query(StreamingPanel)) == 0)
            panels = list(app.query_one("#message-log", MessageLog).query(MessagePanel))
            assert [p.message.role for p in panels] == ["user", "assistant"]
            assert panels[-1].message.text == "Step 1\nStep 2\nStep 3"
            assert not app.query_one("#plan-editor", PlanEditor).read_only

    async def test_clear_history(self, app: PlanApp, channel: LocalChannel, sink) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "go")
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.generating)
            channel.deliver(plan_response("done", partial=False))
            await wait_until(pilot, lambda: len(app.query(MessagePanel)) == 2)

            await pilot.press("ctrl+l")
            await wait_until(pilot, lambda: len(app.query(MessagePanel)) == 0)
            assert app.controller.messages == ()
            assert "history.cleared" in sink.names()

    async def test_copy_latest(self, app: PlanApp, channel: LocalChannel, clipboard: FakeClipboard) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "go")
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.generating)
            channel.deliver(plan_response("the plan", partial=False))
            await wait_until(pilot, lambda: not app.controller.generating)
            await pilot.press("ctrl+y")
            await wait_until(pilot, lambda: clipboard.copied == ["the plan"])

    async def test_copy_with_empty_transcript_is_silent(self, app: PlanApp, clipboard: FakeClipboard) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            with patch.object(app, "notify") as notify:
                await pilot.press("ctrl+y")
                await pilot.pause()
            notify.assert_not_called()
            assert clipboard.copied == []

    async def test_resubmit_blocked_until_cleared_stream_ends(self, app: PlanApp, channel: LocalChannel) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "go")
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.generating)
            channel.deliver(plan_response("old", partial=True))
            await pilot.press("ctrl+l")
            await wait_until(pilot, lambda: app.controller.draining)
            channel.deliver(plan_response("old more", partial=True))
            button = app.query_one("#submit-plan", Button)
            await wait_until(pilot, lambda: button.disabled)
            await pilot.press("enter")
            await pilot.pause()
            assert [p["type"] for p in channel.outbox] == ["generatePlan"]

            channel.deliver(plan_response("old done", partial=False))
            await wait_until(pilot, lambda: not button.disabled)


# ---------------------------------------------------------------------------
# Mentions
# ---------------------------------------------------------------------------


class TestMentionMenu:
    async def test_at_opens_menu(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await pilot.press("@")
            await wait_until(pilot, lambda: app.query_one(MentionMenu).is_open)
            assert app.query_one("#plan-editor", PlanEditor).menu_open

    async def test_filter_and_accept(self, app: PlanApp, channel: LocalChannel) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "see @app")
            await wait_until(pilot, lambda: app.controller.mention.query == "app")
            await pilot.press("enter")
            editor = app.query_one("#plan-editor", PlanEditor)
            await wait_until(pilot, lambda: editor.text == "see @/src/app.py ")
            assert editor.cursor_location == (0, len("see @/src/app.py "))
            assert not app.query_one(MentionMenu).is_open
            # Enter inside the menu does not submit
            assert list(channel.outbox) == []

    async def test_browse_folders(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await pilot.press("@")
            await wait_until(pilot, lambda: app.controller.mention.active)
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.mention.narrowed_kind is not None)
            await pilot.press("enter")
            editor = app.query_one("#plan-editor", PlanEditor)
            await wait_until(pilot, lambda: editor.text == "@/src/ ")

    async def test_escape_keeps_menu_open(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await pilot.press("@")
            await wait_until(pilot, lambda: app.controller.mention.active)
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.mention.narrowed_kind is not None)
            await pilot.press("escape")
            await wait_until(pilot, lambda: app.controller.mention.narrowed_kind is None)
            assert app.query_one(MentionMenu).is_open

    async def test_space_closes_menu(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "@x ")
            await wait_until(pilot, lambda: app.controller.draft == "@x ")
            assert not app.query_one(MentionMenu).is_open

    async def test_escape_with_query_returns_to_browse_entry(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "@s")
            await wait_until(pilot, lambda: app.controller.mention.query == "s")
            await pilot.press("escape")
            editor = app.query_one("#plan-editor", PlanEditor)
            await wait_until(pilot, lambda: editor.text == "@")
            assert app.controller.selected_option == BROWSE_FOLDERS
            assert app.query_one(MentionMenu).is_open


# ---------------------------------------------------------------------------
# Model selector
# ---------------------------------------------------------------------------


class TestModelSelector:
    async def test_choose_model(self, app: PlanApp, channel: LocalChannel, tmp_path: Path) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await pilot.press("ctrl+o")
            selector = app.query_one("#model-selector", ModelSelector)
            await wait_until(pilot, lambda: selector.has_focus)
            await pilot.press("down")
            await pilot.press("enter")
            await wait_until(pilot, lambda: not app.controller.model_selector_open)

            assert app.controller.api_configuration.backend == "codex"
            assert channel.outbox[-1]["type"] == "apiConfiguration"
            assert channel.outbox[-1]["apiConfiguration"]["backend"] == "codex"
            saved = json.loads((tmp_path / ".pw" / "config.json").read_text(encoding="utf-8"))
            assert saved["api"]["backend"] == "codex"
            assert app.query_one("#plan-editor", PlanEditor).has_focus

    async def test_escape_closes_selector(self, app: PlanApp, channel: LocalChannel) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await pilot.press("ctrl+o")
            await wait_until(pilot, lambda: app.controller.model_selector_open)
            await pilot.press("escape")
            await wait_until(pilot, lambda: not app.controller.model_selector_open)
            assert channel.outbox[-1]["apiConfiguration"]["backend"] == "claude_code"

    async def test_selector_disabled_while_generating(self, app: PlanApp) -> None:
        async with app.run_test(size=(100, 40)) as pilot:
            await type_text(pilot, "go")
            await pilot.press("enter")
            await wait_until(pilot, lambda: app.controller.generating)
            await pilot.press("ctrl+o")
            await pilot.pause()
            assert not app.controller.model_selector_open

    async def test_corrupted_config_does_not_crash(self, app: PlanApp, tmp_path: Path) -> None:
        (tmp_path / ".pw").mkdir(exist_ok=True)
        (tmp_path / ".pw" / "config.json").write_text("{not json", encoding="utf-8")
        async with app.run_test(size=(100, 40)) as pilot:
            await pilot.press("ctrl+o")
            selector = app.query_one("#model-selector", ModelSelector)
            await wait_until(pilot, lambda: selector.has_focus)
            await pilot.press("down")
            await pilot.press("enter")
            await wait_until(pilot, lambda: not app.controller.model_selector_open)
            assert app.controller.api_configuration.backend == "codex"
            assert app.is_running
