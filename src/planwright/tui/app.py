"""PlanApp: main Textual application for pw plan."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, ClassVar

from textual.app import App, ComposeResult
from textual.binding import Binding, BindingType
from textual.containers import Horizontal, VerticalScroll
from textual.message import Message
from textual.widget import Widget
from textual.widgets import Button, OptionList, Static, TextArea

from planwright.bridge import LocalChannel
from planwright.clipboard import copy_to_clipboard
from planwright.config import PlanwrightConfig, load_config, save_api_configuration
from planwright.controller import MENU_KEYS, InteractionController
from planwright.file_index import list_project_paths
from planwright.generation import GenerationHost, PlanGenerator
from planwright.state import telemetry_path
from planwright.telemetry import JsonlTelemetrySink, TelemetryReporter
from planwright.transcript import Message as TranscriptMessage

from .widgets import (
    MentionMenu,
    MessagePanel,
    ModelSelector,
    StatusBar,
    StreamingPanel,
    WaitingPanel,
    diff_span,
    location_to_offset,
    offset_to_location,
)

logger = logging.getLogger(__name__)

INDEX_REFRESH_SECONDS = 30.0


class MessageLog(VerticalScroll):
    """Scrollable transcript.

    New content only scrolls to the bottom while the user is already there.
    """

    DEFAULT_CSS = """
    MessageLog {
        height: 1fr;
    }
    """

    @property
    def is_following(self) -> bool:
        return not self._anchor_released

    def scroll_if_following(self) -> None:
        if self.is_following:
            self.scroll_end(animate=False)


class PlanEditor(TextArea):
    """Plan draft editor.

    Enter submits (posts Submit to the app). Shift+Enter inserts a newline.
    While the mention menu is open, Up/Down/Enter/Tab/Escape are forwarded
    to the app as MenuKey instead of editing the text.
    """

    DEFAULT_CSS = """
    PlanEditor {
        height: auto;
        min-height: 3;
        max-height: 10;
        scrollbar-size-vertical: 0;
    }
    """

    class Submit(Message):
        """Posted when the user presses Enter to send."""

    class MenuKey(Message):
        """A navigation key pressed while the mention menu is open."""

        def __init__(self, key: str) -> None:
            super().__init__()
            self.key = key

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.menu_open = False

    async def handle_key(self, event) -> None:
        if self.menu_open and event.key in MENU_KEYS:
            event.stop()
            event.prevent_default()
            self.post_message(self.MenuKey(event.key))
            return
        if event.key in ("shift+enter", "ctrl+j"):
            event.stop()
            event.prevent_default()
            if not self.read_only:
                self.insert("\n")
            return
        if event.key == "enter":
            event.stop()
            event.prevent_default()
            self.post_message(self.Submit())
            return
        await super()._on_key(event)

    _on_key = handle_key


class PlanApp(App):
    """Plan iteration panel."""

    TITLE = "pw plan"

    CSS = """
    Screen {
        layout: vertical;
    }
    #header-bar {
        height: 1;
        padding: 0 1;
        text-style: bold;
    }
    #editor-label {
        height: 1;
        padding: 0 1;
        color: $text-muted;
    }
    #actions {
        height: auto;
        align-horizontal: right;
    }
    """

    BINDINGS: ClassVar[list[BindingType]] = [
        # Priority: TextArea binds some ctrl keys itself (ctrl+y is redo)
        Binding("ctrl+l", "clear_history", "Clear history", priority=True),
        Binding("ctrl+y", "copy_latest", "Copy latest", priority=True),
        Binding("ctrl+o", "toggle_models", "Model", priority=True),
        ("ctrl+q", "quit", "Quit"),
        ("escape", "close_models", "Close"),
        ("end", "scroll_bottom", "Jump to bottom"),
    ]

    def __init__(
        self,
        base: Path,
        config: PlanwrightConfig | None = None,
        channel: LocalChannel | None = None,
        paths: Sequence[str] | None = None,
        telemetry: TelemetryReporter | None = None,
        clipboard: Callable[[str], None] = copy_to_clipboard,
    ) -> None:
        """Create the app.

        Without *channel*, an in-process generation host answers submissions
        by running the configured agent CLI. Without *paths*, the project is
        indexed in the background and re-indexed periodically.
        """
        super().__init__()
        self.base = base
        self.config = config
        self.channel = channel
        self.initial_paths = paths
        self.telemetry = telemetry
        self.clipboard = clipboard
        self.generator: PlanGenerator | None = None
        self.controller: InteractionController | None = None
        self.rendered: list[TranscriptMessage] = []
        self.panels: list[Widget] = []

    def compose(self) -> ComposeResult:
        if self.config is None:
            self.config = load_config(self.base)
        yield Static("Start Planning", id="header-bar")
        yield MessageLog(id="message-log")
        yield MentionMenu(id="mention-menu")
        yield ModelSelector(self.config.models, id="model-selector")
        yield Static("Plan", id="editor-label")
        yield PlanEditor(id="plan-editor", placeholder="Start writing plan...")
        with Horizontal(id="actions"):
            yield Button("Submit Plan", id="submit-plan", variant="primary", disabled=True)
        yield StatusBar(id="status-bar")

    def on_mount(self) -> None:
        """Wire telemetry, the channel and the controller, then index files."""
        cfg = self.config
        if self.telemetry is None:
            sink = JsonlTelemetrySink(telemetry_path(self.base))
            self.telemetry = TelemetryReporter(sink, enabled=cfg.telemetry.enabled)

        if self.channel is None:
            self.generator = PlanGenerator(cfg.api, timeout=cfg.generation.timeout, cwd=self.base)
            self.channel = LocalChannel()
            self.channel.host = GenerationHost(self.generator, dispatch=self.dispatch_from_worker)

        self.controller = InteractionController(
            self.channel,
            api_configuration=cfg.api,
            paths=self.initial_paths or (),
            telemetry=self.telemetry,
            clipboard=self.clipboard,
            cancel_on_clear=cfg.generation.cancel_on_clear,
        )
        self.controller.add_listener(self.refresh_view)

        log = self.query_one("#message-log", MessageLog)
        log.anchor()

        if self.initial_paths is None:
            self.refresh_index()
            self.set_interval(INDEX_REFRESH_SECONDS, self.refresh_index)

        self.refresh_view()
        self.query_one("#plan-editor", PlanEditor).focus()

    def on_unmount(self) -> None:
        if self.generator is not None:
            self.generator.cancel()
        if self.controller is not None:
            self.controller.close()
        if self.telemetry is not None:
            self.telemetry.dispose()

    def dispatch_from_worker(self, payload: dict[str, Any]) -> None:
        """Deliver a host event on the UI thread. Called from generation workers."""
        if not self.is_running or self.channel is None:
            logger.debug("Dropping %s after shutdown", payload.get("type"))
            return
        self.call_from_thread(self.channel.deliver, payload)

    # -- File index ----------------------------------------------------------

    def refresh_index(self) -> None:
        self.run_worker(self.load_index(), group="index", exclusive=True)

    async def load_index(self) -> None:
        index = self.config.index
        paths = await asyncio.to_thread(list_project_paths, self.base, index.max_entries, index.ignore)
        logger.debug("Indexed %d paths", len(paths))
        if self.controller is not None:
            self.controller.refresh_candidates(paths)

    # -- Rendering -----------------------------------------------------------

    def refresh_view(self) -> None:
        """Re-render every widget from controller state."""
        controller = self.controller
        if controller is None:
            return
        editor = self.query_one("#plan-editor", PlanEditor)
        self.sync_editor(editor)
        editor.read_only = not controller.input_enabled
        editor.menu_open = controller.mention.active

        self.query_one("#submit-plan", Button).disabled = not controller.submit_enabled

        menu = self.query_one("#mention-menu", MentionMenu)
        if controller.mention.active:
            menu.show_options(controller.options, controller.mention.selected_index)
        else:
            menu.hide_menu()

        selector = self.query_one("#model-selector", ModelSelector)
        selector.set_class(controller.model_selector_open, "visible")

        self.sync_transcript()
        self.update_status_bar()

    def sync_editor(self, editor: PlanEditor) -> None:
        """Apply the controller's draft and cursor to the editor."""
        controller = self.controller
        old = editor.text
        if old != controller.draft:
            start, end, replacement = diff_span(old, controller.draft)
            editor.replace(
                replacement,
                offset_to_location(old, start),
                offset_to_location(old, end),
                maintain_selection_offset=False,
            )
        location = offset_to_location(controller.draft, controller.cursor)
        if editor.cursor_location != location:
            editor.cursor_location = location

    def sync_transcript(self) -> None:
        """Mount, update or remove message panels to match the transcript."""
        controller = self.controller
        log = self.query_one("#message-log", MessageLog)
        messages = list(controller.messages)

        keep = 0
        while keep < min(len(messages), len(self.rendered)) and messages[keep] is self.rendered[keep]:
            keep += 1

        # Streaming text updates in place
        if (
            keep == len(self.rendered) - 1
            and keep < len(messages)
            and messages[keep].is_streaming
            and isinstance(self.panels[keep], StreamingPanel)
        ):
            self.panels[keep].update_content(messages[keep].text)
            self.rendered[keep] = messages[keep]
            keep += 1

        for panel in self.panels[keep:]:
            panel.remove()
        del self.panels[keep:]
        del self.rendered[keep:]

        for message in messages[keep:]:
            panel = StreamingPanel(message) if message.is_streaming else MessagePanel(message)
            log.mount(panel)
            self.panels.append(panel)
            self.rendered.append(message)

        waiting = list(self.query(WaitingPanel))
        if controller.generating and (not messages or messages[-1].role == "user"):
            if not waiting:
                log.mount(WaitingPanel())
        else:
            for panel in waiting:
                panel.remove()

        log.scroll_if_following()

    def update_status_bar(self) -> None:
        controller = self.controller
        label = controller.api_configuration.label()
        if controller.generating:
            text = f"Generating with {label}… · Ctrl+L: clear · Ctrl+Q: quit"
        elif controller.draining:
            text = "Finishing the cleared response before the next submit… · Ctrl+Q: quit"
        else:
            text = (
                f"Enter: submit · Shift+Enter: newline · @: mention · Ctrl+O: model ({label}) · "
                "Ctrl+L: clear · Ctrl+Y: copy · Ctrl+Q: quit"
            )
        self.query_one("#status-bar", StatusBar).update(text)

    # -- Editor events -------------------------------------------------------

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        editor = event.text_area
        text = editor.text
        offset = location_to_offset(text, editor.cursor_location)
        if text == self.controller.draft:
            if offset != self.controller.cursor:
                self.controller.move_cursor(offset)
            return
        if not self.controller.set_draft(text, offset):
            # Rejected while generating: put the draft back
            self.refresh_view()

    def on_text_area_selection_changed(self, event: TextArea.SelectionChanged) -> None:
        editor = event.text_area
        if editor.text != self.controller.draft:
            return
        offset = location_to_offset(editor.text, editor.cursor_location)
        if offset != self.controller.cursor:
            self.controller.move_cursor(offset)

    def on_plan_editor_menu_key(self, event: PlanEditor.MenuKey) -> None:
        if not self.controller.handle_key(event.key) and event.key == "enter":
            self.submit_plan()

    def on_plan_editor_submit(self, _: PlanEditor.Submit) -> None:
        self.submit_plan()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "submit-plan":
            self.submit_plan()

    def submit_plan(self) -> None:
        if not self.controller.submit():
            return
        self.query_one("#message-log", MessageLog).scroll_end(animate=False)

    # -- Model selector ------------------------------------------------------

    def action_toggle_models(self) -> None:
        if self.controller.model_selector_open:
            self.action_close_models()
            return
        if not self.controller.open_model_selector():
            return
        selector = self.query_one("#model-selector", ModelSelector)
        selector.highlighted = selector.index_of(self.controller.api_configuration)
        selector.focus()

    def action_close_models(self) -> None:
        if self.controller.close_model_selector():
            self.query_one("#plan-editor", PlanEditor).focus()

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        selector = self.query_one("#model-selector", ModelSelector)
        api = selector.model_at(event.option_index)
        if api is None or not self.controller.choose_model(api):
            return
        self.action_close_models()
        try:
            save_api_configuration(self.base, api)
        except (OSError, ValueError):
            logger.warning("Could not persist model choice", exc_info=True)
            self.notify("Could not save model choice", severity="warning")

    # -- Other actions -------------------------------------------------------

    def action_clear_history(self) -> None:
        self.controller.clear_history()

    def action_copy_latest(self) -> None:
        if self.controller.copy_latest():
            self.notify("Copied latest message")

    def action_scroll_bottom(self) -> None:
        log = self.query_one("#message-log", MessageLog)
        log.scroll_end(animate=False)
        log.anchor()
