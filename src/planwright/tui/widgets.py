"""Widgets for the plan panel.

MessagePanel: finalized transcript message, rendered as Markdown.
StreamingPanel: the assistant response while it streams in.
WaitingPanel: placeholder between submit and the first streamed text.
MentionMenu: @mention candidates shown above the editor.
ModelSelector: popover listing the selectable generation models.
"""

from __future__ import annotations

from datetime import datetime

from rich.markdown import Markdown as RichMarkdown
from textual.widgets import OptionList, Static
from textual.widgets.option_list import Option

from planwright.config import ApiConfiguration
from planwright.mentions import MentionCandidate, MentionKind
from planwright.transcript import Message

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def location_to_offset(text: str, location: tuple[int, int]) -> int:
    """Convert a TextArea ``(row, column)`` location to a flat offset."""
    row, col = location
    lines = text.split("\n")
    row = max(0, min(row, len(lines) - 1))
    col = max(0, min(col, len(lines[row])))
    return sum(len(line) + 1 for line in lines[:row]) + col


def offset_to_location(text: str, offset: int) -> tuple[int, int]:
    """Convert a flat offset to a TextArea ``(row, column)`` location."""
    offset = max(0, min(offset, len(text)))
    before = text[:offset]
    row = before.count("\n")
    col = offset - (before.rfind("\n") + 1)
    return row, col


def diff_span(old: str, new: str) -> tuple[int, int, str]:
    """Smallest single edit turning *old* into *new*.

    Returns ``(start, end, replacement)``: replace ``old[start:end]`` with
    ``replacement``.
    """
    start = 0
    limit = min(len(old), len(new))
    while start < limit and old[start] == new[start]:
        start += 1
    old_end, new_end = len(old), len(new)
    while old_end > start and new_end > start and old[old_end - 1] == new[new_end - 1]:
        old_end -= 1
        new_end -= 1
    return start, old_end, new[start:new_end]


def format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M")


def format_option(candidate: MentionCandidate, selected: bool) -> str:
    """One mention-menu line: marker, kind tag, label."""
    marker = "▸" if selected else " "
    if candidate.kind is MentionKind.NO_RESULTS:
        return f"  [dim]{candidate.label()}[/dim]"
    tag = {
        MentionKind.PROBLEM: "problems",
        MentionKind.FILE: "file",
        MentionKind.FOLDER: "folder",
    }[candidate.kind]
    label = candidate.label()
    if candidate.is_browse:
        label = f"{label} …"
    style = "bold" if selected else ""
    body = f"[{style}]{label}[/{style}]" if style else label
    return f"{marker} [dim]{tag:8s}[/dim] {body}"


# ---------------------------------------------------------------------------
# Transcript panels
# ---------------------------------------------------------------------------


class MessagePanel(Static):
    """A finalized message. User messages render plain, assistant ones boxed."""

    DEFAULT_CSS = """
    MessagePanel {
        margin: 0 1;
        padding: 0 1;
        border: round $secondary;
    }
    MessagePanel.user {
        border: none;
        color: $text-muted;
    }
    """

    def __init__(self, message: Message, **kwargs) -> None:
        super().__init__(**kwargs)
        self.message = message

    def on_mount(self) -> None:
        if self.message.role == "user":
            self.add_class("user")
            self.update(f"> {self.message.text}")
            return
        self.border_title = f"plan · {format_timestamp(self.message.timestamp)}"
        self.update(RichMarkdown(self.message.text))


class StreamingPanel(Static):
    """An in-progress response that updates as text streams in."""

    DEFAULT_CSS = """
    StreamingPanel {
        margin: 0 1;
        padding: 0 1;
        border: round $accent;
    }
    """

    def __init__(self, message: Message, **kwargs) -> None:
        super().__init__(**kwargs)
        self.message = message
        self.content_text = message.text

    def on_mount(self) -> None:
        self.update_content(self.content_text)

    def update_content(self, text: str) -> None:
        """Replace the streamed text and refresh the display."""
        self.content_text = text
        self.border_title = f"plan (streaming · {len(text):,} chars)"
        self.update(text + "▍")  # cursor


class WaitingPanel(Static):
    """A collapsed placeholder shown before streaming starts."""

    DEFAULT_CSS = """
    WaitingPanel {
        margin: 0 1;
        padding: 0;
        border: dashed $secondary;
        height: 1;
    }
    """

    def on_mount(self) -> None:
        self.border_title = "plan · waiting..."


# ---------------------------------------------------------------------------
# Mention menu and model selector
# ---------------------------------------------------------------------------


class MentionMenu(Static):
    """Candidate list shown above the editor. Hidden by default."""

    DEFAULT_CSS = """
    MentionMenu {
        height: auto;
        max-height: 10;
        background: $surface;
        padding: 0 1;
        display: none;
    }
    MentionMenu.visible {
        display: block;
    }
    """

    MAX_VISIBLE = 8

    def show_options(self, options: list[MentionCandidate], selected_index: int) -> None:
        if not options:
            self.hide_menu()
            return
        # Keep the selection inside the visible window
        start = max(0, min(selected_index - self.MAX_VISIBLE + 1, len(options) - self.MAX_VISIBLE))
        window = options[start : start + self.MAX_VISIBLE]
        lines = [format_option(c, start + i == selected_index) for i, c in enumerate(window)]
        self.update("\n".join(lines))
        self.add_class("visible")

    def hide_menu(self) -> None:
        self.remove_class("visible")
        self.update("")

    @property
    def is_open(self) -> bool:
        return self.has_class("visible")


class ModelSelector(OptionList):
    """Popover listing the configured models."""

    DEFAULT_CSS = """
    ModelSelector {
        height: auto;
        max-height: 8;
        border: round $primary;
        display: none;
    }
    ModelSelector.visible {
        display: block;
    }
    """

    def __init__(self, models: list[ApiConfiguration], **kwargs) -> None:
        super().__init__(*[Option(m.label(), id=str(i)) for i, m in enumerate(models)], **kwargs)
        self.models = models

    def on_mount(self) -> None:
        self.border_title = "Model"

    def model_at(self, index: int) -> ApiConfiguration | None:
        if 0 <= index < len(self.models):
            return self.models[index]
        return None

    def index_of(self, api: ApiConfiguration) -> int:
        try:
            return self.models.index(api)
        except ValueError:
            return 0


class StatusBar(Static):
    """Keybinding hints and transient feedback at the bottom."""

    DEFAULT_CSS = """
    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        color: $text-muted;
        padding: 0 1;
    }
    """
