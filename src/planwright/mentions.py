"""Mention autocompletion: trigger detection, filtering and text splicing.

Typing ``@`` in the plan editor opens a menu of mention candidates: the
built-in ``problems`` entry, a "browse folders" entry and every path the
file index knows about. Everything here is a pure function of the draft
text and cursor offset, so the controller can drive it from any event
source and the UI never has to hold focus for an insertion to work.

Grammar: the text before the cursor, on the cursor's line, must end with
the trigger followed by zero or more characters that are neither
whitespace nor another trigger::

    "see @src/ma|"     -> active, query "src/ma"
    "see @src/ main|"  -> inactive (whitespace closed the mention)
    "a@b@c|"           -> active, query "c"
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum

TRIGGER = "@"

TRIGGER_PATTERN = re.compile(rf"{re.escape(TRIGGER)}([^\s{re.escape(TRIGGER)}]*)\Z")


class MentionKind(Enum):
    PROBLEM = "problem"
    FILE = "file"
    FOLDER = "folder"
    NO_RESULTS = "no_results"


@dataclass(frozen=True)
class MentionCandidate:
    """One entry of the mention menu.

    A FILE or FOLDER candidate without a value is a "browse" entry: accepting
    it narrows the menu to that kind instead of inserting text.
    """

    kind: MentionKind
    value: str | None = None

    @property
    def selectable(self) -> bool:
        return self.kind is not MentionKind.NO_RESULTS

    @property
    def is_browse(self) -> bool:
        return self.kind in (MentionKind.FILE, MentionKind.FOLDER) and self.value is None

    def label(self) -> str:
        if self.kind is MentionKind.NO_RESULTS:
            return "No results found"
        if self.kind is MentionKind.PROBLEM:
            return "Problems"
        if self.value is None:
            return "Add folder" if self.kind is MentionKind.FOLDER else "Add file"
        return self.value


PROBLEMS = MentionCandidate(MentionKind.PROBLEM, "problems")
BROWSE_FOLDERS = MentionCandidate(MentionKind.FOLDER)
NO_RESULTS = MentionCandidate(MentionKind.NO_RESULTS)

# Index of BROWSE_FOLDERS in the unfiltered menu; where the selection rests
# when the menu opens and after Escape.
DEFAULT_SELECTED_INDEX = 1


def candidates_from_paths(paths: Sequence[str]) -> list[MentionCandidate]:
    """Build the full candidate list: built-ins first, then *paths* in order.

    A trailing ``/`` marks a folder.
    """
    candidates = [PROBLEMS, BROWSE_FOLDERS]
    for path in paths:
        if not path:
            continue
        kind = MentionKind.FOLDER if path.endswith("/") else MentionKind.FILE
        candidates.append(MentionCandidate(kind, path))
    return candidates


# ---------------------------------------------------------------------------
# Text operations
# ---------------------------------------------------------------------------


def clamp_cursor(text: str, cursor: int) -> int:
    return max(0, min(cursor, len(text)))


def trigger_offset(text: str, cursor: int) -> int | None:
    """Offset of the trigger that opens the mention under the cursor, or None."""
    cursor = clamp_cursor(text, cursor)
    match = TRIGGER_PATTERN.search(text, 0, cursor)
    if match is None:
        return None
    return match.start()


def detect_trigger(text: str, cursor: int) -> bool:
    return trigger_offset(text, cursor) is not None


def extract_query(text: str, cursor: int) -> str:
    """Text between the nearest trigger and the cursor ("" if none)."""
    cursor = clamp_cursor(text, cursor)
    start = trigger_offset(text, cursor)
    if start is None:
        return ""
    return text[start + len(TRIGGER) : cursor]


def insert(text: str, cursor: int, value: str) -> tuple[str, int]:
    """Replace the trigger-to-cursor span with ``@value `` and move the cursor after it.

    Raises:
        ValueError: If there is no mention under the cursor or *value* is empty.
    """
    if not value:
        raise ValueError("Cannot insert an empty mention")
    cursor = clamp_cursor(text, cursor)
    start = trigger_offset(text, cursor)
    if start is None:
        raise ValueError(f"No mention trigger before offset {cursor}")
    mention = f"{TRIGGER}{value} "
    return text[:start] + mention + text[cursor:], start + len(mention)


def clear_query(text: str, cursor: int) -> tuple[str, int]:
    """Drop the typed query, keeping the trigger. No-op outside a mention."""
    cursor = clamp_cursor(text, cursor)
    start = trigger_offset(text, cursor)
    if start is None:
        return text, cursor
    keep = start + len(TRIGGER)
    return text[:keep] + text[cursor:], keep


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def filter_candidates(
    query: str,
    narrowed_kind: MentionKind | None,
    candidates: Sequence[MentionCandidate],
) -> list[MentionCandidate]:
    """Case-insensitive substring filter that keeps the input order.

    With *narrowed_kind* set, only candidates of that kind that carry a value
    are considered. Browse entries only appear for an empty query. Returns
    ``[NO_RESULTS]`` when nothing matches.
    """
    pool = [c for c in candidates if c.selectable]
    if narrowed_kind is not None:
        pool = [c for c in pool if c.kind is narrowed_kind and c.value is not None]
    needle = query.lower()
    if needle:
        pool = [c for c in pool if c.value is not None and needle in c.value.lower()]
    return pool or [NO_RESULTS]


# ---------------------------------------------------------------------------
# Query state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MentionQueryState:
    active: bool = False
    trigger_offset: int = -1
    query: str = ""
    selected_index: int = 0
    narrowed_kind: MentionKind | None = None


INACTIVE = MentionQueryState()


def track(state: MentionQueryState, text: str, cursor: int) -> MentionQueryState:
    """Re-evaluate the query state after a text change or cursor move.

    A mention opened at a new trigger starts at the default selection with
    no narrowing. A changed query keeps the narrowing and selects the first
    match.
    """
    start = trigger_offset(text, cursor)
    if start is None:
        return INACTIVE
    query = text[start + len(TRIGGER) : clamp_cursor(text, cursor)]
    if not state.active or state.trigger_offset != start:
        return MentionQueryState(
            active=True,
            trigger_offset=start,
            query=query,
            selected_index=0 if query else DEFAULT_SELECTED_INDEX,
        )
    if query != state.query:
        return replace(state, query=query, selected_index=0)
    return state


def clamp_selection(state: MentionQueryState, count: int) -> MentionQueryState:
    if count <= 0 or 0 <= state.selected_index < count:
        return state
    return replace(state, selected_index=min(max(state.selected_index, 0), count - 1))


def move_selection(state: MentionQueryState, delta: int, count: int) -> MentionQueryState:
    """Move the selection by *delta*, wrapping in both directions."""
    if not state.active or count <= 0:
        return state
    return replace(state, selected_index=(state.selected_index + delta) % count)


def reset_scope(state: MentionQueryState) -> MentionQueryState:
    """Escape: back to the top-level menu. The menu stays open."""
    if not state.active:
        return state
    return replace(state, query="", narrowed_kind=None, selected_index=DEFAULT_SELECTED_INDEX)


@dataclass(frozen=True)
class Acceptance:
    """Outcome of accepting the selected menu entry."""

    text: str
    cursor: int
    state: MentionQueryState
    inserted: MentionCandidate | None = None


def accept(
    state: MentionQueryState,
    options: Sequence[MentionCandidate],
    text: str,
    cursor: int,
) -> Acceptance | None:
    """Accept the selected option.

    Returns None when nothing can be accepted (inactive menu, no options or
    the NO_RESULTS sentinel). Browse entries narrow the menu and clear the
    typed query; everything else is inserted and closes the menu.
    """
    if not state.active or not options:
        return None
    candidate = options[min(max(state.selected_index, 0), len(options) - 1)]
    if not candidate.selectable:
        return None
    if candidate.is_browse:
        new_text, new_cursor = clear_query(text, cursor)
        narrowed = MentionQueryState(
            active=True,
            trigger_offset=state.trigger_offset,
            query="",
            selected_index=0,
            narrowed_kind=candidate.kind,
        )
        return Acceptance(text=new_text, cursor=new_cursor, state=narrowed)
    if candidate.value is None:
        return None
    new_text, new_cursor = insert(text, cursor, candidate.value)
    return Acceptance(text=new_text, cursor=new_cursor, state=INACTIVE, inserted=candidate)


def escape(state: MentionQueryState, text: str, cursor: int) -> Acceptance | None:
    """Escape in the menu: drop the typed query and any narrowing.

    The browse entry only survives an empty query, so the query text is
    removed from the draft for the selection to land on it.
    """
    if not state.active:
        return None
    new_text, new_cursor = clear_query(text, cursor)
    return Acceptance(text=new_text, cursor=new_cursor, state=reset_scope(state))
