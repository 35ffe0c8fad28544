"""Interaction controller for the plan panel.

Owns the draft, the transcript and every flag the panel renders from, and
is the only writer of the transcript. All operations complete synchronously;
a submission only posts a request and returns, and the response resumes the
controller through inbound channel messages.

States::

    IDLE --draft change--> COMPOSING --submit--> AWAITING_RESPONSE
      ^                                             |  partial: stay
      +------------- final response ----------------+
    any --clear history--> IDLE
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import replace
from enum import Enum
from typing import Any

from planwright import mentions
from planwright.bridge import ApiConfigurationUpdate, CancelGeneration, LocalChannel, parse_inbound
from planwright.clipboard import ClipboardUnavailableError, copy_to_clipboard
from planwright.config import ApiConfiguration
from planwright.mentions import MentionCandidate, MentionQueryState
from planwright.prompt import build_payload
from planwright.telemetry import TelemetryReporter, null_reporter
from planwright.transcript import Message, PlanResponse, Transcript, now_ms

logger = logging.getLogger(__name__)


class PanelState(Enum):
    IDLE = "idle"
    COMPOSING = "composing"
    AWAITING_RESPONSE = "awaiting_response"


MENU_KEYS = ("up", "down", "enter", "tab", "escape")


class InteractionController:
    """Stateful engine behind the plan panel.

    The controller subscribes to *channel* on construction and unsubscribes
    in :meth:`close`; use it as a context manager to scope the subscription.
    """

    def __init__(
        self,
        channel: LocalChannel,
        api_configuration: ApiConfiguration | None = None,
        paths: Iterable[str] = (),
        telemetry: TelemetryReporter | None = None,
        clipboard: Callable[[str], None] = copy_to_clipboard,
        cancel_on_clear: bool = False,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.channel = channel
        self.api_configuration = api_configuration or ApiConfiguration()
        self.telemetry = telemetry or null_reporter()
        self.clipboard = clipboard
        self.cancel_on_clear = cancel_on_clear
        self.clock = clock

        self.transcript = Transcript()
        self.state = PanelState.IDLE
        self.draft = ""
        self.cursor = 0
        self.has_complete_response = False
        self.mention: MentionQueryState = mentions.INACTIVE
        self.candidates: list[MentionCandidate] = mentions.candidates_from_paths(list(paths))
        self.model_selector_open = False
        self.listeners: list[Callable[[], None]] = []
        # Bumped on every submit and clear; in_flight is the generation whose
        # response has not sealed yet, possibly one a clear already discarded.
        self.generation = 0
        self.in_flight: int | None = None

        self.subscription = channel.subscribe(self.handle_message)

    # -- Lifecycle ---------------------------------------------------------

    def close(self) -> None:
        self.subscription.close()

    def __enter__(self) -> InteractionController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback run after every state change."""
        self.listeners.append(listener)

    def notify(self) -> None:
        for listener in list(self.listeners):
            listener()

    # -- Derived state -----------------------------------------------------

    @property
    def generating(self) -> bool:
        return self.state is PanelState.AWAITING_RESPONSE

    @property
    def input_enabled(self) -> bool:
        return not self.generating

    @property
    def draining(self) -> bool:
        """A response from before the last clear is still streaming in."""
        return self.in_flight is not None and self.in_flight != self.generation

    @property
    def submit_enabled(self) -> bool:
        return not self.generating and not self.draining and bool(self.draft.strip())

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.transcript.snapshot()

    @property
    def options(self) -> list[MentionCandidate]:
        """Mention menu entries for the current query ([] when closed)."""
        return self.options_for(self.mention)

    def options_for(self, state: MentionQueryState) -> list[MentionCandidate]:
        if not state.active:
            return []
        return mentions.filter_candidates(state.query, state.narrowed_kind, self.candidates)

    def set_mention(self, state: MentionQueryState) -> None:
        self.mention = mentions.clamp_selection(state, len(self.options_for(state)))

    @property
    def selected_option(self) -> MentionCandidate | None:
        options = self.options
        if not options:
            return None
        return options[min(self.mention.selected_index, len(options) - 1)]

    # -- Draft and mentions ------------------------------------------------

    def set_draft(self, text: str, cursor: int | None = None) -> bool:
        """Text-change event. Ignored while a response is awaited."""
        if self.generating:
            logger.debug("Draft change ignored while awaiting a response")
            return False
        self.draft = text
        self.cursor = mentions.clamp_cursor(text, len(text) if cursor is None else cursor)
        if self.state is PanelState.IDLE:
            self.state = PanelState.COMPOSING
        self.refresh_mention()
        self.notify()
        return True

    def move_cursor(self, cursor: int) -> bool:
        if self.generating:
            return False
        self.cursor = mentions.clamp_cursor(self.draft, cursor)
        self.refresh_mention()
        self.notify()
        return True

    def refresh_mention(self) -> None:
        self.set_mention(mentions.track(self.mention, self.draft, self.cursor))

    def refresh_candidates(self, paths: Iterable[str]) -> None:
        """Replace the file-index entries of the mention menu."""
        self.candidates = mentions.candidates_from_paths(list(paths))
        self.set_mention(self.mention)
        self.notify()

    def handle_key(self, key: str) -> bool:
        """Menu navigation. Returns True when the key was consumed."""
        if self.generating or not self.mention.active or key not in MENU_KEYS:
            return False
        count = len(self.options)
        if key == "up":
            self.mention = mentions.move_selection(self.mention, -1, count)
        elif key == "down":
            self.mention = mentions.move_selection(self.mention, 1, count)
        elif key in ("enter", "tab"):
            self.accept_selected()
            return True
        else:
            result = mentions.escape(self.mention, self.draft, self.cursor)
            if result is not None:
                self.draft = result.text
                self.cursor = result.cursor
                self.set_mention(result.state)
        self.notify()
        return True

    def select_option(self, index: int) -> bool:
        """Accept the option at *index* (e.g. clicked in the menu)."""
        if self.generating or not self.mention.active:
            return False
        if not 0 <= index < len(self.options):
            return False
        self.mention = replace(self.mention, selected_index=index)
        return self.accept_selected()

    def accept_selected(self) -> bool:
        result = mentions.accept(self.mention, self.options, self.draft, self.cursor)
        if result is None:
            return False
        self.draft = result.text
        self.cursor = result.cursor
        self.set_mention(result.state)
        if self.state is PanelState.IDLE:
            self.state = PanelState.COMPOSING
        if result.inserted is not None:
            self.telemetry.send_event("mention.inserted", {"kind": result.inserted.kind.value})
        self.notify()
        return True

    def cancel_mention(self) -> None:
        if self.mention.active:
            self.mention = mentions.INACTIVE
            self.notify()

    # -- Submission and responses -------------------------------------------

    def submit(self) -> bool:
        """Send the draft. Returns False when disabled or the draft is blank."""
        if self.generating:
            return False
        if self.draining:
            logger.info("Submit blocked until generation %d finishes", self.in_flight)
            return False
        prior = self.transcript.snapshot()
        payload = build_payload(prior, self.draft, is_initial_plan=not self.has_complete_response)
        if payload is None:
            return False
        if self.model_selector_open:
            self.close_model_selector()

        self.transcript.append_user(self.draft.strip(), now=self.clock())
        self.generation += 1
        self.in_flight = self.generation
        self.state = PanelState.AWAITING_RESPONSE
        self.mention = mentions.INACTIVE
        logger.info("Submitting plan (%d prior messages, initial=%s)", len(prior), payload.is_initial_plan)
        self.channel.post_message(payload.to_dict())
        self.telemetry.send_event(
            "plan.submitted",
            {"initial": str(payload.is_initial_plan).lower(), "model": self.api_configuration.label()},
            {"chars": float(len(self.draft.strip())), "messages": float(len(prior))},
        )
        self.notify()
        return True

    def handle_message(self, raw: Any) -> None:
        """Inbound channel handler. Malformed messages are dropped."""
        event = parse_inbound(raw)
        if event is None:
            return
        self.apply_response(event)

    def apply_response(self, event: PlanResponse) -> None:
        if self.draining:
            logger.debug("Late response from cleared generation %d", self.in_flight)
        message = self.transcript.apply(event, now=self.clock())
        if not event.partial:
            self.in_flight = None
            if self.state is PanelState.AWAITING_RESPONSE:
                self.state = PanelState.IDLE
            if message is not None:
                self.has_complete_response = True
                self.telemetry.send_event("plan.completed", measurements={"chars": float(len(message.text))})
            logger.info("Plan response complete")
        self.notify()

    def clear_history(self) -> None:
        """Discard the transcript and start over as if nothing was produced."""
        was_generating = self.generating
        self.transcript.clear()
        self.generation += 1
        self.has_complete_response = False
        self.state = PanelState.IDLE
        if was_generating and self.cancel_on_clear:
            self.channel.post_message(CancelGeneration().to_dict())
        self.refresh_mention()
        self.telemetry.send_event("history.cleared", {"in_flight": str(was_generating).lower()})
        self.notify()

    # -- Clipboard -----------------------------------------------------------

    def copy_latest(self) -> bool:
        """Copy the newest message to the clipboard. True on success."""
        latest = self.transcript.latest()
        if latest is None:
            return False
        try:
            self.clipboard(latest.text)
        except ClipboardUnavailableError:
            logger.warning("Clipboard unavailable")
            return False
        except subprocess.CalledProcessError:
            logger.warning("Clipboard command failed", exc_info=True)
            return False
        self.telemetry.send_event("message.copied", {"role": latest.role})
        return True

    # -- Model selector ------------------------------------------------------

    def open_model_selector(self) -> bool:
        if self.generating or self.model_selector_open:
            return False
        self.model_selector_open = True
        self.notify()
        return True

    def choose_model(self, api_configuration: ApiConfiguration) -> bool:
        if self.generating:
            return False
        if api_configuration != self.api_configuration:
            self.api_configuration = api_configuration
            self.telemetry.send_event("model.changed", {"model": api_configuration.label()})
        self.notify()
        return True

    def close_model_selector(self) -> bool:
        """Close the popover, posting the selected configuration once."""
        if not self.model_selector_open:
            return False
        self.model_selector_open = False
        self.channel.post_message(ApiConfigurationUpdate(self.api_configuration.to_dict()).to_dict())
        self.notify()
        return True
