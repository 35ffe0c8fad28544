"""Transcript model and the stream merge rule.

Inbound ``planResponse`` events carry the full accumulated text of the
response so far, not a delta. Merging is therefore an overwrite of the
trailing partial assistant message, never a concatenation::

    {"text": "Step", "partial": true}       -> [assistant "Step" (partial)]
    {"text": "Step 1: ...", "partial": true} -> [assistant "Step 1: ..." (partial)]
    {"text": "Step 1: done", "partial": false} -> [assistant "Step 1: done"]

Once a message is sealed (``partial`` False) it is never touched again; the
next assistant event starts a new message.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Literal

Role = Literal["user", "assistant"]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Message:
    """A single transcript entry."""

    text: str
    role: Role
    timestamp: int
    partial: bool = False

    @property
    def is_streaming(self) -> bool:
        return self.role == "assistant" and self.partial


@dataclass(frozen=True)
class PlanResponse:
    """An inbound stream update.

    ``text`` is None when the host sent a completion signal without text;
    the streaming message then keeps what it already has.
    """

    text: str | None
    partial: bool = False


def apply_event(messages: Sequence[Message], event: PlanResponse, now: int | None = None) -> list[Message]:
    """Fold one stream event into *messages* and return the new transcript.

    The input sequence is not modified.
    """
    result = list(messages)
    if result and result[-1].is_streaming:
        current = result[-1]
        text = current.text if event.text is None else event.text
        result[-1] = replace(current, text=text, partial=event.partial)
        return result
    if event.text is None:
        return result
    result.append(
        Message(
            text=event.text,
            role="assistant",
            timestamp=now_ms() if now is None else now,
            partial=event.partial,
        )
    )
    return result


class Transcript:
    """Ordered transcript with an explicit reference to the streaming message.

    ``streaming`` is updated in lockstep with ``messages`` so the merge rule
    never has to inspect the tail to find the in-progress message.
    """

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.streaming: Message | None = None

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self.messages)

    def latest(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def append_user(self, text: str, now: int | None = None) -> Message:
        """Append a finalized user message.

        A message still streaming is sealed first, so later events can only
        amend a message that sits at the tail.
        """
        if self.streaming is not None:
            self.messages[-1] = replace(self.streaming, partial=False)
            self.streaming = None
        message = Message(text=text, role="user", timestamp=now_ms() if now is None else now)
        self.messages.append(message)
        return message

    def apply(self, event: PlanResponse, now: int | None = None) -> Message | None:
        """Merge an inbound event. Returns the message it created or amended.

        Returns None when the event carried no text and nothing was streaming.
        """
        if self.streaming is not None:
            text = self.streaming.text if event.text is None else event.text
            updated = replace(self.streaming, text=text, partial=event.partial)
            self.messages[-1] = updated
        elif event.text is None:
            return None
        else:
            updated = Message(
                text=event.text,
                role="assistant",
                timestamp=now_ms() if now is None else now,
                partial=event.partial,
            )
            self.messages.append(updated)
        self.streaming = updated if updated.partial else None
        return updated

    def clear(self) -> None:
        self.messages.clear()
        self.streaming = None
