"""Serialize a transcript plus the new draft into a ``generatePlan`` request."""

from __future__ import annotations

from collections.abc import Sequence

from planwright.bridge import GeneratePlan
from planwright.transcript import Message

TASK_OPEN = "<task>"
TASK_CLOSE = "</task>"


def format_line(role: str, text: str) -> str:
    return f"{role.upper()}: {text}"


def consolidate(messages: Sequence[Message], draft: str) -> str:
    """Join prior messages and the new user line, blank-line separated.

    Example::

        USER: hi

        ASSISTANT: hello

        USER: more
    """
    lines = [format_line(m.role, m.text) for m in messages]
    lines.append(format_line("user", draft.strip()))
    return "\n\n".join(lines)


def frame_task(block: str) -> str:
    return f"{TASK_OPEN}\n{block}\n{TASK_CLOSE}"


def build_payload(messages: Sequence[Message], draft: str, is_initial_plan: bool) -> GeneratePlan | None:
    """Build the outbound request, or None when the draft is blank.

    *messages* are the transcript entries before the new user line; the
    draft is serialized once, as the final ``USER:`` line.
    """
    if not draft.strip():
        return None
    return GeneratePlan(task=frame_task(consolidate(messages, draft)), is_initial_plan=is_initial_plan)
