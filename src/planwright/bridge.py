"""Host-bridge events and the in-process channel.

Outbound events are posted as plain dicts tagged with ``type``; inbound
events arrive either as dicts or as JSON strings. The channel is the only
path between the interaction controller and whatever generates plans.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from planwright.transcript import PlanResponse

logger = logging.getLogger(__name__)

# Recent outbound payloads kept on a channel for inspection.
OUTBOX_LIMIT = 100

# ---------------------------------------------------------------------------
# Outbound events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeneratePlan:
    """Request a plan for the consolidated conversation in ``task``."""

    task: str
    is_initial_plan: bool

    def to_dict(self) -> dict[str, Any]:
        body = {"messages": [{"type": "text", "text": self.task, "isInitialPlan": self.is_initial_plan}]}
        return {"type": "generatePlan", "text": json.dumps(body)}


@dataclass(frozen=True)
class ApiConfigurationUpdate:
    api_configuration: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": "apiConfiguration", "apiConfiguration": dict(self.api_configuration)}


@dataclass(frozen=True)
class CancelGeneration:
    def to_dict(self) -> dict[str, Any]:
        return {"type": "cancelGeneration"}


def decode_generate_plan(payload: dict[str, Any]) -> GeneratePlan | None:
    """Decode a ``generatePlan`` dict back into its event. None if malformed."""
    try:
        body = json.loads(payload["text"])
        message = body["messages"][0]
        task = message["text"]
        is_initial = message.get("isInitialPlan", False)
    except (KeyError, IndexError, TypeError, json.JSONDecodeError):
        logger.warning("Malformed generatePlan payload: %r", payload)
        return None
    if not isinstance(task, str) or not isinstance(is_initial, bool):
        logger.warning("Malformed generatePlan payload: %r", payload)
        return None
    return GeneratePlan(task=task, is_initial_plan=is_initial)


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------


def plan_response_payload(text: str | None, partial: bool) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": "planResponse", "partial": partial}
    if text is not None:
        payload["text"] = text
    return payload


def parse_inbound(raw: Any) -> PlanResponse | None:
    """Parse an inbound host message into a PlanResponse.

    Returns None for anything that is not a well-formed ``planResponse``:
    unparseable JSON, non-object payloads, other event types, or fields of
    the wrong type. A missing ``partial`` means the response is complete.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Ignoring unparseable inbound message")
            return None
    if not isinstance(raw, dict):
        logger.warning("Ignoring inbound message of type %s", type(raw).__name__)
        return None
    if raw.get("type") != "planResponse":
        logger.debug("Ignoring inbound message with type %r", raw.get("type"))
        return None

    text = raw.get("text")
    partial = raw.get("partial", False)
    if text is not None and not isinstance(text, str):
        logger.warning("Ignoring planResponse with non-string text")
        return None
    if partial is None:
        partial = False
    if not isinstance(partial, bool):
        logger.warning("Ignoring planResponse with non-boolean partial")
        return None
    return PlanResponse(text=text, partial=partial)


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

Handler = Callable[[Any], None]


class Subscription:
    """Handle returned by :meth:`LocalChannel.subscribe`. Closing is idempotent."""

    def __init__(self, channel: LocalChannel, handler: Handler) -> None:
        self.channel = channel
        self.handler = handler
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.channel.unsubscribe(self.handler)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass
class LocalChannel:
    """In-process host bridge.

    Attributes:
        host: Receives every outbound payload (the generation host, or
            nothing in tests).
        outbox: The most recent outbound payloads (at most OUTBOX_LIMIT),
            in post order.
        handlers: Inbound subscribers, in registration order.
    """

    host: Handler | None = None
    outbox: deque[dict[str, Any]] = field(default_factory=lambda: deque(maxlen=OUTBOX_LIMIT))
    handlers: list[Handler] = field(default_factory=list)

    def post_message(self, payload: dict[str, Any]) -> None:
        self.outbox.append(payload)
        logger.debug("Outbound %s", payload.get("type"))
        if self.host is not None:
            self.host(payload)

    def subscribe(self, handler: Handler) -> Subscription:
        self.handlers.append(handler)
        return Subscription(self, handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def deliver(self, raw: Any) -> None:
        """Dispatch an inbound message to every subscriber."""
        for handler in list(self.handlers):
            handler(raw)
