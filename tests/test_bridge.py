"""Tests for host-bridge events and the local channel."""

from __future__ import annotations

import json

from planwright.bridge import (
    OUTBOX_LIMIT,
    ApiConfigurationUpdate,
    CancelGeneration,
    GeneratePlan,
    LocalChannel,
    decode_generate_plan,
    parse_inbound,
    plan_response_payload,
)
from planwright.transcript import PlanResponse


class TestOutboundEvents:
    def test_generate_plan_nests_json(self) -> None:
        payload = GeneratePlan(task="<task>\nUSER: x\n</task>", is_initial_plan=True).to_dict()
        assert payload["type"] == "generatePlan"
        assert isinstance(payload["text"], str)
        assert json.loads(payload["text"])["messages"][0]["isInitialPlan"] is True

    def test_decode_round_trip(self) -> None:
        event = GeneratePlan(task="t", is_initial_plan=False)
        assert decode_generate_plan(event.to_dict()) == event

    def test_decode_malformed(self) -> None:
        assert decode_generate_plan({"type": "generatePlan", "text": "{nope"}) is None
        assert decode_generate_plan({"type": "generatePlan"}) is None
        assert decode_generate_plan({"type": "generatePlan", "text": '{"messages": []}'}) is None
        assert decode_generate_plan({"type": "generatePlan", "text": '{"messages": [{"text": 3}]}'}) is None

    def test_api_configuration(self) -> None:
        payload = ApiConfigurationUpdate({"backend": "codex"}).to_dict()
        assert payload == {"type": "apiConfiguration", "apiConfiguration": {"backend": "codex"}}

    def test_cancel(self) -> None:
        assert CancelGeneration().to_dict() == {"type": "cancelGeneration"}


class TestParseInbound:
    def test_dict(self) -> None:
        assert parse_inbound({"type": "planResponse", "text": "x", "partial": True}) == PlanResponse("x", True)

    def test_json_string_and_bytes(self) -> None:
        raw = json.dumps({"type": "planResponse", "text": "x", "partial": False})
        assert parse_inbound(raw) == PlanResponse("x", False)
        assert parse_inbound(raw.encode()) == PlanResponse("x", False)

    def test_missing_partial_is_final(self) -> None:
        assert parse_inbound({"type": "planResponse", "text": "x"}) == PlanResponse("x", False)

    def test_null_partial_is_final(self) -> None:
        assert parse_inbound({"type": "planResponse", "text": "x", "partial": None}) == PlanResponse("x", False)

    def test_missing_text(self) -> None:
        assert parse_inbound({"type": "planResponse", "partial": False}) == PlanResponse(None, False)

    def test_rejects_garbage(self) -> None:
        assert parse_inbound("{") is None
        assert parse_inbound(b"\xff\xfe") is None
        assert parse_inbound(7) is None
        assert parse_inbound({"type": "generatePlan"}) is None
        assert parse_inbound({"type": "planResponse", "text": ["a"]}) is None
        assert parse_inbound({"type": "planResponse", "text": "a", "partial": 1}) is None

    def test_payload_helper(self) -> None:
        assert plan_response_payload("x", partial=True) == {"type": "planResponse", "text": "x", "partial": True}
        assert plan_response_payload(None, partial=False) == {"type": "planResponse", "partial": False}


class TestLocalChannel:
    def test_post_records_and_forwards(self) -> None:
        received: list[dict] = []
        channel = LocalChannel(host=received.append)
        channel.post_message({"type": "cancelGeneration"})
        assert list(channel.outbox) == [{"type": "cancelGeneration"}]
        assert received == [{"type": "cancelGeneration"}]

    def test_outbox_keeps_only_recent_payloads(self) -> None:
        channel = LocalChannel()
        for i in range(OUTBOX_LIMIT + 5):
            channel.post_message({"type": "apiConfiguration", "n": i})
        assert len(channel.outbox) == OUTBOX_LIMIT
        assert channel.outbox[0]["n"] == 5
        assert channel.outbox[-1]["n"] == OUTBOX_LIMIT + 4

    def test_deliver_to_subscribers_in_order(self) -> None:
        channel = LocalChannel()
        seen: list[str] = []
        channel.subscribe(lambda raw: seen.append(f"a:{raw}"))
        channel.subscribe(lambda raw: seen.append(f"b:{raw}"))
        channel.deliver("m")
        assert seen == ["a:m", "b:m"]

    def test_subscription_close_is_idempotent(self) -> None:
        channel = LocalChannel()
        seen: list[object] = []
        subscription = channel.subscribe(seen.append)
        subscription.close()
        subscription.close()
        channel.deliver("m")
        assert seen == []
        assert subscription.closed

    def test_subscription_context_manager(self) -> None:
        channel = LocalChannel()
        with channel.subscribe(lambda raw: None):
            assert len(channel.handlers) == 1
        assert channel.handlers == []
