from __future__ import annotations

import json
import logging
from typing import Any

from town_sim.agents.actions import (
    ACTION_TYPES,
    ALLOWED_ACTIONS,
    TALK_TONES,
    Action,
    Buy,
    Decision,
    DecisionRequest,
    Eat,
    Fish,
    Gift,
    Harvest,
    Idle,
    Mine,
    Move,
    Plant,
    Sell,
    Talk,
    Vote,
)
from town_sim.agents.cognition import RuleBasedPolicy
from town_sim.errors import MalformedDecision
from town_sim.utils.types import parse_item, parse_location

MAX_QUANTITY = 99
MAX_TEXT = 280


class DecisionResponseValidator:
    """Maps raw provider text onto the closed action set.

    ``validate`` never raises: anything it cannot map is replaced by the
    rule-based decision for the same request.
    """

    def __init__(self, policy: RuleBasedPolicy) -> None:
        self.policy = policy
        self.logger = logging.getLogger("town_sim.validator")

    def validate(self, raw: str, request: DecisionRequest) -> Decision:
        try:
            return self.parse(raw, request)
        except MalformedDecision as exc:
            self.logger.info(
                "Malformed decision agent=%s kind=%s error=%s; rule fallback",
                request.agent_id, request.kind.value, exc,
            )
            return self.fallback(request, f"malformed:{exc}")

    def fallback(self, request: DecisionRequest, reason: str) -> Decision:
        action = self.policy.decide(request.kind, request.snapshot)
        return Decision(
            action=action,
            rationale="rule-based fallback",
            source="fallback",
            fallback_reason=reason,
        )

    def parse(self, raw: str, request: DecisionRequest) -> Decision:
        data = self._extract_json(raw)
        tag = str(data.get("action", "")).strip().lower()
        if tag not in ACTION_TYPES:
            raise MalformedDecision(f"unknown action {tag!r}")
        if tag not in ALLOWED_ACTIONS[request.kind]:
            raise MalformedDecision(f"action {tag!r} not allowed for {request.kind.value}")
        action = self._build_action(tag, data, request)
        rationale = data.get("rationale") or ""
        emotion = data.get("emotion")
        return Decision(
            action=action,
            rationale=str(rationale)[:MAX_TEXT],
            emotion=str(emotion)[:32] if emotion else None,
            source="provider",
        )

    def _extract_json(self, raw: Any) -> dict[str, Any]:
        if not isinstance(raw, str):
            raise MalformedDecision("response is not text")
        start = raw.find("{")
        if start == -1:
            raise MalformedDecision("no JSON object")
        try:
            # first object only; trailing notes are ignored
            data, _ = json.JSONDecoder().raw_decode(raw, start)
        except json.JSONDecodeError as exc:
            raise MalformedDecision(f"invalid JSON: {exc.msg}") from exc
        except (RecursionError, ValueError) as exc:
            raise MalformedDecision(f"invalid JSON: {exc.__class__.__name__}") from exc
        if not isinstance(data, dict):
            raise MalformedDecision("JSON payload is not an object")
        return data

    def _build_action(self, tag: str, data: dict[str, Any], request: DecisionRequest) -> Action:
        if tag == Idle.tag:
            return Idle()
        if tag == Mine.tag:
            return Mine()
        if tag == Fish.tag:
            return Fish()
        if tag == Harvest.tag:
            return Harvest()
        if tag == Move.tag:
            destination = parse_location(data.get("destination"))
            if destination is None:
                raise MalformedDecision(f"unknown destination {data.get('destination')!r}")
            return Move(destination=destination)
        if tag == Eat.tag:
            return Eat(item=self._item(data, "item"))
        if tag == Buy.tag:
            return Buy(item=self._item(data, "item"), quantity=self._quantity(data))
        if tag == Sell.tag:
            return Sell(item=self._item(data, "item"), quantity=self._quantity(data))
        if tag == Plant.tag:
            return Plant(seed=self._item(data, "seed"))
        if tag == Talk.tag:
            tone = str(data.get("tone") or "friendly").strip().lower()
            if tone not in TALK_TONES:
                raise MalformedDecision(f"unknown tone {tone!r}")
            return Talk(target_id=self._target(data, request), tone=tone)
        if tag == Gift.tag:
            return Gift(
                target_id=self._target(data, request),
                item=self._item(data, "item"),
                quantity=self._quantity(data),
            )
        if tag == Vote.tag:
            return Vote(target_id=self._target(data, request))
        raise MalformedDecision(f"unhandled action {tag!r}")

    def _item(self, data: dict[str, Any], key: str):
        item = parse_item(data.get(key))
        if item is None:
            raise MalformedDecision(f"unknown {key} {data.get(key)!r}")
        return item

    def _quantity(self, data: dict[str, Any]) -> int:
        raw = data.get("quantity", 1)
        if isinstance(raw, bool):
            raise MalformedDecision("quantity must be an integer")
        if isinstance(raw, float) and raw.is_integer():
            raw = int(raw)
        if isinstance(raw, str) and raw.strip().isdigit():
            raw = int(raw.strip())
        if not isinstance(raw, int) or not 0 < raw <= MAX_QUANTITY:
            raise MalformedDecision(f"quantity out of range {raw!r}")
        return raw

    def _target(self, data: dict[str, Any], request: DecisionRequest) -> str:
        target = data.get("target_id") or data.get("target")
        if not isinstance(target, str) or not target.strip():
            raise MalformedDecision("missing target_id")
        target = target.strip()
        if target == request.agent_id:
            raise MalformedDecision("target_id refers to the deciding resident")
        return target
