"""Quest rule validation and evaluation.

A quest rule is a JSON object discriminated by ``type``:

    event_count     {"type", "event_type", "target_count"}
    action_once     {"type", "event_type"}
    deposit_amount  {"type", "event_type": "deposit", "target_amount"}
    xp_threshold    {"type", "target_xp"}
    custom          {"type", ...}  completed only by an admin

Amounts are integer base units; decimal strings are rejected.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from questboard.errors import ValidationError
from questboard.events.service import EVENT_TYPES
from questboard.periods import CADENCE_DAILY, CADENCE_ONE_TIME, CADENCE_WEEKLY

RULE_TYPES: tuple[str, ...] = ("event_count", "xp_threshold", "action_once", "deposit_amount", "custom")
CADENCES: tuple[str, ...] = (CADENCE_DAILY, CADENCE_WEEKLY, CADENCE_ONE_TIME)


def _positive_int(rule: dict[str, Any], key: str) -> int:
    value = rule.get(key)
    if isinstance(value, bool):
        value = None
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Quest rule requires a positive integer '{key}'", {"rule": rule})
    return value


def _event_type(rule: dict[str, Any], default: str | None = None) -> str:
    event_type = rule.get("event_type", default)
    if event_type not in EVENT_TYPES:
        raise ValidationError(f"Quest rule has unknown event_type: {event_type}", {"rule": rule})
    return event_type


def validate_rule(rule: dict[str, Any]) -> dict[str, Any]:
    """Return a normalized copy of ``rule`` or raise ValidationError."""
    if not isinstance(rule, dict):
        raise ValidationError("Quest rule must be an object")
    rule_type = rule.get("type")

    if rule_type == "event_count":
        return {
            "type": rule_type,
            "event_type": _event_type(rule),
            "target_count": _positive_int(rule, "target_count"),
        }
    if rule_type == "action_once":
        return {"type": rule_type, "event_type": _event_type(rule)}
    if rule_type == "deposit_amount":
        return {
            "type": rule_type,
            "event_type": _event_type(rule, "deposit"),
            "target_amount": _positive_int(rule, "target_amount"),
        }
    if rule_type == "xp_threshold":
        return {"type": rule_type, "target_xp": _positive_int(rule, "target_xp")}
    if rule_type == "custom":
        return dict(rule)

    raise ValidationError(f"Unknown quest rule type: {rule_type}", {"allowed": list(RULE_TYPES)})


def validate_cadence(cadence: str) -> str:
    if cadence not in CADENCES:
        raise ValidationError(f"Unknown cadence: {cadence}", {"allowed": list(CADENCES)})
    return cadence


def rule_target(rule: dict[str, Any]) -> int:
    """Progress value at which a quest counts as completed."""
    rule_type = rule.get("type")
    if rule_type == "event_count":
        return int(rule.get("target_count") or 1)
    if rule_type == "deposit_amount":
        return int(rule["target_amount"])
    if rule_type == "xp_threshold":
        return int(rule["target_xp"])
    return 1


def matches_event(rule: dict[str, Any], event_type: str) -> bool:
    """Whether an event of ``event_type`` advances a counter-style rule."""
    rule_type = rule.get("type")
    if rule_type in ("event_count", "action_once"):
        return rule.get("event_type") == event_type
    if rule_type == "deposit_amount":
        return rule.get("event_type", "deposit") == event_type
    return False


def parse_amount(metadata: dict[str, Any]) -> int:
    """Integer base-unit amount from event metadata; 0 if absent or malformed."""
    value = metadata.get("amount")
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return 0


def progress_increment(rule: dict[str, Any], metadata: dict[str, Any]) -> int:
    """How much one matching event advances progress."""
    if rule.get("type") == "deposit_amount":
        return parse_amount(metadata)
    return 1


def is_currently_active(is_active: bool, start_at: datetime, end_at: datetime | None, now: datetime) -> bool:
    if not is_active:
        return False
    if start_at > now:
        return False
    return end_at is None or end_at >= now


def progress_state(progress_value: int, is_completed: bool, is_claimed: bool) -> str:
    """Display state: not_started, in_progress, completed or claimed."""
    if is_claimed:
        return "claimed"
    if is_completed:
        return "completed"
    if progress_value > 0:
        return "in_progress"
    return "not_started"
