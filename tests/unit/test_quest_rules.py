"""Unit tests for quest rule validation and evaluation."""

from datetime import datetime, timedelta, timezone

import pytest

from questboard.errors import ValidationError
from questboard.quests.rules import (
    is_currently_active,
    matches_event,
    parse_amount,
    progress_increment,
    progress_state,
    rule_target,
    validate_cadence,
    validate_rule,
)


class TestValidateRule:
    def test_event_count_normalized(self):
        rule = validate_rule({"type": "event_count", "event_type": "swap", "target_count": "3", "extra": 1})
        assert rule == {"type": "event_count", "event_type": "swap", "target_count": 3}

    def test_event_count_requires_positive_target(self):
        with pytest.raises(ValidationError):
            validate_rule({"type": "event_count", "event_type": "swap", "target_count": 0})

    def test_boolean_target_rejected(self):
        with pytest.raises(ValidationError):
            validate_rule({"type": "event_count", "event_type": "swap", "target_count": True})

    def test_unknown_event_type_rejected(self):
        with pytest.raises(ValidationError):
            validate_rule({"type": "action_once", "event_type": "teleport"})

    def test_deposit_amount_defaults_to_deposit_events(self):
        rule = validate_rule({"type": "deposit_amount", "target_amount": 1000})
        assert rule["event_type"] == "deposit"
        assert rule["target_amount"] == 1000

    def test_decimal_amount_rejected(self):
        with pytest.raises(ValidationError):
            validate_rule({"type": "deposit_amount", "target_amount": "10.5"})

    def test_xp_threshold(self):
        assert validate_rule({"type": "xp_threshold", "target_xp": 500}) == {"type": "xp_threshold", "target_xp": 500}

    def test_custom_passes_through(self):
        rule = {"type": "custom", "note": "join the community call"}
        assert validate_rule(rule) == rule

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            validate_rule({"type": "streak"})

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            validate_rule(["event_count"])  # type: ignore[arg-type]


class TestEvaluation:
    def test_targets(self):
        assert rule_target({"type": "event_count", "event_type": "swap", "target_count": 3}) == 3
        assert rule_target({"type": "action_once", "event_type": "swap"}) == 1
        assert rule_target({"type": "deposit_amount", "target_amount": 1000}) == 1000
        assert rule_target({"type": "xp_threshold", "target_xp": 250}) == 250
        assert rule_target({"type": "custom"}) == 1

    def test_matches_event(self):
        assert matches_event({"type": "event_count", "event_type": "swap"}, "swap")
        assert not matches_event({"type": "event_count", "event_type": "swap"}, "deposit")
        assert matches_event({"type": "deposit_amount", "target_amount": 5}, "deposit")
        assert not matches_event({"type": "xp_threshold", "target_xp": 5}, "swap")
        assert not matches_event({"type": "custom"}, "swap")

    def test_parse_amount(self):
        assert parse_amount({"amount": "1500"}) == 1500
        assert parse_amount({"amount": 42}) == 42
        assert parse_amount({"amount": "1.5"}) == 0
        assert parse_amount({"amount": True}) == 0
        assert parse_amount({"amount": -5}) == 0
        assert parse_amount({}) == 0

    def test_progress_increment(self):
        assert progress_increment({"type": "deposit_amount", "target_amount": 10}, {"amount": "7"}) == 7
        assert progress_increment({"type": "event_count", "event_type": "swap"}, {"amount": "7"}) == 1


class TestProgressState:
    def test_states(self):
        assert progress_state(0, False, False) == "not_started"
        assert progress_state(2, False, False) == "in_progress"
        assert progress_state(5, True, False) == "completed"
        assert progress_state(5, True, True) == "claimed"


class TestActiveWindow:
    now = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)

    def test_inactive_flag(self):
        assert not is_currently_active(False, self.now - timedelta(days=1), None, self.now)

    def test_not_started_yet(self):
        assert not is_currently_active(True, self.now + timedelta(seconds=1), None, self.now)

    def test_ended(self):
        assert not is_currently_active(True, self.now - timedelta(days=2), self.now - timedelta(days=1), self.now)

    def test_open_ended(self):
        assert is_currently_active(True, self.now - timedelta(days=1), None, self.now)


class TestCadence:
    def test_known(self):
        for cadence in ("daily", "weekly", "one-time"):
            assert validate_cadence(cadence) == cadence

    def test_unknown(self):
        with pytest.raises(ValidationError):
            validate_cadence("monthly")
