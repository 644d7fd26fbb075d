"""
Unit tests for src/session_controller.py - SessionController.

Tests cover:
- Recorded / RecordedDuplicate / Rejected outcomes
- Cooldown suppression of identical text
- Busy gate dropping re-entrant decodes
- Storage failures surfaced, not swallowed
- Qt signals for UI refresh
- reset_day() / wipe_all() operator controls
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import DAY_ONE, make_record
from exceptions import StorageUnavailableError
from label_parser import LabelParser
from session_controller import (
    RECORDED, RECORDED_DUPLICATE, REJECTED, STATE_BUSY, STATE_IDLE,
    ScanOutcome, SessionController,
)

LABEL_A = "FAC=A100|B=1|T=2|CL=ACME"
LABEL_B = "FAC=A100|B=2|T=2|CL=ACME"


def make_controller(ledger, clock, **kwargs):
    return SessionController(
        ledger,
        cooldown_seconds=0.7,
        clock=clock,
        now=lambda: DAY_ONE + timedelta(seconds=clock.now),
        **kwargs,
    )


@pytest.fixture
def controller(qapp, append_ledger, fake_clock):
    return make_controller(append_ledger, fake_clock)


@pytest.fixture
def signals(controller):
    recorded, rejected = [], []
    controller.scan_recorded.connect(recorded.append)
    controller.scan_rejected.connect(rejected.append)
    return recorded, rejected


# ============================================================================
# Outcomes
# ============================================================================

class TestOutcomes:
    def test_first_scan_recorded(self, controller, append_ledger, signals):
        outcome = controller.on_label_decoded(LABEL_A, "ana")

        assert outcome.kind == RECORDED
        assert outcome.event.invoice_id == "A100"
        assert outcome.event.operator == "ana"
        assert append_ledger.count() == 1
        assert signals[0] == [outcome]
        assert controller.state == STATE_IDLE

    def test_rescan_after_cooldown_is_duplicate(self, controller, append_ledger, fake_clock):
        controller.on_label_decoded(LABEL_A)
        fake_clock.advance(1.0)
        outcome = controller.on_label_decoded(LABEL_A)

        assert outcome.kind == RECORDED_DUPLICATE
        assert append_ledger.count() == 2

    def test_overwrite_mode_duplicate_keeps_one_row(self, qapp, overwrite_ledger, fake_clock):
        controller = make_controller(overwrite_ledger, fake_clock)
        controller.on_label_decoded(LABEL_A)
        fake_clock.advance(1.0)
        outcome = controller.on_label_decoded(LABEL_A)

        assert outcome.kind == RECORDED_DUPLICATE
        assert overwrite_ledger.count() == 1

    def test_invalid_label_rejected_without_write(self, controller, append_ledger, signals):
        outcome = controller.on_label_decoded("garbage")

        assert outcome.kind == REJECTED
        assert "unrecognized format" in outcome.reason
        assert append_ledger.count() == 0
        assert signals[1] == [outcome]

    def test_oversized_total_recorded_as_unknown(self, controller, append_ledger, signals):
        outcome = controller.on_label_decoded("FAC=A1|B=1|T=99999999999999999999")

        assert outcome.kind == RECORDED
        assert outcome.event.expected_package_count == 0
        assert append_ledger.count() == 1
        assert signals[0] == [outcome]

    def test_oversized_package_rejected(self, controller, append_ledger, signals):
        outcome = controller.on_label_decoded("FAC=A1|B=99999999999999999999")

        assert outcome.kind == REJECTED
        assert "out of range" in outcome.reason
        assert append_ledger.count() == 0
        assert signals[1] == [outcome]

    def test_text_is_trimmed(self, controller):
        outcome = controller.on_label_decoded(f"  {LABEL_A}\n")
        assert outcome.raw_text == LABEL_A


# ============================================================================
# Cooldown
# ============================================================================

class TestCooldown:
    def test_identical_text_within_cooldown_ignored(self, controller, append_ledger, fake_clock, signals):
        first = controller.on_label_decoded(LABEL_A)
        fake_clock.advance(0.3)
        second = controller.on_label_decoded(LABEL_A)

        assert first.kind == RECORDED
        assert second is None
        assert append_ledger.count() == 1
        assert len(signals[0]) == 1

    def test_different_text_within_cooldown_processed(self, controller, append_ledger, fake_clock):
        controller.on_label_decoded(LABEL_A)
        fake_clock.advance(0.1)
        outcome = controller.on_label_decoded(LABEL_B)

        assert outcome.kind == RECORDED
        assert append_ledger.count() == 2

    def test_repeated_invalid_label_ignored(self, controller, fake_clock, signals):
        controller.on_label_decoded("garbage")
        fake_clock.advance(0.2)
        assert controller.on_label_decoded("garbage") is None
        assert len(signals[1]) == 1

    def test_alternating_labels_all_processed(self, controller, append_ledger, fake_clock):
        for text in (LABEL_A, LABEL_B, LABEL_A):
            fake_clock.advance(0.1)
            assert controller.on_label_decoded(text) is not None
        assert append_ledger.count() == 3


# ============================================================================
# Busy gate
# ============================================================================

class TestBusyGate:
    def test_decode_while_busy_dropped(self, qapp, append_ledger, fake_clock):
        nested_results = []
        states = []
        controller = None

        class ReentrantParser(LabelParser):
            def parse(self, raw_text):
                states.append(controller.state)
                nested_results.append(controller.on_label_decoded(LABEL_B))
                return super().parse(raw_text)

        controller = make_controller(append_ledger, fake_clock, parser=ReentrantParser())
        outcome = controller.on_label_decoded(LABEL_A)

        assert outcome.kind == RECORDED
        assert states == [STATE_BUSY]
        assert nested_results == [None]
        assert append_ledger.count() == 1


# ============================================================================
# Storage failures
# ============================================================================

class TestStorageFailure:
    @pytest.fixture
    def broken_ledger(self, append_ledger):
        ledger = MagicMock(wraps=append_ledger)
        ledger.mode = append_ledger.mode
        ledger.put.side_effect = StorageUnavailableError("disk full", db_path="ledger.db")
        return ledger

    def test_failure_reported_as_rejected(self, qapp, broken_ledger, fake_clock):
        controller = make_controller(broken_ledger, fake_clock)
        outcome = controller.on_label_decoded(LABEL_A)

        assert outcome.kind == REJECTED
        assert isinstance(outcome.error, StorageUnavailableError)
        assert "NOT saved" in outcome.message

    def test_same_label_can_be_retried_immediately(self, qapp, broken_ledger, fake_clock):
        controller = make_controller(broken_ledger, fake_clock)
        controller.on_label_decoded(LABEL_A)
        retry = controller.on_label_decoded(LABEL_A)

        assert retry is not None
        assert broken_ledger.put.call_count == 2


# ============================================================================
# Operator controls
# ============================================================================

class TestOperatorControls:
    def test_active_day(self, controller):
        assert controller.active_day == "2025-11-05"

    def test_day_events(self, controller):
        controller.on_label_decoded(LABEL_A)
        assert [e.package_index for e in controller.day_events()] == [1]

    def test_reset_day_keeps_history_and_forgets_last_text(self, controller, append_ledger, fake_clock):
        days = []
        controller.day_changed.connect(days.append)

        controller.on_label_decoded(LABEL_A)
        assert controller.reset_day() == "2025-11-05"
        fake_clock.advance(0.1)
        outcome = controller.on_label_decoded(LABEL_A)

        assert days == ["2025-11-05"]
        assert outcome is not None
        assert append_ledger.count() == 2

    def test_wipe_all(self, controller, append_ledger):
        cleared = []
        controller.ledger_cleared.connect(lambda: cleared.append(True))

        controller.on_label_decoded(LABEL_A)
        assert controller.wipe_all() == 1
        assert append_ledger.count() == 0
        assert cleared == [True]


# ============================================================================
# ScanOutcome messages
# ============================================================================

class TestScanOutcomeMessage:
    def test_recorded_message(self, append_ledger):
        event = append_ledger.make_event(make_record("A100", 3, client="ACME"), "", DAY_ONE)
        outcome = ScanOutcome(kind=RECORDED, raw_text="x", event=event)
        assert outcome.message == "✅ Recorded: A100-3 — ACME"
        assert outcome.recorded is True

    def test_duplicate_message(self, append_ledger):
        event = append_ledger.make_event(make_record("A100", 3), "", DAY_ONE)
        outcome = ScanOutcome(kind=RECORDED_DUPLICATE, raw_text="x", event=event)
        assert "Repeated: A100-3" in outcome.message

    def test_rejected_message_without_error(self):
        outcome = ScanOutcome(kind=REJECTED, raw_text="x", reason="bad")
        assert outcome.message == "❌ bad"
        assert outcome.recorded is False
