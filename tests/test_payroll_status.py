import pytest

from pms_api.common.errors import InvalidTransitionError
from pms_api.models.payroll.payroll import PAYROLL_STATUSES
from pms_api.services.payroll_status import (
    ACTIONS, APPROVAL_LEVELS, TERMINAL, TRANSITIONS, can_transition, ensure_transition, next_level, target_for,
)


def test_happy_path_to_paid():
    status = "DRAFT"
    for action in ("submit", "approve", "initiate_payment", "mark_paid"):
        target, _ = target_for(action)
        status = ensure_transition(status, target)
    assert status == "PAID"


def test_failed_payment_can_be_retried():
    assert can_transition("PENDING_PAYMENT", "FAILED")
    assert can_transition("FAILED", "PENDING_PAYMENT")
    assert not can_transition("FAILED", "PAID")


@pytest.mark.parametrize("current,target", [
    ("DRAFT", "APPROVED"),
    ("DRAFT", "PAID"),
    ("PENDING", "PAID"),
    ("APPROVED", "CANCELLED"),
    ("PAID", "PENDING"),
    ("REJECTED", "PENDING"),
])
def test_forbidden_moves(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransitionError) as ei:
        ensure_transition(current, target)
    assert (ei.value.current, ei.value.target) == (current, target)


def test_terminal_states():
    assert TERMINAL == {"REJECTED", "PAID", "CANCELLED", "ARCHIVED"}
    for s in TERMINAL:
        assert not TRANSITIONS[s]


def test_unknown_status_has_no_moves():
    assert not can_transition("LIMBO", "PENDING")


def test_actions():
    assert target_for("reject") == ("REJECTED", "REJECT")
    assert set(ACTIONS) == {
        "submit", "approve", "reject", "initiate_payment", "mark_paid", "mark_failed", "cancel", "archive",
    }
    with pytest.raises(ValueError):
        target_for("teleport")


def test_approval_levels_run_in_order():
    level, seen = APPROVAL_LEVELS[0], []
    while level:
        seen.append(level)
        level = next_level(level)
    assert seen == ["DEPARTMENT_HEAD", "HR_MANAGER", "FINANCE_DIRECTOR", "SUPER_ADMIN"]
    with pytest.raises(ValueError):
        next_level("CEO")


def test_no_processing_status():
    assert "PROCESSING" not in TRANSITIONS
    assert set(PAYROLL_STATUSES) == set(TRANSITIONS)
    assert not any("PROCESSING" in nxt for nxt in TRANSITIONS.values())
