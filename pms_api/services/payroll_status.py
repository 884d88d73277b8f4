from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Tuple

from pms_api.common.errors import InvalidTransitionError

DRAFT = "DRAFT"
PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
PENDING_PAYMENT = "PENDING_PAYMENT"
PAID = "PAID"
CANCELLED = "CANCELLED"
FAILED = "FAILED"
ARCHIVED = "ARCHIVED"

# current status -> statuses it may move to
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DRAFT: frozenset({PENDING, CANCELLED, ARCHIVED}),
    PENDING: frozenset({APPROVED, REJECTED, CANCELLED, ARCHIVED}),
    APPROVED: frozenset({PENDING_PAYMENT}),
    PENDING_PAYMENT: frozenset({PAID, FAILED}),
    FAILED: frozenset({PENDING_PAYMENT}),
    REJECTED: frozenset(),
    PAID: frozenset(),
    CANCELLED: frozenset(),
    ARCHIVED: frozenset(),
}

# action name -> (target status, history label)
ACTIONS: Dict[str, Tuple[str, str]] = {
    "submit": (PENDING, "SUBMIT"),
    "approve": (APPROVED, "APPROVE"),
    "reject": (REJECTED, "REJECT"),
    "initiate_payment": (PENDING_PAYMENT, "INITIATE_PAYMENT"),
    "mark_paid": (PAID, "MARK_PAID"),
    "mark_failed": (FAILED, "MARK_FAILED"),
    "cancel": (CANCELLED, "CANCEL"),
    "archive": (ARCHIVED, "ARCHIVE"),
}

TERMINAL = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> str:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    return target


def target_for(action: str) -> Tuple[str, str]:
    try:
        return ACTIONS[action]
    except KeyError:
        raise ValueError(f"unknown payroll action {action!r}")


# sign-off chain a submitted payroll walks through before it is APPROVED
DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
HR_MANAGER = "HR_MANAGER"
FINANCE_DIRECTOR = "FINANCE_DIRECTOR"
FINAL_LEVEL = "SUPER_ADMIN"
APPROVAL_LEVELS: Tuple[str, ...] = (DEPARTMENT_HEAD, HR_MANAGER, FINANCE_DIRECTOR, FINAL_LEVEL)


def next_level(level: str) -> Optional[str]:
    """Level after ``level``, or None once the final sign-off is done."""
    try:
        idx = APPROVAL_LEVELS.index(level)
    except ValueError:
        raise ValueError(f"unknown approval level {level!r}")
    return APPROVAL_LEVELS[idx + 1] if idx + 1 < len(APPROVAL_LEVELS) else None
