"""
Aggregation over payroll rows for dashboards and reports.

Rows may be ORM Payroll objects or plain mappings (snake_case or camelCase
keys). Malformed rows are skipped and counted instead of failing the whole
summary.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from pms_api.services.payroll_engine import to_decimal, round_money, ZERO
from pms_api.services.payroll_status import TRANSITIONS

log = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"

_ALIASES = {
    "status": ("status",),
    "net_pay": ("net_pay", "netPay"),
    "gross_earnings": ("gross_earnings", "grossEarnings"),
    "total_deductions": ("total_deductions", "totalDeductions"),
    "basic_salary": ("basic_salary", "basicSalary"),
    "total_allowances": ("total_allowances", "totalAllowances"),
    "employee_id": ("employee_id", "employeeId", "employee"),
    "department": ("department", "department_name", "departmentName", "department_id", "departmentId"),
}


def _get(rec: Any, key: str):
    for name in _ALIASES[key]:
        if isinstance(rec, Mapping):
            if name in rec and rec[name] is not None:
                return rec[name]
        else:
            v = getattr(rec, name, None)
            if v is not None:
                return v
    return None


def _dept_key(value) -> str:
    if value is None:
        return UNASSIGNED
    name = getattr(value, "name", None)
    if name:
        return str(name)
    if isinstance(value, Mapping):
        return str(value.get("name") or value.get("id") or UNASSIGNED)
    return str(value)


def _employee_key(value):
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value.get("id")
    return getattr(value, "id", value)


def normalize(rec: Any) -> Optional[dict]:
    """Pull the fields the aggregations need, or None when the row is unusable."""
    status = _get(rec, "status")
    if not isinstance(status, str) or status.upper() not in TRANSITIONS:
        return None
    net = to_decimal(_get(rec, "net_pay"), None)
    if net is None:
        return None
    return {
        "status": status.upper(),
        "net_pay": net,
        "gross_earnings": to_decimal(_get(rec, "gross_earnings")) or ZERO,
        "total_deductions": to_decimal(_get(rec, "total_deductions")) or ZERO,
        "basic_salary": to_decimal(_get(rec, "basic_salary")) or ZERO,
        "total_allowances": to_decimal(_get(rec, "total_allowances")) or ZERO,
        "employee_id": _employee_key(_get(rec, "employee_id")),
        "department": _dept_key(_get(rec, "department")),
    }


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0


def _money(x: Decimal) -> float:
    return float(round_money(x))


def summarize(records: Iterable[Any]) -> Dict[str, Any]:
    counts: Dict[str, int] = {s: 0 for s in TRANSITIONS}
    amounts: Dict[str, Decimal] = {s: ZERO for s in TRANSITIONS}
    total_net = total_gross = total_ded = ZERO
    total = skipped = 0

    for rec in records:
        row = normalize(rec)
        if row is None:
            skipped += 1
            continue
        total += 1
        counts[row["status"]] += 1
        amounts[row["status"]] += row["net_pay"]
        total_net += row["net_pay"]
        total_gross += row["gross_earnings"]
        total_ded += row["total_deductions"]

    if skipped:
        log.warning("payroll summary skipped %d malformed record(s)", skipped)

    processing = counts["PENDING"]
    completed = counts["PAID"] + counts["REJECTED"] + counts["CANCELLED"] + counts["ARCHIVED"]

    return {
        "total_payrolls": total,
        "skipped": skipped,
        "counts": counts,
        "total_net_pay": _money(total_net),
        "average_net_pay": _money(total_net / total) if total else 0,
        "total_gross": _money(total_gross),
        "total_deductions": _money(total_ded),
        "amounts": {s: _money(a) for s, a in amounts.items()},
        "rates": {
            "approval_rate": _rate(counts["APPROVED"], total),
            "payment_rate": _rate(counts["PAID"], total),
            "failure_rate": _rate(counts["FAILED"], total),
            "pending_payment_rate": _rate(counts["PENDING_PAYMENT"], total),
            "processing_rate": _rate(processing, total),
            "completion_rate": _rate(completed, total),
        },
    }


def department_breakdown(records: Iterable[Any]) -> List[Dict[str, Any]]:
    """Single pass: per department distinct employees, payroll count, cost (basic + allowances), net."""
    acc: Dict[str, Dict[str, Any]] = {}
    for rec in records:
        row = normalize(rec)
        if row is None:
            continue
        d = acc.setdefault(row["department"], {
            "employees": set(),
            "payrolls": 0,
            "total_cost": ZERO,
            "total_net_pay": ZERO,
        })
        d["payrolls"] += 1
        d["employees"].add(row["employee_id"] if row["employee_id"] is not None else f"row-{d['payrolls']}")
        d["total_cost"] += row["basic_salary"] + row["total_allowances"]
        d["total_net_pay"] += row["net_pay"]

    return [
        {
            "department": name,
            "employee_count": len(d["employees"]),
            "payroll_count": d["payrolls"],
            "total_cost": _money(d["total_cost"]),
            "total_net_pay": _money(d["total_net_pay"]),
        }
        for name, d in sorted(acc.items())
    ]


def period_summary(records: Iterable[Any]) -> Dict[str, Any]:
    """Dashboard period figures: net salary and headcount over approved/paid rows."""
    employees = set()
    total_net = ZERO
    pending_reviews = 0
    payrolls = 0
    for rec in records:
        row = normalize(rec)
        if row is None:
            continue
        payrolls += 1
        if row["status"] == "PENDING":
            pending_reviews += 1
        if row["status"] in ("PAID", "APPROVED"):
            employees.add(row["employee_id"])
            total_net += row["net_pay"]
    return {
        "payroll_count": payrolls,
        "employee_count": len(employees),
        "total_net_salary": _money(total_net),
        "pending_reviews": pending_reviews,
    }
