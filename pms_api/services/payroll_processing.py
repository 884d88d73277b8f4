"""
Database side of payroll: load inputs, persist results, move records
through their lifecycle and run batches.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pms_api.common.errors import (
    ApprovalLevelError, PayrollComputationError, DuplicatePayrollError, InvalidTransitionError,
)
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.master import Department
from pms_api.models.payroll.bonus import Bonus
from pms_api.models.payroll.components import Allowance, FREQUENCIES
from pms_api.models.payroll.deductions import EmployeeDeduction
from pms_api.models.payroll.payroll import Payroll, PayrollLine, PayrollApproval
from pms_api.models.user import User
from pms_api.services.deduction_rules import load_rules
from pms_api.services.payroll_common import refresh_period
from pms_api.services.payroll_engine import (
    BonusInput, ComponentInput, DeductionItem, GradeInput, PayrollInput, PayrollResult,
    compute_payroll, period_bounds,
)
from pms_api.services.payroll_status import (
    DEPARTMENT_HEAD, FINANCE_DIRECTOR, HR_MANAGER, PAID, PENDING, PENDING_PAYMENT,
    ensure_transition, next_level, target_for,
)

log = logging.getLogger(__name__)


# ---------- inputs ----------

def build_input(emp: Employee, month: int, year: int, frequency: str = "monthly") -> PayrollInput:
    if frequency not in FREQUENCIES:
        raise PayrollComputationError(emp.code, f"unknown pay frequency {frequency!r}")
    p_start, p_end = period_bounds(month, year)

    grade = emp.salary_grade
    grade_in = None
    if grade is not None:
        if not grade.is_active:
            raise PayrollComputationError(emp.code, f"salary grade {grade.level} is inactive")
        grade_in = GradeInput(
            level=grade.level,
            basic_salary=grade.basic_salary,
            components=[
                ComponentInput(
                    name=c.name,
                    type=c.type,
                    calculation_method=c.calculation_method,
                    value=c.value,
                    taxable=c.taxable,
                    is_active=c.is_active,
                    source="grade_component",
                    source_id=c.id,
                )
                for c in grade.components
            ],
        )

    allowances = [
        ComponentInput(
            name=a.name,
            calculation_method=a.calculation_method,
            value=a.value,
            taxable=a.taxable,
            is_active=a.is_active,
            approval_status=a.approval_status,
            effective_date=a.effective_date,
            expiry_date=a.expiry_date,
            source="allowance",
            source_id=a.id,
        )
        for a in Allowance.query.filter_by(employee_id=emp.id).all()
    ]

    bonuses = [
        BonusInput(
            type=b.type,
            amount=b.amount,
            approval_status=b.approval_status,
            taxable=b.taxable,
            payment_date=b.payment_date,
            effective_date=b.effective_date,
            expiry_date=b.expiry_date,
            description=b.description,
            source_id=b.id,
        )
        for b in Bonus.query.filter_by(employee_id=emp.id, is_active=True).all()
    ]

    deductions = [
        DeductionItem(kind=d.kind, description=d.description, amount=d.amount, source_id=d.id)
        for d in (
            EmployeeDeduction.query
            .filter(EmployeeDeduction.employee_id == emp.id, EmployeeDeduction.is_active.is_(True))
            .filter(EmployeeDeduction.start_date <= p_end)
            .filter((EmployeeDeduction.end_date.is_(None)) | (EmployeeDeduction.end_date >= p_start))
            .all()
        )
    ]

    return PayrollInput(
        employee=emp.code,
        grade=grade_in,
        rules=load_rules(emp.department_id, p_end),
        month=month,
        year=year,
        frequency=frequency,
        has_nhf=bool((emp.nhf_number or "").strip()),
        allowances=allowances,
        bonuses=bonuses,
        deductions=deductions,
        overtime_hours=emp.overtime_hours or 0,
        overtime_rate=emp.overtime_rate or 0,
    )


def preview(emp: Employee, month: int, year: int, frequency: str = "monthly") -> PayrollResult:
    return compute_payroll(build_input(emp, month, year, frequency))


# ---------- persistence ----------

def find_existing(employee_id: int, month: int, year: int, frequency: str = "monthly") -> Optional[Payroll]:
    return Payroll.query.filter_by(
        employee_id=employee_id, month=month, year=year, frequency=frequency
    ).first()


def _history(p: Payroll, action: str, from_status: Optional[str], to_status: str,
             user: Optional[User], remarks: Optional[str] = None, level: Optional[str] = None):
    p.approvals.append(PayrollApproval(
        level=level or (user.role if user else None),
        action=action,
        from_status=from_status,
        to_status=to_status,
        user_id=user.id if user else None,
        remarks=remarks,
    ))


def _to_model(emp: Employee, res: PayrollResult, user: Optional[User]) -> Payroll:
    bank = emp.primary_bank()
    p = Payroll(
        employee_id=emp.id,
        department_id=emp.department_id,
        salary_grade_id=emp.salary_grade_id,
        month=res.month,
        year=res.year,
        frequency=res.frequency,
        period_start=res.period_start,
        period_end=res.period_end,
        basic_salary=res.basic_salary,
        total_allowances=res.total_allowances,
        total_bonuses=res.total_bonuses,
        overtime_amount=res.overtime_amount,
        gross_earnings=res.gross_earnings,
        taxable_amount=res.taxable_amount,
        pensionable_amount=res.pensionable_amount,
        tax_amount=res.tax_amount,
        pension_amount=res.pension_amount,
        nhf_amount=res.nhf_amount,
        loan_amount=res.loan_amount,
        other_deductions=res.other_deductions,
        total_deductions=res.total_deductions,
        net_pay=res.net_pay,
        status=res.status,
        bank_snapshot=bank.snapshot() if bank else None,
        calc_meta=res.trace,
        created_by=user.id if user else None,
        updated_by=user.id if user else None,
    )
    for line in res.all_lines():
        p.lines.append(PayrollLine(
            category=line.category,
            code=line.code,
            name=line.name,
            source=line.source,
            source_id=line.source_id,
            calculation_method=line.calculation_method,
            value=line.value,
            amount=line.amount,
            taxable=line.taxable,
        ))
    _history(p, "CREATE", None, res.status, user)
    return p


def create_payroll(emp: Employee, month: int, year: int, frequency: str = "monthly",
                   user: Optional[User] = None, commit: bool = True) -> Payroll:
    if not emp.is_active:
        raise PayrollComputationError(emp.code, f"employee status is {emp.status}")
    if find_existing(emp.id, month, year, frequency):
        raise DuplicatePayrollError(emp.code, month, year)

    result = preview(emp, month, year, frequency)
    p = _to_model(emp, result, user)
    db.session.add(p)
    if commit:
        refresh_period(month, year)
        db.session.commit()
    log.info("created payroll for %s %02d/%d net=%s", emp.code, month, year, result.net_pay)
    return p


def recalculate(p: Payroll, user: Optional[User] = None) -> Payroll:
    """Recompute a DRAFT payroll in place from current inputs."""
    if p.status != "DRAFT":
        raise InvalidTransitionError(p.status, "DRAFT (recalculate)")
    emp = p.employee
    result = preview(emp, p.month, p.year, p.frequency)
    fresh = _to_model(emp, result, user)
    for col in (
        "basic_salary", "total_allowances", "total_bonuses", "overtime_amount", "gross_earnings",
        "taxable_amount", "pensionable_amount", "tax_amount", "pension_amount", "nhf_amount",
        "loan_amount", "other_deductions", "total_deductions", "net_pay", "bank_snapshot", "calc_meta",
        "department_id", "salary_grade_id",
    ):
        setattr(p, col, getattr(fresh, col))
    p.lines = list(fresh.lines)
    p.updated_by = user.id if user else None
    _history(p, "RECALCULATE", p.status, p.status, user)
    refresh_period(p.month, p.year)
    db.session.commit()
    return p


# ---------- lifecycle ----------

HR_DEPARTMENTS = frozenset({"human resources", "hr"})
FINANCE_DEPARTMENTS = frozenset({"finance", "finance and accounting", "accounting"})

# level -> (department names the approver must sit in, position pattern)
LEVEL_RULES = {
    DEPARTMENT_HEAD: (None, re.compile(r"head|director|manager", re.I)),
    HR_MANAGER: (HR_DEPARTMENTS, re.compile(r"hr manager|head of hr|hr head", re.I)),
    FINANCE_DIRECTOR: (FINANCE_DEPARTMENTS, re.compile(r"finance director|head of finance|finance head", re.I)),
}


def can_approve(user: Optional[User], p: Payroll) -> bool:
    """
    Whether ``user`` may sign off ``p`` at its current approval level.

    Super admins may act at any level. Department heads are recognised either
    by Department.head_user_id or by their employee record's position; the HR
    and finance levels also require membership of the matching department.
    """
    if user is None or p.status != PENDING:
        return False
    if user.is_super_admin:
        return True
    departments, title = LEVEL_RULES.get(p.approval_level or DEPARTMENT_HEAD, (None, None))
    if title is None:
        return False

    emp = user.employee
    position = (emp.position or "") if emp else ""
    if departments is None:
        if p.department is not None and p.department.head_user_id == user.id:
            return True
        return bool(emp and emp.department_id == p.department_id and title.search(position))

    heads = (
        Department.query
        .filter(db.func.lower(Department.name).in_(departments), Department.head_user_id == user.id)
        .first()
    )
    if heads:
        return True
    dept_name = (emp.department.name if emp and emp.department else "").strip().lower()
    return dept_name in departments and bool(title.search(position))


def transition(p: Payroll, action: str, user: Optional[User] = None,
               remarks: Optional[str] = None, commit: bool = True) -> Payroll:
    target, label = target_for(action)
    current = p.status
    ensure_transition(current, target)

    if action == "reject" and not (remarks or "").strip():
        raise ValueError("a reason is required to reject a payroll")

    level = None
    if action in ("approve", "reject"):
        level = p.approval_level or DEPARTMENT_HEAD
        if not can_approve(user, p):
            raise ApprovalLevelError(level, user.email if user else None)
        if action == "approve":
            following = next_level(level)
            if following is not None:
                target = PENDING
            p.approval_level = following
    elif target == PENDING:
        level = DEPARTMENT_HEAD
        p.approval_level = DEPARTMENT_HEAD
    if target != PENDING:
        p.approval_level = None

    now = datetime.now(timezone.utc)
    if target == PENDING_PAYMENT:
        bank = p.employee.primary_bank() if p.employee else None
        if bank:
            p.bank_snapshot = bank.snapshot()
        p.payment_reference = f"PAY-{p.id}-{now:%Y%m%d%H%M%S}"
        p.payment_initiated_at = now
        p.failure_reason = None
    elif target == PAID:
        p.paid_at = now
    elif action == "mark_failed":
        p.failure_reason = remarks or "payment failed"

    p.status = target
    p.remarks = remarks or p.remarks
    p.updated_by = user.id if user else None
    _history(p, label, current, target, user, remarks, level=level)
    if action == "approve":
        log.info("payroll %s signed off at %s by %s, next level %s",
                 p.id, level, user.email, p.approval_level or "none")
    log.info("payroll %s moved %s -> %s by %s", p.id, current, target, user.email if user else "system")

    if commit:
        refresh_period(p.month, p.year)
        db.session.commit()
    return p


# ---------- batches ----------

@dataclass
class BatchResult:
    processed: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": len(self.processed),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "processed_details": self.processed,
            "skipped_details": self.skipped,
            "failed_details": self.failed,
        }


def process_employees(employees: Iterable[Employee], month: int, year: int,
                      frequency: str = "monthly", user: Optional[User] = None) -> BatchResult:
    """Create DRAFT payrolls for many employees; one bad employee never aborts the batch."""
    out = BatchResult()
    for emp in employees:
        ref = {"employee_id": emp.id, "employee_code": emp.code, "name": emp.full_name}
        if not emp.is_active:
            out.skipped.append({**ref, "reason": f"employee status is {emp.status}"})
            continue
        existing = find_existing(emp.id, month, year, frequency)
        if existing:
            out.skipped.append({**ref, "payroll_id": existing.id, "reason": "payroll already exists for this period"})
            continue
        try:
            p = create_payroll(emp, month, year, frequency, user=user, commit=False)
        except PayrollComputationError as e:
            log.warning("batch payroll: %s", e)
            out.failed.append({**ref, "reason": e.reason})
            continue
        db.session.flush()
        out.processed.append({**ref, "payroll_id": p.id, "net_pay": float(p.net_pay)})

    refresh_period(month, year)
    db.session.commit()
    log.info(
        "payroll batch %02d/%d: processed=%d skipped=%d failed=%d",
        month, year, len(out.processed), len(out.skipped), len(out.failed),
    )
    return out


def mark_paid_batch(payroll_ids: Iterable[int], user: Optional[User] = None) -> BatchResult:
    """Mark many PENDING_PAYMENT payrolls as PAID; others are skipped with a reason."""
    out = BatchResult()
    touched = set()
    for pid in payroll_ids:
        p = db.session.get(Payroll, pid)
        if p is None:
            out.failed.append({"payroll_id": pid, "reason": "payroll not found"})
            continue
        ref = {"payroll_id": p.id, "employee_code": p.employee.code if p.employee else None}
        if p.status != PENDING_PAYMENT:
            out.skipped.append({**ref, "status": p.status, "reason": f"payroll is {p.status}, not PENDING_PAYMENT"})
            continue
        transition(p, "mark_paid", user=user, commit=False)
        touched.add((p.month, p.year))
        out.processed.append({**ref, "status": p.status})

    for month, year in touched:
        refresh_period(month, year)
    db.session.commit()
    log.info("mark-paid batch: processed=%d skipped=%d failed=%d",
             len(out.processed), len(out.skipped), len(out.failed))
    return out
