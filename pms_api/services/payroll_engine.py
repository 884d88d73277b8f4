"""
Payroll computation.

Pure functions only: the caller loads grade, allowances, bonuses, deductions
and the statutory rule set, and gets back a fully itemised result. Nothing in
here touches the database or the request context.

Rounding: every line amount is rounded once to 2 decimals (ROUND_HALF_UP) and
all totals are sums of rounded lines, so

    gross_earnings == basic + total_allowances + total_bonuses + overtime
    net_pay        == gross_earnings - total_deductions

hold exactly.
"""
from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pms_api.common.errors import PayrollComputationError, NegativeNetPayError

log = logging.getLogger(__name__)

ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")

CALC_FIXED = "fixed"
CALC_PERCENTAGE = "percentage"


def to_decimal(value, default: Decimal | None = ZERO) -> Decimal | None:
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def period_bounds(month: int, year: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def _code(name: str) -> str:
    return re.sub(r"[^A-Z0-9]+", "_", (name or "").upper()).strip("_") or "ITEM"


# ---------- inputs ----------

@dataclass(frozen=True)
class ComponentInput:
    """Allowance or deduction line definition (grade component or employee allowance)."""
    name: str
    type: str = "allowance"
    calculation_method: str = CALC_FIXED
    value: Decimal = ZERO
    taxable: bool = True
    is_active: bool = True
    approval_status: str = "approved"
    effective_date: Optional[date] = None
    expiry_date: Optional[date] = None
    source: str = "grade_component"
    source_id: Optional[int] = None


@dataclass(frozen=True)
class GradeInput:
    level: str
    basic_salary: Optional[Decimal]
    components: Sequence[ComponentInput] = ()


@dataclass(frozen=True)
class BonusInput:
    type: str
    amount: Decimal
    approval_status: str = "approved"
    taxable: bool = True
    payment_date: Optional[date] = None
    effective_date: Optional[date] = None
    expiry_date: Optional[date] = None
    description: Optional[str] = None
    source_id: Optional[int] = None


@dataclass(frozen=True)
class DeductionItem:
    kind: str
    description: str
    amount: Decimal
    source_id: Optional[int] = None


@dataclass(frozen=True)
class TaxBracket:
    lower: Decimal
    rate: Decimal
    upper: Optional[Decimal] = None


@dataclass(frozen=True)
class DeductionRules:
    tax_brackets: Sequence[TaxBracket]
    pension_rate: Optional[Decimal]
    nhf_rate: Optional[Decimal]
    relief_fixed: Decimal = ZERO
    relief_rate: Decimal = ZERO
    pensionable_components: frozenset = frozenset()

    @classmethod
    def from_config(cls, paye: dict | None, pension: dict | None, nhf: dict | None,
                    relief: dict | None = None) -> "DeductionRules":
        """Build a rule set from StatConfig.value_json payloads."""
        brackets = [
            TaxBracket(
                lower=to_decimal(b.get("from"), None),
                rate=to_decimal(b.get("rate"), None),
                upper=to_decimal(b.get("to"), None),
            )
            for b in ((paye or {}).get("brackets") or [])
        ]
        relief = relief or {}
        return cls(
            tax_brackets=brackets,
            pension_rate=to_decimal((pension or {}).get("rate"), None),
            nhf_rate=to_decimal((nhf or {}).get("rate"), None),
            relief_fixed=to_decimal(relief.get("fixed")),
            relief_rate=to_decimal(relief.get("rate")),
            pensionable_components=frozenset(
                str(n).strip().casefold() for n in ((pension or {}).get("pensionable_components") or [])
            ),
        )

    def as_meta(self) -> dict:
        return {
            "tax_brackets": [
                {"from": str(b.lower), "to": str(b.upper) if b.upper is not None else None, "rate": str(b.rate)}
                for b in self.tax_brackets
            ],
            "pension_rate": str(self.pension_rate) if self.pension_rate is not None else None,
            "nhf_rate": str(self.nhf_rate) if self.nhf_rate is not None else None,
            "relief_fixed": str(self.relief_fixed),
            "relief_rate": str(self.relief_rate),
            "pensionable_components": sorted(self.pensionable_components),
        }


@dataclass(frozen=True)
class PayrollInput:
    employee: str
    grade: Optional[GradeInput]
    rules: Optional[DeductionRules]
    month: int
    year: int
    frequency: str = "monthly"
    has_nhf: bool = False
    allowances: Sequence[ComponentInput] = ()
    bonuses: Sequence[BonusInput] = ()
    deductions: Sequence[DeductionItem] = ()
    overtime_hours: Decimal = ZERO
    overtime_rate: Decimal = ZERO


# ---------- outputs ----------

@dataclass
class LineResult:
    category: str          # earning / allowance / bonus / deduction
    code: str
    name: str
    amount: Decimal
    source: Optional[str] = None
    source_id: Optional[int] = None
    calculation_method: Optional[str] = None
    value: Optional[Decimal] = None
    taxable: bool = False


@dataclass
class PayrollResult:
    employee: str
    month: int
    year: int
    frequency: str
    period_start: date
    period_end: date
    basic_salary: Decimal
    allowances: List[LineResult]
    bonuses: List[LineResult]
    deductions: List[LineResult]
    total_allowances: Decimal
    total_bonuses: Decimal
    overtime_amount: Decimal
    gross_earnings: Decimal
    taxable_amount: Decimal
    pensionable_amount: Decimal
    tax_amount: Decimal
    pension_amount: Decimal
    nhf_amount: Decimal
    loan_amount: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    status: str = "DRAFT"
    trace: Dict[str, Any] = field(default_factory=dict)

    def earning_lines(self) -> List[LineResult]:
        out = [LineResult("earning", "BASIC", "Basic Salary", self.basic_salary, taxable=True)]
        if self.overtime_amount:
            out.append(LineResult("earning", "OVERTIME", "Overtime", self.overtime_amount, taxable=True))
        return out

    def all_lines(self) -> List[LineResult]:
        return self.earning_lines() + self.allowances + self.bonuses + self.deductions

    def to_dict(self) -> dict:
        def _conv(v):
            if isinstance(v, Decimal):
                return float(v)
            if isinstance(v, date):
                return v.isoformat()
            if isinstance(v, dict):
                return {k: _conv(x) for k, x in v.items()}
            if isinstance(v, list):
                return [_conv(x) for x in v]
            return v
        return _conv(asdict(self))


# ---------- helpers ----------

def _fail(employee: str, reason: str):
    raise PayrollComputationError(employee, reason)


def _resolve_amount(employee: str, comp: ComponentInput, basic: Decimal) -> Decimal:
    value = to_decimal(comp.value, None)
    if value is None or value < 0:
        _fail(employee, f"component '{comp.name}' has an invalid value {comp.value!r}")
    method = (comp.calculation_method or "").lower()
    if method == CALC_FIXED:
        return round_money(value)
    if method == CALC_PERCENTAGE:
        return round_money(basic * value / HUNDRED)
    _fail(employee, f"component '{comp.name}' has unknown calculation method {comp.calculation_method!r}")


def _window_overlaps(start: Optional[date], end: Optional[date], p_start: date, p_end: date) -> bool:
    if start and start > p_end:
        return False
    if end and end < p_start:
        return False
    return True


def bonus_in_period(b: BonusInput, p_start: date, p_end: date) -> bool:
    """Approved and dated inside the period (payment date first, else its effective window)."""
    if (b.approval_status or "").lower() != "approved":
        return False
    if b.payment_date:
        return p_start <= b.payment_date <= p_end
    return _window_overlaps(b.effective_date, b.expiry_date, p_start, p_end)


def _validate_brackets(employee: str, brackets: Sequence[TaxBracket]) -> List[TaxBracket]:
    if not brackets:
        _fail(employee, "tax brackets are not configured")
    prev = None
    for b in brackets:
        if b.lower is None or b.rate is None:
            _fail(employee, "tax bracket is missing its lower bound or rate")
        if b.lower < 0 or b.rate < 0:
            _fail(employee, f"tax bracket from {b.lower} has a negative bound or rate")
        if prev is not None and b.lower <= prev.lower:
            _fail(employee, "tax brackets must be in ascending order of their lower bound")
        prev = b
    return list(brackets)


def progressive_tax(amount: Decimal, brackets: Sequence[TaxBracket]) -> Decimal:
    """
    Cumulative marginal tax. Bracket i covers [lower_i, lower_{i+1});
    the last bracket has no upper bound. Unrounded.
    """
    amount = to_decimal(amount)
    tax = ZERO
    for i, b in enumerate(brackets):
        if amount <= b.lower:
            break
        upper = brackets[i + 1].lower if i + 1 < len(brackets) else None
        top = amount if upper is None else min(amount, upper)
        tax += (top - b.lower) * b.rate / HUNDRED
    return tax


def _sum(lines: Iterable[LineResult]) -> Decimal:
    return sum((l.amount for l in lines), ZERO)


# ---------- main ----------

def compute_payroll(inp: PayrollInput) -> PayrollResult:
    emp = inp.employee
    if not 1 <= int(inp.month) <= 12:
        _fail(emp, f"invalid month {inp.month}")
    p_start, p_end = period_bounds(int(inp.month), int(inp.year))

    grade = inp.grade
    if grade is None:
        _fail(emp, "no salary grade assigned")
    basic = to_decimal(grade.basic_salary, None)
    if basic is None:
        _fail(emp, f"salary grade {grade.level} has no basic salary")
    if basic < 0:
        _fail(emp, f"salary grade {grade.level} has a negative basic salary")
    basic = round_money(basic)

    rules = inp.rules
    if rules is None:
        _fail(emp, "no deduction rule set is configured for the period")
    brackets = _validate_brackets(emp, rules.tax_brackets)
    if rules.pension_rate is None or rules.pension_rate < 0:
        _fail(emp, "pension rate is not configured")
    if inp.has_nhf and (rules.nhf_rate is None or rules.nhf_rate < 0):
        _fail(emp, "NHF rate is not configured")

    # allowances: active grade components + approved in-period employee allowances
    allowances: List[LineResult] = []
    grade_deductions: List[LineResult] = []
    for comp in grade.components:
        if not comp.is_active:
            continue
        amount = _resolve_amount(emp, comp, basic)
        line = LineResult(
            category="allowance" if comp.type == "allowance" else "deduction",
            code=_code(comp.name),
            name=comp.name,
            amount=amount,
            source=comp.source,
            source_id=comp.source_id,
            calculation_method=comp.calculation_method,
            value=to_decimal(comp.value),
            taxable=bool(comp.taxable) if comp.type == "allowance" else False,
        )
        if comp.type == "allowance":
            allowances.append(line)
        elif comp.type == "deduction":
            grade_deductions.append(line)
        else:
            _fail(emp, f"component '{comp.name}' has unknown type {comp.type!r}")

    for comp in inp.allowances:
        if not comp.is_active or (comp.approval_status or "").lower() != "approved":
            continue
        if not _window_overlaps(comp.effective_date, comp.expiry_date, p_start, p_end):
            continue
        allowances.append(LineResult(
            category="allowance",
            code=_code(comp.name),
            name=comp.name,
            amount=_resolve_amount(emp, comp, basic),
            source=comp.source or "allowance",
            source_id=comp.source_id,
            calculation_method=comp.calculation_method,
            value=to_decimal(comp.value),
            taxable=bool(comp.taxable),
        ))

    bonuses: List[LineResult] = []
    for b in inp.bonuses:
        if not bonus_in_period(b, p_start, p_end):
            continue
        amount = to_decimal(b.amount, None)
        if amount is None or amount < 0:
            _fail(emp, f"bonus {b.type} has an invalid amount {b.amount!r}")
        bonuses.append(LineResult(
            category="bonus",
            code=_code(b.type),
            name=b.description or b.type.replace("_", " ").title(),
            amount=round_money(amount),
            source="bonus",
            source_id=b.source_id,
            taxable=bool(b.taxable),
        ))

    hours = to_decimal(inp.overtime_hours)
    rate = to_decimal(inp.overtime_rate)
    if hours < 0 or rate < 0:
        _fail(emp, "overtime hours and rate must not be negative")
    overtime = round_money(hours * rate)

    total_allowances = _sum(allowances)
    total_bonuses = _sum(bonuses)
    gross = basic + total_allowances + total_bonuses + overtime

    # statutory
    relief = round_money(rules.relief_fixed + gross * rules.relief_rate / HUNDRED)
    taxable_income = (
        basic
        + _sum(l for l in allowances if l.taxable)
        + _sum(l for l in bonuses if l.taxable)
        + overtime
        - relief
    )
    taxable_income = max(taxable_income, ZERO)
    tax = round_money(progressive_tax(taxable_income, brackets))

    pensionable = basic + _sum(
        l for l in allowances if l.name.strip().casefold() in rules.pensionable_components
    )
    pension = round_money(pensionable * rules.pension_rate / HUNDRED)
    nhf = round_money(pensionable * rules.nhf_rate / HUNDRED) if inp.has_nhf else ZERO

    deductions: List[LineResult] = [
        LineResult("deduction", "PAYE", "PAYE Tax", tax, source="statutory"),
        LineResult("deduction", "PENSION", "Pension", pension, source="statutory",
                   calculation_method=CALC_PERCENTAGE, value=rules.pension_rate),
        LineResult("deduction", "NHF", "National Housing Fund", nhf, source="statutory",
                   calculation_method=CALC_PERCENTAGE, value=rules.nhf_rate if inp.has_nhf else ZERO),
    ]

    loans = ZERO
    others = _sum(grade_deductions)
    deductions.extend(grade_deductions)
    for d in inp.deductions:
        amount = to_decimal(d.amount, None)
        if amount is None or amount < 0:
            _fail(emp, f"deduction '{d.description}' has an invalid amount {d.amount!r}")
        amount = round_money(amount)
        kind = (d.kind or "other").lower()
        deductions.append(LineResult(
            category="deduction",
            code="LOAN" if kind == "loan" else _code(kind),
            name=d.description,
            amount=amount,
            source="employee_deduction",
            source_id=d.source_id,
        ))
        if kind == "loan":
            loans += amount
        else:
            others += amount

    total_deductions = tax + pension + nhf + loans + others
    if total_deductions > gross:
        raise NegativeNetPayError(emp, gross, total_deductions)
    net = gross - total_deductions

    log.debug("computed payroll for %s %02d/%d: gross=%s net=%s", emp, inp.month, inp.year, gross, net)

    return PayrollResult(
        employee=emp,
        month=int(inp.month),
        year=int(inp.year),
        frequency=inp.frequency,
        period_start=p_start,
        period_end=p_end,
        basic_salary=basic,
        allowances=allowances,
        bonuses=bonuses,
        deductions=deductions,
        total_allowances=total_allowances,
        total_bonuses=total_bonuses,
        overtime_amount=overtime,
        gross_earnings=gross,
        taxable_amount=round_money(taxable_income),
        pensionable_amount=pensionable,
        tax_amount=tax,
        pension_amount=pension,
        nhf_amount=nhf,
        loan_amount=loans,
        other_deductions=others,
        total_deductions=total_deductions,
        net_pay=net,
        trace={
            "grade": grade.level,
            "relief": str(relief),
            "overtime_hours": str(hours),
            "overtime_rate": str(rate),
            "rules": rules.as_meta(),
        },
    )
