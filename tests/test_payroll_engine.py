from datetime import date
from decimal import Decimal

import pytest

from pms_api.common.errors import PayrollComputationError, NegativeNetPayError
from pms_api.services.payroll_common import DEFAULT_PAYE, DEFAULT_PENSION, DEFAULT_NHF
from pms_api.services.payroll_engine import (
    BonusInput, ComponentInput, DeductionItem, DeductionRules, GradeInput, PayrollInput, TaxBracket,
    bonus_in_period, compute_payroll, progressive_tax, round_money,
)


def _rules(**kw):
    return DeductionRules.from_config(
        DEFAULT_PAYE, kw.get("pension", DEFAULT_PENSION), DEFAULT_NHF, kw.get("relief"),
    )


def _grade(basic="250000", components=None):
    if components is None:
        components = [
            ComponentInput(name="Housing", calculation_method="fixed", value=Decimal("50000")),
            ComponentInput(name="Transport", calculation_method="percentage", value=Decimal("10")),
        ]
    return GradeInput(level="GL-08", basic_salary=Decimal(basic), components=components)


def _input(**kw):
    base = dict(employee="EMP001", grade=_grade(), rules=_rules(), month=6, year=2025)
    base.update(kw)
    return PayrollInput(**base)


def test_reference_scenario():
    res = compute_payroll(_input())

    assert res.basic_salary == Decimal("250000.00")
    assert res.total_allowances == Decimal("75000.00")
    assert [l.amount for l in res.allowances] == [Decimal("50000.00"), Decimal("25000.00")]
    assert res.gross_earnings == Decimal("325000.00")
    assert res.pension_amount == Decimal("20000.00")
    assert res.nhf_amount == Decimal("0")
    assert res.tax_amount == Decimal("57049.86")
    assert res.net_pay == Decimal("247950.14")
    assert res.net_pay == res.gross_earnings - (res.tax_amount + Decimal("20000"))
    assert res.status == "DRAFT"
    assert (res.period_start, res.period_end) == (date(2025, 6, 1), date(2025, 6, 30))


def test_totals_are_consistent():
    res = compute_payroll(_input(
        bonuses=[BonusInput(type="performance", amount=Decimal("10000.555"), payment_date=date(2025, 6, 15))],
        deductions=[DeductionItem(kind="loan", description="Car loan", amount=Decimal("5000"))],
        overtime_hours=Decimal("4"), overtime_rate=Decimal("1250.5"),
    ))
    assert res.gross_earnings == res.basic_salary + res.total_allowances + res.total_bonuses + res.overtime_amount
    assert res.net_pay == res.gross_earnings - res.total_deductions
    assert res.total_bonuses == Decimal("10000.56")
    assert res.overtime_amount == Decimal("5002.00")
    assert res.loan_amount == Decimal("5000.00")


def test_progressive_tax_is_marginal():
    brackets = [
        TaxBracket(Decimal("0"), Decimal("10")),
        TaxBracket(Decimal("1000"), Decimal("20")),
    ]
    assert progressive_tax(Decimal("500"), brackets) == Decimal("50")
    assert progressive_tax(Decimal("1500"), brackets) == Decimal("200")
    assert progressive_tax(Decimal("0"), brackets) == Decimal("0")


def test_percentage_allowance_rounding():
    grade = _grade(basic="100000.05", components=[
        ComponentInput(name="Utility", calculation_method="percentage", value=Decimal("12.5")),
    ])
    res = compute_payroll(_input(grade=grade))
    assert res.allowances[0].amount == round_money(Decimal("100000.05") * Decimal("12.5") / 100)
    assert res.allowances[0].amount == Decimal("12500.01")


def test_inactive_components_and_unapproved_items_are_ignored():
    grade = _grade(components=[
        ComponentInput(name="Housing", value=Decimal("50000")),
        ComponentInput(name="Meal", value=Decimal("5000"), is_active=False),
    ])
    res = compute_payroll(_input(
        grade=grade,
        allowances=[ComponentInput(name="Hardship", value=Decimal("7000"), approval_status="pending",
                                   source="allowance")],
        bonuses=[BonusInput(type="special", amount=Decimal("9000"), approval_status="pending",
                            payment_date=date(2025, 6, 1))],
    ))
    assert [l.name for l in res.allowances] == ["Housing"]
    assert res.total_bonuses == Decimal("0")


def test_non_taxable_bonus_skips_tax_base():
    taxed = compute_payroll(_input(bonuses=[
        BonusInput(type="special", amount=Decimal("20000"), payment_date=date(2025, 6, 10)),
    ]))
    untaxed = compute_payroll(_input(bonuses=[
        BonusInput(type="special", amount=Decimal("20000"), taxable=False, payment_date=date(2025, 6, 10)),
    ]))
    plain = compute_payroll(_input())
    assert untaxed.tax_amount == plain.tax_amount
    assert taxed.tax_amount > plain.tax_amount
    assert untaxed.gross_earnings == taxed.gross_earnings


def test_bonus_period_window():
    june = (date(2025, 6, 1), date(2025, 6, 30))
    assert bonus_in_period(BonusInput(type="project", amount=1, payment_date=date(2025, 6, 30)), *june)
    assert not bonus_in_period(BonusInput(type="project", amount=1, payment_date=date(2025, 7, 1)), *june)
    assert bonus_in_period(BonusInput(type="project", amount=1, effective_date=date(2025, 5, 1)), *june)
    assert not bonus_in_period(
        BonusInput(type="project", amount=1, effective_date=date(2025, 4, 1), expiry_date=date(2025, 5, 31)), *june
    )


def test_nhf_only_with_number():
    res = compute_payroll(_input(has_nhf=True))
    assert res.nhf_amount == Decimal("6250.00")  # 2.5% of basic, nothing else pensionable
    assert res.net_pay == Decimal("241700.14")


def test_pensionable_components_policy():
    rules = _rules(pension={"rate": 8, "pensionable_components": ["Housing", "transport"]})
    res = compute_payroll(_input(rules=rules))
    assert res.pensionable_amount == Decimal("325000.00")
    assert res.pension_amount == Decimal("26000.00")


def test_nhf_follows_pensionable_amount():
    rules = _rules(pension={"rate": 8, "pensionable_components": ["Housing"]})
    res = compute_payroll(_input(rules=rules, has_nhf=True))
    assert res.pensionable_amount == Decimal("300000.00")
    assert res.pension_amount == Decimal("24000.00")
    assert res.nhf_amount == Decimal("7500.00")
    assert res.total_deductions == res.tax_amount + Decimal("31500.00")


def test_relief_reduces_taxable_income():
    rules = _rules(relief={"fixed": 200000, "rate": 20})
    res = compute_payroll(_input(rules=rules))
    # 325000 - (200000 + 65000)
    assert res.taxable_amount == Decimal("60000.00")
    assert res.tax_amount == round_money(progressive_tax(Decimal("60000"), rules.tax_brackets))


def test_relief_larger_than_income_floors_at_zero():
    res = compute_payroll(_input(rules=_rules(relief={"fixed": 1000000})))
    assert res.taxable_amount == Decimal("0")
    assert res.tax_amount == Decimal("0")


def test_missing_grade_fails_with_employee_reference():
    with pytest.raises(PayrollComputationError) as ei:
        compute_payroll(_input(grade=None))
    assert ei.value.employee == "EMP001"
    assert "EMP001" in str(ei.value)


def test_missing_basic_salary_fails():
    with pytest.raises(PayrollComputationError):
        compute_payroll(_input(grade=GradeInput(level="GL-01", basic_salary=None)))


def test_missing_rules_fail():
    with pytest.raises(PayrollComputationError) as ei:
        compute_payroll(_input(rules=None))
    assert "rule set" in ei.value.reason


def test_unsorted_brackets_fail():
    rules = DeductionRules.from_config(
        {"brackets": [{"from": 1000, "rate": 10}, {"from": 0, "rate": 5}]}, DEFAULT_PENSION, DEFAULT_NHF,
    )
    with pytest.raises(PayrollComputationError):
        compute_payroll(_input(rules=rules))


def test_negative_component_value_fails():
    grade = _grade(components=[ComponentInput(name="Bad", value=Decimal("-1"))])
    with pytest.raises(PayrollComputationError):
        compute_payroll(_input(grade=grade))


def test_deductions_above_gross_raise():
    with pytest.raises(NegativeNetPayError):
        compute_payroll(_input(deductions=[
            DeductionItem(kind="loan", description="Huge loan", amount=Decimal("400000")),
        ]))


def test_to_dict_is_plain():
    d = compute_payroll(_input()).to_dict()
    assert d["net_pay"] == 247950.14
    assert d["period_start"] == "2025-06-01"
    assert {l["code"] for l in d["deductions"]} >= {"PAYE", "PENSION", "NHF"}
