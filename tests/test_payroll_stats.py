from decimal import Decimal
from types import SimpleNamespace

from pms_api.services.payroll_stats import summarize, department_breakdown, period_summary, normalize

ROWS = [
    {"status": "PAID", "net_pay": "1000.50", "gross_earnings": 1500, "total_deductions": 499.5,
     "employee_id": 1, "department": "Engineering", "basic_salary": 1200, "total_allowances": 300},
    # camelCase payloads from the client are accepted too
    {"status": "APPROVED", "netPay": 2000, "grossEarnings": 2600, "totalDeductions": 600,
     "employeeId": 2, "departmentName": "Engineering", "basicSalary": 2000, "totalAllowances": 600},
    {"status": "PENDING", "net_pay": 500, "employee_id": 3, "department": "Finance"},
    {"status": "failed", "net_pay": 700, "employee_id": 4},
    # malformed
    {"status": "BOGUS", "net_pay": 10},
    {"status": "PAID"},
    {"status": "PAID", "net_pay": "abc"},
    "not a row",
]


def test_summary_counts_and_amounts():
    s = summarize(ROWS)
    assert s["total_payrolls"] == 4
    assert s["skipped"] == 4
    assert s["counts"]["PAID"] == 1
    assert s["counts"]["FAILED"] == 1
    assert s["counts"]["DRAFT"] == 0
    assert s["total_net_pay"] == 4200.5
    assert s["average_net_pay"] == 1050.13
    assert s["total_gross"] == 4100.0
    assert s["amounts"]["APPROVED"] == 2000.0


def test_summary_rates():
    r = summarize(ROWS)["rates"]
    assert r["approval_rate"] == 25.0
    assert r["payment_rate"] == 25.0
    assert r["failure_rate"] == 25.0
    assert r["processing_rate"] == 25.0
    assert r["completion_rate"] == 25.0
    assert r["pending_payment_rate"] == 0


def test_empty_summary():
    s = summarize([])
    assert s["total_payrolls"] == 0
    assert s["average_net_pay"] == 0
    assert all(v == 0 for v in s["rates"].values())


def test_department_breakdown():
    out = department_breakdown(ROWS)
    assert [d["department"] for d in out] == ["Engineering", "Finance", "Unassigned"]
    eng = out[0]
    assert eng["employee_count"] == 2
    assert eng["payroll_count"] == 2
    assert eng["total_cost"] == 4100.0
    assert eng["total_net_pay"] == 3000.5


def test_period_summary_counts_approved_and_paid_only():
    p = period_summary(ROWS)
    assert p == {
        "payroll_count": 4,
        "employee_count": 2,
        "total_net_salary": 3000.5,
        "pending_reviews": 1,
    }


def test_object_rows():
    row = SimpleNamespace(
        status="PAID", net_pay=Decimal("10.00"), employee_id=7,
        department=SimpleNamespace(name="Ops"),
    )
    n = normalize(row)
    assert n["department"] == "Ops"
    assert n["employee_id"] == 7
    assert n["gross_earnings"] == 0
    assert department_breakdown([row])[0]["department"] == "Ops"
