from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import List, Dict, Any, Optional

from pms_api.models.payroll.payroll import Payroll

EARNING_CATEGORIES = {"earning", "allowance", "bonus"}
STATUTORY_CODES = {"PAYE", "PENSION", "NHF"}

# statuses an employee can see a payslip for
PAYSLIP_STATUSES = ("APPROVED", "PENDING_PAYMENT", "PAID")


def _plain(v):
    if isinstance(v, Decimal):
        return float(v)
    if isinstance(v, dict):
        return {k: _plain(x) for k, x in v.items()}
    if isinstance(v, list):
        return [_plain(x) for x in v]
    return v


@dataclass
class PayslipComponent:
    code: str
    name: str
    amount: Decimal
    category: str


@dataclass
class PayslipDTO:
    company: Dict[str, Any]
    employee: Dict[str, Any]
    period: Dict[str, Any]
    payment: Dict[str, Any]
    earnings: List[PayslipComponent]
    earnings_summary: Dict[str, Any]
    deductions: List[PayslipComponent]
    deductions_summary: Dict[str, Any]
    totals: Dict[str, Any]
    approvals: Optional[List[Dict[str, Any]]] = None


class PayslipService:
    def __init__(self, company_name: str = "", currency: str = "NGN"):
        self.company_name = company_name
        self.currency = currency

    def build_payslip_dto(self, p: Payroll) -> dict:
        """
        Payslip projection of one payroll record.
        Amounts come straight from the stored payroll; nothing is recomputed.
        """
        emp = p.employee
        dept = p.department
        grade = p.salary_grade
        bank = p.bank_snapshot if isinstance(p.bank_snapshot, dict) else {}

        earnings: List[PayslipComponent] = []
        deductions: List[PayslipComponent] = []
        for line in p.lines:
            entry = PayslipComponent(
                code=line.code,
                name=line.name,
                amount=Decimal(str(line.amount or 0)),
                category=line.category,
            )
            if line.category in EARNING_CATEGORIES:
                earnings.append(entry)
            else:
                deductions.append(entry)

        dto = PayslipDTO(
            company={"name": self.company_name, "currency": self.currency},
            employee={
                "id": emp.id,
                "code": emp.code,
                "name": emp.full_name,
                "email": emp.email,
                "department": dept.name if dept else None,
                "grade": grade.level if grade else None,
                "position": emp.position,
                "nhf_number": emp.nhf_number,
                "pension_number": emp.pension_number,
                "bank_name": bank.get("bank_name"),
                "bank_account_number": bank.get("account_number"),
                "bank_account_name": bank.get("account_name"),
            },
            period={
                "payroll_id": p.id,
                "month": p.month,
                "year": p.year,
                "frequency": p.frequency,
                "period_start": str(p.period_start),
                "period_end": str(p.period_end),
                "status": p.status,
            },
            payment={
                "reference": p.payment_reference,
                "initiated_at": p.payment_initiated_at.isoformat() if p.payment_initiated_at else None,
                "paid_at": p.paid_at.isoformat() if p.paid_at else None,
            },
            earnings=earnings,
            earnings_summary={
                "basic_salary": p.basic_salary,
                "total_allowances": p.total_allowances,
                "total_bonuses": p.total_bonuses,
                "overtime": p.overtime_amount,
                "gross_earnings": p.gross_earnings,
            },
            deductions=deductions,
            deductions_summary={
                "tax": p.tax_amount,
                "pension": p.pension_amount,
                "nhf": p.nhf_amount,
                "loans": p.loan_amount,
                "others": p.other_deductions,
                "total_deductions": p.total_deductions,
            },
            totals={
                "taxable_amount": p.taxable_amount,
                "pensionable_amount": p.pensionable_amount,
                "gross_pay": p.gross_earnings,
                "net_pay": p.net_pay,
            },
            approvals=[
                {
                    "action": a.action,
                    "level": a.level,
                    "from_status": a.from_status,
                    "to_status": a.to_status,
                    "remarks": a.remarks,
                    "at": a.created_at.isoformat() if a.created_at else None,
                }
                for a in p.approvals
            ],
        )
        return _plain(asdict(dto))
