# pms_api/models/payroll/__init__.py
# Import order matters: grades/components first, then the records that point at them.
from .components import SalaryGrade, SalaryComponent, Allowance
from .bonus import Bonus
from .deductions import EmployeeDeduction
from .stat_config import StatConfig
from .payroll import Payroll, PayrollLine, PayrollApproval, PayrollPeriod

__all__ = [
    "SalaryGrade", "SalaryComponent", "Allowance",
    "Bonus", "EmployeeDeduction", "StatConfig",
    "Payroll", "PayrollLine", "PayrollApproval", "PayrollPeriod",
]
