from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required

from pms_api.common.auth import requires_perms, current_user, scope_to_department, in_department_scope
from pms_api.common.http import ok, fail
from pms_api.common.paging import page_limit, period_args
from pms_api.extensions import db
from pms_api.models.payroll.payroll import Payroll
from pms_api.services.payslip_service import PayslipService, PAYSLIP_STATUSES

payroll_payslips_bp = Blueprint("payroll_payslips", __name__, url_prefix="/api/v1/payroll/payslips")


def payslip_service() -> PayslipService:
    return PayslipService(
        company_name=current_app.config.get("PAYROLL_COMPANY_NAME", ""),
        currency=current_app.config.get("PAYROLL_CURRENCY", "NGN"),
    )


@payroll_payslips_bp.get("")
@jwt_required()
@requires_perms("GENERATE_PAYSLIP", "VIEW_ALL_PAYROLL", "VIEW_DEPARTMENT_PAYROLL")
def list_payslips():
    """
    List payslips for a period (?month=&year=), approved payrolls onwards.
    Optional: department_id, employee_id, include_all=1 to show every status.
    """
    try:
        month, year = period_args()
    except ValueError as e:
        return fail(str(e), 422)

    query = scope_to_department(
        Payroll.query.filter(Payroll.month == month, Payroll.year == year),
        Payroll.department_id, current_user(),
    )
    if request.args.get("include_all") not in ("1", "true", "yes"):
        query = query.filter(Payroll.status.in_(PAYSLIP_STATUSES))
    dept_id = request.args.get("department_id", type=int)
    if dept_id:
        query = query.filter(Payroll.department_id == dept_id)
    emp_id = request.args.get("employee_id", type=int)
    if emp_id:
        query = query.filter(Payroll.employee_id == emp_id)

    page, size = page_limit()
    total = query.count()
    items = query.order_by(Payroll.id.asc()).offset((page - 1) * size).limit(size).all()

    items_data = []
    for p in items:
        emp = p.employee
        items_data.append({
            "payroll_id": p.id,
            "employee_id": p.employee_id,
            "emp_code": emp.code if emp else None,
            "employee_name": emp.full_name if emp else None,
            "department": p.department.name if p.department else None,
            "gross_pay": float(p.gross_earnings or 0),
            "total_deductions": float(p.total_deductions or 0),
            "net_pay": float(p.net_pay or 0),
            "status": p.status,
        })
    return ok({"period": {"month": month, "year": year}, "items": items_data},
              page=page, size=size, total=total)


@payroll_payslips_bp.get("/<int:payroll_id>")
@jwt_required()
@requires_perms("GENERATE_PAYSLIP", "VIEW_ALL_PAYROLL", "VIEW_DEPARTMENT_PAYROLL")
def get_payslip_dto(payroll_id: int):
    """Single payslip JSON DTO for one payroll record."""
    p = db.session.get(Payroll, payroll_id)
    if not p or not in_department_scope(current_user(), p.department_id):
        return fail("Payslip not found", 404)
    return ok(payslip_service().build_payslip_dto(p))
