# pms_api/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from pms_api.common.http import fail


class APIError(Exception):
    """Custom API Error class."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


# ---------- domain errors (raised by services, mapped to 4xx below) ----------

class PayrollComputationError(ValueError):
    """A payroll could not be computed for one employee."""
    code = "PAYROLL_COMPUTATION"

    def __init__(self, employee: str | None, reason: str):
        self.employee = employee
        self.reason = reason
        who = employee or "unknown employee"
        super().__init__(f"cannot process payroll for employee {who}: {reason}")


class NegativeNetPayError(PayrollComputationError):
    code = "NEGATIVE_NET_PAY"

    def __init__(self, employee, gross, deductions):
        self.gross = gross
        self.deductions = deductions
        super().__init__(
            employee,
            f"total deductions {deductions} exceed gross earnings {gross}",
        )


class InvalidTransitionError(ValueError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"cannot move payroll from {current} to {target}")


class ApprovalLevelError(PermissionError):
    """The user may not sign off a payroll at its current approval level."""
    code = "FORBIDDEN_LEVEL"

    def __init__(self, level: str | None, user_email: str | None):
        self.level = level
        self.user_email = user_email
        super().__init__(f"{user_email or 'anonymous'} cannot approve at level {level or 'none'}")


class DuplicatePayrollError(ValueError):
    code = "DUPLICATE_PAYROLL"

    def __init__(self, employee: str, month: int, year: int):
        self.employee = employee
        self.month = month
        self.year = year
        super().__init__(f"payroll already exists for employee {employee} in {month:02d}/{year}")


def register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        from pms_api.extensions import db
        db.session.rollback()
        return fail(
            "Duplicate or FK constraint failed",
            status=409,
            code="CONSTRAINT_ERROR",
            detail=str(e.orig) if getattr(e, "orig", None) else str(e),
        )

    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(PayrollComputationError)
    def _computation(e: PayrollComputationError):
        app.logger.warning("payroll computation failed: %s", e)
        return fail(str(e), status=422, code=e.code)

    @app.errorhandler(InvalidTransitionError)
    def _transition(e: InvalidTransitionError):
        return fail(str(e), status=409, code=e.code)

    @app.errorhandler(ApprovalLevelError)
    def _level(e: ApprovalLevelError):
        app.logger.warning("approval refused: %s", e)
        return fail(str(e), status=403, code=e.code, detail={"approval_level": e.level})

    @app.errorhandler(DuplicatePayrollError)
    def _duplicate(e: DuplicatePayrollError):
        return fail(str(e), status=409, code=e.code)

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
