import os
from datetime import date
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from pms_api import create_app
from pms_api.extensions import db
from pms_api.models.employee import Employee
from pms_api.models.employee_bank import EmployeeBankAccount
from pms_api.models.master import Department
from pms_api.models.payroll.components import SalaryGrade, SalaryComponent
from pms_api.models.payroll.stat_config import StatConfig
from pms_api.models.security import user_permission_codes
from pms_api.models.user import User
from pms_api.seed_rbac import apply_role_defaults, grant
from pms_api.services.payroll_common import DEFAULT_PAYE, DEFAULT_PENSION, DEFAULT_NHF


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def session(app):
    yield db.session


@pytest.fixture(scope="function")
def client(app):
    return app.test_client()


class Factory:
    """Small builders for the records most tests need."""

    def __init__(self, session):
        self.session = session
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def department(self, name=None, code=None, head=None):
        n = self._next()
        d = Department(name=name or f"Dept {n}", code=code or f"D{n}", head_user_id=head.id if head else None)
        self.session.add(d)
        self.session.commit()
        return d

    def grade(self, level=None, basic="250000",
              components=(("Housing", "fixed", "50000"), ("Transport", "percentage", "10"))):
        g = SalaryGrade(level=level or f"GL-{self._next():02d}", basic_salary=Decimal(basic))
        for pos, (name, method, value) in enumerate(components, start=1):
            g.components.append(SalaryComponent(
                name=name, type="allowance", calculation_method=method, value=Decimal(value), position=pos,
            ))
        self.session.add(g)
        self.session.commit()
        return g

    def employee(self, department=None, grade=None, user=None, bank=True, **kw):
        n = self._next()
        e = Employee(
            code=kw.pop("code", f"EMP{n:03d}"),
            email=kw.pop("email", f"emp{n}@pms.test"),
            first_name=kw.pop("first_name", "Emp"),
            last_name=kw.pop("last_name", str(n)),
            department_id=department.id if department else None,
            salary_grade_id=grade.id if grade else None,
            user_id=user.id if user else None,
            **kw,
        )
        self.session.add(e)
        self.session.flush()
        if bank:
            self.session.add(EmployeeBankAccount(
                employee_id=e.id, bank_name="First Bank", account_number=f"30{n:08d}",
                account_name=e.full_name, is_primary=True,
            ))
        self.session.commit()
        return e

    def user(self, role="USER", email=None, password="secret123", perms=None, status="active"):
        n = self._next()
        u = User(email=email or f"user{n}@pms.test", full_name=f"User {n}", role=role, status=status)
        u.set_password(password)
        self.session.add(u)
        self.session.flush()
        if perms is None:
            apply_role_defaults(u)
        elif perms:
            grant(u, perms)
        self.session.commit()
        return u

    def rules(self, on=date(2025, 1, 1), department=None, priority=100):
        for cfg_type, value in (("PAYE", DEFAULT_PAYE), ("PENSION", DEFAULT_PENSION), ("NHF", DEFAULT_NHF)):
            self.session.add(StatConfig(
                type=cfg_type, key=f"TEST_{cfg_type}", value_json=value,
                scope_department_id=department.id if department else None,
                priority=priority, effective_from=on,
            ))
        self.session.commit()

    def headers(self, user):
        token = create_access_token(
            identity=str(user.id),
            additional_claims={"role": user.role, "perms": sorted(user_permission_codes(user.id))},
        )
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def make(session):
    return Factory(session)
