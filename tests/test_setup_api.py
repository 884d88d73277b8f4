from datetime import date

import pytest

from pms_api.models.payroll.components import Allowance


@pytest.fixture()
def org(make):
    make.rules()
    sa = make.user(role="SUPER_ADMIN")
    admin = make.user(role="ADMIN")
    eng = make.department(name="Engineering", code="ENG", head=admin)
    fin = make.department(name="Finance", code="FIN")
    grade = make.grade(level="GL-08")
    emp = make.employee(department=eng, grade=grade, code="EMP001")
    return {"sa": sa, "admin": admin, "eng": eng, "fin": fin, "grade": grade, "emp": emp}


def _preview(client, make, user, emp):
    r = client.post("/api/v1/payrolls/preview", headers=make.headers(user),
                    json={"employee_id": emp.id, "month": 6, "year": 2025})
    assert r.status_code == 200
    return r.get_json()["data"]


def test_salary_grade_create_and_validation(client, make, org):
    h = make.headers(org["sa"])
    r = client.post("/api/v1/salary-grades", headers=h, json={
        "level": "gl-10", "basic_salary": 400000,
        "components": [{"name": "Housing", "value": 80000}, {"name": "Meal", "calculation_method": "percentage", "value": 5}],
    })
    assert r.status_code == 201
    body = r.get_json()["data"]
    assert body["level"] == "GL-10"
    assert [c["name"] for c in body["components"]] == ["Housing", "Meal"]

    assert client.post("/api/v1/salary-grades", headers=h,
                       json={"level": "GL-10", "basic_salary": 1}).status_code == 409
    assert client.post("/api/v1/salary-grades", headers=h,
                       json={"level": "GL-11", "basic_salary": 0}).status_code == 422
    r = client.post("/api/v1/salary-grades", headers=h, json={
        "level": "GL-12", "basic_salary": 100,
        "components": [{"name": "Risk", "calculation_method": "percentage", "value": 150}],
    })
    assert r.status_code == 422


def test_salary_grade_in_use_cannot_be_deleted(client, make, org):
    h = make.headers(org["sa"])
    r = client.delete(f"/api/v1/salary-grades/{org['grade'].id}", headers=h)
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "GRADE_IN_USE"

    spare = make.grade(level="GL-15")
    assert client.delete(f"/api/v1/salary-grades/{spare.id}", headers=h).status_code == 200


def test_allowance_counts_only_after_approval(client, make, org):
    sa, emp = org["sa"], org["emp"]
    base = _preview(client, make, sa, emp)

    r = client.post("/api/v1/allowances", headers=make.headers(org["admin"]), json={
        "employee_id": emp.id, "name": "Call duty", "value": 20000, "effective_date": "2025-01-01",
    })
    assert r.status_code == 201
    alw = r.get_json()["data"]
    assert alw["approval_status"] == "pending"
    assert _preview(client, make, sa, emp)["gross_earnings"] == base["gross_earnings"]

    # admins create but cannot approve
    assert client.post(f"/api/v1/allowances/{alw['id']}/approve",
                       headers=make.headers(org["admin"])).status_code == 403
    r = client.post(f"/api/v1/allowances/{alw['id']}/approve", headers=make.headers(sa))
    assert r.get_json()["data"]["approval_status"] == "approved"
    assert client.post(f"/api/v1/allowances/{alw['id']}/approve", headers=make.headers(sa)).status_code == 409

    after = _preview(client, make, sa, emp)
    assert after["gross_earnings"] == base["gross_earnings"] + 20000


def test_allowance_used_in_payroll_is_kept(client, make, org):
    sa, emp = org["sa"], org["emp"]
    a = Allowance(employee_id=emp.id, name="Call duty", calculation_method="fixed", value=20000,
                  frequency="monthly", approval_status="approved", effective_date=date(2025, 1, 1))
    make.session.add(a)
    make.session.commit()

    client.post("/api/v1/payrolls", headers=make.headers(sa),
                json={"employee_id": emp.id, "month": 6, "year": 2025})
    r = client.delete(f"/api/v1/allowances/{a.id}", headers=make.headers(sa))
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "ALLOWANCE_IN_USE"


def test_allowance_validation_and_scope(client, make, org):
    admin = make.headers(org["admin"])
    outsider = make.employee(department=org["fin"], grade=org["grade"])
    r = client.post("/api/v1/allowances", headers=admin,
                    json={"employee_id": outsider.id, "name": "Risk", "value": 100})
    assert r.status_code == 422

    r = client.post("/api/v1/allowances", headers=admin, json={
        "employee_id": org["emp"].id, "name": "Risk", "value": 100,
        "effective_date": "2025-06-01", "expiry_date": "2025-01-01",
    })
    assert r.status_code == 422
    r = client.post("/api/v1/allowances", headers=admin,
                    json={"employee_id": org["emp"].id, "name": "Risk", "value": 5, "frequency": "hourly"})
    assert r.status_code == 422


def test_statutory_rules_endpoints(client, make, org):
    h = make.headers(org["sa"])
    r = client.post("/api/v1/deductions/statutory", headers=h, json={
        "type": "PAYE", "effective_from": "2025-01-01",
        "value_json": {"brackets": [{"from": 100000, "to": None, "rate": 10}, {"from": 0, "to": 100000, "rate": 0}]},
    })
    assert r.status_code == 422

    r = client.post("/api/v1/deductions/statutory", headers=h, json={
        "type": "PENSION", "effective_from": "2025-01-01", "priority": 1,
        "scope_department_id": org["eng"].id, "value_json": {"rate": 10},
    })
    assert r.status_code == 201
    cfg_id = r.get_json()["data"]["id"]

    eff = client.get(f"/api/v1/deductions/statutory/effective?department_id={org['eng'].id}&on=2025-06-30",
                     headers=h).get_json()["data"]
    assert eff["candidates"]["PENSION"][0]["id"] == cfg_id
    assert eff["rules"] is not None

    assert client.post(f"/api/v1/deductions/statutory/{cfg_id}/close", headers=h).status_code == 200
    assert client.post(f"/api/v1/deductions/statutory/{cfg_id}/close", headers=h).status_code == 409

    assert client.post("/api/v1/deductions/statutory", headers=h,
                       json={"type": "VAT", "value_json": {}}).status_code == 422


def test_employee_deduction_reduces_net(client, make, org):
    sa, emp = org["sa"], org["emp"]
    base = _preview(client, make, sa, emp)
    r = client.post("/api/v1/deductions/employee", headers=make.headers(sa), json={
        "employee_id": emp.id, "kind": "loan", "description": "Car loan",
        "amount": 15000, "start_date": "2025-01-01",
    })
    assert r.status_code == 201
    after = _preview(client, make, sa, emp)
    assert after["loan_amount"] == 15000
    assert after["net_pay"] == pytest.approx(base["net_pay"] - 15000)


def test_employee_onboarding_and_scope(client, make, org):
    admin = make.headers(org["admin"])
    r = client.post("/api/v1/employees", headers=admin, json={
        "code": "emp777", "email": "New.Hire@pms.test", "first_name": "New",
        "department_id": org["eng"].id, "salary_grade_id": org["grade"].id,
        "bank_account": {"bank_name": "Zenith", "account_number": "2000000001"},
    })
    assert r.status_code == 201
    body = r.get_json()["data"]
    assert (body["code"], body["email"]) == ("EMP777", "new.hire@pms.test")
    assert body["bank_accounts"][0]["is_primary"] is True

    r = client.post("/api/v1/employees", headers=admin, json={
        "code": "EMP778", "email": "x@pms.test", "first_name": "X", "department_id": org["fin"].id,
    })
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "FORBIDDEN_SCOPE"

    r = client.post("/api/v1/employees", headers=make.headers(org["sa"]),
                    json={"code": "EMP777", "email": "other@pms.test", "first_name": "Dup"})
    assert r.status_code == 409

    make.employee(department=org["fin"], grade=org["grade"])
    listing = client.get("/api/v1/employees", headers=admin).get_json()
    assert listing["meta"]["total"] == 2
    assert {e["department_id"] for e in listing["data"]} == {org["eng"].id}


def test_bonus_paid_in_its_month_only(client, make, org):
    sa, emp = org["sa"], org["emp"]
    base = _preview(client, make, sa, emp)
    r = client.post("/api/v1/bonuses", headers=make.headers(org["admin"]), json={
        "employee_id": emp.id, "type": "performance", "amount": 30000, "payment_date": "2025-06-15",
    })
    assert r.status_code == 201
    bonus_id = r.get_json()["data"]["id"]
    assert client.post("/api/v1/bonuses", headers=make.headers(org["admin"]),
                       json={"employee_id": emp.id, "type": "gift", "amount": 1}).status_code == 422

    assert client.post(f"/api/v1/bonuses/{bonus_id}/approve", headers=make.headers(sa)).status_code == 200
    assert client.put(f"/api/v1/bonuses/{bonus_id}", headers=make.headers(sa),
                      json={"amount": 1}).status_code == 409

    june = _preview(client, make, sa, emp)
    assert june["total_bonuses"] == 30000
    assert june["gross_earnings"] == base["gross_earnings"] + 30000

    r = client.post("/api/v1/payrolls/preview", headers=make.headers(sa),
                    json={"employee_id": emp.id, "month": 7, "year": 2025})
    assert r.get_json()["data"]["total_bonuses"] == 0
