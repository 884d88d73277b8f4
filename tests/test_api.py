import pytest

from pms_api.models.payroll.payroll import Payroll
from pms_api.services.payroll_status import APPROVAL_LEVELS


@pytest.fixture()
def org(make):
    make.rules()
    superadmin = make.user(role="SUPER_ADMIN")
    admin = make.user(role="ADMIN")
    eng = make.department(name="Engineering", code="ENG", head=admin)
    fin = make.department(name="Finance", code="FIN")
    grade = make.grade(level="GL-08")
    staff = make.user(role="USER", email="staff@pms.test")
    emp = make.employee(department=eng, grade=grade, user=staff, code="EMP001")
    other = make.employee(department=fin, grade=grade, code="EMP900")
    return {
        "sa": superadmin, "admin": admin, "staff": staff,
        "eng": eng, "fin": fin, "grade": grade, "emp": emp, "other": other,
    }


def _create(client, make, user, emp, month=6, year=2025):
    return client.post("/api/v1/payrolls", headers=make.headers(user),
                       json={"employee_id": emp.id, "month": month, "year": year})


def _act(client, make, user, pid, action, **body):
    return client.post(f"/api/v1/payrolls/{pid}/{action}", headers=make.headers(user), json=body)


def _approve_all(client, make, user, pid):
    for _ in APPROVAL_LEVELS:
        r = _act(client, make, user, pid, "approve")
    return r


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["data"] == {"status": "ok"}


def test_login_and_me(client, make):
    make.user(email="jane@pms.test", password="secret123")
    r = client.post("/api/v1/auth/login", json={"email": "Jane@pms.test", "password": "secret123"})
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["user"]["role"] == "USER"
    assert "VIEW_OWN_PAYSLIP" in data["user"]["permissions"]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access']}"})
    assert me.get_json()["data"]["email"] == "jane@pms.test"

    refreshed = client.post("/api/v1/auth/refresh", headers={"Authorization": f"Bearer {data['refresh']}"})
    assert refreshed.status_code == 200
    assert refreshed.get_json()["data"]["access"]


def test_login_failures(client, make):
    make.user(email="jane@pms.test", password="secret123")
    make.user(email="gone@pms.test", password="secret123", status="disabled")

    r = client.post("/api/v1/auth/login", json={"email": "jane@pms.test", "password": "nope"})
    assert r.status_code == 401
    r = client.post("/api/v1/auth/login", json={"email": "gone@pms.test", "password": "secret123"})
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "ACCOUNT_DISABLED"


def test_route_access_endpoint(client, make, org):
    r = client.get("/api/v1/security/route-access?path=/pms/payroll")
    d = r.get_json()["data"]
    assert d["outcome"] == "REDIRECT_SIGNIN"
    assert d["from"] == "/pms/payroll"

    r = client.post("/api/v1/security/route-access", headers=make.headers(org["staff"]),
                    json={"paths": ["/pms/payroll/my-payslips", "/pms/payroll/process"]})
    d = r.get_json()["data"]
    assert d["/pms/payroll/my-payslips"]["allowed"] is True
    assert d["/pms/payroll/process"]["outcome"] == "REDIRECT_DEFAULT"
    assert d["/pms/payroll/process"]["redirect_to"] == "/pms/dashboard"

    assert client.get("/api/v1/security/route-access").status_code == 422


def test_me_permissions(client, make, org):
    r = client.get("/api/v1/security/me-permissions", headers=make.headers(org["admin"]))
    data = r.get_json()["data"]
    assert data["role"] == "ADMIN"
    assert "CREATE_PAYROLL" in data["permissions"]
    assert "APPROVE_PAYROLL" not in data["permissions"]


def test_requires_token_and_permission(client, make, org):
    assert client.get("/api/v1/payrolls").status_code == 401
    r = _create(client, make, org["staff"], org["emp"])
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "FORBIDDEN_PERMISSION"


def test_payroll_flow(client, make, org):
    sa = org["sa"]
    r = _create(client, make, sa, org["emp"])
    assert r.status_code == 201
    body = r.get_json()["data"]
    pid = body["id"]
    assert body["status"] == "DRAFT"
    assert body["net_pay"] == 247950.14
    assert body["tax_amount"] == 57049.86
    assert body["allowed_transitions"] == ["ARCHIVED", "CANCELLED", "PENDING"]

    again = _create(client, make, sa, org["emp"])
    assert again.status_code == 409
    assert again.get_json()["error"]["code"] == "DUPLICATE_PAYROLL"

    r = _act(client, make, sa, pid, "approve")
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "INVALID_TRANSITION"

    assert _act(client, make, sa, pid, "submit").get_json()["data"]["status"] == "PENDING"
    assert _act(client, make, sa, pid, "reject").status_code == 422
    waiting = []
    for _ in APPROVAL_LEVELS:
        body = _act(client, make, sa, pid, "approve", remarks="checked").get_json()["data"]
        waiting.append(body["approval_level"])
    assert waiting == ["HR_MANAGER", "FINANCE_DIRECTOR", "SUPER_ADMIN", None]
    assert body["status"] == "APPROVED"
    r = _act(client, make, sa, pid, "initiate-payment")
    assert r.get_json()["data"]["payment_reference"].startswith(f"PAY-{pid}-")

    r = client.post("/api/v1/payrolls/mark-paid", headers=make.headers(sa), json={"ids": [pid, 424242]})
    out = r.get_json()["data"]
    assert (out["processed"], out["skipped"], out["failed"]) == (1, 0, 1)

    detail = client.get(f"/api/v1/payrolls/{pid}", headers=make.headers(sa)).get_json()["data"]
    assert detail["status"] == "PAID"
    assert [a["action"] for a in detail["approvals"]] == [
        "CREATE", "SUBMIT", "APPROVE", "APPROVE", "APPROVE", "APPROVE", "INITIATE_PAYMENT", "MARK_PAID",
    ]
    assert detail["lines"][0]["code"] == "BASIC"


def test_unknown_action_and_delete(client, make, org):
    sa = org["sa"]
    pid = _create(client, make, sa, org["emp"]).get_json()["data"]["id"]
    assert _act(client, make, sa, pid, "teleport").status_code == 404

    assert _act(client, make, sa, pid, "submit").status_code == 200
    r = client.delete(f"/api/v1/payrolls/{pid}", headers=make.headers(sa))
    assert r.status_code == 409

    pid2 = _create(client, make, sa, org["emp"], month=7).get_json()["data"]["id"]
    r = client.delete(f"/api/v1/payrolls/{pid2}", headers=make.headers(sa))
    assert r.status_code == 200
    assert Payroll.query.filter_by(id=pid2).first() is None


def test_preview_does_not_persist(client, make, org):
    r = client.post("/api/v1/payrolls/preview", headers=make.headers(org["sa"]),
                    json={"employee_id": org["emp"].id, "month": 6, "year": 2025})
    assert r.status_code == 200
    assert r.get_json()["data"]["net_pay"] == 247950.14
    assert Payroll.query.count() == 0

    r = client.post("/api/v1/payrolls/preview", headers=make.headers(org["sa"]),
                    json={"employee_id": org["emp"].id, "month": 13, "year": 2025})
    assert r.status_code == 422


def test_computation_errors_are_422(client, make, org):
    lonely = make.employee(department=org["eng"], code="EMP404")
    r = _create(client, make, org["sa"], lonely)
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "PAYROLL_COMPUTATION"
    assert "EMP404" in r.get_json()["error"]["message"]


def test_admin_is_scoped_to_own_department(client, make, org):
    sa, admin = org["sa"], org["admin"]
    foreign = _create(client, make, sa, org["other"]).get_json()["data"]["id"]

    assert client.get(f"/api/v1/payrolls/{foreign}", headers=make.headers(admin)).status_code == 404
    assert _create(client, make, admin, org["other"]).status_code == 404

    own = _create(client, make, admin, org["emp"])
    assert own.status_code == 201
    listing = client.get("/api/v1/payrolls", headers=make.headers(admin)).get_json()
    assert listing["meta"]["total"] == 1
    assert listing["data"][0]["employee_code"] == "EMP001"

    # the department head signs off first; later levels belong to others
    own_id = own.get_json()["data"]["id"]
    assert _act(client, make, admin, own_id, "submit").status_code == 200
    r = _act(client, make, admin, own_id, "approve")
    assert r.get_json()["data"]["approval_level"] == "HR_MANAGER"
    r = _act(client, make, admin, own_id, "approve")
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "FORBIDDEN_LEVEL"

    _act(client, make, sa, foreign, "submit")
    assert _act(client, make, admin, foreign, "approve").status_code == 404


def test_batch_process_endpoint(client, make, org):
    sa = org["sa"]
    make.employee(department=org["eng"], grade=org["grade"])
    _create(client, make, sa, org["emp"])

    r = client.post("/api/v1/payrolls/process", headers=make.headers(sa),
                    json={"month": 6, "year": 2025, "department_id": org["eng"].id})
    out = r.get_json()["data"]
    assert (out["processed"], out["skipped"], out["failed"]) == (1, 1, 0)

    r = client.post("/api/v1/payrolls/process", headers=make.headers(sa),
                    json={"month": 6, "year": 2025, "employee_ids": [999999]})
    assert r.status_code == 404


def test_payslips_and_self_service(client, make, org):
    sa, staff = org["sa"], org["staff"]
    pid = _create(client, make, sa, org["emp"]).get_json()["data"]["id"]

    # drafts are not visible to the employee
    mine = client.get("/api/v1/self/payslips", headers=make.headers(staff)).get_json()
    assert mine["data"] == []
    assert client.get(f"/api/v1/self/payslips/{pid}", headers=make.headers(staff)).status_code == 404

    _act(client, make, sa, pid, "submit")
    _approve_all(client, make, sa, pid)

    mine = client.get("/api/v1/self/payslips", headers=make.headers(staff)).get_json()
    assert [p["payroll_id"] for p in mine["data"]] == [pid]

    slip = client.get(f"/api/v1/self/payslips/{pid}", headers=make.headers(staff)).get_json()["data"]
    assert slip["totals"]["net_pay"] == 247950.14
    assert slip["employee"]["code"] == "EMP001"
    assert slip["deductions_summary"]["tax"] == 57049.86
    assert {e["code"] for e in slip["earnings"]} == {"BASIC", "HOUSING", "TRANSPORT"}

    r = client.get("/api/v1/payroll/payslips?month=6&year=2025", headers=make.headers(sa))
    assert r.get_json()["data"]["items"][0]["payroll_id"] == pid
    assert client.get("/api/v1/payroll/payslips", headers=make.headers(sa)).status_code == 422


def test_self_service_needs_employee_record(client, make, org):
    loner = make.user(role="USER")
    r = client.get("/api/v1/self/payslips", headers=make.headers(loner))
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "NO_EMPLOYEE"


def test_self_service_allowance_request_and_profile(client, make, org):
    staff = org["staff"]
    r = client.post("/api/v1/self/allowances", headers=make.headers(staff),
                    json={"name": "Remote work", "value": 15000})
    assert r.status_code == 201
    assert r.get_json()["data"]["approval_status"] == "pending"

    listing = client.get("/api/v1/self/allowances", headers=make.headers(staff)).get_json()["data"]
    assert listing["grade"] == "GL-08"
    assert [a["name"] for a in listing["grade_allowances"]] == ["Housing", "Transport"]
    assert len(listing["additional_allowances"]) == 1

    r = client.put("/api/v1/self/profile", headers=make.headers(staff), json={"phone": "08030000000"})
    assert r.get_json()["data"]["phone"] == "08030000000"
    profile = client.get("/api/v1/self/profile", headers=make.headers(staff)).get_json()["data"]
    assert profile["department"] == "Engineering"
    assert profile["bank"]["bank_name"] == "First Bank"


def test_dashboard(client, make, org):
    sa = org["sa"]
    pid = _create(client, make, sa, org["emp"]).get_json()["data"]["id"]
    _act(client, make, sa, pid, "submit")

    data = client.get("/api/v1/dashboard?month=6&year=2025", headers=make.headers(sa)).get_json()["data"]
    assert data["stats"]["total_payrolls"] == 1
    assert data["period"]["pending_reviews"] == 1
    assert data["headcount"]["active"] == 2

    scoped = client.get("/api/v1/dashboard?month=6&year=2025", headers=make.headers(org["admin"])).get_json()
    assert scoped["data"]["headcount"]["total"] == 1
    assert client.get("/api/v1/dashboard?month=13", headers=make.headers(sa)).status_code == 422


def test_departments_crud(client, make, org):
    sa = org["sa"]
    r = client.post("/api/v1/departments", headers=make.headers(sa), json={"name": "Sales", "code": "sal"})
    assert r.status_code == 201
    assert r.get_json()["data"]["code"] == "SAL"
    dup = client.post("/api/v1/departments", headers=make.headers(sa), json={"name": "Sales"})
    assert dup.status_code == 409

    busy = client.delete(f"/api/v1/departments/{org['eng'].id}", headers=make.headers(sa))
    assert busy.status_code == 409
    gone = client.delete(f"/api/v1/departments/{r.get_json()['data']['id']}", headers=make.headers(sa))
    assert gone.status_code == 200


def test_rbac_user_creation(client, make, org):
    r = client.post("/api/v1/rbac/users", headers=make.headers(org["sa"]),
                    json={"email": "lead@pms.test", "password": "secret1", "role": "admin"})
    assert r.status_code == 201
    data = r.get_json()["data"]
    assert data["role"] == "ADMIN"
    assert "VIEW_DEPARTMENT_PAYROLL" in data["perms"]
    assert "APPROVE_PAYROLL" not in data["perms"]

    short = client.post("/api/v1/rbac/users", headers=make.headers(org["sa"]),
                        json={"email": "x@pms.test", "password": "123"})
    assert short.status_code == 422

    denied = client.post("/api/v1/rbac/users", headers=make.headers(org["admin"]),
                         json={"email": "y@pms.test", "password": "secret1"})
    assert denied.status_code == 403


def test_revoked_grant_stops_working_with_old_token(client, make, org):
    sa, admin = org["sa"], org["admin"]
    old = make.headers(admin)
    assert client.get("/api/v1/payrolls", headers=old).status_code == 200

    r = client.post("/api/v1/rbac/users/revoke", headers=make.headers(sa),
                    json={"user_id": admin.id, "perms": ["VIEW_DEPARTMENT_PAYROLL", "VIEW_ALL_PAYROLL"]})
    assert r.status_code == 200

    r = client.get("/api/v1/payrolls", headers=old)
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "FORBIDDEN_PERMISSION"


def test_demoted_or_disabled_user_loses_access(client, make, org):
    deputy = make.user(role="SUPER_ADMIN")
    old = make.headers(deputy)
    bogus = {"user_id": org["staff"].id, "role": "OWNER"}
    assert client.post("/api/v1/rbac/users/role", headers=old, json=bogus).status_code == 422

    r = client.post("/api/v1/rbac/users/role", headers=make.headers(org["sa"]),
                    json={"user_id": deputy.id, "role": "USER"})
    assert r.get_json()["data"]["role"] == "USER"
    r = client.post("/api/v1/rbac/users/role", headers=old, json=bogus)
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "FORBIDDEN_ROLE"

    staff_token = make.headers(org["staff"])
    org["staff"].status = "disabled"
    make.session.commit()
    r = client.get("/api/v1/self/payslips", headers=staff_token)
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "ACCOUNT_DISABLED"


def test_batch_process_rejects_malformed_ids(client, make, org):
    h = make.headers(org["sa"])
    r = client.post("/api/v1/payrolls/process", headers=h,
                    json={"month": 6, "year": 2025, "employee_ids": ["x"]})
    assert r.status_code == 422
    r = client.post("/api/v1/payrolls/process", headers=h,
                    json={"month": 6, "year": 2025, "department_id": "eng"})
    assert r.status_code == 422
    assert Payroll.query.count() == 0


def test_payroll_needs_every_approval_level(client, make, org):
    sa, admin = org["sa"], org["admin"]
    hr = make.department(name="HR", code="HR")
    hr_manager = make.user(role="ADMIN")
    make.employee(department=hr, user=hr_manager, position="Head of HR")
    finance_director = make.user(role="ADMIN")
    make.employee(department=org["fin"], user=finance_director, position="Finance Director")

    pid = _create(client, make, sa, org["emp"]).get_json()["data"]["id"]
    assert _act(client, make, sa, pid, "submit").get_json()["data"]["approval_level"] == "DEPARTMENT_HEAD"

    # staff hold no sign-off permission at all
    r = _act(client, make, org["staff"], pid, "approve")
    assert r.get_json()["error"]["code"] == "FORBIDDEN_PERMISSION"
    # HR cannot see the payroll before its department head has signed
    assert _act(client, make, hr_manager, pid, "approve").status_code == 404

    for approver in (admin, hr_manager, finance_director):
        assert _act(client, make, approver, pid, "approve").status_code == 200

    r = client.get("/api/v1/payrolls?approval_level=super_admin", headers=make.headers(sa))
    assert [p["id"] for p in r.get_json()["data"]] == [pid]
    assert client.get("/api/v1/payrolls?approval_level=CEO", headers=make.headers(sa)).status_code == 422

    r = _act(client, make, sa, pid, "approve")
    assert r.get_json()["data"]["status"] == "APPROVED"
    history = [(a["action"], a["level"], a["user_id"]) for a in r.get_json()["data"]["approvals"]][1:]
    assert history == [
        ("SUBMIT", "DEPARTMENT_HEAD", sa.id),
        ("APPROVE", "DEPARTMENT_HEAD", admin.id),
        ("APPROVE", "HR_MANAGER", hr_manager.id),
        ("APPROVE", "FINANCE_DIRECTOR", finance_director.id),
        ("APPROVE", "SUPER_ADMIN", sa.id),
    ]


def test_rejection_at_hr_level(client, make, org):
    sa, admin = org["sa"], org["admin"]
    hr = make.department(name="Human Resources", code="HR")
    hr_manager = make.user(role="ADMIN")
    make.employee(department=hr, user=hr_manager, position="HR Manager")

    pid = _create(client, make, sa, org["emp"]).get_json()["data"]["id"]
    _act(client, make, sa, pid, "submit")
    _act(client, make, admin, pid, "approve")

    assert _act(client, make, hr_manager, pid, "reject").status_code == 422
    r = _act(client, make, hr_manager, pid, "reject", remarks="grade changed mid-month")
    body = r.get_json()["data"]
    assert (body["status"], body["approval_level"]) == ("REJECTED", None)
    assert body["approvals"][-1]["level"] == "HR_MANAGER"
    assert body["approvals"][-1]["remarks"] == "grade changed mid-month"
