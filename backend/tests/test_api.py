import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from debt_ledger.api.deps import db
from debt_ledger.core.security import create_access_token, hash_password
from debt_ledger.db.base import Base
from debt_ledger.main import app
from debt_ledger.models.allocation import Allocation  # noqa: F401
from debt_ledger.models.audit_log import AuditLog  # noqa: F401
from debt_ledger.models.interest_policy import InterestPolicy  # noqa: F401
from debt_ledger.models.loan import Loan  # noqa: F401
from debt_ledger.models.payment import Payment  # noqa: F401
from debt_ledger.models.user import User
from debt_ledger.models.workspace import Workspace, WorkspaceMember


@pytest.fixture()
def Session():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, autoflush=False, autocommit=False, future=True)
    eng.dispose()


@pytest.fixture()
def client(Session):
    def _db():
        s = Session()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[db] = _db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def seeded(Session):
    with Session() as s:
        owner = User(username="owner", password_hash=hash_password("owner-pass"), display_name="Owner")
        member = User(username="member", password_hash=hash_password("member-pass"))
        outsider = User(username="outsider", password_hash=hash_password("outsider-pass"))
        ws = Workspace(name="Family")
        s.add_all([owner, member, outsider, ws])
        s.flush()
        s.add_all(
            [
                WorkspaceMember(workspace_id=ws.id, user_id=owner.id, role="OWNER"),
                WorkspaceMember(workspace_id=ws.id, user_id=member.id, role="MEMBER"),
            ]
        )
        s.commit()
        return {
            "ws": ws.id,
            "owner": {"Authorization": f"Bearer {create_access_token('owner', owner.id)}"},
            "member": {"Authorization": f"Bearer {create_access_token('member', member.id)}"},
            "outsider": {"Authorization": f"Bearer {create_access_token('outsider', outsider.id)}"},
        }


def _mk_policy(client, seeded, **overrides):
    body = {"name": "Family rate", "mode": "MONTHLY", "monthly_rate": 0.02, "anchor_day": 1}
    body.update(overrides)
    r = client.post(f"/workspaces/{seeded['ws']}/interest-policies", json=body, headers=seeded["owner"])
    assert r.status_code == 201, r.text
    return r.json()


def _mk_loan(client, seeded, policy_id=None, principal=10000):
    body = {"borrower_name": "Anan", "principal": principal, "start_date": "2026-01-01", "interest_policy_id": policy_id}
    r = client.post(f"/workspaces/{seeded['ws']}/loans", json=body, headers=seeded["owner"])
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_login(client, seeded):
    r = client.post("/auth/login", json={"username": "owner", "password": "owner-pass"})
    assert r.status_code == 200
    assert r.json()["access_token"]
    assert r.json()["token_type"] == "bearer"

    r = client.post("/auth/login", json={"username": "owner", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["detail"] == "bad_credentials"


def test_disabled_user_cannot_login(client, seeded, Session):
    with Session() as s:
        u = s.execute(select(User).where(User.username == "member")).scalar_one()
        u.is_active = False
        s.commit()

    r = client.post("/auth/login", json={"username": "member", "password": "member-pass"})
    assert r.status_code == 403
    assert r.json()["detail"] == "user_disabled"


def test_me_lists_memberships(client, seeded):
    r = client.get("/auth/me", headers=seeded["owner"])
    assert r.status_code == 200
    me = r.json()
    assert me["username"] == "owner"
    assert me["display_name"] == "Owner"
    assert me["workspaces"] == [{"workspace_id": seeded["ws"], "workspace_name": "Family", "role": "OWNER"}]

    assert client.get("/auth/me", headers=seeded["outsider"]).json()["workspaces"] == []


def test_policy_reports_legal_rate(client, seeded):
    p = _mk_policy(client, seeded)
    assert p["version"] == 1
    assert p["legal"]["is_legal"] is False
    assert p["legal"]["yearly_rate"] == pytest.approx(0.24)

    r = client.post(
        f"/workspaces/{seeded['ws']}/interest-policies",
        json={"name": "Broken", "mode": "DAILY", "monthly_rate": 0.01},
        headers=seeded["owner"],
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_policy_configuration"


def test_loan_interest_payment_and_reversal(client, seeded):
    ws = seeded["ws"]
    h = seeded["owner"]
    p = _mk_policy(client, seeded)
    loan = _mk_loan(client, seeded, policy_id=p["id"])
    assert loan["status"] == "OPEN"
    assert loan["remaining_principal"] == 10000.0

    r = client.get(f"/workspaces/{ws}/loans/{loan['id']}/interest", params={"as_of": "2026-02-01"}, headers=h)
    assert r.json()["interest_due"] == 200.0

    r = client.get(f"/workspaces/{ws}/loans/{loan['id']}/quote", params={"on": "2026-02-01"}, headers=h)
    assert r.json()["total_owed"] == 10200.0

    r = client.get(f"/workspaces/{ws}/loans/{loan['id']}/accrual", params={"as_of": "2026-02-15"}, headers=h)
    assert [x["full_cycle"] for x in r.json()] == [True, False]

    r = client.post(
        f"/workspaces/{ws}/payments",
        json={"amount": 1200, "payment_date": "2026-02-01", "allocations": [{"loan_id": loan["id"]}]},
        headers=h,
    )
    assert r.status_code == 201, r.text
    payment = r.json()
    assert payment["allocations"][0]["interest_paid"] == 200.0
    assert payment["allocations"][0]["principal_paid"] == 1000.0

    detail = client.get(f"/workspaces/{ws}/loans/{loan['id']}", headers=h).json()
    assert detail["remaining_principal"] == 9000.0
    assert detail["last_payment_date"] == "2026-02-01"
    assert detail["total_interest_paid"] == 200.0
    assert detail["rate_is_legal"] is False

    r = client.patch(f"/workspaces/{ws}/payments/{payment['id']}", json={"note": "slip #12"}, headers=h)
    assert r.json()["note"] == "slip #12"
    assert r.json()["amount"] == 1200.0

    r = client.delete(f"/workspaces/{ws}/payments/{payment['id']}", headers=h)
    assert r.json() == {"ok": True}

    detail = client.get(f"/workspaces/{ws}/loans/{loan['id']}", headers=h).json()
    assert detail["remaining_principal"] == 10000.0
    assert detail["allocations"] == 0
    assert client.get(f"/workspaces/{ws}/payments", headers=h).json() == []


def test_ledger_errors_map_to_status_codes(client, seeded):
    ws = seeded["ws"]
    h = seeded["owner"]
    loan = _mk_loan(client, seeded, principal=100)

    r = client.post(
        f"/workspaces/{ws}/payments",
        json={"amount": 150, "payment_date": "2026-01-05", "allocations": [{"loan_id": loan["id"]}]},
        headers=h,
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "overpayment"
    assert r.json()["retryable"] is False

    r = client.post(
        f"/workspaces/{ws}/payments",
        json={"amount": 100, "payment_date": "2026-01-05", "allocations": [{"loan_id": loan["id"]}]},
        headers=h,
    )
    assert r.status_code == 201

    r = client.post(
        f"/workspaces/{ws}/payments",
        json={"amount": 10, "payment_date": "2026-01-06", "allocations": [{"loan_id": loan["id"]}]},
        headers=h,
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "closed_loan_target"

    r = client.get(f"/workspaces/{ws}/loans/99999", headers=h)
    assert r.status_code == 404
    assert r.json()["detail"] == "loan_not_found"

    r = client.post(
        f"/workspaces/{ws}/payments",
        json={"amount": 0, "allocations": [{"loan_id": loan["id"]}]},
        headers=h,
    )
    assert r.status_code == 422


def test_policy_delete_needs_admin_and_no_loans(client, seeded):
    ws = seeded["ws"]
    p = _mk_policy(client, seeded)
    _mk_loan(client, seeded, policy_id=p["id"])

    r = client.delete(f"/workspaces/{ws}/interest-policies/{p['id']}", headers=seeded["member"])
    assert r.status_code == 403
    assert r.json()["detail"] == "admin_only"

    r = client.delete(f"/workspaces/{ws}/interest-policies/{p['id']}", headers=seeded["owner"])
    assert r.status_code == 409
    assert r.json()["detail"] == "policy_in_use"

    unused = _mk_policy(client, seeded, name="Unused")
    r = client.delete(f"/workspaces/{ws}/interest-policies/{unused['id']}", headers=seeded["owner"])
    assert r.status_code == 200


def test_policy_revision_via_put(client, seeded):
    ws = seeded["ws"]
    p = _mk_policy(client, seeded)
    r = client.put(
        f"/workspaces/{ws}/interest-policies/{p['id']}",
        json={"monthly_rate": 0.0125},
        headers=seeded["owner"],
    )
    assert r.status_code == 200, r.text
    v2 = r.json()
    assert v2["version"] == 2
    assert v2["lineage_id"] == p["id"]
    assert v2["legal"]["is_legal"] is True

    listed = client.get(f"/workspaces/{ws}/interest-policies", headers=seeded["owner"]).json()
    assert [x["id"] for x in listed] == [v2["id"]]


def test_outsider_cannot_see_workspace(client, seeded):
    r = client.get(f"/workspaces/{seeded['ws']}/loans", headers=seeded["outsider"])
    assert r.status_code == 403
    assert r.json()["detail"] == "not_a_member"


def test_mark_overdue_and_audit_trail(client, seeded):
    ws = seeded["ws"]
    h = seeded["owner"]
    body = {"borrower_name": "Mali", "principal": 500, "start_date": "2020-01-01", "due_date": "2020-02-01"}
    loan = client.post(f"/workspaces/{ws}/loans", json=body, headers=h).json()

    r = client.post(f"/workspaces/{ws}/loans/mark-overdue", headers=h)
    assert [x["id"] for x in r.json()] == [loan["id"]]
    assert r.json()[0]["status"] == "OVERDUE"

    r = client.get(f"/workspaces/{ws}/loans", params={"status": "OVERDUE"}, headers=h)
    assert [x["id"] for x in r.json()] == [loan["id"]]

    actions = [x["action"] for x in client.get(f"/workspaces/{ws}/audit", headers=h).json()]
    assert actions == ["loan.overdue", "loan.create"]

    r = client.get(
        f"/workspaces/{ws}/audit",
        params={"entity_type": "loan", "entity_id": loan["id"], "action": "loan.create"},
        headers=h,
    )
    assert [x["details"]["borrower_name"] for x in r.json()] == ["Mali"]

    r = client.get(f"/workspaces/{ws}/audit", headers=seeded["member"])
    assert r.status_code == 403
