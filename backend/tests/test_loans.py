from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from debt_ledger.core.errors import InvalidLoan, LoanNotFound, PolicyNotFound
from debt_ledger.db.base import Base
from debt_ledger.models.allocation import Allocation  # noqa: F401
from debt_ledger.models.audit_log import AuditLog  # noqa: F401
from debt_ledger.models.interest_policy import DAILY, InterestPolicy  # noqa: F401
from debt_ledger.models.loan import OPEN, OVERDUE, Loan  # noqa: F401
from debt_ledger.models.payment import Payment  # noqa: F401
from debt_ledger.models.user import User  # noqa: F401
from debt_ledger.models.workspace import Workspace, WorkspaceMember  # noqa: F401
from debt_ledger.services.interest_policy import create_policy
from debt_ledger.services.loans import (
    create_loan,
    get_live_interest,
    get_loan,
    list_loans,
    mark_overdue_loans,
    status_for_open_loan,
)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    s = Session()
    try:
        yield s
    finally:
        s.close()


def _mk_workspace(session) -> Workspace:
    ws = Workspace(name=f"ws-{uuid4().hex[:8]}")
    session.add(ws)
    session.commit()
    return ws


def test_new_loan_starts_clean(session):
    ws = _mk_workspace(session)
    loan = create_loan(session, ws.id, "  Somchai ", Decimal("1234.567"), date(2026, 3, 1))

    assert loan.borrower_name == "Somchai"
    assert Decimal(str(loan.principal)) == Decimal("1234.57")
    assert Decimal(str(loan.remaining_principal)) == Decimal("1234.57")
    assert Decimal(str(loan.accrued_interest)) == Decimal("0")
    assert loan.interest_checkpoint_date == date(2026, 3, 1)
    assert loan.status == OPEN
    assert loan.version == 1


@pytest.mark.parametrize(
    "name, principal, due",
    [
        ("", Decimal("100"), None),
        ("Anan", Decimal("0"), None),
        ("Anan", Decimal("-1"), None),
        ("Anan", Decimal("100"), date(2025, 12, 31)),
    ],
)
def test_invalid_loans_are_rejected(session, name, principal, due):
    ws = _mk_workspace(session)
    with pytest.raises(InvalidLoan):
        create_loan(session, ws.id, name, principal, date(2026, 1, 1), due_date=due)


def test_loan_with_foreign_policy_is_rejected(session):
    ws1 = _mk_workspace(session)
    ws2 = _mk_workspace(session)
    p = create_policy(session, ws2.id, "Other", DAILY, daily_rate=Decimal("0.001"))

    with pytest.raises(PolicyNotFound):
        create_loan(session, ws1.id, "Anan", Decimal("100"), date(2026, 1, 1), interest_policy_id=p.id)
    assert list_loans(session, ws1.id) == []


def test_loans_are_scoped_to_workspace(session):
    ws1 = _mk_workspace(session)
    ws2 = _mk_workspace(session)
    loan = create_loan(session, ws1.id, "Anan", Decimal("100"), date(2026, 1, 1))

    assert get_loan(session, ws1.id, loan.id).id == loan.id
    with pytest.raises(LoanNotFound):
        get_loan(session, ws2.id, loan.id)


def test_live_interest_is_read_only(session):
    ws = _mk_workspace(session)
    p = create_policy(session, ws.id, "Daily", DAILY, daily_rate=Decimal("0.001"))
    loan = create_loan(session, ws.id, "Anan", Decimal("1000"), date(2026, 1, 1), interest_policy_id=p.id)

    assert get_live_interest(session, ws.id, loan.id, date(2026, 1, 11)) == Decimal("10.00")
    assert get_live_interest(session, ws.id, loan.id, date(2026, 1, 11)) == Decimal("10.00")

    session.refresh(loan)
    assert Decimal(str(loan.accrued_interest)) == Decimal("0")
    assert loan.interest_checkpoint_date == date(2026, 1, 1)
    assert loan.version == 1


def test_mark_overdue_only_touches_past_due_open_loans(session):
    ws = _mk_workspace(session)
    late = create_loan(session, ws.id, "Late", Decimal("100"), date(2026, 1, 1), due_date=date(2026, 1, 31))
    on_time = create_loan(session, ws.id, "OnTime", Decimal("100"), date(2026, 1, 1), due_date=date(2026, 3, 1))
    no_due = create_loan(session, ws.id, "Open", Decimal("100"), date(2026, 1, 1))

    marked = mark_overdue_loans(session, ws.id, today=date(2026, 2, 1))
    assert [ln.id for ln in marked] == [late.id]

    assert {ln.id for ln in list_loans(session, ws.id, [OVERDUE])} == {late.id}
    assert {ln.id for ln in list_loans(session, ws.id, [OPEN])} == {on_time.id, no_due.id}

    # running again is a no-op
    assert mark_overdue_loans(session, ws.id, today=date(2026, 2, 1)) == []


def test_status_for_open_loan():
    loan = Loan(due_date=date(2026, 1, 31))
    assert status_for_open_loan(loan, date(2026, 1, 31)) == OPEN
    assert status_for_open_loan(loan, date(2026, 2, 1)) == OVERDUE
    assert status_for_open_loan(Loan(due_date=None), date(2030, 1, 1)) == OPEN
