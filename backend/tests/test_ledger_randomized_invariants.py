from datetime import date, timedelta
from decimal import Decimal
from random import Random
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from debt_ledger.core.config import settings
from debt_ledger.db.base import Base
from debt_ledger.models.allocation import Allocation  # noqa: F401
from debt_ledger.models.audit_log import AuditLog  # noqa: F401
from debt_ledger.models.interest_policy import DAILY, MONTHLY, InterestPolicy  # noqa: F401
from debt_ledger.models.loan import CLOSED, OPEN, OVERDUE, Loan
from debt_ledger.models.payment import Payment  # noqa: F401
from debt_ledger.models.user import User  # noqa: F401
from debt_ledger.models.workspace import Workspace, WorkspaceMember  # noqa: F401
from debt_ledger.services.accrual import interest_due
from debt_ledger.services.allocation import FIFO, INTEREST_FIRST, PRINCIPAL_FIRST, delete_payment, list_payments, record_payment
from debt_ledger.services.interest_policy import create_policy
from debt_ledger.services.loans import create_loan, loan_payment_summary, policy_for


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


def _to_dec(v) -> Decimal:
    return Decimal(str(v))


def _mk_loans(session, ws_id: int, start: date) -> list[Loan]:
    monthly = create_policy(session, ws_id, "Monthly", MONTHLY, monthly_rate=Decimal("0.0125"), anchor_day=31)
    daily = create_policy(session, ws_id, "Daily", DAILY, daily_rate=Decimal("0.0004"), grace_days=7)
    return [
        create_loan(session, ws_id, "A", Decimal("25000"), start, interest_policy_id=monthly.id),
        create_loan(session, ws_id, "B", Decimal("8000"), start, interest_policy_id=daily.id),
        create_loan(session, ws_id, "C", Decimal("3000"), start, due_date=start + timedelta(days=30)),
    ]


def _assert_invariants(session, loans: list[Loan], day: date) -> None:
    for ln in loans:
        session.refresh(ln)
        remaining = _to_dec(ln.remaining_principal)
        accrued = _to_dec(ln.accrued_interest)

        assert remaining >= 0
        assert accrued >= 0
        assert (ln.status == CLOSED) == (remaining == 0)
        assert ln.status in (OPEN, OVERDUE, CLOSED)

        summary = loan_payment_summary(session, ln)
        assert summary.total_principal_paid + remaining == _to_dec(ln.principal)

        if ln.status != CLOSED:
            assert interest_due(ln, policy_for(session, ln), day) >= accrued


def test_randomized_payments_and_reversals_keep_ledger_consistent(session, monkeypatch):
    monkeypatch.setattr(settings, "overpayment_policy", "unallocated")
    rng = Random(1337)

    ws = Workspace(name=f"ws-{uuid4().hex[:8]}")
    session.add(ws)
    session.commit()

    start = date(2026, 1, 1)
    loans = _mk_loans(session, ws.id, start)

    day = start
    for _ in range(60):
        day += timedelta(days=rng.randint(1, 9))
        open_ids = [ln.id for ln in loans if ln.status != CLOSED]
        payments = list_payments(session, ws.id)

        roll = rng.random()
        if payments and roll < 0.25:
            delete_payment(session, ws.id, rng.choice(payments).id, today=day)
        elif open_ids and roll < 0.65:
            targets = rng.sample(open_ids, k=rng.randint(1, len(open_ids)))
            amount = Decimal(rng.choice([50, 125, 300, 999, 2500, 6000]))
            record_payment(session, ws.id, amount, day, allocations=targets)
        elif open_ids:
            amount = Decimal(rng.choice([75, 400, 1800]))
            record_payment(session, ws.id, amount, day, method=rng.choice([INTEREST_FIRST, PRINCIPAL_FIRST, FIFO]))

        _assert_invariants(session, loans, day)


def test_reversing_every_payment_restores_principal(session, monkeypatch):
    monkeypatch.setattr(settings, "overpayment_policy", "unallocated")
    rng = Random(2025)

    ws = Workspace(name=f"ws-{uuid4().hex[:8]}")
    session.add(ws)
    session.commit()

    start = date(2026, 1, 1)
    loans = _mk_loans(session, ws.id, start)

    day = start
    for _ in range(15):
        day += timedelta(days=rng.randint(3, 20))
        open_ids = [ln.id for ln in loans if ln.status != CLOSED]
        if not open_ids:
            break
        record_payment(session, ws.id, Decimal(rng.choice([200, 700, 1500])), day, allocations=open_ids)
        for ln in loans:
            session.refresh(ln)

    payments = list_payments(session, ws.id)
    rng.shuffle(payments)
    for p in payments:
        delete_payment(session, ws.id, p.id, today=day)

    for ln in loans:
        session.refresh(ln)
        assert _to_dec(ln.remaining_principal) == _to_dec(ln.principal)
        assert ln.status != CLOSED
        assert session.execute(select(Allocation).where(Allocation.loan_id == ln.id)).first() is None
