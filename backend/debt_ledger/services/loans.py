from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from debt_ledger.core.errors import InvalidLoan, LoanNotFound
from debt_ledger.db.transaction import atomic
from debt_ledger.models.allocation import Allocation
from debt_ledger.models.interest_policy import InterestPolicy
from debt_ledger.models.loan import CLOSED, OPEN, OVERDUE, Loan
from debt_ledger.models.payment import Payment
from debt_ledger.services.accrual import d2, interest_due, to_dec, ZERO
from debt_ledger.services.audit import log_event
from debt_ledger.services.interest_policy import current_version, get_policy
from debt_ledger.utils.timezone import today_local

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoanPaymentSummary:
    allocations: int
    total_principal_paid: Decimal
    total_interest_paid: Decimal

    @property
    def total_paid(self) -> Decimal:
        return self.total_principal_paid + self.total_interest_paid


def status_for_open_loan(loan: Loan, today: date) -> str:
    if loan.due_date is not None and loan.due_date < today:
        return OVERDUE
    return OPEN


def create_loan(
    s: Session,
    workspace_id: int,
    borrower_name: str,
    principal,
    start_date: date,
    due_date: date | None = None,
    interest_policy_id: int | None = None,
    note: str | None = None,
    actor: str = "system",
) -> Loan:
    nm = (borrower_name or "").strip()
    if not nm:
        raise InvalidLoan("borrower name is required")
    amount = d2(to_dec(principal))
    if amount <= 0:
        raise InvalidLoan("principal must be positive")
    if due_date is not None and due_date < start_date:
        raise InvalidLoan("due date is before start date")

    with atomic(s):
        policy_id = None
        if interest_policy_id is not None:
            # New loans always start on the newest terms of the chosen policy.
            policy_id = current_version(s, get_policy(s, workspace_id, interest_policy_id)).id

        ln = Loan(
            workspace_id=workspace_id,
            interest_policy_id=policy_id,
            borrower_name=nm,
            principal=amount,
            remaining_principal=amount,
            accrued_interest=ZERO,
            interest_checkpoint_date=start_date,
            start_date=start_date,
            due_date=due_date,
            status=OPEN,
            note=note,
        )
        s.add(ln)
        s.flush()
        log_event(
            s,
            username=actor,
            action="loan.create",
            entity_type="loan",
            entity_id=ln.id,
            workspace_id=workspace_id,
            details={
                "borrower_name": nm,
                "principal": str(amount),
                "start_date": str(start_date),
                "due_date": str(due_date) if due_date is not None else None,
                "interest_policy_id": policy_id,
            },
        )

    logger.info("loan %s created in workspace %s, principal %s", ln.id, workspace_id, amount)
    return ln


def get_loan(s: Session, workspace_id: int, loan_id: int) -> Loan:
    ln = s.execute(select(Loan).where(Loan.id == loan_id, Loan.workspace_id == workspace_id)).scalar_one_or_none()
    if ln is None:
        raise LoanNotFound(f"loan {loan_id} not found")
    return ln


def list_loans(s: Session, workspace_id: int, statuses: list[str] | None = None) -> list[Loan]:
    q = select(Loan).where(Loan.workspace_id == workspace_id)
    if statuses:
        q = q.where(Loan.status.in_(statuses))
    q = q.order_by(Loan.created_at.desc(), Loan.id.desc())
    return list(s.execute(q).scalars().all())


def policy_for(s: Session, loan: Loan) -> InterestPolicy | None:
    if loan.interest_policy_id is None:
        return None
    return s.get(InterestPolicy, loan.interest_policy_id)


def policies_for(s: Session, loans: list[Loan]) -> dict[int, InterestPolicy]:
    ids = {ln.interest_policy_id for ln in loans if ln.interest_policy_id is not None}
    if not ids:
        return {}
    rows = s.execute(select(InterestPolicy).where(InterestPolicy.id.in_(ids))).scalars().all()
    return {p.id: p for p in rows}


def get_live_interest(s: Session, workspace_id: int, loan_id: int, as_of: date | None = None) -> Decimal:
    """Interest owed on a loan as of a date. Read-only."""
    ln = get_loan(s, workspace_id, loan_id)
    if ln.status == CLOSED:
        return to_dec(ln.accrued_interest)
    return interest_due(ln, policy_for(s, ln), as_of or today_local())


def loan_payment_summary(s: Session, loan: Loan) -> LoanPaymentSummary:
    count, principal_paid, interest_paid = s.execute(
        select(
            func.count(Allocation.id),
            func.coalesce(func.sum(Allocation.principal_paid), 0),
            func.coalesce(func.sum(Allocation.interest_paid), 0),
        ).where(Allocation.loan_id == loan.id)
    ).one()
    return LoanPaymentSummary(
        allocations=int(count),
        total_principal_paid=d2(to_dec(principal_paid)),
        total_interest_paid=d2(to_dec(interest_paid)),
    )


def last_payment_date(s: Session, loan: Loan) -> date | None:
    return s.execute(
        select(func.max(Payment.payment_date))
        .join(Allocation, Allocation.payment_id == Payment.id)
        .where(Allocation.loan_id == loan.id)
    ).scalar_one()


def mark_overdue_loans(s: Session, workspace_id: int, today: date | None = None, actor: str = "system") -> list[Loan]:
    """Move OPEN loans whose due date has passed to OVERDUE."""
    today = today or today_local()
    with atomic(s):
        loans = (
            s.execute(
                select(Loan)
                .where(
                    Loan.workspace_id == workspace_id,
                    Loan.status == OPEN,
                    Loan.due_date.is_not(None),
                    Loan.due_date < today,
                )
                .order_by(Loan.id.asc())
                .with_for_update()
            )
            .scalars()
            .all()
        )
        for ln in loans:
            ln.status = OVERDUE
            log_event(
                s,
                username=actor,
                action="loan.overdue",
                entity_type="loan",
                entity_id=ln.id,
                workspace_id=workspace_id,
                details={"due_date": str(ln.due_date), "days_overdue": (today - ln.due_date).days},
            )

    if loans:
        logger.info("marked %d loan(s) overdue in workspace %s", len(loans), workspace_id)
    return list(loans)
