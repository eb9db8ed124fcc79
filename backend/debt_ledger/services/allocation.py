"""Payment allocation and reversal.

A payment is split across one or more loans of a workspace. For each loan the
interest due at the payment date is settled first (unless the caller supplies
the split or asks for principal first), then principal. The loan's checkpoint
moves to the payment date and any unpaid interest is carried forward in
``accrued_interest``.

Every public function here runs in one transaction: either all loans and
allocation rows are written, or none are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Literal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from debt_ledger.core.config import settings
from debt_ledger.core.errors import (
    ClosedLoanTarget,
    CrossWorkspaceTarget,
    InvalidPaymentAmount,
    LoanNotFound,
    NothingToAllocate,
    OverAllocation,
    Overpayment,
    PaymentNotFound,
)
from debt_ledger.db.transaction import atomic
from debt_ledger.models.allocation import Allocation
from debt_ledger.models.interest_policy import InterestPolicy
from debt_ledger.models.loan import CLOSED, OPEN, OVERDUE, Loan
from debt_ledger.models.payment import Payment
from debt_ledger.services.accrual import Q2, d2, interest_between, interest_due, to_dec, ZERO
from debt_ledger.services.audit import log_event
from debt_ledger.services.interest_policy import current_version
from debt_ledger.services.loans import policies_for, status_for_open_loan
from debt_ledger.utils.timezone import today_local

logger = logging.getLogger(__name__)

AllocationMethod = Literal["INTEREST_FIRST", "PRINCIPAL_FIRST", "FIFO"]
INTEREST_FIRST = "INTEREST_FIRST"
PRINCIPAL_FIRST = "PRINCIPAL_FIRST"
FIFO = "FIFO"
MANUAL = "MANUAL"


@dataclass
class AllocationRequest:
    """One target loan of a payment.

    Leaving both amounts as None lets the engine compute the split.
    """

    loan_id: int
    principal_paid: Decimal | None = None
    interest_paid: Decimal | None = None

    @property
    def explicit(self) -> bool:
        return self.principal_paid is not None or self.interest_paid is not None


@dataclass
class Split:
    loan: Loan
    interest_due: Decimal
    interest_paid: Decimal
    principal_paid: Decimal

    @property
    def total(self) -> Decimal:
        return self.interest_paid + self.principal_paid


def waterfall(available: Decimal, due: Decimal, principal: Decimal, principal_first: bool = False) -> tuple[Decimal, Decimal]:
    """Return ``(interest_paid, principal_paid)`` for one loan.

    Principal first never repays the last satang of principal while interest
    is still owed, so the loan cannot close with interest outstanding.
    """
    if principal_first:
        cap = principal
        if due > 0 and available < principal + due:
            cap = max(principal - Q2, ZERO)
        principal_paid = min(available, cap)
        interest_paid = min(available - principal_paid, due)
    else:
        interest_paid = min(available, due)
        principal_paid = min(available - interest_paid, principal)
    return interest_paid, principal_paid


def _explicit_split(req: AllocationRequest, loan: Loan, due: Decimal, available: Decimal) -> tuple[Decimal, Decimal]:
    interest_paid = d2(to_dec(req.interest_paid))
    principal_paid = d2(to_dec(req.principal_paid))
    if interest_paid < 0 or principal_paid < 0:
        raise InvalidPaymentAmount("allocated amounts must not be negative", loan_id=loan.id)
    if interest_paid > due:
        raise OverAllocation(
            f"interest paid {interest_paid} exceeds interest due {due} on loan {loan.id}",
            loan_id=loan.id,
        )
    if principal_paid > to_dec(loan.remaining_principal):
        raise OverAllocation(
            f"principal paid {principal_paid} exceeds remaining principal {loan.remaining_principal} on loan {loan.id}",
            loan_id=loan.id,
        )
    if interest_paid + principal_paid > available:
        raise OverAllocation("allocations exceed the payment amount", loan_id=loan.id)
    if principal_paid > 0 and principal_paid == to_dec(loan.remaining_principal) and interest_paid < due:
        raise OverAllocation(
            f"repaying all principal on loan {loan.id} would leave {due - interest_paid} interest unpaid",
            loan_id=loan.id,
        )
    return interest_paid, principal_paid


def plan_allocation(
    amount: Decimal,
    targets: list[tuple[Loan, InterestPolicy | None, AllocationRequest]],
    payment_date: date,
    method: str | None = None,
) -> tuple[list[Split], Decimal]:
    """Work out the split for every target, in order, without touching anything.

    Returns the splits that move money and the amount left unallocated.
    """
    remaining = amount
    splits: list[Split] = []
    for loan, policy, req in targets:
        due = interest_due(loan, policy, payment_date)
        if req.explicit:
            interest_paid, principal_paid = _explicit_split(req, loan, due, remaining)
        else:
            interest_paid, principal_paid = waterfall(
                remaining, due, to_dec(loan.remaining_principal), principal_first=method == PRINCIPAL_FIRST
            )
        remaining -= interest_paid + principal_paid
        if interest_paid > 0 or principal_paid > 0:
            splits.append(Split(loan=loan, interest_due=due, interest_paid=interest_paid, principal_paid=principal_paid))
    return splits, remaining


def _lock_targets(s: Session, workspace_id: int, loan_ids: list[int]) -> list[Loan]:
    rows = (
        s.execute(select(Loan).where(Loan.id.in_(loan_ids)).order_by(Loan.id.asc()).with_for_update())
        .scalars()
        .all()
    )
    found = {ln.id: ln for ln in rows}
    missing = [i for i in loan_ids if i not in found]
    if missing:
        raise LoanNotFound(f"loan {missing[0]} not found", loan_id=missing[0])

    if any(ln.workspace_id != workspace_id for ln in rows):
        raise CrossWorkspaceTarget("payment targets loans outside this workspace")

    for i in loan_ids:
        if found[i].status == CLOSED:
            raise ClosedLoanTarget(f"loan {i} is already closed", loan_id=i)
    return [found[i] for i in loan_ids]


def _lock_open_loans(s: Session, workspace_id: int, method: str) -> list[Loan]:
    q = select(Loan).where(Loan.workspace_id == workspace_id, Loan.status.in_([OPEN, OVERDUE]))
    if method == FIFO:
        q = q.order_by(Loan.start_date.asc(), Loan.id.asc())
    else:
        q = q.order_by(Loan.id.asc())
    return list(s.execute(q.with_for_update()).scalars().all())


def _apply_split(s: Session, payment: Payment, split: Split, policy: InterestPolicy | None) -> Allocation:
    loan = split.loan
    row = Allocation(
        payment_id=payment.id,
        loan_id=loan.id,
        principal_paid=split.principal_paid,
        interest_paid=split.interest_paid,
        interest_due_at_payment=split.interest_due,
        prior_accrued_interest=to_dec(loan.accrued_interest),
        prior_checkpoint_date=loan.interest_checkpoint_date,
        prior_status=loan.status,
        prior_policy_id=loan.interest_policy_id,
    )
    s.add(row)

    loan.remaining_principal = to_dec(loan.remaining_principal) - split.principal_paid
    loan.accrued_interest = split.interest_due - split.interest_paid
    if payment.payment_date > loan.interest_checkpoint_date:
        loan.interest_checkpoint_date = payment.payment_date
        # Periods up to here are locked in; later ones use the newest terms.
        if policy is not None and not policy.is_current:
            loan.interest_policy_id = current_version(s, policy).id
    if loan.remaining_principal == 0:
        loan.status = CLOSED
    return row


def _normalize_requests(allocations) -> list[AllocationRequest]:
    out: list[AllocationRequest] = []
    seen: set[int] = set()
    for a in allocations or []:
        if isinstance(a, AllocationRequest):
            req = a
        elif isinstance(a, dict):
            req = AllocationRequest(
                loan_id=int(a["loan_id"]),
                principal_paid=a.get("principal_paid"),
                interest_paid=a.get("interest_paid"),
            )
        else:
            req = AllocationRequest(loan_id=int(a))
        if req.loan_id in seen:
            raise OverAllocation(f"loan {req.loan_id} is targeted more than once", loan_id=req.loan_id)
        seen.add(req.loan_id)
        out.append(req)
    return out


def record_payment(
    s: Session,
    workspace_id: int,
    amount,
    payment_date: date | None = None,
    allocations=None,
    note: str | None = None,
    attachment_url: str | None = None,
    method: str | None = None,
    actor: str = "system",
) -> tuple[Payment, list[Allocation]]:
    """Record a payment and apply it to its target loans.

    ``allocations`` lists the target loans in the order they are paid, each
    either a loan id, a dict or an :class:`AllocationRequest`; explicit
    ``principal_paid`` / ``interest_paid`` amounts are validated, omitted ones
    are computed. Without ``allocations``, ``method`` picks the workspace's
    open loans automatically.
    """
    amt = d2(to_dec(amount))
    if amt <= 0:
        raise InvalidPaymentAmount("payment amount must be positive")
    payment_date = payment_date or today_local()
    requests = _normalize_requests(allocations)
    if not requests and method is None:
        raise NothingToAllocate("a payment needs at least one target loan or an allocation method")

    with atomic(s):
        if requests:
            loans = _lock_targets(s, workspace_id, [r.loan_id for r in requests])
        else:
            loans = _lock_open_loans(s, workspace_id, method)
            requests = [AllocationRequest(loan_id=ln.id) for ln in loans]
        if not loans:
            raise NothingToAllocate("no open loans to allocate to")

        policies = policies_for(s, loans)
        targets = [
            (ln, policies.get(ln.interest_policy_id), req)
            for ln, req in zip(loans, requests)
        ]
        splits, leftover = plan_allocation(amt, targets, payment_date, method=method)
        if not splits:
            raise NothingToAllocate("nothing is owed on the target loans")
        if leftover > 0 and settings.overpayment_policy == "reject":
            raise Overpayment(f"{leftover} of the payment exceeds what the target loans owe", leftover=str(leftover))

        payment = Payment(
            workspace_id=workspace_id,
            amount=amt,
            payment_date=payment_date,
            method=method or MANUAL,
            note=note,
            attachment_url=attachment_url,
        )
        s.add(payment)
        s.flush()

        rows = [_apply_split(s, payment, sp, policies.get(sp.loan.interest_policy_id)) for sp in splits]
        s.flush()

        log_event(
            s,
            username=actor,
            action="payment.create",
            entity_type="payment",
            entity_id=payment.id,
            workspace_id=workspace_id,
            details={
                "amount": str(amt),
                "payment_date": str(payment_date),
                "method": payment.method,
                "unallocated": str(leftover),
                "allocations": [
                    {
                        "loan_id": sp.loan.id,
                        "interest_due": str(sp.interest_due),
                        "interest_paid": str(sp.interest_paid),
                        "principal_paid": str(sp.principal_paid),
                    }
                    for sp in splits
                ],
            },
        )

    logger.info(
        "payment %s of %s recorded in workspace %s across %d loan(s)",
        payment.id, amt, workspace_id, len(rows),
    )
    return payment, rows


def get_payment(s: Session, workspace_id: int, payment_id: int) -> Payment:
    p = s.execute(
        select(Payment).where(Payment.id == payment_id, Payment.workspace_id == workspace_id)
    ).scalar_one_or_none()
    if p is None:
        raise PaymentNotFound(f"payment {payment_id} not found")
    return p


def list_payments(s: Session, workspace_id: int) -> list[Payment]:
    return list(
        s.execute(
            select(Payment)
            .where(Payment.workspace_id == workspace_id)
            .order_by(Payment.payment_date.desc(), Payment.id.desc())
        )
        .scalars()
        .all()
    )


def allocations_for(s: Session, payment_ids: list[int]) -> dict[int, list[Allocation]]:
    if not payment_ids:
        return {}
    rows = (
        s.execute(select(Allocation).where(Allocation.payment_id.in_(payment_ids)).order_by(Allocation.id.asc()))
        .scalars()
        .all()
    )
    out: dict[int, list[Allocation]] = {}
    for a in rows:
        out.setdefault(a.payment_id, []).append(a)
    return out


def update_payment(
    s: Session,
    workspace_id: int,
    payment_id: int,
    note: str | None = None,
    attachment_url: str | None = None,
    actor: str = "system",
) -> Payment:
    """Edit the descriptive fields of a payment. Amounts and dates stay fixed."""
    with atomic(s):
        p = get_payment(s, workspace_id, payment_id)
        if note is not None:
            p.note = note.strip() or None
        if attachment_url is not None:
            p.attachment_url = attachment_url.strip() or None
        log_event(
            s,
            username=actor,
            action="payment.update",
            entity_type="payment",
            entity_id=p.id,
            workspace_id=workspace_id,
            details={"note": p.note, "attachment_url": p.attachment_url},
        )
    return p


def _reverse_allocation(s: Session, a: Allocation, loan: Loan, paid_on: date, today: date) -> None:
    latest_id = s.execute(select(func.max(Allocation.id)).where(Allocation.loan_id == loan.id)).scalar_one()
    if latest_id == a.id:
        loan.remaining_principal = to_dec(loan.remaining_principal) + to_dec(a.principal_paid)
        loan.accrued_interest = to_dec(a.prior_accrued_interest)
        loan.interest_checkpoint_date = a.prior_checkpoint_date
        loan.interest_policy_id = a.prior_policy_id
        loan.status = a.prior_status
        return

    # Later payments already moved the checkpoint: give back what this one took,
    # plus the interest the returned principal earned up to that checkpoint.
    policy = s.get(InterestPolicy, loan.interest_policy_id) if loan.interest_policy_id is not None else None
    missed = interest_between(a.principal_paid, policy, paid_on, loan.interest_checkpoint_date, loan.start_date)
    loan.remaining_principal = to_dec(loan.remaining_principal) + to_dec(a.principal_paid)
    loan.accrued_interest = to_dec(loan.accrued_interest) + to_dec(a.interest_paid) + missed
    if loan.status == CLOSED and loan.remaining_principal > 0:
        loan.status = status_for_open_loan(loan, today)

    # Later snapshots owe the returned interest too, and the returned principal's
    # interest up to their own checkpoint; past it they re-accrue on restore.
    later = s.execute(
        select(Allocation).where(Allocation.loan_id == loan.id, Allocation.id > a.id)
    ).scalars().all()
    for b in later:
        b_policy = s.get(InterestPolicy, b.prior_policy_id) if b.prior_policy_id is not None else None
        b_missed = interest_between(a.principal_paid, b_policy, paid_on, b.prior_checkpoint_date, loan.start_date)
        b.prior_accrued_interest = to_dec(b.prior_accrued_interest) + to_dec(a.interest_paid) + b_missed


def delete_payment(
    s: Session,
    workspace_id: int,
    payment_id: int,
    today: date | None = None,
    actor: str = "system",
) -> None:
    """Delete a payment and undo its effect on every loan it touched."""
    today = today or today_local()
    with atomic(s):
        payment = get_payment(s, workspace_id, payment_id)
        allocs = (
            s.execute(select(Allocation).where(Allocation.payment_id == payment.id).order_by(Allocation.id.asc()))
            .scalars()
            .all()
        )
        loan_ids = sorted({a.loan_id for a in allocs})
        loans = {
            ln.id: ln
            for ln in s.execute(select(Loan).where(Loan.id.in_(loan_ids)).order_by(Loan.id.asc()).with_for_update())
            .scalars()
            .all()
        }

        reversed_rows = []
        for a in allocs:
            loan = loans[a.loan_id]
            _reverse_allocation(s, a, loan, payment.payment_date, today)
            reversed_rows.append(
                {
                    "loan_id": loan.id,
                    "principal_paid": str(a.principal_paid),
                    "interest_paid": str(a.interest_paid),
                    "interest_due_at_payment": str(a.interest_due_at_payment),
                }
            )
            s.delete(a)
        s.delete(payment)

        log_event(
            s,
            username=actor,
            action="payment.delete",
            entity_type="payment",
            entity_id=payment_id,
            workspace_id=workspace_id,
            details={
                "amount": str(payment.amount),
                "payment_date": str(payment.payment_date),
                "allocations": reversed_rows,
            },
        )

    logger.info("payment %s deleted in workspace %s, %d allocation(s) reversed", payment_id, workspace_id, len(allocs))
