from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from datetime import date

from debt_ledger.api.deps import db, workspace_member
from debt_ledger.models.loan import CLOSED
from debt_ledger.schemas.loan import (
    AccrualPeriodOut,
    InterestOut,
    LoanCreate,
    LoanDetailOut,
    LoanOut,
    QuoteOut,
)
from debt_ledger.services import loans as loan_svc
from debt_ledger.services.accrual import accrual_breakdown, calculate_accrued_interest, interest_due, payoff_quote, to_dec
from debt_ledger.services.legal_rate import check_policy
from debt_ledger.utils.timezone import today_local

router = APIRouter(prefix="/workspaces/{workspace_id}/loans", tags=["loans"])


@router.get("", response_model=list[LoanOut])
def list_loans(
    workspace_id: int,
    status: str | None = Query(None, description="comma separated, e.g. OPEN,OVERDUE"),
    s: Session = Depends(db),
    u=Depends(workspace_member),
):
    statuses = [x.strip() for x in (status or "").split(",") if x.strip()]
    loans = loan_svc.list_loans(s, workspace_id, statuses or None)
    pols = loan_svc.policies_for(s, loans)
    today = today_local()

    out = []
    for ln in loans:
        row = LoanOut.model_validate(ln)
        if ln.status != CLOSED:
            row.interest_due = float(interest_due(ln, pols.get(ln.interest_policy_id), today))
        out.append(row)
    return out


@router.post("", response_model=LoanOut, status_code=201)
def create_loan(workspace_id: int, body: LoanCreate, s: Session = Depends(db), u=Depends(workspace_member)):
    ln = loan_svc.create_loan(s, workspace_id, actor=u.get("sub"), **body.model_dump())
    return LoanOut.model_validate(ln)


@router.post("/mark-overdue", response_model=list[LoanOut])
def mark_overdue(workspace_id: int, s: Session = Depends(db), u=Depends(workspace_member)):
    return [LoanOut.model_validate(ln) for ln in loan_svc.mark_overdue_loans(s, workspace_id, actor=u.get("sub"))]


@router.get("/{loan_id}", response_model=LoanDetailOut)
def get_loan(workspace_id: int, loan_id: int, s: Session = Depends(db), u=Depends(workspace_member)):
    ln = loan_svc.get_loan(s, workspace_id, loan_id)
    policy = loan_svc.policy_for(s, ln)
    due = loan_svc.get_live_interest(s, workspace_id, loan_id)
    summary = loan_svc.loan_payment_summary(s, ln)

    legal = check_policy(policy) if policy is not None else None
    base = LoanOut.model_validate(ln).model_dump()
    base["interest_due"] = float(due)
    return LoanDetailOut(
        **base,
        total_owed=float(to_dec(ln.remaining_principal) + due),
        last_payment_date=loan_svc.last_payment_date(s, ln),
        allocations=summary.allocations,
        total_principal_paid=float(summary.total_principal_paid),
        total_interest_paid=float(summary.total_interest_paid),
        rate_is_legal=legal.is_legal if legal else None,
        yearly_rate=float(legal.yearly_rate) if legal else None,
    )


@router.get("/{loan_id}/interest", response_model=InterestOut)
def get_interest(
    workspace_id: int,
    loan_id: int,
    as_of: date | None = Query(None),
    s: Session = Depends(db),
    u=Depends(workspace_member),
):
    ln = loan_svc.get_loan(s, workspace_id, loan_id)
    policy = loan_svc.policy_for(s, ln)
    day = as_of or today_local()
    return InterestOut(
        loan_id=ln.id,
        as_of=day,
        calculated=float(calculate_accrued_interest(ln, policy, day)),
        checkpoint=float(ln.accrued_interest),
        interest_due=float(loan_svc.get_live_interest(s, workspace_id, loan_id, day)),
    )


@router.get("/{loan_id}/accrual", response_model=list[AccrualPeriodOut])
def get_accrual(
    workspace_id: int,
    loan_id: int,
    as_of: date | None = Query(None),
    s: Session = Depends(db),
    u=Depends(workspace_member),
):
    ln = loan_svc.get_loan(s, workspace_id, loan_id)
    periods = accrual_breakdown(ln, loan_svc.policy_for(s, ln), as_of or today_local())
    return [
        AccrualPeriodOut(
            start=p.start,
            end=p.end,
            days=p.days,
            cycle_days=p.cycle_days,
            full_cycle=p.full_cycle,
            rate=float(p.rate),
            interest=float(p.interest),
        )
        for p in periods
    ]


@router.get("/{loan_id}/quote", response_model=QuoteOut)
def get_quote(
    workspace_id: int,
    loan_id: int,
    on: date | None = Query(None),
    s: Session = Depends(db),
    u=Depends(workspace_member),
):
    ln = loan_svc.get_loan(s, workspace_id, loan_id)
    q = payoff_quote(ln, loan_svc.policy_for(s, ln), on or today_local())
    return QuoteOut(
        loan_id=ln.id,
        as_of=q.as_of,
        remaining_principal=float(q.remaining_principal),
        interest_due=float(q.interest_due),
        total_owed=float(q.total_owed),
    )
