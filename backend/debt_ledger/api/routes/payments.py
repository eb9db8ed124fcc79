from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from debt_ledger.api.deps import db, workspace_member
from debt_ledger.models.allocation import Allocation
from debt_ledger.models.payment import Payment
from debt_ledger.schemas.payment import AllocationOut, PaymentCreate, PaymentOut, PaymentUpdate
from debt_ledger.services import allocation as engine
from debt_ledger.services.allocation import AllocationRequest

router = APIRouter(prefix="/workspaces/{workspace_id}/payments", tags=["payments"])


def _payment_out(p: Payment, allocs: list[Allocation]) -> PaymentOut:
    out = PaymentOut.model_validate(p)
    out.allocations = [AllocationOut.model_validate(a) for a in allocs]
    return out


@router.get("", response_model=list[PaymentOut])
def list_payments(workspace_id: int, s: Session = Depends(db), u=Depends(workspace_member)):
    payments = engine.list_payments(s, workspace_id)
    by_payment = engine.allocations_for(s, [p.id for p in payments])
    return [_payment_out(p, by_payment.get(p.id, [])) for p in payments]


@router.post("", response_model=PaymentOut, status_code=201)
def create_payment(workspace_id: int, body: PaymentCreate, s: Session = Depends(db), u=Depends(workspace_member)):
    payment, rows = engine.record_payment(
        s,
        workspace_id,
        amount=body.amount,
        payment_date=body.payment_date,
        allocations=[
            AllocationRequest(loan_id=a.loan_id, principal_paid=a.principal_paid, interest_paid=a.interest_paid)
            for a in body.allocations
        ],
        note=body.note,
        attachment_url=body.attachment_url,
        method=body.method,
        actor=u.get("sub"),
    )
    return _payment_out(payment, rows)


@router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(workspace_id: int, payment_id: int, s: Session = Depends(db), u=Depends(workspace_member)):
    p = engine.get_payment(s, workspace_id, payment_id)
    return _payment_out(p, engine.allocations_for(s, [p.id]).get(p.id, []))


@router.patch("/{payment_id}", response_model=PaymentOut)
def update_payment(
    workspace_id: int,
    payment_id: int,
    body: PaymentUpdate,
    s: Session = Depends(db),
    u=Depends(workspace_member),
):
    p = engine.update_payment(
        s, workspace_id, payment_id, note=body.note, attachment_url=body.attachment_url, actor=u.get("sub")
    )
    return _payment_out(p, engine.allocations_for(s, [p.id]).get(p.id, []))


@router.delete("/{payment_id}")
def delete_payment(workspace_id: int, payment_id: int, s: Session = Depends(db), u=Depends(workspace_member)):
    engine.delete_payment(s, workspace_id, payment_id, actor=u.get("sub"))
    return {"ok": True}
