from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from debt_ledger.api.deps import db, workspace_member, workspace_admin
from debt_ledger.models.interest_policy import InterestPolicy
from debt_ledger.schemas.interest_policy import LegalRateOut, PolicyCreate, PolicyOut, PolicyUpdate
from debt_ledger.services import interest_policy as policies
from debt_ledger.services.legal_rate import check_policy

router = APIRouter(prefix="/workspaces/{workspace_id}/interest-policies", tags=["interest-policies"])


def _policy_out(s: Session, p: InterestPolicy) -> PolicyOut:
    chk = check_policy(p)
    out = PolicyOut.model_validate(p)
    out.loan_count = policies.count_loans(s, p)
    out.legal = LegalRateOut(is_legal=chk.is_legal, yearly_rate=float(chk.yearly_rate), ceiling=float(chk.ceiling))
    return out


@router.get("", response_model=list[PolicyOut])
def list_policies(
    workspace_id: int,
    include_history: bool = Query(False),
    s: Session = Depends(db),
    u=Depends(workspace_member),
):
    return [_policy_out(s, p) for p in policies.list_policies(s, workspace_id, include_history=include_history)]


@router.post("", response_model=PolicyOut, status_code=201)
def create_policy(workspace_id: int, body: PolicyCreate, s: Session = Depends(db), u=Depends(workspace_member)):
    p = policies.create_policy(s, workspace_id, actor=u.get("sub"), **body.model_dump())
    return _policy_out(s, p)


@router.get("/{policy_id}", response_model=PolicyOut)
def get_policy(workspace_id: int, policy_id: int, s: Session = Depends(db), u=Depends(workspace_member)):
    return _policy_out(s, policies.get_policy(s, workspace_id, policy_id))


@router.put("/{policy_id}", response_model=PolicyOut)
def revise_policy(
    workspace_id: int,
    policy_id: int,
    body: PolicyUpdate,
    s: Session = Depends(db),
    u=Depends(workspace_member),
):
    p = policies.revise_policy(s, workspace_id, policy_id, actor=u.get("sub"), **body.model_dump(exclude_unset=True))
    return _policy_out(s, p)


@router.delete("/{policy_id}")
def delete_policy(workspace_id: int, policy_id: int, s: Session = Depends(db), u=Depends(workspace_admin)):
    policies.delete_policy(s, workspace_id, policy_id, actor=u.get("sub"))
    return {"ok": True}
