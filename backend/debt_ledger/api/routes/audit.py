from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import select
from debt_ledger.api.deps import db, workspace_admin
from debt_ledger.models.audit_log import AuditLog
from debt_ledger.schemas.audit import AuditOut

router = APIRouter(prefix="/workspaces/{workspace_id}/audit", tags=["audit"])


@router.get("", response_model=list[AuditOut])
def list_audit(
    workspace_id: int,
    s: Session = Depends(db),
    admin=Depends(workspace_admin),
    entity_type: str | None = Query(default=None, description="loan, payment or interest_policy"),
    entity_id: int | None = Query(default=None),
    action: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
):
    q = select(AuditLog).where(AuditLog.workspace_id == workspace_id)

    if entity_type:
        q = q.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.where(AuditLog.entity_id == entity_id)
    if action:
        q = q.where(AuditLog.action == action)

    # id, not created_at: rows written in one transaction share a timestamp
    q = q.order_by(AuditLog.id.desc()).limit(limit)
    return s.execute(q).scalars().all()
