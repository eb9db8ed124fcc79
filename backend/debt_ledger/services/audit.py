from sqlalchemy.orm import Session
from debt_ledger.models.audit_log import AuditLog


def log_event(
    s: Session,
    username: str,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    workspace_id: int | None = None,
    details: dict | None = None,
):
    # Written in the caller's transaction, so a rolled back change leaves no trail.
    row = AuditLog(
        workspace_id=workspace_id,
        username=username,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    s.add(row)
    return row
