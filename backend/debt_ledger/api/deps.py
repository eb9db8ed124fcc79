from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session
from debt_ledger.db.session import SessionLocal
from debt_ledger.core.security import decode_token
from debt_ledger.models.workspace import WorkspaceMember

bearer = HTTPBearer()

def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()

def current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)):
    try:
        return decode_token(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="invalid_token")

def workspace_member(workspace_id: int, s: Session = Depends(db), u=Depends(current_user)):
    m = s.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == u.get("uid"),
        )
    ).scalar_one_or_none()
    if m is None:
        raise HTTPException(status_code=403, detail="not_a_member")
    return u

def workspace_admin(workspace_id: int, s: Session = Depends(db), u=Depends(current_user)):
    m = s.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == u.get("uid"),
        )
    ).scalar_one_or_none()
    if m is None or m.role not in ("OWNER", "ADMIN"):
        raise HTTPException(status_code=403, detail="admin_only")
    return u
