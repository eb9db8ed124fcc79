from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select
from debt_ledger.api.deps import db, current_user
from debt_ledger.core.config import settings
from debt_ledger.core.security import verify_password, create_access_token
from debt_ledger.models.user import User
from debt_ledger.models.workspace import Workspace, WorkspaceMember
from debt_ledger.schemas.auth import LoginIn, MeOut, MembershipOut, TokenOut

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/login", response_model=TokenOut)
def login(body: LoginIn, s: Session = Depends(db)):
    u = s.execute(select(User).where(User.username == body.username)).scalar_one_or_none()
    if not u or not verify_password(body.password, u.password_hash):
        raise HTTPException(status_code=401, detail="bad_credentials")
    if not u.is_active:
        raise HTTPException(status_code=403, detail="user_disabled")
    return TokenOut(
        access_token=create_access_token(sub=u.username, user_id=u.id),
        expires_in=settings.jwt_expires_min * 60,
    )

@router.get("/me", response_model=MeOut)
def me(s: Session = Depends(db), tok=Depends(current_user)):
    u = s.get(User, tok.get("uid"))
    if u is None or not u.is_active:
        raise HTTPException(status_code=401, detail="invalid_token")

    rows = s.execute(
        select(WorkspaceMember.workspace_id, Workspace.name, WorkspaceMember.role)
        .join(Workspace, Workspace.id == WorkspaceMember.workspace_id)
        .where(WorkspaceMember.user_id == u.id)
        .order_by(Workspace.name.asc())
    ).all()
    return MeOut(
        id=u.id,
        username=u.username,
        display_name=u.display_name,
        workspaces=[MembershipOut(workspace_id=w, workspace_name=n, role=r) for w, n, r in rows],
    )
