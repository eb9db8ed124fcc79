import os
from sqlalchemy import select
from debt_ledger.db.session import SessionLocal
from debt_ledger.models.user import User
from debt_ledger.models.workspace import Workspace, WorkspaceMember
from debt_ledger.core.security import hash_password

def main():
    username = os.environ.get("SEED_ADMIN_USER", "admin")
    password = os.environ.get("SEED_ADMIN_PASS", "admin123")
    workspace_name = os.environ.get("SEED_WORKSPACE", "Personal")

    db = SessionLocal()
    try:
        user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if user is None:
            user = User(username=username, password_hash=hash_password(password))
            db.add(user)
            db.flush()

        member = db.execute(select(WorkspaceMember).where(WorkspaceMember.user_id == user.id)).scalars().first()
        if member is None:
            ws = Workspace(name=workspace_name)
            db.add(ws)
            db.flush()
            db.add(WorkspaceMember(workspace_id=ws.id, user_id=user.id, role="OWNER"))
        db.commit()
    finally:
        db.close()

if __name__ == "__main__":
    main()
