from fastapi import Request, Depends, HTTPException
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.config import settings
from app.core.policy import Actor, resolve_approval_authority
from app.core.security import verify_session
from app.db.models.user import User

SESSION_COOKIE = "sid"

def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = verify_session(token)
    if not payload or "user_id" not in payload:
        raise HTTPException(status_code=401, detail="Invalid session")
    user = db.get(User, payload["user_id"])
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="This account is disabled")
    return user


def actor_for(user: User) -> Actor:
    return Actor(
        id=user.id,
        role=user.role,
        lab_id=user.lab_id,
        designation=user.designation or "",
        has_approval_authority=resolve_approval_authority(user.designation, settings.approval_designations()),
    )


def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    """Identity, role, lab and approval authority, resolved once per request."""
    return actor_for(user)
