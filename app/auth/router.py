from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.auth.deps import SESSION_COOKIE, actor_for, get_current_user
from app.core.config import settings
from app.core.security import verify_password, sign_session
from app.db.models.user import User
from app.db.session import get_db

logger = logging.getLogger("form_portal.auth")

router = APIRouter()


def _user_dict(user: User) -> dict:
    actor = actor_for(user)
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role.value,
        "role_label": user.role_label,
        "lab_id": user.lab_id,
        "designation": user.designation,
        "has_approval_authority": actor.has_approval_authority,
    }


@router.post("/login")
def login(
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        return JSONResponse({"detail": "Invalid e-mail or password."}, status_code=400)

    if not user.is_active:
        return JSONResponse({"detail": "This account is disabled."}, status_code=403)

    sid = sign_session({"user_id": user.id})
    resp = JSONResponse({"user": _user_dict(user)})
    resp.set_cookie(
        SESSION_COOKIE,
        sid,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
    )
    return resp


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"user": _user_dict(user)}


@router.post("/logout")
def logout():
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(SESSION_COOKIE)
    return resp
