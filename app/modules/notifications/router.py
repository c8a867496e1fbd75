from __future__ import annotations

from fastapi import APIRouter, Depends, Form
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.auth.deps import get_current_user
from app.utils.badges import get_badge_count, invalidate_badge
from app.db.models.notification import Notification

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _note_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "template_id": n.template_id,
        "assignment_id": n.assignment_id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "is_read": n.is_read,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


@router.get("")
def page(db: Session = Depends(get_db), user=Depends(get_current_user)):
    notes = (
        db.query(Notification)
        .filter(Notification.user_id == user.id)
        .order_by(Notification.id.desc())
        .limit(300)
        .all()
    )
    return {"notifications": [_note_dict(n) for n in notes], "unread": get_badge_count(db, user)}


@router.get("/badge")
def badge(db: Session = Depends(get_db), user=Depends(get_current_user)):
    return {"unread": get_badge_count(db, user)}


@router.post("/mark_read")
def mark_read(
    notification_id: int = Form(...),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    # only the owner can mark a notification read
    n = db.get(Notification, notification_id)
    if n and n.user_id == user.id:
        n.is_read = True
        db.commit()
        invalidate_badge(user.id)
    return {"ok": True}


@router.post("/mark_all_read")
def mark_all_read(db: Session = Depends(get_db), user=Depends(get_current_user)):
    db.query(Notification).filter(Notification.user_id == user.id, Notification.is_read == False).update(
        {"is_read": True}, synchronize_session=False
    )
    db.commit()
    invalidate_badge(user.id)
    return {"ok": True}
