from __future__ import annotations

from sqlalchemy.orm import Session

from app.db.models.notification import Notification
from app.utils.badges import invalidate_badge


def notify(
    db: Session,
    user_id: int,
    message: str,
    *,
    type: str = "info",
    title: str = "",
    template_id: int | None = None,
    assignment_id: int | None = None,
) -> Notification:
    """Queue an unread notification in the caller's transaction."""
    n = Notification(
        user_id=user_id,
        template_id=template_id,
        assignment_id=assignment_id,
        type=type,
        title=title[:200],
        message=message[:500],
        is_read=False,
    )
    db.add(n)
    invalidate_badge(user_id)
    return n
