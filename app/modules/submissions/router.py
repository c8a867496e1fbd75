from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.auth.deps import get_current_user
from app.core.rbac import can_manage_template, can_view_submission, require
from app.db.models.assignment import AssignmentStatus, FormAssignment
from app.db.models.form_template import FormTemplate
from app.db.models.submission import Submission
from app.utils.store import get_by_id, list_by_template, snapshot

router = APIRouter(prefix="/submissions", tags=["submissions"])


def _in_chain(db: Session, submission_id: int, user_id: int) -> bool:
    """User held or was routed an assignment that carries this payload."""
    return (
        db.query(FormAssignment.id)
        .filter(
            FormAssignment.data_id == submission_id,
            (FormAssignment.assigned_to_id == user_id) | (FormAssignment.routed_to_id == user_id),
        )
        .first()
        is not None
    )


@router.get("")
def mine(db: Session = Depends(get_db), user=Depends(get_current_user)):
    subs = (
        db.query(Submission)
        .filter(Submission.submitted_by_id == user.id)
        .order_by(Submission.id.desc())
        .limit(300)
        .all()
    )
    return {"submissions": [snapshot(s) for s in subs]}


@router.get("/template/{template_id}")
def by_template(
    template_id: int,
    status: str = "",
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    """Responses collected for a template (distributor or admin)."""
    f = db.get(FormTemplate, template_id)
    require(f is not None, "Form not found", 404)
    require(can_manage_template(user, f))

    subs = list_by_template(db, f.id)
    if status:
        try:
            wanted = AssignmentStatus(status)
        except ValueError:
            require(False, "Unknown status filter.", 400)
        subs = [s for s in subs if s.status == wanted]
    return {"template_id": f.id, "submissions": [snapshot(s) for s in subs]}


@router.get("/{submission_id}")
def detail(submission_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    s = get_by_id(db, submission_id)
    f = db.get(FormTemplate, s.template_id)
    require(can_view_submission(user, f, s.submitted_by_id) or _in_chain(db, s.id, user.id))
    return {"submission": snapshot(s)}
