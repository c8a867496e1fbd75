from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth.deps import get_current_actor, get_current_user
from app.core import chain
from app.core.policy import Actor
from app.core.rbac import can_manage_template, require
from app.db.models.assignment import FormAssignment
from app.db.models.form_template import FormTemplate
from app.db.models.submission import Submission
from app.db.models.user import User
from app.db.session import get_db
from app.modules.workflow.schemas import (
    ApproveIn,
    AssignmentActionIn,
    DelegateIn,
    MarkBackIn,
    SaveDraftIn,
)
from app.utils.store import get_by_id, load_payload

router = APIRouter(prefix="/forms/workflow", tags=["workflow"])


def _client_ip(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for", "")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else ""


def assignment_dict(a: FormAssignment) -> dict:
    return {
        "id": a.id,
        "templateId": a.template_id,
        "assignedToId": a.assigned_to_id,
        "assignedById": a.assigned_by_id,
        "parentAssignmentId": a.parent_assignment_id,
        "rootAssignmentId": a.root_assignment_id or a.id,
        "dataId": a.data_id,
        "status": a.status.value,
        "statusLabel": a.status_label,
        "isFinalized": a.is_finalized,
        "lastAction": a.last_action,
        "remarks": a.remarks,
        "instructions": a.instructions,
        "routedToId": a.routed_to_id,
        "createdAt": a.created_at.isoformat() if a.created_at else None,
        "updatedAt": a.updated_at.isoformat() if a.updated_at else None,
    }


def submission_dict(s: Submission) -> dict:
    return {
        "id": s.id,
        "templateId": s.template_id,
        "submittedById": s.submitted_by_id,
        "labId": s.lab_id,
        "status": s.status.value,
        "data": load_payload(s),
        "createdAt": s.created_at.isoformat() if s.created_at else None,
        "updatedAt": s.updated_at.isoformat() if s.updated_at else None,
    }


def _segments_json(db: Session, segments: list[chain.ChainSegment]) -> list[dict]:
    ids = {s.from_user_id for s in segments} | {s.to_user_id for s in segments}
    ids.discard(None)
    names = {}
    if ids:
        names = {u.id: u.full_name or u.email for u in db.query(User).filter(User.id.in_(ids)).all()}

    def who(uid):
        return {"id": uid, "name": names.get(uid, "Unknown")} if uid else None

    return [
        {
            "assignmentId": s.assignment_id,
            "type": s.type,
            "fromUser": who(s.from_user_id),
            "toUser": who(s.to_user_id),
            "remarks": s.remarks,
            "timestamp": s.timestamp.isoformat() if s.timestamp else None,
            "status": s.status,
            "action": s.action,
            "isCurrent": s.is_current,
        }
        for s in segments
    ]


def _require_chain_view(db: Session, user: User, template_id: int, segments: list[chain.ChainSegment]) -> None:
    # chain members, the template's distributor and admins
    members = {s.from_user_id for s in segments} | {s.to_user_id for s in segments}
    template = db.get(FormTemplate, template_id)
    require(user.id in members or (template is not None and can_manage_template(user, template)))


@router.post("/save-draft")
def save_draft(
    body: SaveDraftIn,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    a, s = chain.save_draft(
        db,
        actor,
        body.template_id,
        body.data,
        body.assignment_id,
        expected_version=body.expected_version,
        ip_address=_client_ip(request),
    )
    return {"assignment": assignment_dict(a), "submission": submission_dict(s)}


@router.post("/delegate")
def delegate(body: DelegateIn, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    a = chain.delegate(
        db,
        actor,
        body.template_id,
        body.assigned_to_id,
        body.remarks,
        body.parent_assignment_id,
        expected_version=body.expected_version,
    )
    return {"assignment": assignment_dict(a)}


@router.post("/mark-final")
def mark_final(body: AssignmentActionIn, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    a = chain.mark_final(db, actor, body.assignment_id, body.remarks, expected_version=body.expected_version)
    return {"assignment": assignment_dict(a)}


@router.post("/approve")
def approve(
    body: ApproveIn,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    a = chain.approve(
        db,
        actor,
        body.assignment_id,
        body.remarks,
        body.data,
        expected_version=body.expected_version,
        ip_address=_client_ip(request),
    )
    return {"assignment": assignment_dict(a)}


@router.post("/mark-back")
def mark_back(body: MarkBackIn, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    a = chain.mark_back(
        db,
        actor,
        body.assignment_id,
        body.target_actor_id,
        body.remarks,
        expected_version=body.expected_version,
    )
    return {"assignment": assignment_dict(a)}


@router.post("/submit-to-distributor")
def submit_to_distributor(
    body: AssignmentActionIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    a = chain.submit_to_distributor(db, actor, body.assignment_id, body.remarks, expected_version=body.expected_version)
    return {"assignment": assignment_dict(a)}


@router.get("/chain/{assignment_id}")
def get_chain(assignment_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    segments = chain.get_chain(db, assignment_id)
    a = db.get(FormAssignment, assignment_id)
    _require_chain_view(db, user, a.template_id, segments)
    return {"chain": _segments_json(db, segments)}


@router.get("/chain/submission/{submission_id}")
def get_chain_by_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    sub = get_by_id(db, submission_id)
    segments = chain.get_chain_by_data_id(db, submission_id)
    _require_chain_view(db, user, sub.template_id, segments)
    return {"chain": _segments_json(db, segments)}


@router.get("/{assignment_id}/permissions")
def permissions(assignment_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    p = chain.permissions(db, actor, assignment_id)
    targets = []
    if p["approval_target_ids"]:
        users = db.query(User).filter(User.id.in_(p["approval_target_ids"])).all()
        by_id = {u.id: u for u in users}
        targets = [
            {"id": uid, "name": by_id[uid].full_name, "designation": by_id[uid].designation}
            for uid in p["approval_target_ids"]
            if uid in by_id
        ]
    return {
        "assignmentId": p["assignment_id"],
        "rootAssignmentId": p["root_assignment_id"],
        "chainVersion": p["chain_version"],
        "currentHolderId": p["current_holder_id"],
        "currentAssignmentId": p["current_assignment_id"],
        "status": p["status"],
        "isFinalized": p["is_finalized"],
        "isClosed": p["is_closed"],
        "isCurrentHolder": p["is_current_holder"],
        "hasApprovalAuthority": actor.has_approval_authority,
        "allowedActions": p["allowed_actions"],
        "approvalTargets": targets,
    }
