from __future__ import annotations

import json
from datetime import datetime

from fastapi import APIRouter, Depends, Form
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.auth.deps import get_current_user, actor_for
from app.core import chain
from app.core.config import settings
from app.core.directory import is_eligible, recipients
from app.core.rbac import can_create_form, can_distribute_inter_lab, can_manage_template, is_admin, require
from app.db.models.assignment import AssignmentStatus, FormAssignment
from app.db.models.form_distribution import FormTemplateDesignation, FormTemplateLab, FormTemplateUser
from app.db.models.form_template import FormTemplate
from app.db.models.lab import Lab
from app.db.models.submission import Submission
from app.db.models.user import User
from app.modules.workflow.router import assignment_dict
from app.utils.form_audit import add_form_audit_log, history
from app.utils.schema import parse_schema

router = APIRouter(prefix="/forms", tags=["forms"])


def _template_dict(f: FormTemplate) -> dict:
    return {
        "id": f.id,
        "title": f.title,
        "description": f.description,
        "schema": parse_schema(f.schema_json),
        "created_by_id": f.created_by_id,
        "is_active": f.is_active,
        "is_expired": f.is_expired(),
        "deadline": f.deadline.isoformat() if f.deadline else None,
        "allow_delegation": f.allow_delegation,
        "allow_multiple_submissions": f.allow_multiple_submissions,
        "is_public": f.is_public,
        "lab_ids": [t.lab_id for t in f.target_labs],
        "designations": [t.designation for t in f.target_designations],
        "user_ids": [t.user_id for t in f.target_users],
        "created_at": f.created_at.isoformat() if f.created_at else None,
    }


def _audit_view(f: FormTemplate) -> dict:
    return {
        "title": f.title,
        "is_active": f.is_active,
        "deadline": f.deadline,
        "allow_delegation": f.allow_delegation,
        "allow_multiple_submissions": f.allow_multiple_submissions,
        "is_public": f.is_public,
        "schema_json": f.schema_json,
    }


def _parse_deadline(value: str) -> datetime | None:
    value = (value or "").strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        require(False, "Deadline must be an ISO date or date-time.", 400)


def _check_schema(schema_text: str) -> str:
    try:
        json.loads(schema_text or "{}")
    except ValueError:
        require(False, "schema_json is not valid JSON.", 400)
    return schema_text or "{}"


def _get_template(db: Session, form_id: int) -> FormTemplate:
    f = db.get(FormTemplate, form_id)
    require(f is not None, "Form not found", 404)
    return f


def _set_targets(
    db: Session,
    user: User,
    f: FormTemplate,
    lab_ids: list[int],
    designations: list[str],
    user_ids: list[int],
) -> None:
    lab_ids = sorted(set(lab_ids))
    if lab_ids:
        found = db.query(Lab.id).filter(Lab.id.in_(lab_ids)).count()
        require(found == len(lab_ids), "Unknown lab in distribution list.", 400)
    if any(lid != user.lab_id for lid in lab_ids):
        require(can_distribute_inter_lab(user), "You may only distribute forms to your own lab.", 403)

    user_ids = sorted(set(user_ids))
    if user_ids:
        found = db.query(User.id).filter(User.id.in_(user_ids)).count()
        require(found == len(user_ids), "Unknown user in distribution list.", 400)

    f.target_labs = [FormTemplateLab(lab_id=lid) for lid in lab_ids]
    f.target_designations = [
        FormTemplateDesignation(designation=d.strip()) for d in dict.fromkeys(designations) if d.strip()
    ]
    f.target_users = [FormTemplateUser(user_id=uid) for uid in user_ids]


@router.get("")
def list_forms(db: Session = Depends(get_db), user=Depends(get_current_user)):
    forms = db.query(FormTemplate).order_by(FormTemplate.id.desc()).all()
    if not is_admin(user):
        forms = [
            f for f in forms
            if f.created_by_id == user.id or (f.is_active and is_eligible(db, f, user.id))
        ]
    return {"forms": [_template_dict(f) for f in forms], "can_create_form": can_create_form(user)}


@router.get("/assigned")
def assigned(db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Live assignments the user currently holds or has been asked to approve."""
    rows = (
        db.query(FormAssignment)
        .filter(
            (FormAssignment.assigned_to_id == user.id) | (FormAssignment.routed_to_id == user.id),
            FormAssignment.status != AssignmentStatus.SUBMITTED,
        )
        .order_by(FormAssignment.updated_at.desc(), FormAssignment.id.desc())
        .all()
    )
    out = []
    for a in rows:
        holder = chain.current_holder(db, a.id)
        if holder is None or holder.id != a.id:
            continue
        out.append(assignment_dict(a))
    return {"assignments": out}


@router.post("")
def create(
    title: str = Form(...),
    description: str = Form(""),
    schema_text: str = Form("{}"),
    deadline: str = Form(""),
    allow_delegation: bool = Form(True),
    allow_multiple_submissions: bool = Form(False),
    is_public: bool = Form(False),
    lab_ids: list[int] = Form([]),
    designations: list[str] = Form([]),
    user_ids: list[int] = Form([]),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_create_form(user))
    require(title.strip() != "", "Title is required.", 400)

    f = FormTemplate(
        title=title.strip(),
        description=description.strip(),
        schema_json=_check_schema(schema_text),
        created_by_id=user.id,
        deadline=_parse_deadline(deadline),
        allow_delegation=allow_delegation,
        allow_multiple_submissions=allow_multiple_submissions,
        is_public=is_public,
    )
    if is_public:
        require(can_distribute_inter_lab(user), "Only inter-lab senders can publish public forms.", 403)
    _set_targets(db, user, f, lab_ids, designations, user_ids)
    db.add(f)
    db.flush()

    add_form_audit_log(
        db,
        actor_id=user.id,
        action="create",
        entity="form_template",
        entity_id=f.id,
        lab_id=user.lab_id,
        before=None,
        after=_audit_view(f),
    )

    db.commit()
    db.refresh(f)
    return {"form": _template_dict(f)}


@router.get("/{form_id}")
def detail(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    f = _get_template(db, form_id)
    require(can_manage_template(user, f) or is_eligible(db, f, user.id))

    mine = (
        db.query(FormAssignment)
        .filter(FormAssignment.template_id == f.id, FormAssignment.assigned_to_id == user.id)
        .order_by(FormAssignment.id.desc())
        .all()
    )
    return {"form": _template_dict(f), "assignments": [assignment_dict(a) for a in mine]}


@router.post("/{form_id}/edit")
def edit_save(
    form_id: int,
    title: str = Form(...),
    description: str = Form(""),
    schema_text: str = Form("{}"),
    deadline: str = Form(""),
    allow_delegation: bool = Form(True),
    allow_multiple_submissions: bool = Form(False),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    f = _get_template(db, form_id)
    require(can_manage_template(user, f))
    require(title.strip() != "", "Title is required.", 400)

    before = _audit_view(f)

    f.title = title.strip()
    f.description = description.strip()
    f.schema_json = _check_schema(schema_text)
    f.deadline = _parse_deadline(deadline)
    f.allow_delegation = allow_delegation
    f.allow_multiple_submissions = allow_multiple_submissions
    add_form_audit_log(
        db,
        actor_id=user.id,
        action="update",
        entity="form_template",
        entity_id=f.id,
        lab_id=user.lab_id,
        before=before,
        after=_audit_view(f),
    )

    db.commit()
    return {"form": _template_dict(f)}


@router.post("/{form_id}/toggle-active")
def toggle_active(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    f = _get_template(db, form_id)
    require(can_manage_template(user, f))

    before = _audit_view(f)
    f.is_active = not f.is_active
    add_form_audit_log(
        db,
        actor_id=user.id,
        action="activate" if f.is_active else "deactivate",
        entity="form_template",
        entity_id=f.id,
        lab_id=user.lab_id,
        before=before,
        after=_audit_view(f),
    )
    db.commit()
    return {"form": _template_dict(f)}


@router.post("/{form_id}/distribute")
def distribute(
    form_id: int,
    is_public: bool = Form(False),
    lab_ids: list[int] = Form([]),
    designations: list[str] = Form([]),
    user_ids: list[int] = Form([]),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    """Replace the distribution targets. Existing chains are not touched."""
    f = _get_template(db, form_id)
    require(can_manage_template(user, f))
    if is_public:
        require(can_distribute_inter_lab(user), "Only inter-lab senders can publish public forms.", 403)

    targets = ("is_public", "lab_ids", "designations", "user_ids")
    before = _template_dict(f)
    f.is_public = is_public
    _set_targets(db, user, f, lab_ids, designations, user_ids)
    db.flush()
    after = _template_dict(f)

    add_form_audit_log(
        db,
        actor_id=user.id,
        action="distribute",
        entity="form_template",
        entity_id=f.id,
        lab_id=user.lab_id,
        before={k: before[k] for k in targets},
        after={k: after[k] for k in targets},
    )
    db.commit()
    db.refresh(f)
    return {"form": _template_dict(f), "recipient_count": len(recipients(db, f))}


@router.get("/{form_id}/recipients")
def list_recipients(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    f = _get_template(db, form_id)
    require(can_manage_template(user, f) or is_eligible(db, f, user.id))
    return {
        "recipients": [
            {"id": u.id, "full_name": u.full_name, "lab_id": u.lab_id, "designation": u.designation}
            for u in recipients(db, f)
        ]
    }


@router.get("/{form_id}/history")
def template_history(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    f = _get_template(db, form_id)
    require(can_manage_template(user, f))
    return {
        "history": [
            {
                "id": row.id,
                "actor_id": row.actor_id,
                "action": row.action,
                "before": json.loads(row.before_json) if row.before_json else None,
                "after": json.loads(row.after_json) if row.after_json else None,
                "comment": row.comment,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
            for row in history(db, "form_template", f.id)
        ]
    }


@router.get("/{form_id}/delegates")
def delegation_targets(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Users the caller may hand this form to."""
    f = _get_template(db, form_id)
    actor = actor_for(user)
    if not f.allow_delegation:
        return {"users": []}
    users = [u for u in recipients(db, f) if u.id != actor.id]
    if settings.DELEGATION_SAME_LAB_ONLY:
        users = [u for u in users if u.lab_id == actor.lab_id]
    return {
        "users": [
            {"id": u.id, "full_name": u.full_name, "lab_id": u.lab_id, "designation": u.designation}
            for u in users
        ]
    }


@router.post("/{form_id}/delete")
def delete_post(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return delete(form_id, db, user)


@router.delete("/{form_id}")
def delete(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    f = _get_template(db, form_id)
    require(can_manage_template(user, f))

    used = db.query(FormAssignment.id).filter(FormAssignment.template_id == f.id).first()
    used = used or db.query(Submission.id).filter(Submission.template_id == f.id).first()
    require(used is None, "This form already has responses; deactivate it instead.", 409)

    add_form_audit_log(
        db,
        actor_id=user.id,
        action="delete",
        entity="form_template",
        entity_id=f.id,
        lab_id=user.lab_id,
        before=_audit_view(f),
        after=None,
    )

    db.delete(f)
    db.commit()
    return {"ok": True}
