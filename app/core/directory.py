"""Distribution directory.

Resolves a template's declared targets (explicit users, labs narrowed by
designation, designations alone, or public) to the concrete set of user ids
allowed to receive it. The chain engine uses ``is_eligible`` to validate
initial recipients and delegation targets.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.db.models.form_template import FormTemplate
from app.db.models.user import ADMIN_ROLES, User


def _active_users(db: Session):
    return db.query(User).filter(User.is_active == True)  # noqa: E712


def _expanded_ids(db: Session, template: FormTemplate) -> set[int]:
    """Users reached through public / lab / designation targets."""
    lab_ids = [t.lab_id for t in template.target_labs]
    designations = [t.designation for t in template.target_designations if t.designation]

    q = _active_users(db).filter(User.role.notin_(ADMIN_ROLES))

    if template.is_public:
        pass
    elif lab_ids:
        q = q.filter(User.lab_id.in_(lab_ids))
        if designations:
            q = q.filter(User.designation.in_(designations))
    elif designations:
        q = q.filter(User.designation.in_(designations))
    else:
        return set()

    return {uid for (uid,) in q.with_entities(User.id).all()}


def _explicit_ids(db: Session, template: FormTemplate) -> set[int]:
    ids = [t.user_id for t in template.target_users]
    if not ids:
        return set()
    rows = _active_users(db).filter(User.id.in_(ids)).with_entities(User.id).all()
    return {uid for (uid,) in rows}


def resolve_eligible_recipients(db: Session, template: FormTemplate) -> set[int]:
    # Admins are only reached when named explicitly; the creator never receives their own form.
    ids = _expanded_ids(db, template) | _explicit_ids(db, template)
    ids.discard(template.created_by_id)
    return ids


def is_eligible(db: Session, template: FormTemplate, user_id: int) -> bool:
    if user_id == template.created_by_id:
        return False
    u = db.get(User, user_id)
    if u is None or not u.is_active:
        return False

    if any(t.user_id == user_id for t in template.target_users):
        return True
    if u.role in ADMIN_ROLES:
        return False
    if template.is_public:
        return True

    lab_ids = {t.lab_id for t in template.target_labs}
    designations = {t.designation for t in template.target_designations if t.designation}
    if lab_ids:
        if u.lab_id not in lab_ids:
            return False
        return not designations or u.designation in designations
    if designations:
        return u.designation in designations
    return False


def recipients(db: Session, template: FormTemplate) -> list[User]:
    ids = resolve_eligible_recipients(db, template)
    if not ids:
        return []
    return db.query(User).filter(User.id.in_(ids)).order_by(User.full_name.asc(), User.id.asc()).all()
