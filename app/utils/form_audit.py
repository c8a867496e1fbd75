"""Audit rows for templates, assignments and submissions.

Rows join the caller's transaction, so an audited change and its audit row
commit (or roll back) together.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.form_audit_log import FormAuditLog


def _dump(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, str):
        return v
    return json.dumps(v, ensure_ascii=False, sort_keys=True, default=str)


def changed_fields(before: dict, after: dict) -> tuple[dict, dict]:
    """Narrow two snapshots to the keys whose values differ."""
    keys = [k for k in dict.fromkeys([*before, *after]) if before.get(k) != after.get(k)]
    return {k: before.get(k) for k in keys}, {k: after.get(k) for k in keys}


def add_form_audit_log(
    db: Session,
    *,
    actor_id: int,
    action: str,
    entity: str,
    entity_id: int,
    lab_id: int | None = None,
    before: Any = None,
    after: Any = None,
    comment: str = "",
) -> FormAuditLog | None:
    """Record ``action`` on ``entity``.

    When both snapshots are dicts only the changed keys are kept; an update
    that changed nothing and carries no comment is not recorded.
    """
    if isinstance(before, dict) and isinstance(after, dict):
        before, after = changed_fields(before, after)
        if not before and not after and not (comment or "").strip():
            return None

    row = FormAuditLog(
        actor_id=int(actor_id),
        lab_id=int(lab_id) if lab_id is not None else None,
        action=(action or "").strip().lower(),
        entity=(entity or "").strip().lower(),
        entity_id=int(entity_id),
        before_json=_dump(before),
        after_json=_dump(after),
        comment=(comment or "").strip(),
    )
    db.add(row)
    return row


def history(db: Session, entity: str, entity_id: int) -> list[FormAuditLog]:
    return (
        db.query(FormAuditLog)
        .filter(FormAuditLog.entity == entity, FormAuditLog.entity_id == entity_id)
        .order_by(FormAuditLog.id.asc())
        .all()
    )
