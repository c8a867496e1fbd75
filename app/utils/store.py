"""Submission store.

The chain engine is the only writer. Each call works inside the caller's
transaction (flush, no commit); the engine commits once per transition.
"""

from __future__ import annotations

import json

from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.db.models.submission import Submission


def load_payload(s: Submission | None) -> dict:
    if s is None:
        return {}
    try:
        data = json.loads(s.payload_json or "{}")
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def dump_payload(data: dict | None) -> str:
    # sorted keys so identical payloads serialize identically
    return json.dumps(data or {}, ensure_ascii=False, sort_keys=True, default=str)


def snapshot(s: Submission) -> dict:
    return {
        "id": s.id,
        "template_id": s.template_id,
        "submitted_by_id": s.submitted_by_id,
        "lab_id": s.lab_id,
        "status": s.status.value if s.status is not None else None,
        "payload": load_payload(s),
    }


def create_or_update(db: Session, submission: Submission) -> int:
    if submission.id is None:
        db.add(submission)
    db.flush()
    return submission.id


def get_by_id(db: Session, submission_id: int) -> Submission:
    s = db.get(Submission, submission_id)
    if s is None:
        raise NotFound("Submission not found.")
    return s


def list_by_template(db: Session, template_id: int) -> list[Submission]:
    return (
        db.query(Submission)
        .filter(Submission.template_id == template_id)
        .order_by(Submission.id.asc())
        .all()
    )
