from __future__ import annotations

import json
import logging

from passlib.exc import UnknownHashError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hash_password, verify_password
from app.db.models.lab import Lab
from app.db.models.form_distribution import FormTemplateLab
from app.db.models.form_template import FormTemplate
from app.db.models.user import User, Role

logger = logging.getLogger("form_portal.seed")


def _get_or_create_lab(db: Session, name: str) -> Lab:
    lab = db.query(Lab).filter(Lab.name == name).first()
    if not lab:
        lab = Lab(name=name)
        db.add(lab)
        db.flush()  # populate lab.id
    return lab


def _upsert_user(
    db: Session,
    *,
    email: str,
    full_name: str,
    role: Role,
    lab_id: int | None,
    designation: str,
    password: str,
) -> User:
    u = db.query(User).filter(User.email == email).first()
    if not u:
        u = User(
            email=email,
            full_name=full_name,
            role=role,
            lab_id=lab_id,
            designation=designation,
            password_hash=hash_password(password),
            is_active=True,
        )
        db.add(u)
        db.flush()
        return u

    # keep it idempotent and also enforce requested sample values
    u.full_name = full_name
    u.role = role
    u.lab_id = lab_id
    u.designation = designation
    u.is_active = True

    try:
        if not verify_password(password, u.password_hash or ""):
            u.password_hash = hash_password(password)
    except (ValueError, UnknownHashError):
        u.password_hash = hash_password(password)

    db.flush()
    return u


def _get_or_create_form(db: Session, *, title: str, created_by: User, lab: Lab, schema: dict) -> FormTemplate:
    f = db.query(FormTemplate).filter(FormTemplate.title == title, FormTemplate.created_by_id == created_by.id).first()
    if not f:
        f = FormTemplate(
            title=title,
            created_by_id=created_by.id,
            schema_json=json.dumps(schema, ensure_ascii=False),
            allow_delegation=True,
        )
        f.target_labs = [FormTemplateLab(lab_id=lab.id)]
        db.add(f)
        db.flush()
    return f


def seed_sample(db: Session) -> None:
    """Idempotently seed a small sample dataset for quick manual testing."""

    pwd = settings.SAMPLE_SEED_PASSWORD or "123"

    lab_a = _get_or_create_lab(db, "Chemistry Lab")
    lab_b = _get_or_create_lab(db, "Materials Lab")

    sender = _upsert_user(
        db,
        email="sender@example.org",
        full_name="Inter-lab Sender",
        role=Role.INTER_LAB_SENDER,
        lab_id=lab_b.id,
        designation="Scientist",
        password=pwd,
    )

    # Chemistry Lab: one approver and two officers who can pass the form between them
    _upsert_user(
        db,
        email="director.chem@example.org",
        full_name="Chemistry Director",
        role=Role.USER,
        lab_id=lab_a.id,
        designation="Director",
        password=pwd,
    )
    _upsert_user(
        db,
        email="officer1.chem@example.org",
        full_name="Chemistry Officer 1",
        role=Role.USER,
        lab_id=lab_a.id,
        designation="Technical Officer",
        password=pwd,
    )
    _upsert_user(
        db,
        email="officer2.chem@example.org",
        full_name="Chemistry Officer 2",
        role=Role.USER,
        lab_id=lab_a.id,
        designation="Technical Officer",
        password=pwd,
    )

    schema = {
        "fields": [
            {"id": "summary", "label": "Summary", "type": "textarea", "required": True},
            {"id": "budget", "label": "Budget", "type": "text", "validation": {"isNumeric": True}},
            {"id": "declaration_checkbox", "label": "I certify the above", "type": "checkbox"},
        ]
    }
    _get_or_create_form(db, title="Quarterly Equipment Return", created_by=sender, lab=lab_a, schema=schema)


def main() -> int:
    # Allow manual execution:
    #   python -m app.scripts.seed_sample
    from app.db.session import SessionLocal

    logging.basicConfig(level=logging.INFO)
    db = SessionLocal()
    try:
        seed_sample(db)
        db.commit()
        logger.info("Sample seed applied successfully.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
