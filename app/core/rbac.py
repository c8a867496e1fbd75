from __future__ import annotations

from fastapi import HTTPException

from app.db.models.form_template import FormTemplate
from app.db.models.user import ADMIN_ROLES, Role, User


def require(condition: bool, msg: str = "Access denied", status_code: int = 403) -> None:
    """Small helper used across routers.

    Defaults to 403 (permission denied). For validation errors or not-found cases,
    pass `status_code=400/404`.
    """
    if not condition:
        raise HTTPException(status_code=status_code, detail=msg)


def is_admin(user: User) -> bool:
    return user.role in ADMIN_ROLES


def is_superadmin(user: User) -> bool:
    return user.role == Role.SUPERADMIN


def can_manage_masterdata(user: User) -> bool:
    # labs and user accounts
    return user.role in (Role.SUPERADMIN, Role.DELEGATED_ADMIN)


def can_create_form(user: User) -> bool:
    return user.is_active


def can_manage_template(user: User, template: FormTemplate) -> bool:
    # distributor owns the template; admins may step in
    return template.created_by_id == user.id or is_admin(user)


def can_distribute_inter_lab(user: User) -> bool:
    return user.role in (Role.INTER_LAB_SENDER, Role.DELEGATED_ADMIN, Role.SUPERADMIN)


def can_view_submission(user: User, template: FormTemplate, submitted_by_id: int) -> bool:
    return can_manage_template(user, template) or submitted_by_id == user.id
