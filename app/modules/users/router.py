from fastapi import APIRouter, Depends, Form
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.auth.deps import get_current_user
from app.core.rbac import require, can_manage_masterdata, is_superadmin
from app.core.security import hash_password

from app.db.models.user import User, Role
from app.db.models.lab import Lab

router = APIRouter(prefix="/users", tags=["users"])


def _user_dict(u: User) -> dict:
    return {
        "id": u.id,
        "full_name": u.full_name,
        "email": u.email,
        "role": u.role.value,
        "role_label": u.role_label,
        "lab_id": u.lab_id,
        "designation": u.designation,
        "is_active": u.is_active,
    }


def _parse_role(actor: User, role: str) -> Role:
    try:
        role_enum = Role(role)
    except ValueError:
        require(False, "Invalid role.", 400)
    # only a superadmin hands out superadmin
    if role_enum == Role.SUPERADMIN:
        require(is_superadmin(actor), "Only a superadmin can grant this role.", 403)
    return role_enum


def _parse_lab(db: Session, lab_id: str) -> int | None:
    if not lab_id.strip():
        return None
    lab = db.get(Lab, int(lab_id))
    require(lab is not None, "Lab not found", 400)
    return lab.id


@router.get("")
def page(db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    users = db.query(User).order_by(User.id.desc()).all()
    return {"users": [_user_dict(u) for u in users], "roles": [r.value for r in Role]}


@router.get("/lab")
def lab_colleagues(db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Active users in the caller's lab (delegation picker)."""
    if user.lab_id is None:
        return {"users": []}
    users = (
        db.query(User)
        .filter(User.lab_id == user.lab_id, User.is_active == True, User.id != user.id)  # noqa: E712
        .order_by(User.full_name.asc())
        .all()
    )
    return {"users": [_user_dict(u) for u in users]}


@router.post("")
def create(
    full_name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    role: str = Form(Role.USER.value),
    lab_id: str = Form(""),
    designation: str = Form(""),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_manage_masterdata(user))
    role_enum = _parse_role(user, role)
    email = email.strip().lower()
    require(bool(email), "E-mail is required.", 400)

    # unique e-mail
    require(db.query(User).filter(User.email == email).first() is None, "This e-mail is already registered.", 400)

    u = User(
        full_name=full_name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role_enum,
        lab_id=_parse_lab(db, lab_id),
        designation=designation.strip(),
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return {"user": _user_dict(u)}


@router.post("/{user_id}/edit")
def edit_save(
    user_id: int,
    full_name: str = Form(...),
    email: str = Form(...),
    role: str = Form(...),
    lab_id: str = Form(""),
    designation: str = Form(""),
    new_password: str = Form(""),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_manage_masterdata(user))
    u = db.get(User, user_id)
    require(u is not None, "User not found", 404)

    role_enum = _parse_role(user, role)
    email = email.strip().lower()

    # e-mail uniqueness (excluding self)
    existing = db.query(User).filter(User.email == email, User.id != u.id).first()
    require(existing is None, "This e-mail is already registered.", 400)

    u.full_name = full_name.strip()
    u.email = email
    u.role = role_enum
    u.lab_id = _parse_lab(db, lab_id)
    u.designation = designation.strip()

    if new_password.strip():
        u.password_hash = hash_password(new_password.strip())

    db.commit()
    return {"user": _user_dict(u)}


@router.post("/{user_id}/toggle-active")
def toggle_active(user_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    u = db.get(User, user_id)
    require(u is not None, "User not found", 404)
    require(u.id != user.id, "You cannot deactivate your own account.", 400)
    u.is_active = not bool(u.is_active)
    db.commit()
    db.refresh(u)
    return {"user": _user_dict(u)}
