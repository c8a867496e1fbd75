from fastapi import APIRouter, Depends, Form
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from app.db.session import get_db
from app.auth.deps import get_current_user
from app.db.models.lab import Lab
from app.db.models.user import User
from app.core.rbac import can_manage_masterdata, require

router = APIRouter(prefix="/labs", tags=["labs"])


def _lab_dict(lab: Lab) -> dict:
    return {"id": lab.id, "name": lab.name}


@router.get("")
def page(db: Session = Depends(get_db), user=Depends(get_current_user)):
    labs = db.query(Lab).order_by(Lab.name.asc()).all()
    return {"labs": [_lab_dict(lab) for lab in labs]}


@router.post("")
def create(name: str = Form(...), db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    require(name.strip() != "", "Name cannot be empty.", 400)
    lab = Lab(name=name.strip())
    db.add(lab)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        require(False, "A lab with this name already exists.", 400)
    db.refresh(lab)
    return {"lab": _lab_dict(lab)}


@router.put("/{lab_id}")
def update(lab_id: int, name: str = Form(...), db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    lab = db.get(Lab, lab_id)
    require(lab is not None, "Lab not found", 404)
    require(name.strip() != "", "Name cannot be empty.", 400)
    lab.name = name.strip()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        require(False, "A lab with this name already exists.", 400)
    db.refresh(lab)
    return {"lab": _lab_dict(lab)}


@router.delete("/{lab_id}")
def delete(lab_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    lab = db.get(Lab, lab_id)
    if lab:
        in_use = db.query(User.id).filter(User.lab_id == lab.id).first()
        require(in_use is None, "This lab still has users.", 409)
        db.delete(lab)
        db.commit()
    return {"ok": True}
