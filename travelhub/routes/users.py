from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User


router = APIRouter(prefix="/users", tags=["users"])


def _user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "email": u.email,
        "name": u.name,
        "role": u.role,
        "department": u.department,
        "designation": u.designation,
        "isActive": u.is_active,
        "createdAt": u.created_at.isoformat() if u.created_at else None,
        "lastLoginAt": u.last_login_at.isoformat() if u.last_login_at else None,
    }


def _active_with_role(db: Session, role: str):
    return (
        db.query(User)
        .filter(User.role == role, User.is_active.is_(True))
        .order_by(User.name.asc())
        .all()
    )


@router.get("/approvers")
def list_approvers(db: Session = Depends(get_db), _=Depends(get_current_user)):
    """Approvers an employee can pick when creating a request."""
    return [
        {"id": str(u.id), "name": u.name, "email": u.email, "department": u.department}
        for u in _active_with_role(db, "approver")
    ]


@router.get("/employees")
def list_employees(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return [
        {"id": str(u.id), "name": u.name, "email": u.email, "department": u.department, "designation": u.designation}
        for u in _active_with_role(db, "employee")
    ]
