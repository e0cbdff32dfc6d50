import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, require_roles
from ..db import get_db
from ..models.models import ROLES, ReimbursementRequest, User
from ..schemas.auth import UserCreate, UserUpdate
from ..services.expenses import request_totals
from ..services.workflow import (
    APPROVED,
    PENDING,
    PENDING_VERIFICATION,
    REJECTED,
    REJECTED_BY_CHECKER,
    TRAVEL_APPROVED,
)
from .users import _user_to_dict


router = APIRouter(prefix="/admin", tags=["admin"])

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

PENDING_STATUSES = (PENDING, TRAVEL_APPROVED, PENDING_VERIFICATION)
REJECTED_STATUSES = (REJECTED, REJECTED_BY_CHECKER)


def _check_role(role: Optional[str]) -> None:
    if role is not None and role not in ROLES:
        raise HTTPException(status_code=400, detail=f"Invalid role. Must be one of: {', '.join(ROLES)}")


@router.get("/users")
def list_users(
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    return [_user_to_dict(u) for u in query.order_by(User.created_at.desc()).all()]


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    _check_role(payload.role)
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    u = User(
        email=email,
        name=payload.name,
        role=payload.role,
        department=payload.department,
        designation=payload.designation,
        password_hash=get_password_hash(payload.password),
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return _user_to_dict(u)


@router.patch("/users/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    u = db.query(User).filter(User.id == user_id).first()
    if not u:
        raise HTTPException(status_code=404, detail="Not found")
    _check_role(payload.role)
    data = payload.model_dump(exclude_unset=True)
    password = data.pop("password", None)
    for key, value in data.items():
        setattr(u, key, value)
    if password:
        u.password_hash = get_password_hash(password)
    db.commit()
    db.refresh(u)
    return _user_to_dict(u)


def _last_six_months(now: datetime):
    """(year, month) pairs for the current month and the five before it, oldest first."""
    pairs = []
    year, month = now.year, now.month
    for _ in range(6):
        pairs.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(pairs))


@router.get("/stats")
def get_stats(
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    users = db.query(User).all()
    requests = db.query(ReimbursementRequest).all()
    totals = request_totals(db, [r.id for r in requests])

    months = _last_six_months(datetime.now(timezone.utc))
    by_month = {
        pair: {"month": MONTHS[pair[1] - 1], "year": pair[0], "pending": 0, "approved": 0, "rejected": 0, "amount": Decimal("0")}
        for pair in months
    }
    departments = {}
    for r in requests:
        amount = totals.get(r.id, Decimal("0"))
        dept = departments.setdefault(r.department or "Unknown", {"requests": 0, "amount": Decimal("0")})
        dept["requests"] += 1
        dept["amount"] += amount

        bucket = by_month.get((r.created_at.year, r.created_at.month)) if r.created_at else None
        if bucket is None:
            continue
        if r.status in PENDING_STATUSES:
            bucket["pending"] += 1
        elif r.status == APPROVED:
            bucket["approved"] += 1
        elif r.status in REJECTED_STATUSES:
            bucket["rejected"] += 1
        bucket["amount"] += amount

    return {
        "totalUsers": len(users),
        "totalRequests": len(requests),
        "pendingRequests": sum(1 for r in requests if r.status in PENDING_STATUSES),
        "approvedRequests": sum(1 for r in requests if r.status == APPROVED),
        "rejectedRequests": sum(1 for r in requests if r.status in REJECTED_STATUSES),
        "totalAmount": float(sum(totals.values(), Decimal("0"))),
        "usersByRole": {role: sum(1 for u in users if u.role == role) for role in ROLES},
        "requestsByMonth": [
            {**by_month[pair], "amount": float(by_month[pair]["amount"])} for pair in months
        ],
        "departmentData": [
            {"name": name, "requests": data["requests"], "amount": float(data["amount"])}
            for name, data in departments.items()
        ],
    }
