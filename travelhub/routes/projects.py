import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Budget, Project
from ..schemas.admin import (
    BudgetCreate,
    BudgetResponse,
    BudgetUpdate,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
)


router = APIRouter(tags=["projects"])


def _get_project(db: Session, project_id: uuid.UUID) -> Project:
    p = db.query(Project).filter(Project.id == project_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="Project not found")
    return p


def _get_budget(db: Session, budget_id: uuid.UUID) -> Budget:
    b = db.query(Budget).filter(Budget.id == budget_id).first()
    if not b:
        raise HTTPException(status_code=404, detail="Budget not found")
    return b


@router.get("/projects", response_model=List[ProjectResponse])
def list_active_projects(db: Session = Depends(get_db), _=Depends(get_current_user)):
    """Projects a request can be charged to."""
    return db.query(Project).filter(Project.active.is_(True)).order_by(Project.name.asc()).all()


# =====================
# Admin: projects
# =====================

@router.get("/admin/projects", response_model=List[ProjectResponse])
def list_projects(db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    return db.query(Project).order_by(Project.name.asc()).all()


@router.post("/admin/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    if db.query(Project).filter(Project.name == payload.name).first():
        raise HTTPException(status_code=409, detail="A project with this name already exists")
    p = Project(**payload.model_dump(), created_at=datetime.now(timezone.utc))
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@router.patch("/admin/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: uuid.UUID,
    payload: ProjectUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    p = _get_project(db, project_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(p, key, value)
    db.commit()
    db.refresh(p)
    return p


@router.delete("/admin/projects/{project_id}")
def delete_project(project_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    p = _get_project(db, project_id)
    db.delete(p)
    db.commit()
    return {"status": "ok"}


# =====================
# Admin: budgets
# =====================

@router.get("/admin/budgets", response_model=List[BudgetResponse])
def list_budgets(
    project_id: Optional[uuid.UUID] = None,
    fiscal_year: Optional[int] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    query = db.query(Budget)
    if project_id:
        query = query.filter(Budget.project_id == project_id)
    if fiscal_year:
        query = query.filter(Budget.fiscal_year == fiscal_year)
    return query.order_by(Budget.fiscal_year.desc(), Budget.created_at.desc()).all()


@router.post("/admin/budgets", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
def create_budget(payload: BudgetCreate, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    _get_project(db, payload.project_id)
    b = Budget(**payload.model_dump(), created_at=datetime.now(timezone.utc))
    db.add(b)
    db.commit()
    db.refresh(b)
    return b


@router.patch("/admin/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: uuid.UUID,
    payload: BudgetUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    b = _get_budget(db, budget_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("project_id"):
        _get_project(db, data["project_id"])
    for key, value in data.items():
        setattr(b, key, value)
    db.commit()
    db.refresh(b)
    return b


@router.delete("/admin/budgets/{budget_id}")
def delete_budget(budget_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    b = _get_budget(db, budget_id)
    db.delete(b)
    db.commit()
    return {"status": "ok"}
