import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    active: bool = True


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    active: Optional[bool] = None


class ProjectResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class BudgetCreate(BaseModel):
    project_id: uuid.UUID
    amount: Decimal = Field(ge=0)
    fiscal_year: int = Field(ge=2000, le=2100)
    description: Optional[str] = None


class BudgetUpdate(BaseModel):
    project_id: Optional[uuid.UUID] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    fiscal_year: Optional[int] = Field(default=None, ge=2000, le=2100)
    description: Optional[str] = None


class BudgetResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    amount: float
    fiscal_year: int
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
