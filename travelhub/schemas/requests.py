import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class ExpenseItemCreate(BaseModel):
    category: str = Field(min_length=1, max_length=100)  # accommodation|per-diem|vehicle-hiring|program-cost|meeting-cost|...
    amount: Decimal = Field(ge=0)
    description: Optional[str] = None


class TravelRequestCreate(BaseModel):
    request_type: str = Field(default="normal", alias="requestType")  # normal|advance|emergency|group
    approver_id: Optional[uuid.UUID] = Field(default=None, alias="approverId")
    employee_name: Optional[str] = Field(default=None, alias="employeeName")
    department: Optional[str] = None
    designation: Optional[str] = None
    project: Optional[str] = None
    purpose: Optional[str] = None
    travel_date_from: Optional[date] = Field(default=None, alias="travelDateFrom")
    travel_date_to: Optional[date] = Field(default=None, alias="travelDateTo")
    previous_outstanding_advance: Decimal = Field(default=Decimal("0"), ge=0, alias="previousOutstandingAdvance")
    group_members: Optional[List[str]] = Field(default=None, alias="groupMembers")
    expenses: List[ExpenseItemCreate] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class InValleyRequestCreate(BaseModel):
    approver_id: Optional[uuid.UUID] = Field(default=None, alias="approverId")
    employee_name: Optional[str] = Field(default=None, alias="employeeName")
    department: Optional[str] = None
    designation: Optional[str] = None
    project: Optional[str] = None
    purpose: Optional[str] = None
    expense_date: Optional[date] = Field(default=None, alias="expenseDate")
    location: Optional[str] = None
    description: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    meeting_type: Optional[str] = Field(default=None, alias="meetingType")
    meeting_participants: Optional[str] = Field(default=None, alias="meetingParticipants")

    class Config:
        populate_by_name = True


class StatusUpdate(BaseModel):
    status: str  # requested decision: approved|rejected
    role: str  # approver|checker
    comments: Optional[str] = None


class SubmitExpensesRequest(BaseModel):
    expenses: List[ExpenseItemCreate] = Field(default_factory=list)


class FinanceCommentRequest(BaseModel):
    comment: str
