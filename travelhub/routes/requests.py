import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import IN_VALLEY, TRAVEL_REQUEST_TYPES, ExpenseItem, ReimbursementRequest, User
from ..schemas.requests import (
    ExpenseItemCreate,
    FinanceCommentRequest,
    InValleyRequestCreate,
    StatusUpdate,
    SubmitExpensesRequest,
    TravelRequestCreate,
)
from ..services.audit import get_audit_logs, serialize_audit_log
from ..services.errors import NotFound, Unauthorized, ValidationFailed
from ..services.expenses import (
    add_expense_item,
    list_expense_items,
    request_total,
    request_totals,
    serialize_expense_item,
)
from ..services.permissions import can_view_request
from ..services.workflow import (
    PENDING,
    TRAVEL_APPROVED,
    Actor,
    add_finance_comment,
    create_request,
    submit_expenses,
    transition_request,
)


router = APIRouter(prefix="/requests", tags=["requests"])


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_request(
    request: ReimbursementRequest,
    total: Decimal,
    *,
    items: Optional[List[ExpenseItem]] = None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": str(request.id),
        "employeeId": str(request.employee_id),
        "employeeName": request.employee_name,
        "department": request.department,
        "designation": request.designation,
        "approverId": str(request.approver_id) if request.approver_id else None,
        "requestType": request.request_type,
        "project": request.project,
        "purpose": request.purpose,
        "status": request.status,
        "approverComments": request.approver_comments,
        "checkerComments": request.checker_comments,
        "financeComments": request.finance_comments,
        "totalAmount": float(total),
        "createdAt": _iso(request.created_at),
        "updatedAt": _iso(request.updated_at),
        "travelApprovedAt": _iso(request.travel_approved_at),
        "expensesSubmittedAt": _iso(request.expenses_submitted_at),
    }
    if request.request_type == IN_VALLEY:
        data.update({
            "expenseDate": _iso(request.expense_date),
            "location": request.location,
            "description": request.description,
            "paymentMethod": request.payment_method,
            "meetingType": request.meeting_type,
            "meetingParticipants": request.meeting_participants,
        })
    else:
        data.update({
            "travelDateFrom": _iso(request.travel_date_from),
            "travelDateTo": _iso(request.travel_date_to),
            "previousOutstandingAdvance": float(request.previous_outstanding_advance or 0),
            "groupMembers": request.group_members or [],
        })
    if items is not None:
        data["expenses"] = [serialize_expense_item(i) for i in items]
    return data


def _get_visible_request(db: Session, request_id: uuid.UUID, user: User) -> ReimbursementRequest:
    request = db.query(ReimbursementRequest).filter(ReimbursementRequest.id == request_id).first()
    if not request:
        raise NotFound("Request not found")
    if not can_view_request(user, request):
        raise Unauthorized("You do not have access to this request")
    return request


def _detail(db: Session, request: ReimbursementRequest) -> Dict[str, Any]:
    return _serialize_request(
        request,
        request_total(db, request.id),
        items=list_expense_items(db, request.id),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_travel_request(
    payload: TravelRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.request_type not in TRAVEL_REQUEST_TYPES:
        raise ValidationFailed(
            f"Invalid travel request type. Must be one of: {', '.join(TRAVEL_REQUEST_TYPES)}"
        )
    details = payload.model_dump(exclude={"request_type", "approver_id", "expenses"})
    request = create_request(
        db,
        user,
        request_type=payload.request_type,
        approver_id=payload.approver_id,
        items=payload.expenses,
        **details,
    )
    return _detail(db, request)


@router.post("/in-valley", status_code=status.HTTP_201_CREATED)
def create_in_valley_request(
    payload: InValleyRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    details = payload.model_dump(exclude={"approver_id"})
    request = create_request(
        db,
        user,
        request_type=IN_VALLEY,
        approver_id=payload.approver_id,
        **details,
    )
    return _detail(db, request)


@router.get("")
def list_requests(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    request_type: Optional[str] = Query(default=None, alias="requestType"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    List requests visible to the caller.
    Employees see their own; approvers see requests assigned to them (or
    unassigned); checkers and admins see everything.
    """
    query = db.query(ReimbursementRequest)
    if user.role == "employee":
        query = query.filter(ReimbursementRequest.employee_id == user.id)
    elif user.role == "approver":
        query = query.filter(
            or_(ReimbursementRequest.approver_id == user.id, ReimbursementRequest.approver_id.is_(None))
        )

    if status_filter:
        if status_filter == PENDING and user.role == "approver":
            # Approver queue includes in-valley requests waiting on phase 2
            query = query.filter(ReimbursementRequest.status.in_([PENDING, TRAVEL_APPROVED]))
        else:
            query = query.filter(ReimbursementRequest.status == status_filter)
    if request_type:
        query = query.filter(ReimbursementRequest.request_type == request_type)

    rows = query.order_by(ReimbursementRequest.created_at.desc()).all()
    totals = request_totals(db, [r.id for r in rows])
    return [_serialize_request(r, totals.get(r.id, Decimal("0"))) for r in rows]


@router.get("/{request_id}")
def get_request(
    request_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _detail(db, _get_visible_request(db, request_id, user))


@router.patch("/{request_id}/status")
def update_request_status(
    request_id: uuid.UUID,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("approver", "checker", "admin")),
):
    result = transition_request(
        db,
        request_id,
        Actor.from_user(user),
        role=payload.role,
        decision=payload.status,
        comments=payload.comments,
    )
    data = _detail(db, result.request)
    data["notificationsSent"] = result.notifications.delivered_count
    return data


@router.get("/{request_id}/expenses")
def get_request_expenses(
    request_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    request = _get_visible_request(db, request_id, user)
    return [serialize_expense_item(i, with_receipts=True) for i in list_expense_items(db, request.id)]


@router.post("/{request_id}/expenses", status_code=status.HTTP_201_CREATED)
def create_request_expense(
    request_id: uuid.UUID,
    payload: ExpenseItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = add_expense_item(
        db,
        request_id,
        user,
        category=payload.category,
        amount=payload.amount,
        description=payload.description,
    )
    return serialize_expense_item(item)


@router.post("/{request_id}/submit-expenses")
def submit_request_expenses(
    request_id: uuid.UUID,
    payload: SubmitExpensesRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = submit_expenses(db, request_id, user, payload.expenses)
    data = _detail(db, result.request)
    data["notificationsSent"] = result.notifications.delivered_count
    return data


@router.post("/{request_id}/finance-comment")
def post_finance_comment(
    request_id: uuid.UUID,
    payload: FinanceCommentRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("checker", "admin")),
):
    result = add_finance_comment(db, request_id, user, payload.comment)
    return {
        "success": True,
        "message": "Finance comment added successfully",
        "requestType": result.request.request_type,
        "financeComments": result.request.finance_comments,
    }


@router.get("/{request_id}/history")
def get_request_history(
    request_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    request = _get_visible_request(db, request_id, user)
    return [serialize_audit_log(e) for e in get_audit_logs(db, entity_type="request", entity_id=request.id)]
