"""
Expense items and derived request totals.

A request's total is never stored; it is summed from its expense items on
every read.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import ExpenseItem, ReimbursementRequest, Receipt, User
from .errors import InvalidTransition, NotFound, StoreUnavailable, Unauthorized, ValidationFailed
from .permissions import can_manage_expenses, can_view_request


# Expense items may be added while the request is still open for them
OPEN_FOR_EXPENSES = ("pending", "travel_approved")


def request_total(db: Session, request_id: uuid.UUID) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(ExpenseItem.amount), 0))
        .filter(ExpenseItem.request_id == request_id)
        .scalar()
    )
    return Decimal(str(total or 0))


def request_totals(db: Session, request_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Decimal]:
    ids = list(request_ids)
    if not ids:
        return {}
    rows = (
        db.query(ExpenseItem.request_id, func.sum(ExpenseItem.amount))
        .filter(ExpenseItem.request_id.in_(ids))
        .group_by(ExpenseItem.request_id)
        .all()
    )
    totals = {request_id: Decimal("0") for request_id in ids}
    for request_id, amount in rows:
        totals[request_id] = Decimal(str(amount or 0))
    return totals


def count_expense_items(db: Session, request_id: uuid.UUID) -> int:
    return db.query(ExpenseItem).filter(ExpenseItem.request_id == request_id).count()


def list_expense_items(db: Session, request_id: uuid.UUID) -> List[ExpenseItem]:
    return (
        db.query(ExpenseItem)
        .filter(ExpenseItem.request_id == request_id)
        .order_by(ExpenseItem.created_at.asc())
        .all()
    )


def build_expense_item(
    request_id: uuid.UUID,
    *,
    category: str,
    amount: Decimal,
    description: Optional[str] = None,
) -> ExpenseItem:
    category = (category or "").strip()
    if not category:
        raise ValidationFailed("Expense category is required")
    if amount is None or Decimal(str(amount)) < 0:
        raise ValidationFailed("Expense amount must be zero or positive")
    return ExpenseItem(
        request_id=request_id,
        category=category,
        amount=Decimal(str(amount)),
        description=description or "",
        created_at=datetime.now(timezone.utc),
    )


def add_expense_item(
    db: Session,
    request_id: uuid.UUID,
    user: User,
    *,
    category: str,
    amount: Decimal,
    description: Optional[str] = None,
) -> ExpenseItem:
    request = db.query(ReimbursementRequest).filter(ReimbursementRequest.id == request_id).first()
    if not request:
        raise NotFound("Request not found")
    if not can_manage_expenses(user, request):
        raise Unauthorized("Only the request owner can add expenses")
    if request.status not in OPEN_FOR_EXPENSES:
        raise InvalidTransition(
            f"Expenses cannot be added to a request in status '{request.status}'"
        )

    item = build_expense_item(request.id, category=category, amount=amount, description=description)
    try:
        db.add(item)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable("Could not save expense item") from exc
    db.refresh(item)
    return item


def get_expense_item_for_viewer(db: Session, item_id: uuid.UUID, user: User) -> ExpenseItem:
    item = db.query(ExpenseItem).filter(ExpenseItem.id == item_id).first()
    if not item:
        raise NotFound("Expense item not found")
    if not can_view_request(user, item.request):
        raise Unauthorized("You do not have access to this expense item")
    return item


def serialize_receipt(receipt: Receipt) -> dict:
    return {
        "id": str(receipt.id),
        "expenseItemId": str(receipt.expense_item_id),
        "originalFilename": receipt.original_filename,
        "storageKey": receipt.storage_key,
        "publicUrl": receipt.public_url,
        "contentType": receipt.content_type,
        "sizeBytes": receipt.size_bytes,
        "uploadedAt": receipt.uploaded_at.isoformat() if receipt.uploaded_at else None,
    }


def serialize_expense_item(item: ExpenseItem, *, with_receipts: bool = False) -> dict:
    data = {
        "id": str(item.id),
        "requestId": str(item.request_id),
        "category": item.category,
        "amount": float(item.amount or 0),
        "description": item.description,
        "createdAt": item.created_at.isoformat() if item.created_at else None,
    }
    if with_receipts:
        data["receipts"] = [serialize_receipt(r) for r in item.receipts]
    return data
