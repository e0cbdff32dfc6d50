"""
Request lifecycle engine.

Every status change of a reimbursement request goes through the transition
table below. The engine re-checks the caller's role against the session,
writes the new status with a compare-and-swap on the status it read, and
then hands notifications to the dispatcher. Notification failures never
unwind the committed status.

    pending --approver:approved--> pending_verification   (travel variants)
    pending --approver:approved--> travel_approved        (in-valley)
    pending --approver:rejected--> rejected
    travel_approved --employee:submitted--> pending_verification
    pending_verification --checker:approved--> approved
    pending_verification --checker:rejected--> rejected_by_checker
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import IN_VALLEY, REQUEST_TYPES, ReimbursementRequest, User
from ..schemas.requests import ExpenseItemCreate
from .audit import compute_diff, create_audit_log
from .errors import InvalidTransition, NotFound, StoreUnavailable, Unauthorized, ValidationFailed
from .expenses import build_expense_item, count_expense_items
from .notifications import (
    DispatchReport,
    NotificationDispatcher,
    NotificationEmitter,
    active_user_ids_with_role,
)
from .permissions import can_manage_expenses


logger = structlog.get_logger(__name__)

PENDING = "pending"
TRAVEL_APPROVED = "travel_approved"
PENDING_VERIFICATION = "pending_verification"
APPROVED = "approved"
REJECTED = "rejected"
REJECTED_BY_CHECKER = "rejected_by_checker"

STATUSES = (PENDING, TRAVEL_APPROVED, PENDING_VERIFICATION, APPROVED, REJECTED, REJECTED_BY_CHECKER)
TERMINAL_STATUSES = (APPROVED, REJECTED, REJECTED_BY_CHECKER)

SINGLE_PHASE = "single_phase"
TWO_PHASE = "two_phase"

# Decision recorded when the employee hands in phase-2 expenses
SUBMITTED = "submitted"
DECISIONS = (APPROVED, REJECTED)

# Roles an admin session may act in
ADMIN_ACTING_ROLES = ("approver", "checker", "employee")

COMMENT_FIELDS = {
    "approver": "approver_comments",
    "checker": "checker_comments",
}


@dataclass(frozen=True)
class Transition:
    new_status: str
    notify_checkers: bool = False


def _build_table() -> Dict[Tuple[str, str, str, str], Transition]:
    table = {
        (PENDING, "approver", APPROVED, SINGLE_PHASE): Transition(PENDING_VERIFICATION, notify_checkers=True),
        (PENDING, "approver", APPROVED, TWO_PHASE): Transition(TRAVEL_APPROVED),
        (TRAVEL_APPROVED, "employee", SUBMITTED, TWO_PHASE): Transition(PENDING_VERIFICATION, notify_checkers=True),
    }
    for phase_kind in (SINGLE_PHASE, TWO_PHASE):
        table[(PENDING, "approver", REJECTED, phase_kind)] = Transition(REJECTED)
        table[(PENDING_VERIFICATION, "checker", APPROVED, phase_kind)] = Transition(APPROVED)
        table[(PENDING_VERIFICATION, "checker", REJECTED, phase_kind)] = Transition(REJECTED_BY_CHECKER)
    return table


TRANSITIONS: Dict[Tuple[str, str, str, str], Transition] = _build_table()


def phase_kind(request_type: str) -> str:
    return TWO_PHASE if request_type == IN_VALLEY else SINGLE_PHASE


def lookup_transition(current: str, role: str, decision: str, request_type: str = "normal") -> Transition:
    transition = TRANSITIONS.get((current, role, decision, phase_kind(request_type)))
    if transition is None:
        raise InvalidTransition(
            f"A {role} cannot '{decision}' a request in status '{current}'"
        )
    return transition


def next_status(current: str, role: str, decision: str, request_type: str = "normal") -> str:
    """Pure transition function; raises InvalidTransition for any combination outside the table."""
    return lookup_transition(current, role, decision, request_type).new_status


@dataclass(frozen=True)
class Actor:
    """Identity resolved from the session; never taken from the request body."""
    user_id: uuid.UUID
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role)


@dataclass
class TransitionResult:
    request: ReimbursementRequest
    previous_status: str
    notifications: DispatchReport = field(default_factory=DispatchReport)


def _kind_label(request: ReimbursementRequest) -> str:
    return "in-valley reimbursement" if request.request_type == IN_VALLEY else "travel"


def _with_comment(message: str, comments: Optional[str]) -> str:
    comments = (comments or "").strip()
    if not comments:
        return message
    return f'{message}. Comment: "{comments}"'


def employee_message(request: ReimbursementRequest, new_status: str, *, via_expenses: bool = False, comments: Optional[str] = None) -> str:
    kind = _kind_label(request)
    if new_status == PENDING_VERIFICATION and via_expenses:
        message = f"Your {kind} expense submission has been received and is pending financial verification"
    elif new_status == PENDING_VERIFICATION:
        message = f"Your {kind} request has been approved by your approver and is pending financial verification"
    elif new_status == TRAVEL_APPROVED:
        message = f"Your {kind} request has been approved. You can now submit your expenses"
    elif new_status == APPROVED:
        message = f"Your {kind} request has been fully approved and processed"
    elif new_status == REJECTED_BY_CHECKER:
        message = f"Your {kind} request has been rejected during financial verification"
    elif new_status == REJECTED:
        message = f"Your {kind} request has been rejected"
    else:
        message = f"Your {kind} request is now {new_status.replace('_', ' ')}"
    return _with_comment(message, comments)


def checker_message(request: ReimbursementRequest, *, via_expenses: bool = False) -> str:
    kind = _kind_label(request)
    if via_expenses:
        return f"A {kind} expense submission is waiting for your financial verification"
    return f"A new {kind} request is waiting for your financial verification"


def _load_request(db: Session, request_id: uuid.UUID) -> ReimbursementRequest:
    try:
        request = db.query(ReimbursementRequest).filter(ReimbursementRequest.id == request_id).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable("Could not load request") from exc
    if not request:
        raise NotFound("Request not found")
    if request.status not in STATUSES:
        raise InvalidTransition(f"Request has unknown status '{request.status}'")
    return request


def _authorize_role_claim(actor: Actor, role: str) -> None:
    if actor.role == role:
        return
    if actor.role == "admin" and role in ADMIN_ACTING_ROLES:
        return
    raise Unauthorized(f"Signed-in role '{actor.role}' cannot act as '{role}'")


def _compare_and_swap(
    db: Session,
    request: ReimbursementRequest,
    expected_status: str,
    values: dict,
    *,
    actor: Actor,
    acting_role: str,
    action: str,
    context: Optional[dict] = None,
    extra_rows: Iterable = (),
) -> None:
    """
    Write `values` only if the stored status still equals `expected_status`.
    Extra rows (new expense items) and the audit entry share the same commit.
    """
    before = {key: _jsonable(getattr(request, key)) for key in values}
    try:
        for row in extra_rows:
            db.add(row)
        updated = (
            db.query(ReimbursementRequest)
            .filter(
                ReimbursementRequest.id == request.id,
                ReimbursementRequest.status == expected_status,
            )
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            db.rollback()
            raise InvalidTransition(
                f"Request is no longer in status '{expected_status}'; it was changed by someone else"
            )
        create_audit_log(
            db,
            entity_type="request",
            entity_id=request.id,
            action=action,
            actor_id=actor.user_id,
            actor_role=acting_role,
            changes_json=compute_diff(before, {key: _jsonable(value) for key, value in values.items()}),
            context=context,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable("Could not save request changes") from exc
    db.refresh(request)


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _deliver(dispatcher: NotificationDispatcher, request: ReimbursementRequest) -> DispatchReport:
    report = dispatcher.dispatch()
    if report.failed_count:
        logger.warning(
            "notification_fanout_incomplete",
            request_id=str(request.id),
            delivered=report.delivered_count,
            failed=report.failed_count,
        )
    return report


def _dispatch(
    db: Session,
    request: ReimbursementRequest,
    employee_text: str,
    checker_text: Optional[str],
    emitter: Optional[NotificationEmitter],
) -> DispatchReport:
    dispatcher = NotificationDispatcher(emitter or NotificationEmitter(db))
    dispatcher.enqueue(request.employee_id, request.id, employee_text)
    if checker_text:
        try:
            checker_ids = active_user_ids_with_role(db, "checker")
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("checker_lookup_failed", request_id=str(request.id), error=str(exc))
            checker_ids = []
        for checker_id in checker_ids:
            dispatcher.enqueue(checker_id, request.id, checker_text)
    return _deliver(dispatcher, request)


def transition_request(
    db: Session,
    request_id: uuid.UUID,
    actor: Actor,
    role: str,
    decision: str,
    comments: Optional[str] = None,
    *,
    emitter: Optional[NotificationEmitter] = None,
) -> TransitionResult:
    """
    Apply an approver or checker decision to a request.

    Raises NotFound, Unauthorized, InvalidTransition or StoreUnavailable.
    The second application of the same decision fails with InvalidTransition
    because the stored status no longer matches the table's precondition.
    """
    request = _load_request(db, request_id)
    _authorize_role_claim(actor, role)
    if role not in COMMENT_FIELDS:
        raise InvalidTransition(f"Role '{role}' cannot decide on requests")

    current = request.status
    transition = lookup_transition(current, role, decision, request.request_type)

    if (
        role == "approver"
        and actor.role == "approver"
        and request.approver_id is not None
        and request.approver_id != actor.user_id
    ):
        raise Unauthorized("Only the assigned approver can act on this request")

    now = datetime.now(timezone.utc)
    values = {"status": transition.new_status, "updated_at": now}
    if comments is not None:
        values[COMMENT_FIELDS[role]] = comments
    if transition.new_status == TRAVEL_APPROVED:
        values["travel_approved_at"] = now

    _compare_and_swap(
        db,
        request,
        current,
        values,
        actor=actor,
        acting_role=role,
        action="TRANSITION",
        context={"decision": decision, "request_type": request.request_type},
    )
    logger.info(
        "request_transition",
        request_id=str(request.id),
        from_status=current,
        to_status=transition.new_status,
        actor_id=str(actor.user_id),
        role=role,
    )

    report = _dispatch(
        db,
        request,
        employee_message(request, transition.new_status, comments=comments),
        checker_message(request) if transition.notify_checkers else None,
        emitter,
    )
    return TransitionResult(request=request, previous_status=current, notifications=report)


def submit_expenses(
    db: Session,
    request_id: uuid.UUID,
    user: User,
    items: Optional[Iterable[ExpenseItemCreate]] = None,
    *,
    emitter: Optional[NotificationEmitter] = None,
) -> TransitionResult:
    """
    Phase 2 of an in-valley request: the employee hands in expenses.

    Requires at least one expense item on the request once the supplied
    items are added; otherwise nothing is written.
    """
    request = _load_request(db, request_id)
    actor = Actor.from_user(user)
    if not can_manage_expenses(user, request):
        raise Unauthorized("Only the request owner can submit expenses")

    current = request.status
    transition = lookup_transition(current, "employee", SUBMITTED, request.request_type)

    new_items = [
        build_expense_item(request.id, category=i.category, amount=i.amount, description=i.description)
        for i in (items or [])
    ]
    try:
        existing = count_expense_items(db, request.id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable("Could not load expense items") from exc
    if existing + len(new_items) == 0:
        raise InvalidTransition("At least one expense item is required before submitting expenses")

    now = datetime.now(timezone.utc)
    _compare_and_swap(
        db,
        request,
        current,
        {"status": transition.new_status, "expenses_submitted_at": now, "updated_at": now},
        actor=actor,
        acting_role="employee",
        action="SUBMIT_EXPENSES",
        context={"items_added": len(new_items), "items_total": existing + len(new_items)},
        extra_rows=new_items,
    )
    logger.info(
        "request_transition",
        request_id=str(request.id),
        from_status=current,
        to_status=transition.new_status,
        actor_id=str(actor.user_id),
        role="employee",
    )

    report = _dispatch(
        db,
        request,
        employee_message(request, transition.new_status, via_expenses=True),
        checker_message(request, via_expenses=True) if transition.notify_checkers else None,
        emitter,
    )
    return TransitionResult(request=request, previous_status=current, notifications=report)


def add_finance_comment(
    db: Session,
    request_id: uuid.UUID,
    user: User,
    comment: str,
    *,
    emitter: Optional[NotificationEmitter] = None,
) -> TransitionResult:
    """Checker note to the employee; does not change the status."""
    if user.role not in ("checker", "admin"):
        raise Unauthorized("Only financial checkers can send finance comments")
    comment = (comment or "").strip()
    if not comment:
        raise ValidationFailed("Comment is required")

    request = _load_request(db, request_id)
    actor = Actor.from_user(user)
    current = request.status
    _compare_and_swap(
        db,
        request,
        current,
        {"finance_comments": comment, "updated_at": datetime.now(timezone.utc)},
        actor=actor,
        acting_role="checker",
        action="FINANCE_COMMENT",
    )

    limit = settings.finance_comment_preview_chars
    preview = comment[:limit] + ("..." if len(comment) > limit else "")
    report = _dispatch(db, request, f'Financial comment received: "{preview}"', None, emitter)
    return TransitionResult(request=request, previous_status=current, notifications=report)


def create_request(
    db: Session,
    user: User,
    *,
    request_type: str,
    approver_id: Optional[uuid.UUID] = None,
    items: Optional[Iterable[ExpenseItemCreate]] = None,
    emitter: Optional[NotificationEmitter] = None,
    **details,
) -> ReimbursementRequest:
    """
    Create a request in `pending`, owned by the signed-in user.

    Approver and owner notifications go out after the commit and are best
    effort, the same as for status transitions.
    """
    if request_type not in REQUEST_TYPES:
        raise ValidationFailed(
            f"Invalid request type. Must be one of: {', '.join(REQUEST_TYPES)}"
        )
    if approver_id is not None:
        approver = db.query(User).filter(User.id == approver_id).first()
        if not approver:
            raise NotFound("Approver not found")
        if approver.role != "approver" or not approver.is_active:
            raise ValidationFailed("Selected user is not an active approver")

    now = datetime.now(timezone.utc)
    request = ReimbursementRequest(
        id=uuid.uuid4(),
        employee_id=user.id,
        employee_name=details.pop("employee_name", None) or user.name,
        department=details.pop("department", None) or user.department,
        designation=details.pop("designation", None) or user.designation,
        approver_id=approver_id,
        request_type=request_type,
        status=PENDING,
        created_at=now,
        updated_at=now,
        **details,
    )
    new_items = [
        build_expense_item(request.id, category=i.category, amount=i.amount, description=i.description)
        for i in (items or [])
    ]
    try:
        db.add(request)
        db.add_all(new_items)
        db.flush()
        create_audit_log(
            db,
            entity_type="request",
            entity_id=request.id,
            action="CREATE",
            actor_id=user.id,
            actor_role=user.role,
            changes_json={"status": {"before": None, "after": PENDING}},
            context={"request_type": request_type, "items": len(new_items)},
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable("Could not save request") from exc
    db.refresh(request)
    logger.info("request_created", request_id=str(request.id), request_type=request_type, employee_id=str(user.id))
    _dispatch_created(db, request, emitter)
    return request


def _dispatch_created(
    db: Session, request: ReimbursementRequest, emitter: Optional[NotificationEmitter]
) -> DispatchReport:
    """Tell the assigned approver (or every active approver) and the owner about a new request."""
    kind = _kind_label(request)
    if request.approver_id is not None:
        approver_ids = [request.approver_id]
    else:
        try:
            approver_ids = active_user_ids_with_role(db, "approver")
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("approver_lookup_failed", request_id=str(request.id), error=str(exc))
            approver_ids = []
    dispatcher = NotificationDispatcher(emitter or NotificationEmitter(db))
    for approver_id in approver_ids:
        if approver_id == request.employee_id:
            continue
        dispatcher.enqueue(approver_id, request.id, f"A new {kind} request is waiting for your approval")
    dispatcher.enqueue(
        request.employee_id, request.id, f"Your {kind} request has been submitted and is awaiting approval"
    )
    return _deliver(dispatcher, request)
