"""
Role checks for reimbursement requests.
"""
from ..models.models import User, ReimbursementRequest


REVIEW_ROLES = ("approver", "checker", "admin")


def is_admin(user: User) -> bool:
    return user.role == "admin"


def is_owner(user: User, request: ReimbursementRequest) -> bool:
    return str(request.employee_id) == str(user.id)


def can_view_request(user: User, request: ReimbursementRequest) -> bool:
    """
    Check if user can read a request.
    - Employee can only read their own requests
    - Approver, checker and admin can read any request
    """
    if user.role in REVIEW_ROLES:
        return True
    return is_owner(user, request)


def can_manage_expenses(user: User, request: ReimbursementRequest) -> bool:
    """Owner adds and submits expenses; admin may do it on their behalf."""
    return is_admin(user) or is_owner(user, request)
