# Overview: Service-layer access policy; role checks and branch ownership checks.

"""
Role-Based Access Policy

WHY: Every engine asks the same question before it mutates anything: may
this caller run this operation? The answer comes from one table
(permissions.roles.ROLE_OPERATIONS) instead of role comparisons scattered
across routes.

DESIGN PRINCIPLES:
- Fail closed: unknown operations and unknown roles are denied
- Checked before mutation, never after
- Ownership (branch users acting on their own branch) is a separate check
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import AuthorizationError
from ..models.auth import ROLE_ADMIN, ROLE_BRANCH, ROLE_WAREHOUSE
from ..permissions import ROLE_OPERATIONS


@dataclass(frozen=True)
class CallerContext:
    """Authenticated caller identity as resolved by the session layer."""
    user_id: int
    role: str
    branch_id: int | None = None
    username: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_warehouse(self) -> bool:
        return self.role == ROLE_WAREHOUSE

    @property
    def is_branch(self) -> bool:
        return self.role == ROLE_BRANCH

    @classmethod
    def from_user(cls, user) -> "CallerContext":
        return cls(user_id=user.id, role=user.role, branch_id=user.branch_id, username=user.username)


def is_allowed(role: str | None, operation: str) -> bool:
    """True when the policy table lets role invoke operation."""
    if not role:
        return False
    return role in ROLE_OPERATIONS.get(operation, frozenset())


def authorize(caller: CallerContext, operation: str, message: str | None = None) -> None:
    """
    Raise AuthorizationError unless caller's role may invoke operation.

    Raises:
        AuthorizationError: role not allowed for this operation
    """
    if caller is None or not is_allowed(caller.role, operation):
        raise AuthorizationError(
            message or "Unauthorized role for this operation",
            operation=operation,
        )


def can_access_branch(caller: CallerContext, branch_id: int | None) -> bool:
    """Branch users only see their own branch; staff see everything."""
    if not caller.is_branch:
        return True
    return caller.branch_id is not None and branch_id == caller.branch_id


def require_branch_access(caller: CallerContext, branch_id: int | None, message: str | None = None) -> None:
    if not can_access_branch(caller, branch_id):
        raise AuthorizationError(message or "You can only access records from your own branch")


def scoped_branch_id(caller: CallerContext, requested_branch_id: int | None = None) -> int | None:
    """
    Branch filter to apply to a listing.

    Branch users are always pinned to their own branch; staff get whatever
    they asked for (None = all branches).
    """
    if caller.is_branch:
        if caller.branch_id is None:
            raise AuthorizationError("Branch user is not assigned to a branch")
        return caller.branch_id
    return requested_branch_id
