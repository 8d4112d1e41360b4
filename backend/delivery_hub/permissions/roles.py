# Overview: Policy table mapping each operation code to the roles allowed to invoke it.
# Ownership (a branch user acting on its own branch) is checked separately by the services.

from ..models.auth import ROLE_ADMIN, ROLE_BRANCH, ROLE_WAREHOUSE

ALL_ROLES = frozenset({ROLE_ADMIN, ROLE_WAREHOUSE, ROLE_BRANCH})
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_WAREHOUSE})

ROLE_OPERATIONS = {
    "request.create": frozenset({ROLE_BRANCH}),
    "request.view": ALL_ROLES,
    "request.update_status": STAFF_ROLES,
    "request.delete": frozenset({ROLE_ADMIN, ROLE_BRANCH}),
    "request.archive": ALL_ROLES,
    "processing.view": ALL_ROLES,
    "processing.claim": ALL_ROLES,
    "processing.release": ALL_ROLES,
    "processing.manage": frozenset({ROLE_ADMIN}),
    "delivery.create": ALL_ROLES,
    "delivery.view": ALL_ROLES,
    "delivery.update": ALL_ROLES,
    "delivery.update_status": STAFF_ROLES,
    "delivery.confirm_receipt": frozenset({ROLE_ADMIN, ROLE_BRANCH}),
    "delivery.archive": ALL_ROLES,
    "archive.clear": frozenset({ROLE_ADMIN}),
    "branch.view": ALL_ROLES,
    "user.manage": frozenset({ROLE_ADMIN}),
}
