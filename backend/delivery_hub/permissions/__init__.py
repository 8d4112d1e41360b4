# Overview: Access policy package.
# Re-exports the operation definitions and the role policy table.

from .categories import OperationCategory
from .definitions import (
    OPERATION_DEFINITIONS,
    REQUEST_OPERATIONS,
    PROCESSING_OPERATIONS,
    DELIVERY_OPERATIONS,
    ARCHIVE_OPERATIONS,
    DIRECTORY_OPERATIONS,
)
from .roles import ROLE_OPERATIONS, ALL_ROLES, STAFF_ROLES
from .helpers import (
    get_all_operation_codes,
    get_operations_by_category,
    get_operation_definition,
    get_role_operations,
    validate_operation_code,
)

__all__ = [
    "OperationCategory",
    "OPERATION_DEFINITIONS",
    "REQUEST_OPERATIONS",
    "PROCESSING_OPERATIONS",
    "DELIVERY_OPERATIONS",
    "ARCHIVE_OPERATIONS",
    "DIRECTORY_OPERATIONS",
    "ROLE_OPERATIONS",
    "ALL_ROLES",
    "STAFF_ROLES",
    "get_all_operation_codes",
    "get_operations_by_category",
    "get_operation_definition",
    "get_role_operations",
    "validate_operation_code",
]
