# Overview: Utility functions for operation lookups and validation.

from .definitions import OPERATION_DEFINITIONS
from .roles import ROLE_OPERATIONS


def get_all_operation_codes():
    """Get list of all operation codes."""
    return [op[0] for op in OPERATION_DEFINITIONS]


def get_operations_by_category(category):
    """Get all operations in a category."""
    return [op for op in OPERATION_DEFINITIONS if op[3] == category]


def get_operation_definition(code):
    """Get full definition for an operation code."""
    for op in OPERATION_DEFINITIONS:
        if op[0] == code:
            return {
                "code": op[0],
                "name": op[1],
                "description": op[2],
                "category": op[3],
                "roles": sorted(ROLE_OPERATIONS.get(code, ())),
            }
    return None


def get_role_operations(role):
    """All operation codes a role may invoke."""
    return sorted(code for code, roles in ROLE_OPERATIONS.items() if role in roles)


def validate_operation_code(code):
    """Check if an operation code is valid."""
    return code in get_all_operation_codes()
