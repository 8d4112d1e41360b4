# Overview: All operation definitions organized by category.
# Each operation is defined as: (code, name, description, category)

from .categories import OperationCategory


# -- REQUESTS --

REQUEST_OPERATIONS = [
    (
        "request.create",
        "Create Request",
        "Submit a delivery request with line items for the caller's branch",
        OperationCategory.REQUESTS,
    ),
    (
        "request.view",
        "View Requests",
        "List and view delivery requests (branch users see their own branch)",
        OperationCategory.REQUESTS,
    ),
    (
        "request.update_status",
        "Review Requests",
        "Approve or reject a pending delivery request",
        OperationCategory.REQUESTS,
    ),
    (
        "request.delete",
        "Delete Request",
        "Remove a request (branch users: own pending requests only)",
        OperationCategory.REQUESTS,
    ),
    (
        "request.archive",
        "Archive Request",
        "Move a rejected or delivered request to the archive",
        OperationCategory.REQUESTS,
    ),
]


# -- PROCESSING --

PROCESSING_OPERATIONS = [
    (
        "processing.view",
        "View Processing Status",
        "See who is converting an approved request into a delivery",
        OperationCategory.PROCESSING,
    ),
    (
        "processing.claim",
        "Claim Request",
        "Mark an approved request as being processed by the caller",
        OperationCategory.PROCESSING,
    ),
    (
        "processing.release",
        "Release Request",
        "Drop the caller's own processing claim",
        OperationCategory.PROCESSING,
    ),
    (
        "processing.manage",
        "Manage Processing Claims",
        "List all claims and force-release stuck ones",
        OperationCategory.PROCESSING,
    ),
]


# -- DELIVERIES --

DELIVERY_OPERATIONS = [
    (
        "delivery.create",
        "Create Delivery",
        "Create a delivery, optionally from an approved request",
        OperationCategory.DELIVERIES,
    ),
    (
        "delivery.view",
        "View Deliveries",
        "List and view deliveries (branch users see their own branch)",
        OperationCategory.DELIVERIES,
    ),
    (
        "delivery.update",
        "Edit Delivery",
        "Replace a delivery's details",
        OperationCategory.DELIVERIES,
    ),
    (
        "delivery.update_status",
        "Advance Delivery",
        "Move a delivery forward through its status lifecycle",
        OperationCategory.DELIVERIES,
    ),
    (
        "delivery.confirm_receipt",
        "Confirm Receipt",
        "Confirm an in-transit delivery was received",
        OperationCategory.DELIVERIES,
    ),
    (
        "delivery.archive",
        "Archive Delivery",
        "Cancel and archive a delivery",
        OperationCategory.DELIVERIES,
    ),
]


# -- ARCHIVE --

ARCHIVE_OPERATIONS = [
    (
        "archive.clear",
        "Clear Archive",
        "Permanently delete archived requests and deliveries",
        OperationCategory.ARCHIVE,
    ),
]


# -- DIRECTORY --

DIRECTORY_OPERATIONS = [
    (
        "branch.view",
        "View Branches",
        "List and view branches",
        OperationCategory.DIRECTORY,
    ),
    (
        "user.manage",
        "Manage Users",
        "List users and create accounts",
        OperationCategory.DIRECTORY,
    ),
]


OPERATION_DEFINITIONS = (
    REQUEST_OPERATIONS
    + PROCESSING_OPERATIONS
    + DELIVERY_OPERATIONS
    + ARCHIVE_OPERATIONS
    + DIRECTORY_OPERATIONS
)
