# Overview: Operation category constants for grouping related operations.


class OperationCategory:
    """Operation categories for organization and UI display."""
    REQUESTS = "REQUESTS"
    PROCESSING = "PROCESSING"
    DELIVERIES = "DELIVERIES"
    ARCHIVE = "ARCHIVE"
    DIRECTORY = "DIRECTORY"

    ALL = (REQUESTS, PROCESSING, DELIVERIES, ARCHIVE, DIRECTORY)
