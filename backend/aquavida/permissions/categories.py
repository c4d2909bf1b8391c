# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    STUDENTS = "STUDENTS"
    CLASSES = "CLASSES"
    LESSONS = "LESSONS"
    EVALUATIONS = "EVALUATIONS"
    FINANCIAL = "FINANCIAL"
    CONTRACTS = "CONTRACTS"
    USERS = "USERS"
    SYSTEM = "SYSTEM"
