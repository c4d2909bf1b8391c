# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- STUDENTS --

STUDENT_PERMISSIONS = [
    (
        "VIEW_STUDENTS",
        "View Students",
        "View student records (guardians: own students only)",
        PermissionCategory.STUDENTS,
    ),
    (
        "MANAGE_STUDENTS",
        "Manage Students",
        "Create, edit, inactivate and reactivate students",
        PermissionCategory.STUDENTS,
    ),
]


# -- CLASSES --

CLASS_PERMISSIONS = [
    (
        "VIEW_CLASSES",
        "View Classes",
        "View classes, schedules and rosters",
        PermissionCategory.CLASSES,
    ),
    (
        "MANAGE_CLASSES",
        "Manage Classes",
        "Create, edit, close and reopen classes",
        PermissionCategory.CLASSES,
    ),
    (
        "MANAGE_ENROLLMENT",
        "Manage Enrollment",
        "Enroll and unenroll students, manage waitlists",
        PermissionCategory.CLASSES,
    ),
]


# -- LESSONS --

LESSON_PERMISSIONS = [
    (
        "VIEW_LESSONS",
        "View Lessons",
        "View lesson calendar and attendance",
        PermissionCategory.LESSONS,
    ),
    (
        "MANAGE_LESSONS",
        "Manage Lessons",
        "Schedule, start, finish and cancel lessons",
        PermissionCategory.LESSONS,
    ),
    (
        "MARK_ATTENDANCE",
        "Mark Attendance",
        "Record attendance for lessons",
        PermissionCategory.LESSONS,
    ),
    (
        "JUSTIFY_ABSENCE",
        "Justify Absence",
        "Submit absence justification",
        PermissionCategory.LESSONS,
    ),
]


# -- EVALUATIONS --

EVALUATION_PERMISSIONS = [
    (
        "VIEW_EVALUATIONS",
        "View Evaluations",
        "View pedagogical evaluations",
        PermissionCategory.EVALUATIONS,
    ),
    (
        "MANAGE_EVALUATIONS",
        "Manage Evaluations",
        "Create, edit, finalize and send evaluations",
        PermissionCategory.EVALUATIONS,
    ),
]


# -- FINANCIAL --

FINANCIAL_PERMISSIONS = [
    (
        "VIEW_PAYMENTS",
        "View Payments",
        "View charges (guardians: own charges only)",
        PermissionCategory.FINANCIAL,
    ),
    (
        "MANAGE_PAYMENTS",
        "Manage Payments",
        "Create charges, confirm, cancel, apply discounts and fees",
        PermissionCategory.FINANCIAL,
    ),
    (
        "MANAGE_PLANS",
        "Manage Plans",
        "Create and edit plans and promotions",
        PermissionCategory.FINANCIAL,
    ),
    (
        "VIEW_FINANCIAL_REPORTS",
        "View Financial Reports",
        "Revenue, delinquency and billing reports",
        PermissionCategory.FINANCIAL,
    ),
]


# -- CONTRACTS --

CONTRACT_PERMISSIONS = [
    (
        "VIEW_CONTRACTS",
        "View Contracts",
        "View contracts (guardians: own contracts only)",
        PermissionCategory.CONTRACTS,
    ),
    (
        "MANAGE_CONTRACTS",
        "Manage Contracts",
        "Create, sign for the school, activate, suspend and cancel contracts",
        PermissionCategory.CONTRACTS,
    ),
    (
        "SIGN_AS_GUARDIAN",
        "Sign As Guardian",
        "Sign a contract as the contracting party",
        PermissionCategory.CONTRACTS,
    ),
]


# -- USERS / SYSTEM --

USER_PERMISSIONS = [
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users, change roles, unlock accounts",
        PermissionCategory.USERS,
    ),
]

SYSTEM_PERMISSIONS = [
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Database maintenance and bulk jobs",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    STUDENT_PERMISSIONS
    + CLASS_PERMISSIONS
    + LESSON_PERMISSIONS
    + EVALUATION_PERMISSIONS
    + FINANCIAL_PERMISSIONS
    + CONTRACT_PERMISSIONS
    + USER_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
