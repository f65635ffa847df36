"""
HRMS Core - Default Permission Catalogue

Permission codes are `module.action`. The catalogue below is what a fresh
deployment seeds; tenants may add their own codes on top.

Default Role Matrix:
====================

| Grant pattern            | admin | hr | finance | accounts | manager | employee |
|--------------------------|-------|----|---------|----------|---------|----------|
| *                        | X     |    |         |          |         |          |
| employee.*               |       | X  |         |          |         |          |
| attendance.*             |       | X  |         |          |         |          |
| leave.*                  |       | X  |         |          |         |          |
| role.view / role.assign  |       | X  |         |          |         |          |
| payroll.view             |       | X  | X       | X        |         |          |
| payroll.*                |       |    | X       |          |         |          |
| reconciliation.*         |       |    | X       | X        |         |          |
| expense.*                |       |    | X       | X        |         |          |
| leave.approve            |       |    |         |          | X       |          |
| attendance.view          |       |    |         |          | X       | X        |
| leave.apply / leave.view |       |    |         |          | X       | X        |
| timesheet.*              |       |    |         |          | X       |          |
| timesheet.submit         |       |    |         |          |         | X        |

Wildcards are expanded against the catalogue when a role is seeded, so a
role holds concrete codes only and later catalogue additions are not granted
implicitly.
"""

from typing import Dict, Iterable, List, Set, Tuple


def permission_code(module: str, action: str) -> str:
    """Canonical code of a permission."""
    return f"{module}.{action}"


# (module, action, description)
DEFAULT_PERMISSIONS: List[Tuple[str, str, str]] = [
    # Employees
    ("employee", "view", "View employee records"),
    ("employee", "create", "Create employee records"),
    ("employee", "update", "Update employee records"),
    ("employee", "delete", "Delete employee records"),
    # Attendance
    ("attendance", "view", "View attendance"),
    ("attendance", "mark", "Mark attendance"),
    ("attendance", "manage", "Correct and approve attendance"),
    # Leave
    ("leave", "view", "View leave requests"),
    ("leave", "apply", "Apply for leave"),
    ("leave", "approve", "Approve or reject leave requests"),
    ("leave", "manage", "Manage leave policies and balances"),
    # Payroll
    ("payroll", "view", "View payroll cycles and payslips"),
    ("payroll", "process", "Run payroll cycles"),
    ("payroll", "approve", "Approve payroll cycles"),
    ("payroll", "export", "Export payroll and bank files"),
    # Reconciliation
    ("reconciliation", "view", "View payment reconciliations"),
    ("reconciliation", "create", "Run payment reconciliations"),
    ("reconciliation", "resolve", "Resolve reconciliation discrepancies"),
    ("reconciliation", "export", "Export reconciliation reports"),
    # Expenses
    ("expense", "view", "View expense claims"),
    ("expense", "submit", "Submit expense claims"),
    ("expense", "approve", "Approve expense claims"),
    # Projects and timesheets
    ("project", "view", "View projects"),
    ("project", "manage", "Create and update projects"),
    ("timesheet", "view", "View timesheets"),
    ("timesheet", "submit", "Submit timesheets"),
    ("timesheet", "approve", "Approve timesheets"),
    # Roles and permissions
    ("role", "view", "View roles and their permissions"),
    ("role", "manage", "Create, update and delete roles"),
    ("role", "assign", "Assign roles to users"),
    ("permission", "view", "View the permission catalogue"),
]


DEFAULT_ROLES: Dict[str, Dict[str, object]] = {
    "admin": {
        "display_name": "Administrator",
        "description": "Full access within the company",
        "permissions": ["*"],
    },
    "hr": {
        "display_name": "HR Manager",
        "description": "Employee lifecycle, attendance and leave",
        "permissions": [
            "employee.*",
            "attendance.*",
            "leave.*",
            "payroll.view",
            "role.view",
            "role.assign",
        ],
    },
    "finance": {
        "display_name": "Finance",
        "description": "Payroll processing, reconciliation and expenses",
        "permissions": ["payroll.*", "reconciliation.*", "expense.*"],
    },
    "accounts": {
        "display_name": "Accounts",
        "description": "Payment reconciliation and expense review",
        "permissions": ["payroll.view", "reconciliation.*", "expense.*"],
    },
    "manager": {
        "display_name": "Manager",
        "description": "Team approvals",
        "permissions": [
            "attendance.view",
            "leave.view",
            "leave.apply",
            "leave.approve",
            "timesheet.*",
            "project.view",
        ],
    },
    "employee": {
        "display_name": "Employee",
        "description": "Self service",
        "permissions": [
            "attendance.view",
            "attendance.mark",
            "leave.view",
            "leave.apply",
            "expense.submit",
            "timesheet.submit",
        ],
    },
}


def expand_permission_patterns(patterns: Iterable[str], available_codes: Iterable[str]) -> Set[str]:
    """
    Resolve grant patterns to concrete codes.

    "*" matches every code, "module.*" every code of that module; anything
    else must name an existing code and is dropped otherwise.
    """
    available = set(available_codes)
    expanded: Set[str] = set()
    for pattern in patterns:
        if pattern == "*":
            expanded |= available
        elif pattern.endswith(".*"):
            prefix = pattern[:-1]
            expanded |= {code for code in available if code.startswith(prefix)}
        elif pattern in available:
            expanded.add(pattern)
    return expanded
