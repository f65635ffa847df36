"""
HRMS Core - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from hrms.models.base import BaseModel, TimestampMixin, AuditMixin
from hrms.models.company import Company
from hrms.models.user import User, UserRole
from hrms.models.rbac import Permission, Role, RolePermission, UserRoleAssignment
from hrms.models.payroll import (
    PayrollCycle,
    PayrollCycleStatus,
    Payslip,
    PayslipStatus,
    RECONCILABLE_PAYSLIP_STATUSES,
)
from hrms.models.reconciliation import (
    Reconciliation,
    ReconciliationItem,
    ReconciliationStatus,
    ReconciliationItemStatus,
    ResolutionCode,
    DISCREPANCY_STATUSES,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    "Company",
    "User",
    "UserRole",
    "Permission",
    "Role",
    "RolePermission",
    "UserRoleAssignment",
    "PayrollCycle",
    "PayrollCycleStatus",
    "Payslip",
    "PayslipStatus",
    "RECONCILABLE_PAYSLIP_STATUSES",
    "Reconciliation",
    "ReconciliationItem",
    "ReconciliationStatus",
    "ReconciliationItemStatus",
    "ResolutionCode",
    "DISCREPANCY_STATUSES",
]
