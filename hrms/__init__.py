"""
HRMS Core

Multi-tenant access control and payroll payment reconciliation service.
"""

__version__ = "0.1.0"
