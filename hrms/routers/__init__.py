"""
HRMS Core - API Routers
"""

from hrms.routers import auth, permissions, reconciliation, roles

__all__ = ["auth", "permissions", "reconciliation", "roles"]
