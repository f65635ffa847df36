"""
HRMS Core - Business Logic Services
"""
