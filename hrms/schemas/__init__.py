"""
HRMS Core - Pydantic Schemas
"""
