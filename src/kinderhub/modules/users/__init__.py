"""
Users module - parent and staff accounts.
"""

from kinderhub.modules.users.models import Staff, StaffRole, User, UserRole
from kinderhub.modules.users.repository import StaffRepository, UserRepository

__all__ = ["Staff", "StaffRepository", "StaffRole", "User", "UserRepository", "UserRole"]
