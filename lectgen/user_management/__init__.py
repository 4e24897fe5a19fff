"""
Caller identification and admin checks.
"""

from .services import UserService

__all__ = ["UserService"]
