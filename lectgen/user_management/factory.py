"""
Factory for creating user management module.
"""
from typing import List
from .services import UserService
from .routes import create_user_routes


def create_user_management_module(admin_user_ids: List[str]) -> dict:
    """Create user management module with service and routes.

    Args:
        admin_user_ids: List of admin user IDs

    Returns:
        Dictionary containing the service and blueprint
    """
    user_service = UserService(admin_user_ids)
    blueprint = create_user_routes(user_service)

    return {
        "service": user_service,
        "blueprint": blueprint
    }
