"""
Factory for creating the usage log module.
"""
from pathlib import Path

from .routes import create_usage_routes
from .tracker import UsageTracker


def create_usage_log_module(usage_log_dir: Path, user_service, quota_manager=None) -> dict:
    """Create usage log module with service and routes.

    Args:
        usage_log_dir: Directory for the monthly JSONL files
        user_service: UserService used by the routes
        quota_manager: Optional QuotaManager for account details in admin stats

    Returns:
        Dictionary containing the service and blueprint
    """
    usage_tracker = UsageTracker(usage_log_dir)
    blueprint = create_usage_routes(usage_tracker, user_service, quota_manager)

    return {
        "service": usage_tracker,
        "blueprint": blueprint
    }
