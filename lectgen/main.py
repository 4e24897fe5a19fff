"""
Flask application for the LectGen quota service.

Wires configuration, the user, quota, usage log and event tracking modules
together and registers their blueprints.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

sys.path.append(str(Path(__file__).parent.parent))
from config_manager import ConfigManager

from .event_tracking.factory import create_event_tracking_module
from .quota.factory import create_quota_module
from .usage_log.factory import create_usage_log_module
from .user_management.factory import create_user_management_module

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent

QUOTA_SETTINGS_FILE = "quota_settings.json"


def resolve_data_dirs(paths_config, data_dir: Optional[Path] = None) -> dict:
    """Resolve the storage directories; relative paths are under the project root."""
    base = Path(data_dir) if data_dir is not None else Path(paths_config.data_dir)
    if not base.is_absolute():
        base = PROJECT_ROOT / base

    dirs = {
        "data": base,
        "accounts": base / paths_config.accounts_dir,
        "usage_logs": base / paths_config.usage_log_dir,
        "events": base / paths_config.events_dir,
    }
    for path in dirs.values():
        path.mkdir(parents=True, exist_ok=True)
    return dirs


def create_app(
    config: Optional[ConfigManager] = None,
    data_dir: Optional[Path] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Configuration source; defaults to lectgen_config.json + env
        data_dir: Overrides paths.data_dir (tests)
        clock: Time source handed to the quota engine (tests)
    """
    config = config or ConfigManager()
    app_config = config.get_app_config()
    quota_config = config.get_quota_config()
    dirs = resolve_data_dirs(config.get_paths_config(), data_dir)

    app = Flask(__name__)
    app.wsgi_app = ProxyFix(
        app.wsgi_app,
        x_proto=1,   # trust 1 hop for X-Forwarded-Proto
        x_host=1,    # trust 1 hop for X-Forwarded-Host
        x_prefix=1)  # X-Forwarded-Prefix

    user_management_module = create_user_management_module(
        admin_user_ids=app_config.admin_user_ids
    )
    user_service = user_management_module["service"]

    event_tracking_module = create_event_tracking_module(
        events_dir=dirs["events"],
        user_service=user_service
    )

    quota_module = create_quota_module(
        accounts_dir=dirs["accounts"],
        user_service=user_service,
        free_monthly_cap=quota_config.free_monthly_cap,
        max_conflict_retries=quota_config.max_conflict_retries,
        lock_timeout_seconds=quota_config.lock_timeout_seconds,
        event_tracker=event_tracking_module["service"],
        settings_file=dirs["data"] / QUOTA_SETTINGS_FILE,
        clock=clock
    )

    usage_log_module = create_usage_log_module(
        usage_log_dir=dirs["usage_logs"],
        user_service=user_service,
        quota_manager=quota_module["manager"]
    )

    app.register_blueprint(user_management_module["blueprint"])
    app.register_blueprint(event_tracking_module["blueprint"])
    app.register_blueprint(quota_module["blueprint"])
    app.register_blueprint(quota_module["admin_blueprint"])
    app.register_blueprint(usage_log_module["blueprint"])

    app.extensions["lectgen"] = {
        "user_service": user_service,
        "quota_manager": quota_module["manager"],
        "usage_tracker": usage_log_module["service"],
        "event_tracker": event_tracking_module["service"],
        "data_dirs": dirs,
    }

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    logger.info(
        f"Quota service ready (data_dir={dirs['data']}, free cap={quota_config.free_monthly_cap}, "
        f"admins={len(app_config.admin_user_ids)})"
    )
    return app
