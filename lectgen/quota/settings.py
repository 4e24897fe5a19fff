"""
Quota settings that administrators change at runtime.

Stored as a small JSON file next to the account directory so that the
service and the quota administration script see the same values. Values
missing from the file fall back to the configuration file.
"""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from filelock import FileLock, Timeout

from .errors import ConcurrencyConflict, StorageUnavailable

logger = logging.getLogger(__name__)


class QuotaSettings:
    """Persistent runtime settings (the FREE default cap)."""

    def __init__(self, settings_file: Path, lock_timeout: float = 5.0):
        self.settings_file = settings_file
        self.lock_timeout = lock_timeout

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.settings_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading quota settings: {e}")
            raise StorageUnavailable("Could not read quota settings") from e

        if not isinstance(data, dict):
            raise StorageUnavailable("Malformed quota settings")
        return data

    def get_free_monthly_cap(self) -> Optional[int]:
        """Stored FREE default cap, or None if it was never changed."""
        value = self._load().get("free_monthly_cap")
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise StorageUnavailable(f"Malformed free_monthly_cap in quota settings: {value!r}")
        return value

    def set_free_monthly_cap(self, cap: int) -> None:
        lock = FileLock(str(self.settings_file.with_name(f".{self.settings_file.name}.lock")),
                        timeout=self.lock_timeout)
        try:
            with lock:
                data = self._load()
                data["free_monthly_cap"] = cap
                self._save(data)
        except Timeout as e:
            raise ConcurrencyConflict("Timed out waiting for the quota settings lock") from e
        except OSError as e:
            logger.error(f"Error locking quota settings: {e}")
            raise StorageUnavailable("Could not lock quota settings") from e

    def _save(self, data: Dict[str, Any]) -> None:
        tmp_path = self.settings_file.with_name(f".{self.settings_file.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.settings_file)
        except OSError as e:
            logger.error(f"Error saving quota settings: {e}")
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            raise StorageUnavailable("Could not write quota settings") from e
