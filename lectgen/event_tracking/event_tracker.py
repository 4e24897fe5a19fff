"""
Event Tracker

Records audit events (entitlement decisions and administrative overrides)
per account and serves them back for the admin console.

The service and the quota administration script append to the same files,
so every access holds the account's lock file and saves replace the file
atomically.
"""

import json
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Any

from filelock import FileLock
from flask import has_request_context, request

from .event_types import EventType
from .models import Event

logger = logging.getLogger(__name__)


class EventTracker:
    """Main event tracking system."""

    def __init__(self, events_dir: Path, max_events_per_user: int = 5000, lock_timeout: float = 5.0):
        """Initialize the event tracker.

        Args:
            events_dir: Directory where per-account event files are stored
            max_events_per_user: Oldest events are dropped beyond this count
            lock_timeout: Seconds to wait for an account's lock file
        """
        self.events_dir = events_dir
        self.max_events_per_user = max_events_per_user
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self.events_dir.mkdir(parents=True, exist_ok=True)

    def _user_file(self, uid: str) -> Path:
        """Get event file path for an account."""
        if not uid or Path(uid).name != uid or uid.startswith("."):
            raise ValueError(f"Invalid account id for event tracking: {uid!r}")
        return self.events_dir / f"{uid}.json"

    @contextmanager
    def _locked(self, uid: str) -> Iterator[None]:
        self._user_file(uid)
        # filelock.Timeout is an OSError
        with self._lock, FileLock(str(self.events_dir / f".{uid}.lock"), timeout=self.lock_timeout):
            yield

    def _quarantine(self, path: Path) -> Path:
        """Move an unreadable event file aside so it is never overwritten."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        target = path.with_name(f"{path.name}.corrupt-{stamp}-{uuid.uuid4().hex[:6]}")
        os.replace(path, target)
        logger.error(f"Corrupt event file {path.name} moved to {target.name}")
        return target

    def _load_user_data(self, uid: str) -> Dict[str, Any]:
        """Load an account's event file; call with the account locked."""
        path = self._user_file(uid)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            data = {}
        except json.JSONDecodeError:
            self._quarantine(path)
            data = {}

        if not isinstance(data, dict):
            self._quarantine(path)
            data = {}
        if not isinstance(data.get("events"), list):
            data["events"] = []

        return data

    def _save_user_data(self, uid: str, data: Dict[str, Any]) -> None:
        path = self._user_file(uid)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            raise

    def track_event(
        self,
        uid: str,
        event_type: str,
        meta: Optional[Dict[str, Any]] = None,
        ts: Optional[str] = None
    ) -> bool:
        """Track a single event for an account.

        Args:
            uid: Account identifier
            event_type: Type of event (must be in allowed types)
            meta: Optional metadata dictionary
            ts: Optional timestamp (if not provided, uses current UTC time)

        Returns:
            True if event was tracked successfully, False if the type is unknown
        """
        if isinstance(event_type, EventType):
            event_type = event_type.value
        if not EventType.is_valid(event_type):
            logger.warning(f"Ignoring unknown event type {event_type!r} for {uid}")
            return False

        in_request = has_request_context()
        event = Event(
            ts=ts or datetime.now(timezone.utc).isoformat(timespec="seconds"),
            type=event_type,
            uid=uid,
            meta=meta or {},
            path=request.path if in_request else None,
            ua=request.headers.get("User-Agent") if in_request else None
        )

        with self._locked(uid):
            data = self._load_user_data(uid)
            data["events"].append(event.to_dict())
            if len(data["events"]) > self.max_events_per_user:
                data["events"] = data["events"][-self.max_events_per_user:]
            self._save_user_data(uid, data)

        return True

    def get_user_events(
        self,
        uid: str,
        limit: Optional[int] = None,
        event_type: Optional[str] = None
    ) -> List[Event]:
        """Get events for an account, oldest first.

        Args:
            uid: Account identifier
            limit: Optional limit on number of (most recent) events to return
            event_type: Optional filter on event type
        """
        with self._locked(uid):
            data = self._load_user_data(uid)
        event_objects = [Event.from_dict(e) for e in data.get("events", [])]

        if event_type:
            event_objects = [e for e in event_objects if e.type == event_type]

        if limit is not None:
            event_objects = event_objects[-limit:] if limit > 0 else []

        return event_objects

    def get_event_stats(self, uid: str) -> Dict[str, int]:
        """Get event counts by type for an account."""
        stats = {}
        for event in self.get_user_events(uid):
            stats[event.type] = stats.get(event.type, 0) + 1
        return stats
