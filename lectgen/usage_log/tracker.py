"""
Usage Tracker

Append-only log of billable actions, one JSON line per record, sharded into
monthly files (``YYYY-MM.jsonl``). Records are never rewritten and are never
consulted by the entitlement check.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .models import ActionStatus, ActionType, UsageRecord, estimate_cost
from ..quota.errors import StorageUnavailable
from ..quota.models import as_utc

logger = logging.getLogger(__name__)

_LEVEL_BY_STATUS = {
    ActionStatus.SUCCESS: "info",
    ActionStatus.PENDING: "warning",
    ActionStatus.FAILED: "error",
}


class UsageTracker:
    """Writes and queries BillableActionRecords."""

    def __init__(self, log_dir: Path):
        self.log_dir = log_dir
        self._lock = threading.Lock()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _month_file(self, moment: datetime) -> Path:
        return self.log_dir / f"{moment:%Y-%m}.jsonl"

    def log_usage(
        self,
        user_id: str,
        action_type: ActionType,
        status: ActionStatus,
        tokens_used: Optional[int] = None,
        duration_ms: Optional[int] = None,
        cost: Optional[float] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> UsageRecord:
        """
        Append one record to the usage log.

        Raises:
            StorageUnavailable: if the log file cannot be written
        """
        record = UsageRecord(
            user_id=user_id,
            action_type=action_type,
            status=status,
            tokens_used=tokens_used,
            duration_ms=duration_ms,
            cost=cost,
            error_message=error_message,
            metadata=metadata or {},
        )
        if created_at is not None:
            record.created_at = as_utc(created_at)

        line = json.dumps(record.to_dict(), ensure_ascii=False)
        path = self._month_file(record.created_at)
        with self._lock:
            try:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.error(f"Failed to log usage for {user_id}: {e}")
                raise StorageUnavailable(f"Usage log unavailable: {e}") from e

        logger.info(
            f"Usage {record.action_type.value} {record.status.value} for {user_id} "
            f"(tokens={tokens_used}, cost={record.cost})"
        )
        return record

    def log_ai_generation(
        self,
        user_id: str,
        duration_ms: int,
        status: ActionStatus,
        tokens_used: Optional[int] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UsageRecord:
        """Log a slide generation call; cost is estimated from the token count."""
        return self.log_usage(
            user_id,
            ActionType.AI_GENERATION,
            status,
            tokens_used=tokens_used,
            duration_ms=duration_ms,
            cost=estimate_cost(ActionType.AI_GENERATION, tokens_used) if tokens_used else None,
            error_message=error_message,
            metadata=metadata,
        )

    def log_speech_to_text(
        self,
        user_id: str,
        duration_ms: int,
        status: ActionStatus,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UsageRecord:
        return self.log_usage(
            user_id,
            ActionType.SPEECH_TO_TEXT,
            status,
            duration_ms=duration_ms,
            cost=estimate_cost(ActionType.SPEECH_TO_TEXT),
            error_message=error_message,
            metadata=metadata,
        )

    def log_pdf_generation(
        self,
        user_id: str,
        duration_ms: int,
        status: ActionStatus,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UsageRecord:
        # PDF export is free
        return self.log_usage(
            user_id,
            ActionType.PDF_GENERATION,
            status,
            duration_ms=duration_ms,
            cost=0.0,
            error_message=error_message,
            metadata=metadata,
        )

    def _iter_records(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Iterator[UsageRecord]:
        start = as_utc(start) if start else None
        end = as_utc(end) if end else None

        for path in sorted(self.log_dir.glob("*.jsonl")):
            # Skip whole months outside the window
            if start and path.stem < f"{start:%Y-%m}":
                continue
            if end and path.stem > f"{end:%Y-%m}":
                continue

            try:
                with open(path, "r", encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                raise StorageUnavailable(f"Usage log unavailable: {e}") from e

            for line_no, line in enumerate(lines, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = UsageRecord.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning(f"Skipping malformed usage record {path.name}:{line_no}: {e}")
                    continue
                if start and record.created_at < start:
                    continue
                if end and record.created_at > end:
                    continue
                yield record

    def find_records(
        self,
        user_id: Optional[str] = None,
        action_type: Optional[ActionType] = None,
        status: Optional[ActionStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Filter usage records, newest first.

        Returns:
            (rows, count) where rows is the requested page as dicts with a
            display ``level`` and count is the total number of matches
        """
        matches = [
            r for r in self._iter_records(start, end)
            if (user_id is None or r.user_id == user_id)
            and (action_type is None or r.action_type == action_type)
            and (status is None or r.status == status)
        ]
        matches.sort(key=lambda r: r.created_at, reverse=True)

        rows = []
        for record in matches[offset:offset + limit]:
            row = record.to_dict()
            row["level"] = _LEVEL_BY_STATUS[record.status]
            rows.append(row)
        return rows, len(matches)

    def get_user_stats(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Totals for one user over an optional time window."""
        records = [r for r in self._iter_records(start, end) if r.user_id == user_id]
        return _summarize(records)

    def get_global_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        total_users: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Totals across all users.

        Args:
            total_users: Registered account count; defaults to the number of
                distinct users seen in the log window
        """
        records = list(self._iter_records(start, end))
        stats = _summarize(records)
        unique_ids = sorted({r.user_id for r in records})
        stats["unique_user_ids"] = unique_ids
        stats["active_users"] = len(unique_ids)
        stats["total_users"] = total_users if total_users is not None else len(unique_ids)
        return stats


def _summarize(records: List[UsageRecord]) -> Dict[str, Any]:
    total_calls = len(records)
    success_count = sum(1 for r in records if r.status == ActionStatus.SUCCESS)

    by_action_type: Dict[str, int] = {}
    for r in records:
        by_action_type[r.action_type.value] = by_action_type.get(r.action_type.value, 0) + 1

    return {
        "total_calls": total_calls,
        "total_tokens": sum(r.tokens_used or 0 for r in records),
        "total_cost": round(sum(r.cost or 0.0 for r in records), 6),
        "success_rate": (success_count / total_calls) * 100 if total_calls else 0.0,
        "by_action_type": by_action_type,
    }
