"""
Tests for the billable action usage log.
"""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from lectgen.quota.errors import StorageUnavailable
from lectgen.usage_log.models import (
    ActionStatus,
    ActionType,
    UsagePayload,
    UsageQuery,
    UsageRecord,
    estimate_cost,
)
from lectgen.usage_log.tracker import UsageTracker


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestCostEstimate:

    def test_ai_generation_cost(self):
        assert estimate_cost(ActionType.AI_GENERATION, 5000) == pytest.approx(0.01)
        assert estimate_cost(ActionType.AI_GENERATION, None) == 0

    def test_speech_to_text_flat_cost(self):
        assert estimate_cost(ActionType.SPEECH_TO_TEXT) == pytest.approx(0.006)

    def test_pdf_generation_free(self):
        assert estimate_cost(ActionType.PDF_GENERATION) == 0


class TestUsageModels:

    def test_record_serialization(self):
        record = UsageRecord(
            user_id="alice",
            action_type=ActionType.AI_GENERATION,
            status=ActionStatus.FAILED,
            tokens_used=1200,
            duration_ms=850,
            error_message="model timeout",
            metadata={"slide_count": 8},
            created_at=utc(2025, 6, 3, 12, 0),
        )
        data = record.to_dict()
        assert data["action_type"] == "AI_GENERATION"
        assert data["status"] == "FAILED"
        assert data["created_at"] == "2025-06-03T12:00:00+00:00"
        assert len(data["id"]) == 32

        assert UsageRecord.from_dict(data) == record

    def test_payload_validation(self):
        payload = UsagePayload.model_validate({"action_type": "SPEECH_TO_TEXT", "duration_ms": 4000})
        assert payload.action_type == ActionType.SPEECH_TO_TEXT
        assert payload.status == ActionStatus.SUCCESS

        with pytest.raises(ValidationError):
            UsagePayload.model_validate({"action_type": "VIDEO"})
        with pytest.raises(ValidationError):
            UsagePayload.model_validate({"action_type": "AI_GENERATION", "tokens_used": -1})

    def test_query_coerces_strings(self):
        query = UsageQuery.model_validate({
            "uid": "alice",
            "status": "FAILED",
            "start": "2025-06-01T00:00:00Z",
            "limit": "20",
        })
        assert query.status == ActionStatus.FAILED
        assert query.start == utc(2025, 6, 1)
        assert query.limit == 20

        with pytest.raises(ValidationError):
            UsageQuery.model_validate({"limit": "500"})


class TestUsageTracker:

    @pytest.fixture(autouse=True)
    def _tracker(self, tmp_path):
        self.log_dir = tmp_path / "usage_logs"
        self.tracker = UsageTracker(self.log_dir)

    def seed(self):
        t = self.tracker
        t.log_usage("alice", ActionType.AI_GENERATION, ActionStatus.SUCCESS,
                    tokens_used=2000, cost=0.004, created_at=utc(2025, 5, 30, 8, 0))
        t.log_usage("alice", ActionType.AI_GENERATION, ActionStatus.FAILED,
                    tokens_used=500, cost=0.001, error_message="quota provider error",
                    created_at=utc(2025, 6, 2, 9, 0))
        t.log_usage("alice", ActionType.PDF_GENERATION, ActionStatus.SUCCESS,
                    cost=0.0, created_at=utc(2025, 6, 3, 9, 0))
        t.log_usage("bob", ActionType.SPEECH_TO_TEXT, ActionStatus.PENDING,
                    cost=0.006, created_at=utc(2025, 6, 4, 9, 0))

    def test_records_sharded_by_month(self):
        self.seed()
        assert sorted(p.name for p in self.log_dir.glob("*.jsonl")) == ["2025-05.jsonl", "2025-06.jsonl"]

        lines = (self.log_dir / "2025-06.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 3
        assert json.loads(lines[0])["user_id"] == "alice"

    def test_log_ai_generation_estimates_cost(self):
        record = self.tracker.log_ai_generation("alice", 1200, ActionStatus.SUCCESS, tokens_used=3000)
        assert record.action_type == ActionType.AI_GENERATION
        assert record.cost == pytest.approx(0.006)

        no_tokens = self.tracker.log_ai_generation("alice", 900, ActionStatus.FAILED)
        assert no_tokens.cost is None

    def test_log_speech_and_pdf(self):
        speech = self.tracker.log_speech_to_text("alice", 30000, ActionStatus.SUCCESS,
                                                 metadata={"language": "vi"})
        pdf = self.tracker.log_pdf_generation("alice", 2000, ActionStatus.SUCCESS)

        assert speech.cost == pytest.approx(0.006)
        assert speech.metadata == {"language": "vi"}
        assert pdf.cost == 0.0

    def test_find_records_newest_first(self):
        self.seed()
        rows, count = self.tracker.find_records()

        assert count == 4
        assert [r["user_id"] for r in rows] == ["bob", "alice", "alice", "alice"]
        assert rows[0]["level"] == "warning"

    def test_find_records_filters(self):
        self.seed()

        rows, count = self.tracker.find_records(user_id="alice", status=ActionStatus.FAILED)
        assert count == 1
        assert rows[0]["error_message"] == "quota provider error"
        assert rows[0]["level"] == "error"

        _, count = self.tracker.find_records(action_type=ActionType.AI_GENERATION)
        assert count == 2

        rows, count = self.tracker.find_records(start=utc(2025, 6, 1), end=utc(2025, 6, 3, 12, 0))
        assert count == 2
        assert {r["action_type"] for r in rows} == {"AI_GENERATION", "PDF_GENERATION"}

    def test_find_records_paging(self):
        self.seed()
        rows, count = self.tracker.find_records(limit=2, offset=1)
        assert count == 4
        assert len(rows) == 2
        assert rows[0]["action_type"] == "PDF_GENERATION"

    def test_malformed_lines_skipped(self):
        self.seed()
        with open(self.log_dir / "2025-06.jsonl", "a", encoding="utf-8") as f:
            f.write("{broken\n\n")
        _, count = self.tracker.find_records()
        assert count == 4

    def test_user_stats(self):
        self.seed()
        stats = self.tracker.get_user_stats("alice")

        assert stats["total_calls"] == 3
        assert stats["total_tokens"] == 2500
        assert stats["total_cost"] == pytest.approx(0.005)
        assert stats["success_rate"] == pytest.approx(200 / 3)
        assert stats["by_action_type"] == {"AI_GENERATION": 2, "PDF_GENERATION": 1}

    def test_user_stats_window(self):
        self.seed()
        stats = self.tracker.get_user_stats("alice", start=utc(2025, 6, 1))
        assert stats["total_calls"] == 2

    def test_empty_stats(self):
        stats = self.tracker.get_user_stats("nobody")
        assert stats["total_calls"] == 0
        assert stats["success_rate"] == 0.0

    def test_global_stats(self):
        self.seed()
        stats = self.tracker.get_global_stats()

        assert stats["total_calls"] == 4
        assert stats["unique_user_ids"] == ["alice", "bob"]
        assert stats["active_users"] == 2
        assert stats["total_users"] == 2
        assert stats["success_rate"] == pytest.approx(50.0)

        assert self.tracker.get_global_stats(total_users=10)["total_users"] == 10

    def test_write_failure_raises_storage_unavailable(self):
        with patch("builtins.open", side_effect=OSError("disk full")):
            with pytest.raises(StorageUnavailable):
                self.tracker.log_pdf_generation("alice", 10, ActionStatus.SUCCESS)
