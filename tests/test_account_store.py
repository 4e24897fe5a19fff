"""
Tests for the file-backed account store and its transactions.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from filelock import FileLock

from lectgen.quota.errors import (
    AccountExists,
    AccountNotFound,
    ConcurrencyConflict,
    InvalidAccountId,
    InvalidTier,
    StorageUnavailable,
)
from lectgen.quota.models import Tier, UserAccount
from lectgen.quota.store import AccountStore


def make_account(uid="alice", count=0, cap=5):
    now = datetime(2025, 6, 15, tzinfo=timezone.utc)
    return UserAccount(
        uid=uid,
        tier=Tier.FREE,
        usage_count=count,
        usage_cap=cap,
        cycle_anchor=now,
        created_at=now,
        updated_at=now,
    )


class TestAccountStore:
    """Test account persistence."""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.accounts_dir = tmp_path / "accounts"
        self.store = AccountStore(self.accounts_dir, lock_timeout=0.2)

    def test_create_and_get(self):
        created = self.store.create(make_account(count=2))
        assert created.version == 1

        loaded = self.store.get("alice")
        assert loaded.usage_count == 2
        assert loaded.usage_cap == 5
        assert loaded.tier == Tier.FREE
        assert loaded.version == 1
        assert (self.accounts_dir / "alice.json").exists()

    def test_create_duplicate_raises(self):
        self.store.create(make_account())
        with pytest.raises(AccountExists):
            self.store.create(make_account())

    def test_get_missing_raises(self):
        with pytest.raises(AccountNotFound):
            self.store.get("nobody")

    @pytest.mark.parametrize("uid", ["../etc/passwd", ".hidden", "", "a/b", "x" * 200])
    def test_malformed_ids_rejected(self, uid):
        with pytest.raises(AccountNotFound):
            self.store.get(uid)
        assert not self.store.exists(uid)

    @pytest.mark.parametrize("uid", ["new user", ".hidden", "", "a/b"])
    def test_create_malformed_id_rejected(self, uid):
        with pytest.raises(InvalidAccountId):
            self.store.create(make_account(uid))
        assert uid not in self.store._locks
        assert self.store.list_ids() == []

    def test_list_ids_skips_temp_files(self):
        self.store.create(make_account("bob"))
        self.store.create(make_account("alice"))
        (self.accounts_dir / ".alice.deadbeef.tmp").write_text("{}")
        (self.accounts_dir / ".stray.json").write_text("{}")

        assert self.store.list_ids() == ["alice", "bob"]

    def test_corrupt_file_is_storage_unavailable(self):
        (self.accounts_dir / "alice.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageUnavailable):
            self.store.get("alice")

    def test_missing_field_is_storage_unavailable(self):
        (self.accounts_dir / "alice.json").write_text(json.dumps({"uid": "alice", "tier": "FREE"}))
        with pytest.raises(StorageUnavailable):
            self.store.get("alice")

    def test_unknown_stored_tier_raises_invalid_tier(self):
        data = make_account().to_dict()
        data["tier"] = "PLATINUM"
        (self.accounts_dir / "alice.json").write_text(json.dumps(data))
        with pytest.raises(InvalidTier):
            self.store.get("alice")


class TestAccountTransaction:
    """Test transactional read-modify-write."""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.accounts_dir = tmp_path / "accounts"
        self.store = AccountStore(self.accounts_dir, lock_timeout=0.05)
        self.store.create(make_account(count=1))

    def test_commit_bumps_version(self):
        with self.store.transaction("alice") as txn:
            txn.account.usage_count += 1

        loaded = self.store.get("alice")
        assert loaded.usage_count == 2
        assert loaded.version == 2

    def test_unchanged_transaction_does_not_write(self):
        with patch.object(self.store, "_write") as mock_write:
            with self.store.transaction("alice") as txn:
                assert txn.account.usage_count == 1
        mock_write.assert_not_called()
        assert self.store.get("alice").version == 1

    def test_exception_aborts_without_write(self):
        with pytest.raises(RuntimeError):
            with self.store.transaction("alice") as txn:
                txn.account.usage_count = 99
                raise RuntimeError("boom")

        loaded = self.store.get("alice")
        assert loaded.usage_count == 1
        assert loaded.version == 1

    def test_lock_released_after_abort(self):
        with pytest.raises(RuntimeError):
            with self.store.transaction("alice"):
                raise RuntimeError("boom")

        with self.store.transaction("alice") as txn:
            txn.account.usage_count = 3
        assert self.store.get("alice").usage_count == 3

    def test_missing_account(self):
        with pytest.raises(AccountNotFound):
            with self.store.transaction("ghost"):
                pass

    def test_outside_writer_causes_conflict(self):
        with pytest.raises(ConcurrencyConflict):
            with self.store.transaction("alice") as txn:
                txn.account.usage_count = 2
                # Another process commits in the meantime
                other = self.store.get("alice")
                other.usage_count = 7
                other.version += 1
                self.store._write(other)

        loaded = self.store.get("alice")
        assert loaded.usage_count == 7
        assert loaded.version == 2

    def test_lock_timeout_is_conflict(self):
        lock = self.store._lock_for("alice")
        lock.acquire()
        try:
            with pytest.raises(ConcurrencyConflict):
                with self.store.transaction("alice"):
                    pass
        finally:
            lock.release()

    def test_lock_file_held_by_other_process_is_conflict(self):
        # Another store process holds the account's lock file
        with FileLock(str(self.accounts_dir / ".alice.lock")):
            with pytest.raises(ConcurrencyConflict):
                with self.store.transaction("alice") as txn:
                    txn.account.usage_count = 9
        assert self.store.get("alice").usage_count == 1

    def test_lock_file_held_for_whole_transaction(self):
        other = FileLock(str(self.accounts_dir / ".alice.lock"), timeout=0.01)
        with self.store.transaction("alice") as txn:
            txn.account.usage_count = 3
            with pytest.raises(TimeoutError):
                other.acquire()
        with other:
            assert self.store.get("alice").usage_count == 3

    def test_different_accounts_do_not_block(self):
        self.store.create(make_account("bob"))
        lock = self.store._lock_for("alice")
        lock.acquire()
        try:
            with self.store.transaction("bob") as txn:
                txn.account.usage_count = 4
        finally:
            lock.release()
        assert self.store.get("bob").usage_count == 4

    def test_write_failure_leaves_previous_record(self):
        with patch("lectgen.quota.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageUnavailable):
                with self.store.transaction("alice") as txn:
                    txn.account.usage_count = 5

        assert self.store.get("alice").usage_count == 1
        # Temp file cleaned up
        assert not list(Path(self.accounts_dir).glob(".*.tmp"))

    def test_serialized_increments(self):
        self.store.lock_timeout = 5.0

        def bump():
            for _ in range(10):
                with self.store.transaction("alice") as txn:
                    txn.account.usage_count += 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        loaded = self.store.get("alice")
        assert loaded.usage_count == 41
        assert loaded.version == 41
