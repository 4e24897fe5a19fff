"""
File-backed account store with per-account transactions.

Each account lives in its own JSON file. Writes happen only through
transaction(), which holds the account's thread lock and its lock file
(shared with other processes on the same data directory) from the read
until the file has been replaced atomically. The stored version is
re-checked before commit to catch writers that bypass the lock file.
"""

import json
import logging
import os
import re
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from filelock import FileLock, Timeout

from .errors import (
    AccountExists,
    AccountNotFound,
    ConcurrencyConflict,
    InvalidAccountId,
    InvalidTier,
    StorageUnavailable,
)
from .models import UID_REGEX, UserAccount

logger = logging.getLogger(__name__)

_UID_PATTERN = re.compile(UID_REGEX)


def is_valid_uid(uid) -> bool:
    return isinstance(uid, str) and _UID_PATTERN.match(uid) is not None


class AccountTransaction:
    """Working copy of one account inside a transaction."""

    def __init__(self, account: UserAccount):
        self._original = account
        self.account = account.copy()

    @property
    def changed(self) -> bool:
        return self.account != self._original


class AccountStore:
    """Stores UserAccount records as one JSON file per account."""

    def __init__(self, accounts_dir: Path, lock_timeout: float = 5.0):
        """
        Initialize AccountStore.

        Args:
            accounts_dir: Directory holding <uid>.json account files
            lock_timeout: Seconds to wait for an account lock before giving up
        """
        self.accounts_dir = accounts_dir
        self.lock_timeout = lock_timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self.accounts_dir.mkdir(parents=True, exist_ok=True)

    # =====================
    # Read helpers
    # =====================

    def _account_file(self, uid: str) -> Path:
        if not is_valid_uid(uid):
            raise AccountNotFound(str(uid))
        return self.accounts_dir / f"{uid}.json"

    def _lock_for(self, uid: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(uid)
            if lock is None:
                lock = self._locks[uid] = threading.Lock()
            return lock

    def _lock_file(self, uid: str) -> Path:
        return self.accounts_dir / f".{uid}.lock"

    @contextmanager
    def _locked(self, uid: str) -> Iterator[None]:
        """Hold the thread lock and the lock file of one account."""
        lock = self._lock_for(uid)
        if not lock.acquire(timeout=self.lock_timeout):
            raise ConcurrencyConflict(f"Timed out waiting for account lock: {uid}")
        try:
            file_lock = FileLock(str(self._lock_file(uid)), timeout=self.lock_timeout)
            try:
                file_lock.acquire()
            except Timeout as e:
                raise ConcurrencyConflict(f"Timed out waiting for account lock file: {uid}") from e
            except OSError as e:
                logger.error(f"Error opening lock file for {uid}: {e}")
                raise StorageUnavailable(f"Could not lock account {uid}") from e
            try:
                yield
            finally:
                file_lock.release()
        finally:
            lock.release()

    def _read(self, uid: str) -> Optional[UserAccount]:
        """Load an account, or None if it does not exist."""
        path = self._account_file(uid)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading account {uid}: {e}")
            raise StorageUnavailable(f"Could not read account {uid}") from e

        try:
            return UserAccount.from_dict(data)
        except InvalidTier:
            raise
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed account record {uid}: {e}")
            raise StorageUnavailable(f"Malformed account record {uid}") from e

    def _write(self, account: UserAccount) -> None:
        """Write an account file atomically via a temp file and rename."""
        path = self._account_file(account.uid)
        tmp_path = self.accounts_dir / f".{account.uid}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(account.to_dict(), f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Error saving account {account.uid}: {e}")
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            raise StorageUnavailable(f"Could not write account {account.uid}") from e

    # =====================
    # Public API
    # =====================

    def exists(self, uid: str) -> bool:
        try:
            return self._account_file(uid).exists()
        except AccountNotFound:
            return False

    def get(self, uid: str) -> UserAccount:
        """
        Read an account without taking its lock.

        Suitable for display; decisions that lead to writes must use transaction().

        Raises:
            AccountNotFound: if there is no record for uid
        """
        account = self._read(uid)
        if account is None:
            raise AccountNotFound(uid)
        return account

    def create(self, account: UserAccount) -> UserAccount:
        """
        Persist a new account.

        Raises:
            InvalidAccountId: if uid cannot be used as a storage key
            AccountExists: if uid is already taken
        """
        if not is_valid_uid(account.uid):
            raise InvalidAccountId(account.uid)

        with self._locked(account.uid):
            if self._read(account.uid) is not None:
                raise AccountExists(account.uid)
            stored = account.copy()
            stored.version = 1
            self._write(stored)
            return stored

    def list_ids(self) -> List[str]:
        """List all stored account ids, sorted."""
        try:
            return sorted(
                p.stem for p in self.accounts_dir.glob("*.json")
                if not p.name.startswith(".")
            )
        except OSError as e:
            raise StorageUnavailable("Could not list accounts") from e

    @contextmanager
    def transaction(self, uid: str) -> Iterator[AccountTransaction]:
        """
        Read-modify-write one account atomically.

        The caller mutates txn.account inside the block. On a clean exit the
        change is committed while the account is still locked; an exception
        inside the block discards the change.

        Raises:
            AccountNotFound: if there is no record for uid
            ConcurrencyConflict: if the lock could not be taken in time or the
                record was rewritten by a writer that ignored the lock file
            StorageUnavailable: if the file could not be read or written
        """
        self._account_file(uid)  # rejects malformed ids before a lock is created
        with self._locked(uid):
            snapshot = self._read(uid)
            if snapshot is None:
                raise AccountNotFound(uid)

            txn = AccountTransaction(snapshot)
            yield txn

            if not txn.changed:
                return

            current = self._read(uid)
            if current is None or current.version != snapshot.version:
                raise ConcurrencyConflict(f"Account {uid} changed during transaction")

            txn.account.version = snapshot.version + 1
            self._write(txn.account)
            logger.debug(f"Committed account {uid} at version {txn.account.version}")
