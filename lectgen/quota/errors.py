"""
Error types raised by the quota engine.

Running out of quota is not an error: it is reported through
QuotaResult.allowed / QuotaResult.reason.
"""


class QuotaError(Exception):
    """Base class for quota engine failures."""

    # Short machine-readable code used in JSON error bodies
    code = "quota_error"

    # Transient failures may succeed when the caller retries later
    transient = False


class InvalidTier(QuotaError, ValueError):
    """Tier value outside FREE / VIP / ADMIN."""

    code = "invalid_tier"

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown subscription tier: {value!r}")


class AccountNotFound(QuotaError, LookupError):
    """No account record exists for the requested id."""

    code = "account_not_found"

    def __init__(self, uid: str):
        self.uid = uid
        super().__init__(f"Account not found: {uid}")


class AccountExists(QuotaError):
    """An account record already exists for the id being registered."""

    code = "account_exists"

    def __init__(self, uid: str):
        self.uid = uid
        super().__init__(f"Account already exists: {uid}")


class ConcurrencyConflict(QuotaError):
    """A concurrent write prevented the transaction from committing."""

    code = "concurrency_conflict"
    transient = True


class StorageUnavailable(QuotaError):
    """The account store could not be read or written."""

    code = "storage_unavailable"
    transient = True


class InvalidAccountId(QuotaError, ValueError):
    """Account id that cannot be used as a storage key."""

    code = "invalid_account_id"

    def __init__(self, uid):
        self.uid = uid
        super().__init__(f"Invalid account id: {uid!r}")
