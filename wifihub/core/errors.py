from __future__ import annotations

from datetime import timedelta


class WifiHubError(RuntimeError):
    """Base for all service-layer failures surfaced to callers.

    `code` is a stable snake_case identifier for handlers/UI.
    `keeps_writes` marks rejections whose side effects must still be committed.
    """

    code = "error"
    keeps_writes = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class NotFound(WifiHubError):
    code = "not_found"


class AlreadyProcessed(WifiHubError):
    code = "already_processed"


class InsufficientCredits(WifiHubError):
    code = "insufficient_credits"

    def __init__(self, *, requested: int, balance: int | None = None) -> None:
        self.requested = requested
        self.balance = balance
        super().__init__(f"insufficient_credits requested={requested} balance={balance}")


class InvalidAmount(WifiHubError):
    code = "invalid_amount"


class InvalidInput(WifiHubError):
    code = "invalid_input"


class Unauthorized(WifiHubError):
    code = "unauthorized"


class UsernameTaken(WifiHubError):
    code = "username_taken"


class UploadFailed(WifiHubError):
    code = "upload_failed"


class TransientStoreError(WifiHubError):
    """Network/availability failure of the document store.

    ack_unknown=True means the commit may or may not have landed: do not retry
    without an idempotency key.
    """

    code = "transient_store_error"

    def __init__(self, message: str | None = None, *, ack_unknown: bool = False) -> None:
        self.ack_unknown = ack_unknown
        super().__init__(message)


class ReferralRejected(WifiHubError):
    code = "referral_rejected"
    keeps_writes = True

    def __init__(self, *, strike_count: int, time_remaining: timedelta | None) -> None:
        self.strike_count = strike_count
        self.time_remaining = time_remaining
        super().__init__(f"{self.code} strikes={strike_count} remaining={time_remaining}")


class CooldownActive(ReferralRejected):
    code = "cooldown_active"


class Punished(ReferralRejected):
    code = "punished"
