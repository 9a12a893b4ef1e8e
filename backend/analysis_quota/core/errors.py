from __future__ import annotations


class QuotaError(Exception):
    """Base for failures on the enforcement path.

    ``code`` is machine readable; ``public_message`` is safe to show end users
    and never carries storage details.
    """

    code = "QUOTA_ERROR"
    public_message = "Unable to verify your plan right now. Please try again."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.code)
        self.detail = detail


class NotAuthenticated(QuotaError):
    code = "NOT_AUTHENTICATED"
    public_message = "Not authenticated"


class StorageUnavailable(QuotaError):
    code = "STORAGE_UNAVAILABLE"


class InvalidPeriodState(QuotaError):
    code = "INVALID_PERIOD_STATE"


class QuotaExceeded(QuotaError):
    code = "QUOTA_EXCEEDED"

    def __init__(self, limit: int, plan: str = "free") -> None:
        super().__init__(f"limit={limit} plan={plan}")
        self.limit = int(limit)
        self.plan = plan
        self.public_message = (
            f"{plan.capitalize()} plan limit reached: maximum {self.limit} analyses per billing period. "
            "Please upgrade to Pro or Enterprise for unlimited analyses."
        )
        self.hint = "upgrade_required"
