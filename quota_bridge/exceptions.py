"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from datetime import date

from quota_bridge.models.domain import ValidationReport


class QuotaBridgeError(Exception):
    """Base exception for all quota bridge errors."""

    pass


class NotFoundError(QuotaBridgeError):
    """Base for lookups that matched nothing."""

    pass


class UserNotFoundError(NotFoundError):
    """Raised when the directory has no exact match for a username."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"User not found in directory: {username}")


class RecordNotFoundError(NotFoundError):
    """Raised when a persisted record doesn't exist."""

    def __init__(self, resource: str, key: str) -> None:
        self.resource = resource
        self.key = key
        super().__init__(f"{resource} not found: {key}")


class InvalidUsernameError(QuotaBridgeError):
    """Raised when a username is empty after trimming."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__("Username cannot be empty")


class OwnershipMismatchError(QuotaBridgeError):
    """Raised when a directory account belongs to a different external identity."""

    def __init__(self, username: str, expected_auth_id: str, actual_auth_id: str) -> None:
        self.username = username
        self.expected_auth_id = expected_auth_id
        self.actual_auth_id = actual_auth_id
        super().__init__(
            f"Account {username} is owned by {actual_auth_id or '<unlinked>'}, "
            f"not {expected_auth_id}"
        )


class NotBoundError(QuotaBridgeError):
    """Raised when an identity has no bound gateway account."""

    def __init__(self, external_auth_id: str) -> None:
        self.external_auth_id = external_auth_id
        super().__init__(f"Identity {external_auth_id} is not bound to a gateway account")


class AlreadyClaimedTodayError(QuotaBridgeError):
    """Raised when the daily grant was already claimed."""

    def __init__(self, external_auth_id: str, claim_date: date) -> None:
        self.external_auth_id = external_auth_id
        self.claim_date = claim_date
        super().__init__(f"Identity {external_auth_id} already claimed on {claim_date}")


class AboveThresholdError(QuotaBridgeError):
    """Raised when live quota is too high to claim the daily grant."""

    def __init__(self, quota: int, threshold: int) -> None:
        self.quota = quota
        self.threshold = threshold
        super().__init__(f"Quota {quota} is not below the claim threshold {threshold}")


class NoValidKeysError(QuotaBridgeError):
    """Raised when a donation contains no live, unused keys."""

    def __init__(self, report: ValidationReport) -> None:
        self.report = report
        super().__init__(f"No valid keys: {report.summary()}")


class NoFailedKeysError(QuotaBridgeError):
    """Raised when a push retry is requested for a record with nothing to retry."""

    def __init__(self, created_at: int) -> None:
        self.created_at = created_at
        super().__init__(f"Donation record {created_at} has no failed keys")


class PushNotConfiguredError(QuotaBridgeError):
    """Raised when push endpoint or token is missing. Requires admin action."""

    def __init__(self) -> None:
        super().__init__("push not configured")


class DirectoryNotConfiguredError(QuotaBridgeError):
    """Raised when no directory session token is configured."""

    def __init__(self) -> None:
        super().__init__("directory session not configured")


class ExternalTransportError(QuotaBridgeError):
    """Raised on network failure, timeout, or an undecodable response."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        self.message = message
        super().__init__(f"{service} unreachable: {message}")


class ExternalRejectionError(QuotaBridgeError):
    """Raised when a remote service explicitly declined the request."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        self.message = message
        super().__init__(f"{service} rejected request: {message}")


class AuthenticationError(QuotaBridgeError):
    """Raised when authentication fails (invalid session, bad admin password)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
