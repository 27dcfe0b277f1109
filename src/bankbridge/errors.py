"""Exception hierarchy for BankBridge.

Every error carries an HTTP-style ``status_code`` so an inbound adapter can
map it without inspecting the type, and a ``retryable`` flag for callers that
schedule retries. Messages never contain decrypted identifiers or secrets.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncResult


class BankBridgeError(Exception):
    """Base class for all BankBridge errors."""

    status_code: int = 500
    retryable: bool = False


class InvalidInstitution(BankBridgeError):
    """The institution id is not in the aggregator's directory."""

    status_code = 400

    def __init__(self, institution_id: str):
        super().__init__(f"Institution not found: {institution_id}")
        self.institution_id = institution_id


class Unauthorized(BankBridgeError):
    """The caller is not authenticated or may not touch the resource."""

    status_code = 403


class OwnershipViolation(Unauthorized):
    """The resource exists but belongs to another user."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"Unauthorized access to {resource} {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class NotFound(BankBridgeError):
    """A requested resource does not exist."""

    status_code = 404


class ConnectionNotFound(NotFound):
    pass


class AccountNotFound(NotFound):
    pass


class TransactionNotFound(NotFound):
    pass


class ConnectionExpired(BankBridgeError):
    """The connection passed its expiry and must be initiated again."""

    status_code = 410

    def __init__(self, connection_id: str):
        super().__init__(
            f"Connection {connection_id} has expired. Please re-authenticate."
        )
        self.connection_id = connection_id


class UpstreamUnavailable(BankBridgeError):
    """The aggregator API failed or could not be reached."""

    status_code = 502
    retryable = True

    def __init__(self, message: str, upstream_status: int | None = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class EncryptionFailure(BankBridgeError):
    """A value could not be encrypted."""


class DecryptionFailure(BankBridgeError):
    """A stored envelope could not be decrypted."""


class PartialSyncFailure(BankBridgeError):
    """One or more accounts failed during a multi-account sync."""

    status_code = 207

    def __init__(self, results: "list[SyncResult]"):
        failed = [r.account_id for r in results if r.failed]
        super().__init__(
            f"{len(failed)} of {len(results)} accounts failed to sync: "
            f"{', '.join(failed)}"
        )
        self.results = results
        self.failed_account_ids = failed


def raise_for_failures(results: "list[SyncResult]") -> None:
    """Raise PartialSyncFailure if any account in a multi-account sync failed.

    Args:
        results: Results returned by a multi-account sync

    Raises:
        PartialSyncFailure: If at least one account reported an error
    """
    if any(r.failed for r in results):
        raise PartialSyncFailure(results)
