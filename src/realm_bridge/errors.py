"""
realm_bridge.errors

Failure taxonomy shared by every layer of the bridge.

Responsibilities:
- Name each way a cross-realm operation can fail.
- Mark which failures are safe for the caller to retry.
"""

from __future__ import annotations


class BridgeError(Exception):
    """
    Base class for typed bridge failures. `str(e)` is the raw message and is preserved
    verbatim in the operation ledger.
    """

    code = "bridge_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MalformedCredential(BridgeError):
    # Unparsable credential or missing required claims.
    code = "malformed_credential"


class UnknownRealm(BridgeError):
    code = "unknown_realm"

    def __init__(self, issuer: str) -> None:
        super().__init__(f"credential issued by unknown realm: {issuer}")
        self.issuer = issuer


class DelegationDenied(BridgeError):
    # The remote exchange rejected the assertion or the requested scope.
    code = "delegation_denied"

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class BackendUnavailable(BridgeError):
    # Transient network/service failure, including deadline expiry.
    code = "backend_unavailable"
    retryable = True


class ThreadNotFound(BridgeError):
    code = "thread_not_found"

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"thread not found: {thread_id}")
        self.thread_id = thread_id


# --- Module Notes -----------------------------------------------------------
# No layer retries automatically; `retryable` only informs the caller's own policy.
