"""Exception hierarchy for the session-wallet pipeline."""

from decimal import Decimal
from typing import Optional


class SessionWalletError(Exception):
    """Base exception for all session-wallet errors."""

    pass


class IdentityError(SessionWalletError):
    """The signing identity is missing or its key is malformed.

    Fatal for the submission that hit it; never retried.
    """

    pass


class InsufficientFunds(SessionWalletError):
    """The session wallet cannot cover the quoted cost of an action."""

    def __init__(self, required: Decimal, available: Decimal, shortfall: Optional[Decimal] = None):
        self.required = required
        self.available = available
        self.shortfall = shortfall if shortfall is not None else max(Decimal("0"), required - available)
        super().__init__(
            f"Insufficient funds: required {required}, available {available}, "
            f"shortfall {self.shortfall}"
        )


class TransportError(SessionWalletError):
    """A single endpoint failed (network error, timeout, bad response)."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        self.endpoint = endpoint
        super().__init__(message)


class RpcResponseError(TransportError):
    """The endpoint answered with a JSON-RPC error object."""

    def __init__(self, code: Optional[int], message: str, endpoint: Optional[str] = None):
        self.code = code
        self.rpc_message = message
        super().__init__(f"RPC error {code}: {message}", endpoint=endpoint)


class AllEndpointsFailed(TransportError):
    """Every configured endpoint failed for one operation."""

    def __init__(self, operation: str, last_error: Optional[Exception] = None):
        self.operation = operation
        self.last_error = last_error
        super().__init__(f"{operation}: all endpoints failed (last error: {last_error})")


class OracleUnavailable(AllEndpointsFailed):
    """The balance oracle could not reach any endpoint."""

    pass


class TransactionRejected(SessionWalletError):
    """A node explicitly refused the signed transaction. Not retried."""

    pass


class OnChainRevert(SessionWalletError):
    """The transaction was mined but its execution failed."""

    pass


class ConfirmationTimeout(SessionWalletError):
    """The transaction was not confirmed within the polling budget.

    The outcome is indeterminate: the transaction may still land later.
    """

    pass


class StorageUnavailable(SessionWalletError):
    """The persistent key-value backend cannot be used."""

    pass
