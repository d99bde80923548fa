"""
Exception and Error Definitions Module

Defines the error taxonomy shared by the address deriver, the remote signer,
the paymaster negotiator and the orchestrator. Every error raised on purpose by
this package inherits from StarkpayError so callers can map the whole family to
an error envelope in one place.

Exception Hierarchy:
    StarkpayError (root)
    ├── InvalidArgument
    │   └── AddressMismatch
    ├── NetworkError
    ├── ProviderError
    ├── MalformedSignature
    ├── NoSupportedGasToken
    ├── InsufficientBalance
    ├── AlreadyDeployed
    ├── NotDeployed
    ├── ChainRejected
    ├── ConfigurationError
    └── InvalidTransition
"""

from typing import Optional


class StarkpayError(Exception):
    """
    Root exception class for all project-specific exceptions.

    Attributes:
        status_code: HTTP-equivalent status a transport layer should use
    """

    status_code: int = 500


class InvalidArgument(StarkpayError):
    """
    Raised when the caller supplied malformed input.

    This includes scenarios such as:
    - Malformed hex scalar or address
    - Missing required field (wallet id, entrypoint, amount)
    - Non-positive transfer amount
    """

    status_code = 400


class AddressMismatch(InvalidArgument):
    """
    Raised when an externally reported account address does not match the
    locally derived counterfactual address.

    Attributes:
        reported: Address reported by the wallet-custody service
        derived: Address derived from public key and class hash
    """

    def __init__(self, reported: str, derived: str):
        super().__init__(
            f"Reported address {reported} does not match derived address {derived}"
        )
        self.reported = reported
        self.derived = derived


class NetworkError(StarkpayError):
    """
    Raised on transport-level failures (connection refused, timeouts, DNS).

    Potentially transient; retrying is the caller's decision.
    """

    status_code = 503


class ProviderError(StarkpayError):
    """
    Raised when the identity provider or the paymaster explicitly rejected a
    request. The provider message is kept verbatim.

    Attributes:
        provider_status: HTTP status returned by the provider, when known
        payload: Parsed error body, when available
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        provider_status: Optional[int] = None,
        payload: Optional[object] = None,
    ):
        super().__init__(message)
        self.provider_status = provider_status
        self.payload = payload


class MalformedSignature(StarkpayError):
    """
    Raised when the signing oracle returned something that is not a
    64-byte (r, s) signature. Indicates an oracle or protocol mismatch.
    """

    status_code = 502


class NoSupportedGasToken(StarkpayError):
    """
    Raised when self-paid fee mode cannot determine any gas token, neither
    from configuration nor from the paymaster's supported token list.
    """

    status_code = 500


class InsufficientBalance(StarkpayError):
    """
    Raised when the account balance does not cover the requested amount.

    Attributes:
        required: Amount required, in smallest units
        available: Amount available, in smallest units
    """

    status_code = 400

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        super().__init__(message or f"Insufficient balance: required {required}, available {available}")
        self.required = required
        self.available = available


class AlreadyDeployed(StarkpayError):
    """Raised when a deployment is requested for an address that already has code."""

    status_code = 400

    def __init__(self, address: str):
        super().__init__(f"Account already deployed: {address}")
        self.address = address


class NotDeployed(StarkpayError):
    """Raised when an operation needs a deployed account and the address has none."""

    status_code = 400

    def __init__(self, address: str):
        super().__init__(f"Account not deployed: {address}. Deploy the account first.")
        self.address = address


class ChainRejected(StarkpayError):
    """
    Raised when the Starknet node refused a submitted transaction.

    Attributes:
        code: JSON-RPC error code reported by the node
        node_message: Underlying node message, unmodified
    """

    status_code = 502

    def __init__(self, message: str, *, code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.node_message = message


class ConfigurationError(StarkpayError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Missing required environment variables
    - Sponsored paymaster mode without an API key
    - Operator account requested but not configured
    """

    status_code = 500


class InvalidTransition(StarkpayError):
    """
    Raised when an operation trace is asked to move to a state that does not
    follow its current state.

    Attributes:
        current_state: State the trace was in
        target_state: State that was requested
    """

    def __init__(self, current_state: object, target_state: object):
        super().__init__(f"Invalid transition {current_state} -> {target_state}")
        self.current_state = current_state
        self.target_state = target_state
