from .exceptions import (
    StarkpayError,
    InvalidArgument,
    AddressMismatch,
    NetworkError,
    ProviderError,
    MalformedSignature,
    NoSupportedGasToken,
    InsufficientBalance,
    AlreadyDeployed,
    NotDeployed,
    ChainRejected,
    ConfigurationError,
    InvalidTransition,
)

__all__ = [
    "StarkpayError",
    "InvalidArgument",
    "AddressMismatch",
    "NetworkError",
    "ProviderError",
    "MalformedSignature",
    "NoSupportedGasToken",
    "InsufficientBalance",
    "AlreadyDeployed",
    "NotDeployed",
    "ChainRejected",
    "ConfigurationError",
    "InvalidTransition",
]
