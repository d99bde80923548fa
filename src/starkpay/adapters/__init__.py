from .starknet import (
    AccountBuilder,
    ChainProvider,
    LocalKeySigner,
    PaymasterNegotiator,
    RemoteSigner,
    Signer,
    StarknetAccount,
    derive_address,
    verify_address,
)

__all__ = [
    "AccountBuilder",
    "ChainProvider",
    "LocalKeySigner",
    "PaymasterNegotiator",
    "RemoteSigner",
    "Signer",
    "StarknetAccount",
    "derive_address",
    "verify_address",
]
