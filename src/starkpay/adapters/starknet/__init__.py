from .address import (
    build_constructor_calldata,
    build_deployment_payload,
    derive_address,
    verify_address,
    predict_user_public_key,
    predict_user_address,
)
from .signers import (
    Signer,
    SIGNATURE_EXTRACTORS,
    extract_signature,
    RemoteSigner,
    LocalKeySigner,
)
from .chain import (
    ChainProvider,
    encode_execute_calldata,
    split_u256,
    amount_to_wei,
    format_token_amount,
    transfer_call,
    transfer_earns_call,
)
from .paymaster import PaymasterNegotiator, apply_fee_margin
from .account import StarknetAccount, AccountBuilder

__all__ = [
    "build_constructor_calldata",
    "build_deployment_payload",
    "derive_address",
    "verify_address",
    "predict_user_public_key",
    "predict_user_address",
    "Signer",
    "SIGNATURE_EXTRACTORS",
    "extract_signature",
    "RemoteSigner",
    "LocalKeySigner",
    "ChainProvider",
    "encode_execute_calldata",
    "split_u256",
    "amount_to_wei",
    "format_token_amount",
    "transfer_call",
    "transfer_earns_call",
    "PaymasterNegotiator",
    "apply_fee_margin",
    "StarknetAccount",
    "AccountBuilder",
]
