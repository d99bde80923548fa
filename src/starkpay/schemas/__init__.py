from .bases import (
    CanonicalModel,
    AccountIdentity,
    Call,
    StarknetSignature,
    SponsoredFeeMode,
    SelfPaidFeeMode,
    FeeMode,
    FeeNegotiation,
    DeploymentPayload,
    TransactionIntent,
    DeploymentContext,
    TransactionHandle,
    AccountInfo,
    TransactionStatus,
    TransactionConfirmation,
    AuthorizationKey,
)
from .https import (
    WalletRecord,
    CredentialClaims,
    PaymasterToken,
    PaymasterFee,
    PaymasterBuildResult,
    PaymasterExecuteResult,
    Envelope,
    WalletList,
)

__all__ = [
    "CanonicalModel",
    "AccountIdentity",
    "Call",
    "StarknetSignature",
    "SponsoredFeeMode",
    "SelfPaidFeeMode",
    "FeeMode",
    "FeeNegotiation",
    "DeploymentPayload",
    "TransactionIntent",
    "DeploymentContext",
    "TransactionHandle",
    "AccountInfo",
    "TransactionStatus",
    "TransactionConfirmation",
    "AuthorizationKey",
    "WalletRecord",
    "CredentialClaims",
    "PaymasterToken",
    "PaymasterFee",
    "PaymasterBuildResult",
    "PaymasterExecuteResult",
    "Envelope",
    "WalletList",
]
