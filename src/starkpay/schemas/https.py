"""
Wire Schema Models for External Services

Pydantic models for the payloads exchanged with the identity provider and the
paymaster, plus the ``{success, data|error}`` envelope returned by the wallet
service façade. Provider payloads are parsed leniently: both snake_case and
camelCase spellings are accepted because the provider has shipped both.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Identity provider
# ============================================================================

class WalletRecord(BaseModel):
    """Wallet as reported by the identity provider.

    Attributes:
        id: Provider wallet id.
        address: Account address reported by the provider.
        public_key: Stark public key.
        chain_type: Chain family, ``starknet`` for the wallets used here.
        created_at: Provider creation timestamp (epoch ms), when reported.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    address: Optional[str] = None
    public_key: Optional[str] = None
    chain_type: Optional[str] = None
    created_at: Optional[int] = None

    @classmethod
    def from_provider(cls, payload: Dict[str, Any]) -> "WalletRecord":
        """Build from a provider payload, tolerating camelCase keys."""
        return cls(
            id=payload.get("id"),
            address=payload.get("address"),
            public_key=payload.get("public_key") or payload.get("publicKey"),
            chain_type=payload.get("chain_type") or payload.get("chainType"),
            created_at=payload.get("created_at") or payload.get("createdAt"),
        )

    @property
    def is_starknet(self) -> bool:
        return (self.chain_type or "").lower() == "starknet"


class CredentialClaims(BaseModel):
    """Verified claims of a provider access token."""
    user_id: str
    session_id: Optional[str] = None
    issuer: Optional[str] = None
    expires_at: Optional[int] = None


# ============================================================================
# Paymaster (SNIP-29)
# ============================================================================

class PaymasterToken(BaseModel):
    """Gas token accepted by the paymaster."""
    token_address: str
    decimals: Optional[int] = None
    price_in_strk: Optional[str] = None


class PaymasterFee(BaseModel):
    """Fee quote returned by ``paymaster_buildTransaction``.

    All amounts are hex or decimal strings on the wire; the integer accessors
    parse them.
    """
    model_config = ConfigDict(extra="allow")

    gas_token_price_in_strk: Optional[str] = None
    estimated_fee_in_strk: Optional[str] = None
    estimated_fee_in_gas_token: Optional[str] = None
    suggested_max_fee_in_strk: Optional[str] = None
    suggested_max_fee_in_gas_token: str = "0x0"

    @property
    def suggested_max_fee(self) -> int:
        return int(str(self.suggested_max_fee_in_gas_token), 0)


class PaymasterBuildResult(BaseModel):
    """Prepared transaction returned by ``paymaster_buildTransaction``."""
    model_config = ConfigDict(extra="allow")

    type: str
    fee: PaymasterFee
    typed_data: Optional[Dict[str, Any]] = None
    parameters: Optional[Dict[str, Any]] = None
    deployment: Optional[Dict[str, Any]] = None


class PaymasterExecuteResult(BaseModel):
    """Response of ``paymaster_executeTransaction``."""
    transaction_hash: str
    tracking_id: Optional[str] = None


# ============================================================================
# Service envelope
# ============================================================================

class Envelope(BaseModel):
    """Uniform response envelope: ``{success, data}`` or ``{success, error}``.

    Attributes:
        success: Whether the operation completed.
        data: Operation result on success.
        error: Human-readable message on failure.
        error_type: Exception class name on failure.
        status_code: HTTP-equivalent status for a transport layer.
        details: Extra failure context (e.g. available balance).
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    status_code: int = 200
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any) -> "Envelope":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        error_type: Optional[str] = None,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> "Envelope":
        return cls(
            success=False,
            error=error,
            error_type=error_type,
            status_code=status_code,
            details=details or {},
        )

    def to_response(self) -> Dict[str, Any]:
        """Dict suitable for a JSON response body."""
        return self.model_dump(mode="json", exclude_none=True)


class WalletList(BaseModel):
    """Starknet wallets owned by a user."""
    wallets: List[WalletRecord]
    count: int
