"""
Base Schema Models for the Starknet Wallet Core

Request-scoped value objects shared by the address deriver, the signer
adapters, the paymaster negotiator and the orchestrator. None of them is
persisted; all of them serialize deterministically.

Core Classes:
    - CanonicalModel: Pydantic base model with canonical JSON serialization
    - AccountIdentity: Wallet handle + public key + account class hash
    - Call: One (contract, entrypoint, calldata) triple
    - StarknetSignature: (r, s) pair produced by a signer
    - SponsoredFeeMode / SelfPaidFeeMode: The two fee-abstraction modes
    - FeeNegotiation: Outcome of a paymaster negotiation
    - DeploymentPayload: Deploy-account data for one counterfactual account
    - TransactionIntent: Calls + fee mode (+ deployment) for one submission
    - DeploymentContext: Per-operation context threaded through the orchestrator
    - TransactionHandle / AccountInfo / TransactionConfirmation: Results

Dependencies:
    - pydantic: For data validation and serialization
    - starknet-py: For entrypoint selector hashing
"""

import json
import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from starknet_py.hash.selector import get_selector_from_name

from ..engine.exceptions import InvalidArgument, MalformedSignature
from ..utils import to_felt, to_hex, to_padded_hex

#: A signing-oracle response body is exactly 64 bytes: r || s.
SIGNATURE_HEX_LENGTH: int = 128
_SIGNATURE_BODY = re.compile(rf"[0-9a-fA-F]{{{SIGNATURE_HEX_LENGTH}}}")


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    Keys are sorted and whitespace is stripped so that the same value always
    serializes to the same bytes (used for request signing and hashing).
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a canonical JSON string.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json")
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Returns:
            Dict[str, Any]: Dictionary with all model fields.
        """
        return self.model_dump()


def _felt_hex(value: Any) -> str:
    try:
        return to_padded_hex(value)
    except InvalidArgument:
        raise
    except Exception as e:
        raise InvalidArgument(f"Invalid hex scalar: {value!r}") from e


class AccountIdentity(CanonicalModel):
    """
    Off-chain identity of a counterfactual account.

    Attributes:
        wallet_id: Opaque wallet handle at the identity provider
        public_key: Stark public key, 0x + 64 hex chars
        class_hash: Account contract class hash, 0x + 64 hex chars
    """

    model_config = ConfigDict(frozen=True)

    wallet_id: str = Field(..., min_length=1, description="Identity-provider wallet id")
    public_key: str = Field(..., description="Stark public key (felt)")
    class_hash: str = Field(..., description="Account contract class hash (felt)")

    @field_validator("public_key", "class_hash", mode="before")
    @classmethod
    def _normalize_felt(cls, value: Any) -> str:
        return _felt_hex(value)


class Call(CanonicalModel):
    """
    One contract invocation inside a multicall.

    Attributes:
        contract_address: Target contract
        entrypoint: Cairo function name (e.g. ``transfer``)
        calldata: Serialized felt arguments
    """

    model_config = ConfigDict(frozen=True)

    contract_address: str
    entrypoint: str = Field(..., min_length=1)
    calldata: List[int] = Field(default_factory=list)

    @field_validator("contract_address", mode="before")
    @classmethod
    def _normalize_address(cls, value: Any) -> str:
        return _felt_hex(value)

    @field_validator("calldata", mode="before")
    @classmethod
    def _normalize_calldata(cls, value: Any) -> List[int]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise InvalidArgument("calldata must be a list of felts")
        return [to_felt(item) for item in value]

    @property
    def selector(self) -> int:
        return get_selector_from_name(self.entrypoint)

    def to_paymaster_call(self) -> Dict[str, Any]:
        """SNIP-29 call shape: ``{to, selector, calldata}`` in hex."""
        return {
            "to": self.contract_address,
            "selector": hex(self.selector),
            "calldata": [hex(item) for item in self.calldata],
        }

    def to_sponsor_call(self) -> Dict[str, Any]:
        """Call shape of the HTTP sponsorship API."""
        return {
            "contract_address": self.contract_address,
            "entrypoint": self.entrypoint,
            "calldata": [hex(item) for item in self.calldata],
        }


class StarknetSignature(CanonicalModel):
    """
    Stark-curve ECDSA signature.

    Attributes:
        r: r component, 0x + 64 hex chars
        s: s component, 0x + 64 hex chars
    """

    model_config = ConfigDict(frozen=True)

    r: str
    s: str

    @classmethod
    def from_oracle_hex(cls, signature: str) -> "StarknetSignature":
        """
        Split a signing-oracle response into (r, s).

        The body after an optional ``0x`` must be exactly 128 hex characters;
        anything else is rejected rather than truncated or padded.

        Raises:
            MalformedSignature: On wrong length or non-hex content.
        """
        if not isinstance(signature, str):
            raise MalformedSignature(f"Signature must be a string, got {type(signature).__name__}")
        body = signature[2:] if signature[:2].lower() == "0x" else signature
        if len(body) != SIGNATURE_HEX_LENGTH:
            raise MalformedSignature(
                f"Expected {SIGNATURE_HEX_LENGTH} hex chars, got {len(body)}"
            )
        if not _SIGNATURE_BODY.fullmatch(body):
            raise MalformedSignature("Signature is not valid hexadecimal")
        half = SIGNATURE_HEX_LENGTH // 2
        return cls(r="0x" + body[:half], s="0x" + body[half:])

    def as_ints(self) -> List[int]:
        return [int(self.r, 16), int(self.s, 16)]

    def as_hex_list(self) -> List[str]:
        return [hex(v) for v in self.as_ints()]


class SponsoredFeeMode(CanonicalModel):
    """Third party pays; no gas token involved."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["sponsored"] = "sponsored"

    def to_rpc(self) -> Dict[str, Any]:
        return {"mode": "sponsored"}


class SelfPaidFeeMode(CanonicalModel):
    """The account pays fees in ``gas_token`` through the paymaster."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["default"] = "default"
    gas_token: str

    @field_validator("gas_token", mode="before")
    @classmethod
    def _normalize_token(cls, value: Any) -> str:
        return _felt_hex(value)

    def to_rpc(self) -> Dict[str, Any]:
        return {"mode": "default", "gas_token": self.gas_token}


FeeMode = Annotated[Union[SponsoredFeeMode, SelfPaidFeeMode], Field(discriminator="mode")]


class FeeNegotiation(CanonicalModel):
    """
    Result of PaymasterNegotiator.negotiate().

    Exactly one of {sponsored, self-paid with a resolved token} holds, which is
    guaranteed by the fee mode being one of the two variants.
    """

    model_config = ConfigDict(frozen=True)

    fee_mode: FeeMode

    @property
    def is_sponsored(self) -> bool:
        return isinstance(self.fee_mode, SponsoredFeeMode)

    @property
    def gas_token(self) -> Optional[str]:
        return getattr(self.fee_mode, "gas_token", None)


class DeploymentPayload(CanonicalModel):
    """
    Deploy-account data for one counterfactual account.

    Attributes:
        class_hash: Account contract class hash
        contract_address: Counterfactual address
        constructor_calldata: Serialized constructor arguments
        address_salt: Salt used for address derivation (the public key)
    """

    model_config = ConfigDict(frozen=True)

    class_hash: str
    contract_address: str
    constructor_calldata: List[int]
    address_salt: str

    @field_validator("class_hash", "contract_address", "address_salt", mode="before")
    @classmethod
    def _normalize_felt(cls, value: Any) -> str:
        return _felt_hex(value)

    def to_paymaster_deployment(self) -> Dict[str, Any]:
        """SNIP-29 ``deployment`` object with hex calldata."""
        return {
            "address": self.contract_address,
            "class_hash": self.class_hash,
            "salt": self.address_salt,
            "calldata": [to_hex(item) for item in self.constructor_calldata],
            "version": 1,
        }


class TransactionIntent(CanonicalModel):
    """
    Everything needed to estimate and submit one paymaster transaction.

    Frozen: fee estimation depends on its exact shape.
    """

    model_config = ConfigDict(frozen=True)

    calls: List[Call] = Field(default_factory=list)
    fee_mode: FeeMode
    deployment: Optional[DeploymentPayload] = None

    @property
    def transaction_type(self) -> str:
        if self.deployment is not None and self.calls:
            return "deploy_and_invoke"
        if self.deployment is not None:
            return "deploy"
        return "invoke"


class DeploymentContext(CanonicalModel):
    """
    Per-operation context passed by reference through the orchestrator.

    ``address`` is filled in once the counterfactual address has been
    resolved; ``known_address`` is the value reported by the custody service.
    """

    identity: AccountIdentity
    credential: str = Field(..., min_length=1, repr=False)
    user_id: Optional[str] = None
    use_paymaster: bool = True
    known_address: Optional[str] = None
    address: Optional[str] = None

    @field_validator("known_address", "address", mode="before")
    @classmethod
    def _normalize_optional(cls, value: Any) -> Optional[str]:
        return None if value in (None, "") else _felt_hex(value)


class TransactionHandle(CanonicalModel):
    """Submission result: transaction hash and the account it was sent from."""

    transaction_hash: str
    address: str


class AccountInfo(CanonicalModel):
    """On-chain deployment status of an address."""

    is_deployed: bool
    nonce: Optional[int] = None
    class_hash: Optional[str] = None


class TransactionStatus(str, Enum):
    """
    Enumeration of possible transaction confirmation statuses.

    Attributes:
        SUCCESS: Transaction accepted and executed successfully
        REVERTED: Transaction included but reverted
        REJECTED: Transaction rejected by the sequencer
        TIMEOUT: Confirmation polling gave up
    """
    SUCCESS = "success"
    REVERTED = "reverted"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


class TransactionConfirmation(CanonicalModel):
    """
    Outcome of waiting for a submitted transaction.

    Attributes:
        status: Final observed status
        transaction_hash: Hash that was polled
        finality_status: Node-reported finality (e.g. ACCEPTED_ON_L2)
        execution_status: Node-reported execution status
        revert_reason: Revert reason when the transaction reverted
        attempts: Number of receipt polls performed
    """

    status: TransactionStatus
    transaction_hash: str
    finality_status: Optional[str] = None
    execution_status: Optional[str] = None
    revert_reason: Optional[str] = None
    attempts: int = 0
    confirmed_at: Optional[datetime] = None

    def is_success(self) -> bool:
        return self.status == TransactionStatus.SUCCESS


class AuthorizationKey(CanonicalModel):
    """Short-lived provider authorization key; ``expires_at`` in epoch seconds."""

    authorization_key: str = Field(..., repr=False)
    expires_at: float
