"""
Starknet Account and Account Builder

``StarknetAccount`` is an account handle composed of an address, a signer and
a chain provider, optionally with a paymaster negotiator attached. It drives
both submission paths:

    native     -> INVOKE / DEPLOY_ACCOUNT v3 transactions, hashed locally with
                  starknet-py, signed by the signer, sent through the provider
    paymaster  -> SNIP-29 build / sign typed data / execute

The signer is asynchronous (the remote signer performs an HTTP round trip), so
hashing and signing are done here instead of through starknet-py's
synchronous ``Account`` / ``BaseSigner`` pair.

``AccountBuilder`` assembles accounts for custodial wallets (remote signer)
and for the operator wallet (local key). Building performs no network calls.
"""

import dataclasses
import logging
from typing import Any, Dict, Optional, Sequence, Union

from starknet_py.net.client_models import ResourceBounds, ResourceBoundsMapping
from starknet_py.net.models.transaction import DeployAccountV3, InvokeV3
from starknet_py.utils.typed_data import TypedData

from ...engine.exceptions import ConfigurationError, InvalidArgument, ProviderError
from ...schemas.bases import (
    AccountIdentity,
    Call,
    DeploymentPayload,
    FeeMode,
    TransactionHandle,
    TransactionIntent,
)
from ...utils import short_hex, to_felt, to_padded_hex
from .address import build_deployment_payload, derive_address, verify_address
from .chain import encode_execute_calldata
from .paymaster import apply_fee_margin
from .signers import LocalKeySigner, RemoteSigner, Signer

logger = logging.getLogger(__name__)

TRANSACTION_VERSION = 3

#: Paymaster build types whose typed data must be signed by the account.
_SIGNED_BUILD_TYPES = ("invoke", "deploy_and_invoke")


def widen_resource_bounds(bounds: ResourceBoundsMapping) -> ResourceBoundsMapping:
    """Apply the 1.5x fee margin to every resource of an estimate."""
    widened = {}
    for field in dataclasses.fields(bounds):
        resource = getattr(bounds, field.name)
        widened[field.name] = ResourceBounds(
            max_amount=apply_fee_margin(resource.max_amount),
            max_price_per_unit=apply_fee_margin(resource.max_price_per_unit),
        )
    return dataclasses.replace(bounds, **widened)


class StarknetAccount:
    """
    Account handle bound to a signer.

    Args:
        address: Account address (0x + 64 hex chars)
        signer: Any object implementing the Signer protocol
        provider: ChainProvider used for nonces, estimates and submission
        chain_id: Numeric chain id used in transaction hashes
            (defaults to ``provider.chain_id``)
        paymaster: PaymasterNegotiator, required for the paymaster path
        identity: Off-chain identity, required for ``deployment_payload``
    """

    def __init__(
        self,
        address: Union[int, str],
        signer: Signer,
        provider: Any,
        *,
        chain_id: Optional[int] = None,
        paymaster: Optional[Any] = None,
        identity: Optional[AccountIdentity] = None,
    ):
        self.address = to_padded_hex(address)
        self.signer = signer
        self.provider = provider
        self.chain_id = chain_id if chain_id is not None else provider.chain_id
        self.paymaster = paymaster
        self.identity = identity

    def __repr__(self) -> str:
        return f"StarknetAccount(address={short_hex(self.address)}, signer={self.signer!r})"

    def with_signer(self, signer: Signer) -> "StarknetAccount":
        """Same account, signing through ``signer``."""
        return StarknetAccount(
            self.address,
            signer,
            self.provider,
            chain_id=self.chain_id,
            paymaster=self.paymaster,
            identity=self.identity,
        )

    def deployment_payload(self) -> DeploymentPayload:
        if self.identity is None:
            raise InvalidArgument("Account has no identity to deploy from")
        return build_deployment_payload(self.identity.public_key, self.identity.class_hash)

    # =========================================================================
    # Native path
    # =========================================================================

    def _transaction_hash(self, transaction: Any) -> int:
        return transaction.calculate_hash(self.chain_id)

    async def _sign_transaction(self, transaction: Any) -> Any:
        signature = await self.signer.sign_raw(self._transaction_hash(transaction))
        return dataclasses.replace(transaction, signature=signature.as_ints())

    async def _with_estimated_bounds(self, transaction: Any) -> Any:
        estimate = await self.provider.estimate_fee(transaction)
        bounds = estimate.to_resource_bounds(amount_multiplier=1, unit_price_multiplier=1)
        return dataclasses.replace(transaction, resource_bounds=widen_resource_bounds(bounds))

    async def execute(self, calls: Union[Call, Sequence[Call]]) -> TransactionHandle:
        """
        Submit an INVOKE v3 multicall paid by the account itself.

        Flow:
            1. Read the nonce
            2. Estimate resource bounds on the unsigned transaction, add margin
            3. Sign the transaction hash with the signer
            4. Send

        Args:
            calls: Single call or ordered list of calls

        Raises:
            ChainRejected: The node refused the estimate or the transaction.
        """
        call_list = [calls] if isinstance(calls, Call) else list(calls)
        nonce = await self.provider.get_nonce(self.address)
        transaction = InvokeV3(
            version=TRANSACTION_VERSION,
            signature=[],
            nonce=nonce,
            resource_bounds=ResourceBoundsMapping.init_with_zeros(),
            calldata=encode_execute_calldata(call_list),
            sender_address=to_felt(self.address),
            tip=0,
        )
        transaction = await self._with_estimated_bounds(transaction)
        signed = await self._sign_transaction(transaction)
        transaction_hash = await self.provider.send_transaction(signed)
        logger.info(f"Invoke submitted from {short_hex(self.address)}: {transaction_hash}")
        return TransactionHandle(transaction_hash=transaction_hash, address=self.address)

    async def deploy(self, payload: Optional[DeploymentPayload] = None) -> TransactionHandle:
        """
        Submit a DEPLOY_ACCOUNT v3 transaction paid by the (funded) account.

        Raises:
            InvalidArgument: Payload address differs from this account.
            ChainRejected: The node refused the estimate or the transaction.
        """
        payload = payload or self.deployment_payload()
        if payload.contract_address != self.address:
            raise InvalidArgument(
                f"Deployment address {payload.contract_address} does not match account {self.address}"
            )
        transaction = DeployAccountV3(
            version=TRANSACTION_VERSION,
            signature=[],
            nonce=0,
            resource_bounds=ResourceBoundsMapping.init_with_zeros(),
            class_hash=to_felt(payload.class_hash),
            contract_address_salt=to_felt(payload.address_salt),
            constructor_calldata=list(payload.constructor_calldata),
            tip=0,
        )
        transaction = await self._with_estimated_bounds(transaction)
        signed = await self._sign_transaction(transaction)
        transaction_hash = await self.provider.deploy_account(signed)
        logger.info(f"Deploy account submitted for {short_hex(self.address)}: {transaction_hash}")
        return TransactionHandle(transaction_hash=transaction_hash, address=self.address)

    # =========================================================================
    # Paymaster path
    # =========================================================================

    def _paymaster_rpc(self) -> Any:
        if self.paymaster is None:
            raise ConfigurationError("Account has no paymaster attached")
        return self.paymaster.rpc

    async def estimate_paymaster_fee(
        self,
        calls: Sequence[Call],
        fee_mode: FeeMode,
        deployment: Optional[DeploymentPayload] = None,
    ) -> int:
        """Paymaster's suggested maximum fee in gas-token units (no margin)."""
        intent = TransactionIntent(calls=list(calls), fee_mode=fee_mode, deployment=deployment)
        build = await self._paymaster_rpc().build_transaction(self.address, intent)
        return build.fee.suggested_max_fee

    def _typed_data_hash(self, typed_data: Dict[str, Any]) -> int:
        return TypedData.from_dict(typed_data).message_hash(to_felt(self.address))

    async def execute_paymaster(
        self,
        calls: Sequence[Call],
        fee_mode: FeeMode,
        *,
        deployment: Optional[DeploymentPayload] = None,
        max_fee: Optional[int] = None,
    ) -> TransactionHandle:
        """
        Submit a transaction through the paymaster.

        Flow:
            1. ``paymaster_buildTransaction`` returns a fee quote and typed data
            2. Reject the quote if it exceeds ``max_fee``
            3. Sign the typed data (invoke and deploy_and_invoke only)
            4. ``paymaster_executeTransaction``

        Raises:
            ProviderError: Paymaster rejection, or quote above ``max_fee``.
        """
        rpc = self._paymaster_rpc()
        intent = TransactionIntent(calls=list(calls), fee_mode=fee_mode, deployment=deployment)
        build = await rpc.build_transaction(self.address, intent)

        if max_fee is not None and build.fee.suggested_max_fee > max_fee:
            raise ProviderError(
                f"Paymaster fee {build.fee.suggested_max_fee} exceeds max fee {max_fee}",
                payload=build.fee.model_dump(),
            )

        signature = None
        if build.type in _SIGNED_BUILD_TYPES and build.typed_data:
            signature = await self.signer.sign_raw(self._typed_data_hash(build.typed_data))

        result = await rpc.execute_transaction(self.address, intent, build.typed_data, signature)
        transaction_hash = to_padded_hex(result.transaction_hash)
        logger.info(
            f"Paymaster {intent.transaction_type} submitted from {short_hex(self.address)}: {transaction_hash}"
        )
        return TransactionHandle(transaction_hash=transaction_hash, address=self.address)


class AccountBuilder:
    """
    Builds account handles for custodial and operator wallets.

    Args:
        provider: ChainProvider shared by every built account
        privy_client: PrivyClient backing remote signers
        chain_id: Chain id for transaction hashes (defaults to the provider's)
        paymaster: PaymasterNegotiator attached when ``use_paymaster`` is set
    """

    def __init__(
        self,
        provider: Any,
        privy_client: Any,
        chain_id: Optional[int] = None,
        paymaster: Optional[Any] = None,
    ):
        self.provider = provider
        self.privy = privy_client
        self.chain_id = chain_id if chain_id is not None else provider.chain_id
        self.paymaster = paymaster

    def build(
        self,
        identity: AccountIdentity,
        credential: str,
        *,
        use_paymaster: bool = False,
        known_address: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> StarknetAccount:
        """
        Account for a custodial wallet, signing through the identity provider.

        The address is derived from the identity; a ``known_address`` reported
        by the provider is cross-checked against it.

        Raises:
            AddressMismatch: ``known_address`` differs from the derived address.
            ConfigurationError: ``use_paymaster`` without a negotiator.
        """
        if known_address:
            address = verify_address(known_address, identity.public_key, identity.class_hash)
        else:
            address = derive_address(identity.public_key, identity.class_hash)
        if use_paymaster and self.paymaster is None:
            raise ConfigurationError("Paymaster requested but not configured")

        signer = RemoteSigner(
            self.privy,
            identity.wallet_id,
            identity.public_key,
            credential,
            user_id=user_id,
        )
        return StarknetAccount(
            address,
            signer,
            self.provider,
            chain_id=self.chain_id,
            paymaster=self.paymaster if use_paymaster else None,
            identity=identity,
        )

    def build_local(self, address: str, private_key: str) -> StarknetAccount:
        """Account signing with an in-process key (the operator wallet)."""
        if not address or not private_key:
            raise ConfigurationError("EARNS_TOKEN_OWNER and EARNS_TOKEN_OWNER_PRIVATE_KEY must be set")
        return StarknetAccount(address, LocalKeySigner(private_key), self.provider, chain_id=self.chain_id)
