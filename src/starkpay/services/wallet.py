"""
Wallet Service Façade

Transport-agnostic entry points for the wallet operations an HTTP layer would
expose. Every public coroutine returns plain data or raises a StarkpayError;
``respond`` turns either outcome into an ``Envelope`` so a route handler
reduces to ``return (await service.respond(service.deploy(...))).to_response()``.

Usage:
    ```python
    service = WalletService.from_settings(Settings.from_env())
    envelope = await service.respond(service.get_balance(wallet_id))
    ```
"""

import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Union

from ..adapters.starknet.account import AccountBuilder
from ..adapters.starknet.address import predict_user_address, verify_address
from ..adapters.starknet.chain import (
    ChainProvider,
    amount_to_wei,
    format_token_amount,
    transfer_call,
)
from ..adapters.starknet.paymaster import PaymasterNegotiator
from ..clients.caches import PaymasterCache, ProviderCache
from ..clients.paymaster import LegacySponsorClient, PaymasterRpc
from ..clients.privy import PrivyClient
from ..config import Settings
from ..engine.exceptions import (
    AlreadyDeployed,
    ConfigurationError,
    InsufficientBalance,
    InvalidArgument,
    NotDeployed,
    StarkpayError,
)
from ..engine.orchestrator import LegacySponsorExecutor, TransactionOrchestrator
from ..schemas.bases import AccountIdentity, Call, DeploymentContext
from ..schemas.https import Envelope, WalletList, WalletRecord
from ..utils import short_hex

logger = logging.getLogger(__name__)


class WalletService:
    """
    Wallet operations over the identity provider, the chain and the paymaster.

    Args:
        settings: Runtime settings
        privy: PrivyClient
        orchestrator: TransactionOrchestrator for user-signed operations
        provider: ChainProvider for reads
        legacy: LegacySponsorExecutor for operator transfers (claims); optional
    """

    def __init__(
        self,
        settings: Settings,
        privy: Any,
        orchestrator: TransactionOrchestrator,
        provider: Any,
        legacy: Optional[LegacySponsorExecutor] = None,
    ):
        self.settings = settings
        self.privy = privy
        self.orchestrator = orchestrator
        self.provider = provider
        self.legacy = legacy
        self._owned_clients: List[Any] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        provider_cache: Optional[ProviderCache] = None,
        paymaster_cache: Optional[PaymasterCache] = None,
    ) -> "WalletService":
        """Wire every collaborator from settings."""
        provider = ChainProvider.from_settings(settings, cache=provider_cache)
        privy = PrivyClient.from_settings(settings)
        owned: List[Any] = [privy]
        owns_paymaster = paymaster_cache is None
        paymaster_cache = paymaster_cache or PaymasterCache()
        rpc = paymaster_cache.get_or_create(lambda: PaymasterRpc.from_settings(settings))
        if owns_paymaster:
            owned.append(rpc)
        negotiator = PaymasterNegotiator(rpc, settings)
        builder = AccountBuilder(provider, privy, paymaster=negotiator)
        orchestrator = TransactionOrchestrator(builder, negotiator, provider)

        legacy = None
        if settings.has_operator and settings.paymaster_api_key:
            operator = builder.build_local(settings.operator_address, settings.operator_private_key)
            sponsor_client = LegacySponsorClient.from_settings(settings)
            owned.append(sponsor_client)
            legacy = LegacySponsorExecutor(
                sponsor_client,
                operator,
                manager_address=settings.earns_manager_address,
            )
        service = cls(settings, privy, orchestrator, provider, legacy=legacy)
        service._owned_clients = owned
        return service

    async def aclose(self) -> None:
        """Close the HTTP clients created by ``from_settings``; a shared paymaster cache stays open."""
        clients, self._owned_clients = self._owned_clients, []
        for client in clients:
            await client.aclose()

    async def __aenter__(self) -> "WalletService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Envelope
    # =========================================================================

    @staticmethod
    async def respond(operation: Awaitable[Any]) -> Envelope:
        """
        Await ``operation`` and wrap the outcome.

        StarkpayError subclasses map to their ``status_code``; anything else
        propagates.
        """
        try:
            result = await operation
        except InsufficientBalance as e:
            return Envelope.fail(
                str(e),
                error_type=type(e).__name__,
                status_code=e.status_code,
                details={"required": str(e.required), "available": format_token_amount(e.available)},
            )
        except StarkpayError as e:
            logger.warning(f"{type(e).__name__}: {e}")
            return Envelope.fail(str(e), error_type=type(e).__name__, status_code=e.status_code)
        return Envelope.ok(result)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _token(self) -> str:
        if not self.settings.earns_token_address:
            raise ConfigurationError("EARNS_TOKEN_ADDRESS is not configured")
        return self.settings.earns_token_address

    def _identity(self, wallet: WalletRecord) -> AccountIdentity:
        return AccountIdentity(
            wallet_id=wallet.id,
            public_key=wallet.public_key,
            class_hash=self.settings.account_class_hash,
        )

    async def _balance(self, address: str) -> Dict[str, str]:
        wei = await self.provider.get_token_balance(self._token(), address)
        return {"wei": wei, "formatted": format_token_amount(wei), "symbol": self.settings.earns_token_symbol}

    async def _context(
        self,
        wallet_id: str,
        credential: str,
        user_id: Optional[str],
    ) -> DeploymentContext:
        wallet = await self.privy.get_starknet_wallet(wallet_id)
        return DeploymentContext(
            identity=self._identity(wallet),
            credential=credential,
            user_id=user_id,
            use_paymaster=True,
            known_address=wallet.address,
        )

    async def _require_deployed(self, address: str) -> None:
        if not await self.provider.is_address_deployed(address):
            raise NotDeployed(address)

    # =========================================================================
    # Reads
    # =========================================================================

    async def address_for_user(self, user_id: str) -> Dict[str, Any]:
        """Predicted account address for a user id, with its deployment status."""
        address = predict_user_address(user_id, self.settings.account_class_hash)
        info = await self.provider.get_account_info(address)
        return {"user_id": user_id, "address": address, **info.model_dump(mode="json")}

    async def get_balance(self, wallet_id: str) -> Dict[str, Any]:
        wallet = await self.privy.get_starknet_wallet(wallet_id)
        return {"wallet_id": wallet_id, "address": wallet.address, "balance": await self._balance(wallet.address)}

    async def create_wallet(self, user_id: str) -> Dict[str, Any]:
        wallet = await self.privy.create_wallet(user_id)
        return {
            "wallet_id": wallet.id,
            "address": wallet.address,
            "public_key": wallet.public_key,
            "chain_type": "starknet",
        }

    async def list_wallets(self, user_id: str) -> Dict[str, Any]:
        wallets = await self.privy.list_starknet_wallets(user_id)
        return WalletList(wallets=wallets, count=len(wallets)).model_dump(mode="json")

    async def wallet_detail(self, wallet_id: str) -> Dict[str, Any]:
        """Wallet record, on-chain status and token balance."""
        wallet = await self.privy.get_starknet_wallet(wallet_id)
        info = await self.provider.get_account_info(wallet.address)
        return {
            "wallet_id": wallet_id,
            "address": wallet.address,
            "public_key": wallet.public_key,
            "is_deployed": info.is_deployed,
            "nonce": info.nonce,
            "class_hash": info.class_hash,
            "balance": await self._balance(wallet.address),
        }

    # =========================================================================
    # Writes
    # =========================================================================

    async def deploy(self, wallet_id: str, credential: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Deploy a wallet's account through the paymaster.

        Raises:
            AlreadyDeployed: The derived address already holds an account.
            AddressMismatch: Provider address differs from the derived one.
        """
        ctx = await self._context(wallet_id, credential, user_id)
        address = verify_address(ctx.known_address, ctx.identity.public_key, ctx.identity.class_hash)
        if await self.provider.is_address_deployed(address):
            raise AlreadyDeployed(address)
        handle = await self.orchestrator.deploy(ctx)
        return {
            "wallet_id": wallet_id,
            "address": handle.address,
            "public_key": ctx.identity.public_key,
            "transaction_hash": handle.transaction_hash,
        }

    async def claim(self, wallet_id: str, amount: Union[str, float, int]) -> Dict[str, Any]:
        """
        Send ``amount`` tokens (human units) from the manager contract to the
        wallet, signed by the operator account.
        """
        amount_wei = amount_to_wei(amount)
        if amount_wei <= 0:
            raise InvalidArgument("Invalid amount. Must be greater than 0")
        if self.legacy is None:
            raise ConfigurationError("Operator account is not configured")
        wallet = await self.privy.get_starknet_wallet(wallet_id)
        handle = await self.legacy.send_earns_to_user(wallet.address, amount_wei)
        return {
            "transaction_hash": handle.transaction_hash,
            "wallet_id": wallet_id,
            "address": wallet.address,
            "amount": str(amount),
        }

    async def withdraw(
        self,
        wallet_id: str,
        credential: str,
        to_address: str,
        amount: Union[str, float, int],
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Transfer ``amount`` tokens (human units) from the wallet to
        ``to_address``, signed by the wallet owner, fees via the paymaster.

        Raises:
            InvalidArgument: Missing recipient or non-positive amount.
            NotDeployed: The wallet's account is not deployed.
            InsufficientBalance: Balance below ``amount``.
        """
        if not to_address:
            raise InvalidArgument("to_address and amount are required")
        amount_wei = amount_to_wei(amount)
        if amount_wei <= 0:
            raise InvalidArgument("Amount must be greater than 0")

        ctx = await self._context(wallet_id, credential, user_id)
        address = ctx.known_address
        await self._require_deployed(address)
        available = int(await self.provider.get_token_balance(self._token(), address))
        if available < amount_wei:
            raise InsufficientBalance(required=amount_wei, available=available)

        call = transfer_call(self._token(), to_address, amount_wei)
        logger.info(f"Withdrawing {amount_wei} from {short_hex(address)} to {short_hex(to_address)}")
        handle = await self.orchestrator.execute(ctx, call)
        return {
            "transaction_hash": handle.transaction_hash,
            "from": handle.address,
            "to": to_address,
            "amount": str(amount),
            "gasless": self.settings.is_sponsored,
        }

    async def execute(
        self,
        wallet_id: str,
        credential: str,
        calls: Union[Call, Sequence[Union[Call, Dict[str, Any]]], Dict[str, Any]],
        *,
        wait: bool = False,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Execute arbitrary calls from a deployed wallet.

        With ``wait`` the receipt is polled; failing to confirm is logged and
        reported in the result, never raised.
        """
        call_list = self._normalize_calls(calls)
        ctx = await self._context(wallet_id, credential, user_id)
        await self._require_deployed(ctx.known_address)
        handle = await self.orchestrator.execute(ctx, call_list)

        result: Dict[str, Any] = {
            "wallet_id": wallet_id,
            "address": handle.address,
            "transaction_hash": handle.transaction_hash,
        }
        if wait:
            confirmation = await self.orchestrator.confirm(handle)
            if not confirmation.is_success():
                logger.warning(f"Transaction {handle.transaction_hash} not confirmed: {confirmation.status.value}")
            result["status"] = confirmation.status.value
        return result

    @staticmethod
    def _normalize_calls(calls: Any) -> List[Call]:
        if isinstance(calls, (Call, dict)):
            calls = [calls]
        if not calls:
            raise InvalidArgument("call or calls is required")
        normalized = []
        for call in calls:
            if isinstance(call, Call):
                normalized.append(call)
                continue
            if not isinstance(call, dict) or not call.get("contract_address") or not call.get("entrypoint"):
                raise InvalidArgument("call must include contract_address and entrypoint")
            normalized.append(Call(**call))
        return normalized
