"""
Starknet Chain Access

Thin async wrapper over starknet-py's ``FullNodeClient`` plus the token and
calldata helpers the wallet core needs. Reads that are allowed to fail softly
(deployment probes, balances of counterfactual accounts) fail softly here;
submissions map node rejections to ChainRejected.

Main Components:
    - ChainProvider: RPC reads, submissions, deployment probes, balances and
      receipt polling
    - encode_execute_calldata: Cairo 1 ``__execute__`` multicall encoding
    - split_u256 / join_u256: Cairo u256 <-> int
    - amount_to_wei / format_token_amount: human amounts <-> smallest units
    - Call builders: transfer_call, balance_of_call, transfer_earns_call
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence, Union

from starknet_py.net.client_errors import ClientError
from starknet_py.net.client_models import Call as RpcCall
from starknet_py.net.full_node_client import FullNodeClient
from starknet_py.net.models import StarknetChainId

from ...config import Settings
from ...engine.exceptions import ChainRejected, InvalidArgument, NetworkError
from ...schemas.bases import AccountInfo, Call, TransactionConfirmation, TransactionStatus
from ...utils import short_hex, to_felt, to_padded_hex
from ...clients.caches import ProviderCache

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_DECIMALS = 18
DEFAULT_CONFIRMATION_TIMEOUT = 300.0
DEFAULT_RETRY_INTERVAL = 5.0

_U128_MASK = (1 << 128) - 1

CHAIN_IDS = {
    "SN_SEPOLIA": StarknetChainId.SEPOLIA,
    "SN_MAIN": StarknetChainId.MAINNET,
}


def chain_id_for(chain: str) -> int:
    """Numeric chain id for a chain name (``SN_SEPOLIA`` / ``SN_MAIN``)."""
    try:
        return int(CHAIN_IDS[chain])
    except KeyError as e:
        raise InvalidArgument(f"Unsupported chain: {chain}") from e


# ============================================================================
# Encoding helpers
# ============================================================================

def split_u256(value: Union[int, str]) -> List[int]:
    """Cairo u256 calldata: ``[low, high]``."""
    amount = int(value) if not isinstance(value, str) else int(value, 0)
    if amount < 0 or amount >> 256:
        raise InvalidArgument(f"u256 out of range: {value!r}")
    return [amount & _U128_MASK, amount >> 128]


def join_u256(low: int, high: int) -> int:
    return low + (high << 128)


def encode_execute_calldata(calls: Sequence[Call]) -> List[int]:
    """
    Calldata for a Cairo 1 account ``__execute__`` multicall.

    Layout: ``[n_calls, (to, selector, len(calldata), *calldata) * n_calls]``.
    The order of ``calls`` is preserved.
    """
    calldata: List[int] = [len(calls)]
    for call in calls:
        calldata.append(to_felt(call.contract_address))
        calldata.append(call.selector)
        calldata.append(len(call.calldata))
        calldata.extend(call.calldata)
    return calldata


def amount_to_wei(amount: Union[int, float, str, Decimal], decimals: int = DEFAULT_TOKEN_DECIMALS) -> int:
    """
    Convert a human-readable token amount into smallest units, rounding down.

    Raises:
        InvalidArgument: Non-numeric or negative amount.
    """
    try:
        dec_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidArgument(f"Invalid amount: {amount!r}") from e
    if not dec_amount.is_finite() or dec_amount < 0:
        raise InvalidArgument(f"Invalid amount: {amount!r}")
    scaled = dec_amount * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def format_token_amount(wei: Union[int, str], decimals: int = DEFAULT_TOKEN_DECIMALS) -> str:
    """Smallest units -> human amount with two decimals (``"12.50"``)."""
    value = Decimal(int(wei)) / (Decimal(10) ** decimals)
    return f"{value:.2f}"


def transfer_call(token_address: str, recipient: str, amount: int) -> Call:
    """ERC20 ``transfer(recipient, amount: u256)``."""
    return Call(
        contract_address=token_address,
        entrypoint="transfer",
        calldata=[to_felt(recipient), *split_u256(amount)],
    )


def balance_of_call(token_address: str, owner: str) -> Call:
    return Call(contract_address=token_address, entrypoint="balanceOf", calldata=[to_felt(owner)])


def transfer_earns_call(manager_address: str, recipient: str, amount: int) -> Call:
    """Manager contract ``transfer_earns(recipient, amount: u256)``."""
    return Call(
        contract_address=manager_address,
        entrypoint="transfer_earns",
        calldata=[to_felt(recipient), *split_u256(amount)],
    )


# ============================================================================
# Provider
# ============================================================================

class ChainProvider:
    """
    Async Starknet RPC access used by accounts, the orchestrator and the
    wallet service.

    Args:
        client: starknet-py FullNodeClient (or a compatible test double)
        chain: Chain name, ``SN_SEPOLIA`` or ``SN_MAIN``
        block_identifier: Block that contract calls are evaluated against

    Error Handling:
        - ClientError raised by the node on submission -> ChainRejected
        - Connection failures and timeouts -> NetworkError
        - ``is_address_deployed`` and ``get_token_balance`` never raise
    """

    def __init__(self, client: Any, chain: str = "SN_SEPOLIA", block_identifier: Union[int, str] = "latest"):
        self.client = client
        self.chain = chain
        self.block_identifier = block_identifier
        self.chain_id = chain_id_for(chain)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: Optional[ProviderCache] = None,
        block_identifier: Union[int, str] = "latest",
    ) -> "ChainProvider":
        """Provider for ``settings.rpc_url``, shared through ``cache`` when given."""
        def factory() -> "ChainProvider":
            return cls(
                FullNodeClient(node_url=settings.rpc_url),
                chain=settings.chain,
                block_identifier=block_identifier,
            )

        if cache is None:
            return factory()
        return cache.get_or_create(settings.rpc_url, factory, str(block_identifier))

    async def _rpc(self, operation: str, coro: Any) -> Any:
        try:
            return await coro
        except ClientError as e:
            raise ChainRejected(e.message, code=e.code) from e
        except (OSError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Starknet RPC {operation} failed: {e}") from e

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_class_hash_at(self, address: str) -> int:
        return await self._rpc("get_class_hash_at", self.client.get_class_hash_at(to_felt(address)))

    async def get_nonce(self, address: str) -> int:
        return await self._rpc("get_nonce", self.client.get_contract_nonce(to_felt(address)))

    async def call(self, call: Call) -> List[int]:
        rpc_call = RpcCall(to_addr=to_felt(call.contract_address), selector=call.selector, calldata=call.calldata)
        return await self._rpc("call", self.client.call_contract(rpc_call, block_number=self.block_identifier))

    async def get_chain_id(self) -> int:
        chain_id = await self._rpc("get_chain_id", self.client.get_chain_id())
        return to_felt(chain_id)

    async def get_transaction_receipt(self, transaction_hash: str) -> Any:
        return await self._rpc(
            "get_transaction_receipt",
            self.client.get_transaction_receipt(to_felt(transaction_hash)),
        )

    # =========================================================================
    # Submissions
    # =========================================================================

    async def estimate_fee(self, transaction: Any) -> Any:
        """Fee estimate for an unsigned transaction (validation skipped)."""
        estimate = await self._rpc("estimate_fee", self.client.estimate_fee(transaction, skip_validate=True))
        if isinstance(estimate, list):
            estimate = estimate[0]
        return estimate

    async def send_transaction(self, transaction: Any) -> str:
        response = await self._rpc("send_transaction", self.client.send_transaction(transaction))
        return to_padded_hex(response.transaction_hash)

    async def deploy_account(self, transaction: Any) -> str:
        response = await self._rpc("deploy_account", self.client.deploy_account(transaction))
        return to_padded_hex(response.transaction_hash)

    # =========================================================================
    # Account and token views
    # =========================================================================

    async def is_address_deployed(self, address: str) -> bool:
        """
        Whether an account contract exists at ``address``.

        Deployed if a non-zero class hash is reported, or failing that if a
        nonce can be read. Any error counts as not deployed.
        """
        padded = to_padded_hex(address)
        has_class_hash = False
        try:
            has_class_hash = await self.get_class_hash_at(padded) != 0
        except (ChainRejected, NetworkError) as e:
            logger.debug(f"No class hash at {short_hex(padded)}: {e}")

        if has_class_hash:
            return True
        try:
            await self.get_nonce(padded)
            return True
        except (ChainRejected, NetworkError) as e:
            logger.debug(f"No nonce at {short_hex(padded)}: {e}")
        return False

    async def get_account_info(self, address: str) -> AccountInfo:
        if not await self.is_address_deployed(address):
            return AccountInfo(is_deployed=False)
        nonce = await self.get_nonce(address)
        class_hash = await self.get_class_hash_at(address)
        return AccountInfo(is_deployed=True, nonce=nonce, class_hash=to_padded_hex(class_hash))

    async def get_token_balance(self, token_address: str, owner: str) -> str:
        """
        ERC20 balance in smallest units, as a decimal string.

        Works for counterfactual (undeployed) owners; any failure yields ``"0"``.
        """
        try:
            result = await self.call(balance_of_call(token_address, owner))
            low, high = (list(result) + [0, 0])[:2]
            return str(join_u256(low, high))
        except Exception as e:
            logger.warning(f"Failed to get balance of {short_hex(owner)}: {e}")
            return "0"

    async def get_manager_balance(self, manager_address: str) -> str:
        """
        Token balance held by the manager contract (``get_earns_balance``).

        Errors propagate as ChainRejected or NetworkError.
        """
        result = await self.call(Call(contract_address=manager_address, entrypoint="get_earns_balance"))
        low, high = (list(result) + [0, 0])[:2]
        return str(join_u256(low, high))

    # =========================================================================
    # Confirmation
    # =========================================================================

    async def wait_for_transaction(
        self,
        transaction_hash: str,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
    ) -> TransactionConfirmation:
        """
        Poll for a transaction receipt until it is final or ``timeout`` elapses.

        Only reads are issued. A missing receipt (not yet known to the node) is
        retried; on expiry a TIMEOUT confirmation is returned instead of raising.

        Returns:
            TransactionConfirmation: SUCCESS, REVERTED, REJECTED or TIMEOUT
        """
        deadline = time.monotonic() + timeout
        attempts = 0
        while True:
            attempts += 1
            receipt = None
            try:
                receipt = await self.get_transaction_receipt(transaction_hash)
            except (ChainRejected, NetworkError) as e:
                logger.debug(f"Receipt for {short_hex(transaction_hash)} not available yet: {e}")

            if receipt is not None:
                confirmation = self._confirmation_from_receipt(transaction_hash, receipt, attempts)
                if confirmation is not None:
                    return confirmation

            if time.monotonic() + retry_interval > deadline:
                logger.warning(f"Timed out waiting for {short_hex(transaction_hash)} after {attempts} attempts")
                return TransactionConfirmation(
                    status=TransactionStatus.TIMEOUT,
                    transaction_hash=transaction_hash,
                    attempts=attempts,
                )
            await self._sleep_async(retry_interval)

    @staticmethod
    def _confirmation_from_receipt(
        transaction_hash: str,
        receipt: Any,
        attempts: int,
    ) -> Optional[TransactionConfirmation]:
        execution = _status_name(getattr(receipt, "execution_status", None))
        finality = _status_name(getattr(receipt, "finality_status", None))
        if finality in ("RECEIVED", "NOT_RECEIVED", None) and execution is None:
            return None

        if finality == "REJECTED":
            status = TransactionStatus.REJECTED
        elif execution == "REVERTED":
            status = TransactionStatus.REVERTED
        elif execution == "SUCCEEDED":
            status = TransactionStatus.SUCCESS
        else:
            return None
        return TransactionConfirmation(
            status=status,
            transaction_hash=transaction_hash,
            finality_status=finality,
            execution_status=execution,
            revert_reason=getattr(receipt, "revert_reason", None),
            attempts=attempts,
            confirmed_at=datetime.now(timezone.utc),
        )

    @staticmethod
    async def _sleep_async(seconds: float):
        await asyncio.sleep(seconds)


def _status_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "name", None) or str(value).upper()
