"""
Deployment and Execution Orchestrator

Runs account deployment and call execution end to end for a custodial
wallet, choosing between the paymaster path and the native path per
``DeploymentContext.use_paymaster``. Each run is tracked by an
``OperationTrace`` (INIT -> ADDRESS_RESOLVED -> FEE_NEGOTIATED -> SIGNED ->
SUBMITTED -> CONFIRMED | FAILED).

Main Components:
    - TransactionOrchestrator: deploy / execute / confirm for user wallets
    - LegacySponsorExecutor: operator-key sponsor-then-execute token transfers

Preconditions such as "not yet deployed" or "sufficient balance" are the
caller's responsibility; nothing here retries, and every error moves the trace
to FAILED before propagating unchanged.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple, Union

from ..adapters.starknet.account import AccountBuilder, StarknetAccount
from ..adapters.starknet.chain import transfer_earns_call
from ..schemas.bases import (
    Call,
    DeploymentContext,
    StarknetSignature,
    TransactionConfirmation,
    TransactionHandle,
)
from ..utils import short_hex
from .exceptions import ConfigurationError, InvalidArgument
from .states import OperationState, OperationTrace

logger = logging.getLogger(__name__)


class _TracingSigner:
    """Signer wrapper that records the first signature on the trace."""

    def __init__(self, signer: Any, trace: OperationTrace):
        self._signer = signer
        self._trace = trace

    @property
    def public_key(self) -> str:
        return self._signer.public_key

    async def sign_raw(self, message_hash: Union[int, str]) -> StarknetSignature:
        signature = await self._signer.sign_raw(message_hash)
        if self._trace.state == OperationState.FEE_NEGOTIATED:
            self._trace.advance(OperationState.SIGNED)
        return signature

    def __repr__(self) -> str:
        return repr(self._signer)


def normalize_calls(calls: Union[Call, Sequence[Call]]) -> List[Call]:
    """A single call or a sequence of calls as a list, order preserved."""
    if isinstance(calls, Call):
        return [calls]
    call_list = list(calls)
    if not call_list:
        raise InvalidArgument("At least one call is required")
    return call_list


class TransactionOrchestrator:
    """
    Deploys and drives custodial accounts.

    Args:
        builder: AccountBuilder producing remote-signer accounts
        negotiator: PaymasterNegotiator used on the paymaster path
        provider: ChainProvider used for confirmation polling
    """

    def __init__(self, builder: AccountBuilder, negotiator: Optional[Any], provider: Any):
        self.builder = builder
        self.negotiator = negotiator
        self.provider = provider

    def _resolve_account(self, ctx: DeploymentContext, trace: OperationTrace) -> StarknetAccount:
        if ctx.use_paymaster and self.negotiator is None:
            raise ConfigurationError("Paymaster requested but not configured")
        account = self.builder.build(
            ctx.identity,
            ctx.credential,
            use_paymaster=ctx.use_paymaster,
            known_address=ctx.known_address,
            user_id=ctx.user_id,
        )
        account = account.with_signer(_TracingSigner(account.signer, trace))
        ctx.address = account.address
        trace.advance(OperationState.ADDRESS_RESOLVED, account.address)
        return account

    @staticmethod
    def _submitted(trace: OperationTrace, handle: TransactionHandle) -> None:
        if trace.state == OperationState.FEE_NEGOTIATED:
            trace.advance(OperationState.SIGNED, "no account signature required")
        trace.advance(OperationState.SUBMITTED, handle.transaction_hash)

    async def deploy(
        self,
        ctx: DeploymentContext,
        *,
        trace: Optional[OperationTrace] = None,
    ) -> TransactionHandle:
        """
        Deploy the counterfactual account described by ``ctx``.

        Paymaster path: negotiate the fee mode, estimate when self-paid, then
        ``paymaster_executeTransaction`` with the deployment data and no calls.
        Native path: DEPLOY_ACCOUNT v3 signed through the remote signer (the
        address must already hold enough fee token).

        Raises:
            AddressMismatch: ``ctx.known_address`` differs from the derived one.
            ChainRejected / ProviderError: Submission refused; unmodified.
        """
        trace = trace or OperationTrace("deploy")
        try:
            account = self._resolve_account(ctx, trace)
            payload = account.deployment_payload()
            if ctx.use_paymaster:
                negotiation = await self.negotiator.negotiate()
                max_fee = await self.negotiator.estimate_fee(
                    account, [], negotiation.fee_mode, deployment=payload
                )
                trace.advance(OperationState.FEE_NEGOTIATED, negotiation.fee_mode.mode)
                handle = await account.execute_paymaster(
                    [], negotiation.fee_mode, deployment=payload, max_fee=max_fee
                )
            else:
                trace.advance(OperationState.FEE_NEGOTIATED, "native")
                handle = await account.deploy(payload)
            self._submitted(trace, handle)
            return handle
        except Exception as e:
            trace.fail(e)
            raise

    async def execute(
        self,
        ctx: DeploymentContext,
        calls: Union[Call, Sequence[Call]],
        *,
        trace: Optional[OperationTrace] = None,
    ) -> TransactionHandle:
        """
        Execute ``calls`` (in order) from the account described by ``ctx``.

        Raises:
            InvalidArgument: Empty call list.
            ChainRejected / ProviderError: Submission refused; unmodified.
        """
        trace = trace or OperationTrace("execute")
        try:
            call_list = normalize_calls(calls)
            account = self._resolve_account(ctx, trace)
            if ctx.use_paymaster:
                negotiation = await self.negotiator.negotiate()
                max_fee = await self.negotiator.estimate_fee(account, call_list, negotiation.fee_mode)
                trace.advance(OperationState.FEE_NEGOTIATED, negotiation.fee_mode.mode)
                handle = await account.execute_paymaster(call_list, negotiation.fee_mode, max_fee=max_fee)
            else:
                trace.advance(OperationState.FEE_NEGOTIATED, "native")
                handle = await account.execute(call_list)
            self._submitted(trace, handle)
            return handle
        except Exception as e:
            trace.fail(e)
            raise

    async def confirm(
        self,
        handle: TransactionHandle,
        trace: Optional[OperationTrace] = None,
        **wait_kwargs: Any,
    ) -> TransactionConfirmation:
        """
        Wait for a submitted transaction and close the trace.

        A non-successful confirmation (reverted, rejected, timed out) moves the
        trace to FAILED but is returned, not raised.
        """
        confirmation = await self.provider.wait_for_transaction(handle.transaction_hash, **wait_kwargs)
        if trace is not None and trace.state == OperationState.SUBMITTED:
            if confirmation.is_success():
                trace.advance(OperationState.CONFIRMED, handle.transaction_hash)
            else:
                trace.advance(OperationState.FAILED, confirmation.status.value)
        return confirmation


class LegacySponsorExecutor:
    """
    Sponsor-then-execute for the operator account.

    The operator asks the legacy ``/sponsor`` endpoint to approve the calls,
    then submits them itself as a native INVOKE v3. A rejected sponsorship
    aborts before anything is signed. The approval body is only logged:
    starknet-py builds v3 transactions with an empty ``paymaster_data``.

    Args:
        sponsor_client: LegacySponsorClient
        operator: StarknetAccount signing with the operator key
        manager_address: Token manager contract exposing ``transfer_earns``
    """

    def __init__(self, sponsor_client: Any, operator: StarknetAccount, manager_address: Optional[str] = None):
        self.sponsor_client = sponsor_client
        self.operator = operator
        self.manager_address = manager_address

    async def sponsored_execute(self, calls: Union[Call, Sequence[Call]]) -> TransactionHandle:
        trace = OperationTrace("sponsored_execute")
        try:
            call_list = normalize_calls(calls)
            trace.advance(OperationState.ADDRESS_RESOLVED, self.operator.address)
            sponsorship = await self.sponsor_client.sponsor(self.operator.address, call_list)
            trace.advance(OperationState.FEE_NEGOTIATED, "sponsored")
            operator = self.operator.with_signer(_TracingSigner(self.operator.signer, trace))
            logger.debug(f"Sponsorship approved for {short_hex(self.operator.address)}: {sorted(sponsorship)}")
            handle = await operator.execute(call_list)
            TransactionOrchestrator._submitted(trace, handle)
            return handle
        except Exception as e:
            trace.fail(e)
            raise

    def _manager(self) -> str:
        if not self.manager_address:
            raise ConfigurationError("EARNSTARK_MANAGER_ADDRESS is not configured")
        return self.manager_address

    async def send_earns_to_user(self, to_address: str, amount: int) -> TransactionHandle:
        """Transfer ``amount`` (smallest units) from the manager contract to a user."""
        if int(amount) <= 0:
            raise InvalidArgument("Amount must be greater than 0")
        logger.info(f"Sending {amount} to {short_hex(to_address)} via {short_hex(self.operator.address)}")
        return await self.sponsored_execute(transfer_earns_call(self._manager(), to_address, int(amount)))

    async def batch_send_earns(self, transfers: Sequence[Tuple[str, int]]) -> TransactionHandle:
        """One multicall of ``transfer_earns`` per ``(address, amount)``, in order."""
        if not transfers:
            raise InvalidArgument("At least one transfer is required")
        manager = self._manager()
        calls = [transfer_earns_call(manager, address, int(amount)) for address, amount in transfers]
        logger.info(f"Batch sending to {len(calls)} recipients")
        return await self.sponsored_execute(calls)
