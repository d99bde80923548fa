"""
Orchestrator Test Suite

End-to-end deploy / execute runs through the paymaster and native paths with
in-memory fakes, the state trace of each run, and the legacy sponsor path
used for operator transfers.

Usage:
    pytest tests/test_orchestrator.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest
from starknet_py.hash.selector import get_selector_from_name
from starknet_py.hash.utils import verify_message_signature
from starknet_py.net.signer.key_pair import KeyPair

from test_mocks import (
    MOCK_ACCOUNT_ADDRESS,
    MOCK_CLASS_HASH,
    MOCK_CREDENTIAL,
    MOCK_MANAGER_ADDRESS,
    MOCK_OPERATOR_ADDRESS,
    MOCK_OPERATOR_PRIVATE_KEY,
    MOCK_PUBLIC_KEY,
    MOCK_RECIPIENT_ADDRESS,
    MOCK_TOKEN_ADDRESS,
    MOCK_TX_HASH,
    MOCK_USER_ID,
    MOCK_WALLET_ID,
    FakeChain,
    FakePaymasterRpc,
    FakePrivy,
    create_mock_settings,
)

from starkpay.adapters.starknet.account import AccountBuilder, StarknetAccount
from starkpay.adapters.starknet.chain import transfer_call
from starkpay.adapters.starknet.paymaster import PaymasterNegotiator
from starkpay.engine.exceptions import (
    AddressMismatch,
    ConfigurationError,
    InvalidArgument,
    ProviderError,
)
from starkpay.engine.orchestrator import LegacySponsorExecutor, TransactionOrchestrator
from starkpay.engine.states import OperationState, OperationTrace
from starkpay.schemas.bases import (
    AccountIdentity,
    DeploymentContext,
    TransactionConfirmation,
    TransactionStatus,
)

SUBMITTED_PATH = [
    OperationState.INIT,
    OperationState.ADDRESS_RESOLVED,
    OperationState.FEE_NEGOTIATED,
    OperationState.SIGNED,
    OperationState.SUBMITTED,
]


class Harness:
    """Orchestrator wired to FakeChain, FakePaymasterRpc and FakePrivy."""

    def __init__(self, **settings_overrides):
        self.settings = create_mock_settings(**settings_overrides)
        self.chain = FakeChain()
        self.rpc = FakePaymasterRpc(chain=self.chain, supported_tokens=[MOCK_TOKEN_ADDRESS])
        self.privy = FakePrivy()
        self.negotiator = PaymasterNegotiator(self.rpc, self.settings)
        self.builder = AccountBuilder(self.chain, self.privy, paymaster=self.negotiator)
        self.orchestrator = TransactionOrchestrator(self.builder, self.negotiator, self.chain)

    def context(self, use_paymaster=True, known_address=MOCK_ACCOUNT_ADDRESS):
        return DeploymentContext(
            identity=AccountIdentity(
                wallet_id=MOCK_WALLET_ID,
                public_key=MOCK_PUBLIC_KEY,
                class_hash=MOCK_CLASS_HASH,
            ),
            credential=MOCK_CREDENTIAL,
            user_id=MOCK_USER_ID,
            use_paymaster=use_paymaster,
            known_address=known_address,
        )


@pytest.fixture
def sponsored():
    return Harness()


@pytest.fixture
def self_paid():
    return Harness(paymaster_mode="default")


@pytest.fixture
def typed_data_hash():
    with patch.object(StarknetAccount, "_typed_data_hash", return_value=0x1234) as mocked:
        yield mocked


def transfer(amount=10, recipient=MOCK_RECIPIENT_ADDRESS):
    return transfer_call(MOCK_TOKEN_ADDRESS, recipient, amount)


class TestDeploy:

    @pytest.mark.asyncio
    async def test_sponsored_deploy(self, sponsored):
        ctx = sponsored.context()
        trace = OperationTrace("deploy")
        with patch.object(StarknetAccount, "estimate_paymaster_fee", new=AsyncMock()) as estimate:
            handle = await sponsored.orchestrator.deploy(ctx, trace=trace)

        assert handle.transaction_hash == MOCK_TX_HASH
        assert handle.address == MOCK_ACCOUNT_ADDRESS
        assert ctx.address == MOCK_ACCOUNT_ADDRESS
        assert trace.states == SUBMITTED_PATH
        estimate.assert_not_awaited()
        assert sponsored.privy.sign_requests == []

        execution = sponsored.rpc.executions[0]
        assert execution["intent"].transaction_type == "deploy"
        assert execution["intent"].calls == []
        assert execution["intent"].deployment.contract_address == MOCK_ACCOUNT_ADDRESS
        assert await sponsored.chain.is_address_deployed(MOCK_ACCOUNT_ADDRESS)

    @pytest.mark.asyncio
    async def test_self_paid_deploy_uses_margin(self, self_paid):
        with patch.object(StarknetAccount, "estimate_paymaster_fee", new=AsyncMock(return_value=1000)) as estimate:
            await self_paid.orchestrator.deploy(self_paid.context())

        estimate.assert_awaited_once()
        fee_mode = estimate.await_args.args[1]
        assert fee_mode.gas_token == MOCK_TOKEN_ADDRESS
        assert estimate.await_args.kwargs["deployment"].contract_address == MOCK_ACCOUNT_ADDRESS

    @pytest.mark.asyncio
    async def test_self_paid_quote_above_margin_is_rejected(self, self_paid):
        # margin over 600 is 900, below the paymaster's 1000 quote
        trace = OperationTrace("deploy")
        with patch.object(StarknetAccount, "estimate_paymaster_fee", new=AsyncMock(return_value=600)):
            with pytest.raises(ProviderError):
                await self_paid.orchestrator.deploy(self_paid.context(), trace=trace)
        assert trace.state == OperationState.FAILED
        assert self_paid.rpc.executions == []

    @pytest.mark.asyncio
    async def test_address_mismatch_fails_before_submission(self, sponsored):
        trace = OperationTrace("deploy")
        with pytest.raises(AddressMismatch):
            await sponsored.orchestrator.deploy(
                sponsored.context(known_address=MOCK_RECIPIENT_ADDRESS), trace=trace
            )
        assert trace.states == [OperationState.INIT, OperationState.FAILED]
        assert sponsored.rpc.builds == []

    @pytest.mark.asyncio
    async def test_native_deploy(self, sponsored):
        trace = OperationTrace("deploy")
        handle = await sponsored.orchestrator.deploy(sponsored.context(use_paymaster=False), trace=trace)

        assert handle.address == MOCK_ACCOUNT_ADDRESS
        assert trace.states == SUBMITTED_PATH
        assert len(sponsored.chain.deploy_requests) == 1
        assert len(sponsored.privy.sign_requests) == 1
        assert sponsored.rpc.builds == []

    @pytest.mark.asyncio
    async def test_paymaster_requested_but_missing(self):
        harness = Harness()
        orchestrator = TransactionOrchestrator(AccountBuilder(harness.chain, harness.privy), None, harness.chain)
        trace = OperationTrace("deploy")
        with pytest.raises(ConfigurationError):
            await orchestrator.deploy(harness.context(), trace=trace)
        assert trace.state == OperationState.FAILED


class TestExecute:

    @pytest.mark.asyncio
    async def test_sponsored_execute_signs_typed_data(self, sponsored, typed_data_hash):
        sponsored.chain.mark_deployed(MOCK_ACCOUNT_ADDRESS)
        trace = OperationTrace("execute")
        with patch.object(StarknetAccount, "estimate_paymaster_fee", new=AsyncMock()) as estimate:
            handle = await sponsored.orchestrator.execute(sponsored.context(), transfer(), trace=trace)

        assert handle.transaction_hash == MOCK_TX_HASH
        assert trace.states == SUBMITTED_PATH
        estimate.assert_not_awaited()
        assert sponsored.privy.sign_requests[0]["hash"] == "0x" + "0" * 60 + "1234"
        signature = sponsored.rpc.executions[0]["signature"]
        assert verify_message_signature(0x1234, signature.as_ints(), int(MOCK_PUBLIC_KEY, 16))

    @pytest.mark.asyncio
    async def test_call_order_preserved(self, sponsored, typed_data_hash):
        calls = [transfer(1), transfer(2, MOCK_OPERATOR_ADDRESS), transfer(3)]
        await sponsored.orchestrator.execute(sponsored.context(), calls)
        _, intent = sponsored.rpc.builds[0]
        assert intent.calls == calls
        assert sponsored.rpc.executions[0]["intent"].calls == calls

    @pytest.mark.asyncio
    async def test_self_paid_execute_estimates_once(self, self_paid, typed_data_hash):
        with patch.object(StarknetAccount, "estimate_paymaster_fee", new=AsyncMock(return_value=1000)) as estimate:
            await self_paid.orchestrator.execute(self_paid.context(), [transfer()])
        estimate.assert_awaited_once()
        assert estimate.await_args.args[0] == [transfer()]

    @pytest.mark.asyncio
    async def test_native_execute(self, sponsored):
        sponsored.chain.mark_deployed(MOCK_ACCOUNT_ADDRESS, nonce=2)
        trace = OperationTrace("execute")
        await sponsored.orchestrator.execute(sponsored.context(use_paymaster=False), [transfer()], trace=trace)

        assert trace.states == SUBMITTED_PATH
        sent = sponsored.chain.sent[0]
        assert sent.nonce == 2
        assert verify_message_signature(
            sent.calculate_hash(sponsored.chain.chain_id), sent.signature, int(MOCK_PUBLIC_KEY, 16)
        )

    @pytest.mark.asyncio
    async def test_empty_call_list(self, sponsored):
        trace = OperationTrace("execute")
        with pytest.raises(InvalidArgument):
            await sponsored.orchestrator.execute(sponsored.context(), [], trace=trace)
        assert trace.state == OperationState.FAILED

    @pytest.mark.asyncio
    async def test_submission_error_propagates_unchanged(self, sponsored, typed_data_hash):
        error = ProviderError("execution reverted", provider_status=400)
        sponsored.rpc.execute_transaction = AsyncMock(side_effect=error)
        trace = OperationTrace("execute")
        with pytest.raises(ProviderError) as exc_info:
            await sponsored.orchestrator.execute(sponsored.context(), [transfer()], trace=trace)
        assert exc_info.value is error
        assert trace.state == OperationState.FAILED
        assert trace.error is error
        assert OperationState.SIGNED in trace.states


class TestConfirm:

    @pytest.mark.asyncio
    async def test_confirmed(self, sponsored, typed_data_hash):
        trace = OperationTrace("execute")
        handle = await sponsored.orchestrator.execute(sponsored.context(), [transfer()], trace=trace)
        confirmation = await sponsored.orchestrator.confirm(handle, trace)
        assert confirmation.is_success()
        assert trace.state == OperationState.CONFIRMED

    @pytest.mark.asyncio
    async def test_reverted_is_returned_not_raised(self, sponsored, typed_data_hash):
        sponsored.chain.wait_for_transaction = AsyncMock(
            return_value=TransactionConfirmation(status=TransactionStatus.REVERTED, transaction_hash=MOCK_TX_HASH)
        )
        trace = OperationTrace("execute")
        handle = await sponsored.orchestrator.execute(sponsored.context(), [transfer()], trace=trace)
        confirmation = await sponsored.orchestrator.confirm(handle, trace, timeout=1)

        assert confirmation.status == TransactionStatus.REVERTED
        assert trace.state == OperationState.FAILED
        sponsored.chain.wait_for_transaction.assert_awaited_once_with(MOCK_TX_HASH, timeout=1)


class TestLegacySponsorExecutor:

    @pytest.fixture
    def harness(self):
        return Harness()

    @pytest.fixture
    def sponsor_client(self):
        client = AsyncMock()
        client.sponsor.return_value = {"paymaster_data": ["0x5", "0x6"]}
        return client

    @pytest.fixture
    def executor(self, harness, sponsor_client):
        operator = harness.builder.build_local(MOCK_OPERATOR_ADDRESS, hex(MOCK_OPERATOR_PRIVATE_KEY))
        return LegacySponsorExecutor(sponsor_client, operator, manager_address=MOCK_MANAGER_ADDRESS)

    @pytest.mark.asyncio
    async def test_send_earns_to_user(self, harness, executor, sponsor_client):
        handle = await executor.send_earns_to_user(MOCK_RECIPIENT_ADDRESS, 25)

        assert handle.address == MOCK_OPERATOR_ADDRESS
        sender, calls = sponsor_client.sponsor.await_args.args
        assert sender == MOCK_OPERATOR_ADDRESS
        assert calls[0].entrypoint == "transfer_earns"

        sent = harness.chain.sent[0]
        assert sent.paymaster_data == []
        assert sent.calldata == [
            1,
            int(MOCK_MANAGER_ADDRESS, 16),
            get_selector_from_name("transfer_earns"),
            3,
            int(MOCK_RECIPIENT_ADDRESS, 16),
            25,
            0,
        ]
        operator_public_key = KeyPair.from_private_key(MOCK_OPERATOR_PRIVATE_KEY).public_key
        assert verify_message_signature(
            sent.calculate_hash(harness.chain.chain_id), sent.signature, operator_public_key
        )

    @pytest.mark.asyncio
    async def test_batch_send_earns(self, harness, executor):
        await executor.batch_send_earns([(MOCK_RECIPIENT_ADDRESS, 1), (MOCK_ACCOUNT_ADDRESS, 2)])
        calldata = harness.chain.sent[0].calldata
        assert calldata[0] == 2
        assert calldata[4] == int(MOCK_RECIPIENT_ADDRESS, 16)
        assert calldata[10] == int(MOCK_ACCOUNT_ADDRESS, 16)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount(self, executor, sponsor_client, amount):
        with pytest.raises(InvalidArgument):
            await executor.send_earns_to_user(MOCK_RECIPIENT_ADDRESS, amount)
        sponsor_client.sponsor.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_batch(self, executor):
        with pytest.raises(InvalidArgument):
            await executor.batch_send_earns([])

    @pytest.mark.asyncio
    async def test_manager_required(self, harness, sponsor_client):
        operator = harness.builder.build_local(MOCK_OPERATOR_ADDRESS, hex(MOCK_OPERATOR_PRIVATE_KEY))
        executor = LegacySponsorExecutor(sponsor_client, operator)
        with pytest.raises(ConfigurationError):
            await executor.send_earns_to_user(MOCK_RECIPIENT_ADDRESS, 1)

    @pytest.mark.asyncio
    async def test_sponsor_rejection_sends_nothing(self, harness, executor, sponsor_client):
        sponsor_client.sponsor.side_effect = ProviderError("Paymaster failed: limit")
        with pytest.raises(ProviderError):
            await executor.send_earns_to_user(MOCK_RECIPIENT_ADDRESS, 1)
        assert harness.chain.sent == []
