"""
Operation State Machine Test Suite

Usage:
    pytest tests/test_states.py -v
"""

import pytest

from starkpay.engine.exceptions import InvalidTransition, NetworkError
from starkpay.engine.states import OperationState, OperationTrace

HAPPY_PATH = [
    OperationState.ADDRESS_RESOLVED,
    OperationState.FEE_NEGOTIATED,
    OperationState.SIGNED,
    OperationState.SUBMITTED,
    OperationState.CONFIRMED,
]


class TestOperationTrace:

    def test_starts_in_init(self):
        trace = OperationTrace("deploy")
        assert trace.state == OperationState.INIT
        assert trace.states == [OperationState.INIT]
        assert not trace.is_terminal

    def test_happy_path(self):
        trace = OperationTrace("execute")
        for state in HAPPY_PATH:
            trace.advance(state)
        assert trace.states == [OperationState.INIT, *HAPPY_PATH]
        assert trace.is_terminal

    def test_skipping_a_state_is_rejected(self):
        trace = OperationTrace("execute")
        trace.advance(OperationState.ADDRESS_RESOLVED)
        with pytest.raises(InvalidTransition) as exc_info:
            trace.advance(OperationState.SIGNED)
        assert exc_info.value.current_state == OperationState.ADDRESS_RESOLVED
        assert exc_info.value.target_state == OperationState.SIGNED
        assert trace.state == OperationState.ADDRESS_RESOLVED

    def test_going_back_is_rejected(self):
        trace = OperationTrace("execute")
        trace.advance(OperationState.ADDRESS_RESOLVED)
        trace.advance(OperationState.FEE_NEGOTIATED)
        with pytest.raises(InvalidTransition):
            trace.advance(OperationState.ADDRESS_RESOLVED)

    @pytest.mark.parametrize("steps", range(len(HAPPY_PATH)))
    def test_failed_reachable_from_any_non_terminal_state(self, steps):
        trace = OperationTrace("execute")
        for state in HAPPY_PATH[:steps]:
            trace.advance(state)
        error = NetworkError("down")
        trace.fail(error)
        assert trace.state == OperationState.FAILED
        assert trace.error is error

    def test_fail_is_a_no_op_once_terminal(self):
        trace = OperationTrace("execute")
        for state in HAPPY_PATH:
            trace.advance(state)
        trace.fail(NetworkError("late"))
        assert trace.state == OperationState.CONFIRMED
        assert trace.error is None

    def test_nothing_follows_failed(self):
        trace = OperationTrace("execute")
        trace.fail(NetworkError("down"))
        with pytest.raises(InvalidTransition):
            trace.advance(OperationState.ADDRESS_RESOLVED)
        with pytest.raises(InvalidTransition):
            trace.advance(OperationState.FAILED)
