"""
Operation state machine.

Every deploy / execute run moves through a fixed sequence of states:

    INIT -> ADDRESS_RESOLVED -> FEE_NEGOTIATED -> SIGNED -> SUBMITTED -> CONFIRMED
                                                                      \\-> FAILED

FAILED is reachable from any non-terminal state. ``OperationTrace`` enforces
the sequence and logs each step.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from .exceptions import InvalidTransition

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    INIT = "init"
    ADDRESS_RESOLVED = "address_resolved"
    FEE_NEGOTIATED = "fee_negotiated"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[OperationState] = frozenset({OperationState.CONFIRMED, OperationState.FAILED})

_TRANSITIONS: Dict[OperationState, FrozenSet[OperationState]] = {
    OperationState.INIT: frozenset({OperationState.ADDRESS_RESOLVED}),
    OperationState.ADDRESS_RESOLVED: frozenset({OperationState.FEE_NEGOTIATED}),
    OperationState.FEE_NEGOTIATED: frozenset({OperationState.SIGNED}),
    OperationState.SIGNED: frozenset({OperationState.SUBMITTED}),
    OperationState.SUBMITTED: frozenset({OperationState.CONFIRMED}),
    OperationState.CONFIRMED: frozenset(),
    OperationState.FAILED: frozenset(),
}


class OperationTrace:
    """
    Records the progress of one orchestrated operation.

    Args:
        operation: Short label used in log lines (``deploy``, ``execute``)
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.state = OperationState.INIT
        self.history: List[Tuple[OperationState, datetime]] = [(self.state, datetime.now(timezone.utc))]
        self.error: Optional[BaseException] = None

    def advance(self, target: OperationState, detail: str = "") -> None:
        """
        Move to ``target``.

        Raises:
            InvalidTransition: ``target`` does not follow the current state.
        """
        allowed = _TRANSITIONS[self.state]
        if target == OperationState.FAILED and self.state not in TERMINAL_STATES:
            allowed = allowed | {OperationState.FAILED}
        if target not in allowed:
            raise InvalidTransition(self.state, target)
        self.state = target
        self.history.append((target, datetime.now(timezone.utc)))
        logger.info(f"[{self.operation}] {target.value}" + (f": {detail}" if detail else ""))

    def fail(self, error: BaseException) -> None:
        """Move to FAILED, keeping the error. No-op once terminal."""
        if self.state in TERMINAL_STATES:
            return
        self.error = error
        self.advance(OperationState.FAILED, f"{type(error).__name__}: {error}")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def states(self) -> List[OperationState]:
        return [state for state, _ in self.history]
