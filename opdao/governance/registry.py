"""
Operator Registry

The set of identities allowed to create and vote on proposals. Membership
changes only while the dispatcher is applying an action (an executed
proposal or the bootstrap), proven by the dispatcher's active
``ExecutionContext``.
"""

from typing import TYPE_CHECKING, Any, Dict, List

from ..logger import get_logger

if TYPE_CHECKING:
    from .state import DAOState, ExecutionContext

logger = get_logger(__name__)


class OperatorRegistry:
    """One vote per operator, no weights."""

    def __init__(self, state: "DAOState"):
        self._state = state
        self._operators: Dict[str, int] = {}  # address → block height added

    # ── Queries ───────────────────────────────────────────────────────

    def is_operator(self, address: str) -> bool:
        """Pure lookup; unknown addresses are simply not operators."""
        return address in self._operators

    def operators(self) -> List[str]:
        return sorted(self._operators)

    @property
    def count(self) -> int:
        return len(self._operators)

    # ── Privileged mutations ──────────────────────────────────────────

    def add_operator(self, address: str, context: "ExecutionContext") -> bool:
        """
        Add *address* to the operator set.

        Returns False (no-op) if it is already an operator.
        """
        self._state.require_active_context(context)
        if address in self._operators:
            logger.warning(f"Operator {address} already registered, nothing to add")
            return False
        self._operators[address] = context.block_height
        self._state.emit("operator-added", operator=address, actionRef=context.action_ref)
        logger.info(f"Operator added: {address} (via {context.action_ref})")
        return True

    def remove_operator(self, address: str, context: "ExecutionContext") -> bool:
        """Returns False (no-op) if *address* is not an operator."""
        self._state.require_active_context(context)
        if address not in self._operators:
            logger.warning(f"{address} is not an operator, nothing to remove")
            return False
        del self._operators[address]
        self._state.emit("operator-removed", operator=address, actionRef=context.action_ref)
        logger.info(f"Operator removed: {address} (via {context.action_ref})")
        return True

    # ── Snapshot ──────────────────────────────────────────────────────

    def take_snapshot(self) -> Dict[str, int]:
        return dict(self._operators)

    def restore_snapshot(self, snapshot: Dict[str, int]) -> None:
        self._operators = dict(snapshot)

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {addr: height for addr, height in sorted(self._operators.items())}

    def load_dict(self, data: Dict[str, int]) -> None:
        self._operators = {addr: int(height) for addr, height in data.items()}

    def __repr__(self) -> str:
        return f"<OperatorRegistry operators={self.count}>"
