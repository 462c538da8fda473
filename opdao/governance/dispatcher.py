"""
DAO Core Dispatcher

Single authorized entry point for privileged actions:

  - construct():          one-time bootstrap establishing initial authority
  - execute_extension():  apply the action of a proposal that just crossed
                          the threshold

While an action is applied the dispatcher publishes an ExecutionContext on
the state; registry and treasury mutators accept only that context, and the
governance entry points refuse to run until it is cleared.
"""

import time
from typing import Any, Dict, List, Optional

from ..exceptions import (
    AlreadyConstructedError,
    ReentrantCallError,
    UnauthorizedError,
)
from ..logger import get_logger
from .actions import Action, ActionKind
from .proposals import Proposal
from .state import DAOState, ExecutionContext
from .treasury import Treasury

logger = get_logger(__name__)


class DAOCore:
    """
    Runs the bootstrap and invokes action extensions for executed proposals.
    """

    def __init__(self, state: DAOState, treasury: Treasury):
        self.state = state
        self.treasury = treasury
        self._execution_log: List[Dict[str, Any]] = []

    @property
    def address(self) -> str:
        return self.state.dao_address

    # ── Bootstrap ─────────────────────────────────────────────────────

    def construct(self, caller: str, bootstrap_ref: str) -> bool:
        """
        Run the bootstrap action exactly once.

        Raises:
            AlreadyConstructedError: bootstrap already ran
            UnauthorizedError: caller is not the deployer, or the reference
                is not a bootstrap action
            UnknownExtensionError: reference is not in the action table
        """
        state = self.state
        if state.constructed:
            raise AlreadyConstructedError("DAO is already constructed")
        if caller != state.deployer:
            raise UnauthorizedError(f"Only the deployer may construct the DAO, not {caller}")
        state.require_no_execution_in_flight()

        action = state.actions.resolve(bootstrap_ref)
        if action.kind != ActionKind.BOOTSTRAP:
            raise UnauthorizedError(f"{bootstrap_ref} is not a bootstrap action")

        changes = self._apply(action, proposal_id=None)
        state.constructed = True
        state.emit("construct", bootstrap=bootstrap_ref, caller=caller)
        logger.info(
            f"DAO constructed via {bootstrap_ref}: "
            f"{state.registry.count} operators, "
            f"{len(state.registered_extensions)} extensions"
        )
        self._record(bootstrap_ref, None, changes)
        return True

    # ── Extension execution ───────────────────────────────────────────

    def execute_extension(self, action_ref: str, proposal: Proposal) -> Dict[str, Any]:
        """
        Apply *action_ref* on behalf of *proposal*.

        Only the threshold-crossing path may call this: the proposal must be
        stored, still pending, carry *action_ref* and have enough approving
        signals. When allow-listing is enforced the reference must have been
        enabled by the bootstrap.
        """
        state = self.state
        if state.execution_in_flight:
            raise ReentrantCallError("An action is already being applied")

        stored = state.ledger.get(proposal.id)
        if stored is not proposal or proposal.executed:
            raise UnauthorizedError(f"Proposal #{proposal.id} is not executable")
        if proposal.action_ref != action_ref:
            raise UnauthorizedError(
                f"Proposal #{proposal.id} does not authorize {action_ref}"
            )
        if not state.threshold.is_met(proposal.approve_count):
            raise UnauthorizedError(
                f"Proposal #{proposal.id} has {proposal.approve_count} approvals, "
                f"needs {state.threshold.signals_required}"
            )
        if state.enforce_extension_allowlist and not state.is_extension(action_ref):
            raise UnauthorizedError(f"{action_ref} is not an enabled extension")

        action = state.actions.resolve(action_ref)
        if action.kind == ActionKind.BOOTSTRAP:
            raise UnauthorizedError("Bootstrap actions only run through construct")

        changes = self._apply(action, proposal_id=proposal.id)
        self._record(action_ref, proposal.id, changes)
        return changes

    def _apply(self, action: Action, proposal_id: Optional[int]) -> Dict[str, Any]:
        state = self.state
        context = ExecutionContext(
            caller=self.address,
            action_ref=action.ref,
            proposal_id=proposal_id,
            block_height=state.host.block_height,
            state=state,
            treasury=self.treasury,
        )
        state.active_context = context
        try:
            return action.apply(context)
        finally:
            state.active_context = None

    def _record(self, action_ref: str, proposal_id: Optional[int], changes: Dict[str, Any]):
        self._execution_log.append({
            "actionRef": action_ref,
            "proposalId": proposal_id,
            "changes": changes,
            "blockHeight": self.state.host.block_height,
            "executedAt": time.time(),
        })

    # ── Queries ───────────────────────────────────────────────────────

    def is_dao_or_extension(self, caller: str) -> bool:
        """True for the core itself or an enabled extension principal."""
        if caller == self.address:
            return True
        prefix = f"{self.state.deployer}."
        return caller.startswith(prefix) and self.state.is_extension(caller[len(prefix):])

    def registered_extensions(self) -> List[str]:
        return sorted(self.state.registered_extensions)

    @property
    def execution_log(self) -> List[Dict[str, Any]]:
        return list(self._execution_log)

    def execution_count(self) -> int:
        return len(self._execution_log)

    def load_execution_log(self, entries: List[Dict[str, Any]]) -> None:
        self._execution_log = [dict(entry) for entry in entries]

    def __repr__(self) -> str:
        return (
            f"<DAOCore constructed={self.state.constructed} "
            f"executed={len(self._execution_log)}>"
        )
