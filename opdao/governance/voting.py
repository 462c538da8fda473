"""
Threshold Voting Engine

Implements:
  - One vote per operator per proposal; rejections count as having voted
  - Fixed approval threshold (default 2 signals), independent of set size
  - Exactly-once execution: the signal that crosses the threshold applies
    the proposal's action and marks it executed in the same transaction
"""

from typing import List, Optional

from ..constants import OPERATOR_GOVERNANCE_CONTRACT
from ..exceptions import (
    ActionMismatchError,
    AlreadyExecutedError,
    AlreadyVotedError,
    NotOperatorError,
)
from ..host import ExecutionEnvironment, contract_principal
from ..logger import get_logger
from .dispatcher import DAOCore
from .proposals import Proposal, VoteRecord
from .state import DAOState

logger = get_logger(__name__)


class VotingEngine:
    """
    Records operator signals and triggers execution on threshold crossing.
    """

    def __init__(self, state: DAOState, dispatcher: DAOCore):
        self.state = state
        self.dispatcher = dispatcher
        self.address = contract_principal(state.deployer, OPERATOR_GOVERNANCE_CONTRACT)

    @property
    def host(self) -> ExecutionEnvironment:
        return self.state.host

    # ── Signal ────────────────────────────────────────────────────────

    def signal(
        self,
        caller: str,
        proposal_id: int,
        approve: bool,
        action_ref: Optional[str] = None,
    ) -> bool:
        """
        Cast *caller*'s vote on *proposal_id*.

        Returns True if this signal executed the proposal, False otherwise.
        Runs as one host transaction: if the action fails, the vote is
        discarded along with every other change.

        Raises:
            ReentrantCallError: an action is currently being applied
            NotOperatorError: caller is not an operator
            ProposalNotFoundError: unknown proposal id
            AlreadyExecutedError: proposal already executed
            AlreadyVotedError: caller already signalled on this proposal
            ActionMismatchError: *action_ref* differs from the proposal's
        """
        state = self.state
        with self.host.atomic():
            state.require_no_execution_in_flight()
            if not state.registry.is_operator(caller):
                raise NotOperatorError(f"{caller} is not an operator")
            proposal = state.ledger.get(proposal_id)
            if proposal.executed:
                raise AlreadyExecutedError(f"Proposal #{proposal_id} is already executed")
            if proposal.has_voted(caller):
                raise AlreadyVotedError(f"{caller} already voted on proposal #{proposal_id}")
            if action_ref is not None and action_ref != proposal.action_ref:
                raise ActionMismatchError(
                    f"Proposal #{proposal_id} references {proposal.action_ref}, not {action_ref}"
                )

            approve = bool(approve)
            state.ledger.journal(proposal_id)
            proposal.record_vote(VoteRecord(
                proposal_id=proposal_id,
                voter=caller,
                approve=approve,
                block_height=self.host.block_height,
                timestamp=self.host.timestamp,
            ))
            state.emit("vote-cast", proposalId=proposal_id, voter=caller, approve=approve)
            logger.info(
                f"Vote: {caller} → {'APPROVE' if approve else 'REJECT'} on proposal #{proposal_id} "
                f"({proposal.approve_count}/{state.threshold.signals_required})"
            )

            if not state.threshold.is_met(proposal.approve_count):
                return False

            changes = self.dispatcher.execute_extension(proposal.action_ref, proposal)
            proposal.mark_executed(self.host.block_height, self.host.timestamp)
            state.emit(
                "proposal-executed",
                proposalId=proposal_id,
                actionRef=proposal.action_ref,
                changes=changes,
            )
            return True

    # ── Queries ───────────────────────────────────────────────────────

    def is_proposal_approved(self, proposal_id: int) -> bool:
        """Executed flag of the proposal; ProposalNotFoundError if unknown."""
        return self.state.ledger.get(proposal_id).executed

    def approve_count(self, proposal_id: int) -> int:
        return self.state.ledger.get(proposal_id).approve_count

    def get_vote(self, proposal_id: int, voter: str) -> Optional[bool]:
        record = self.state.ledger.get(proposal_id).votes.get(voter)
        return None if record is None else record.approve

    def get_votes(self, proposal_id: int) -> List[VoteRecord]:
        return list(self.state.ledger.get(proposal_id).votes.values())

    def has_voted(self, proposal_id: int, voter: str) -> bool:
        return self.state.ledger.get(proposal_id).has_voted(voter)

    def pending_proposals(self) -> List[Proposal]:
        return [p for p in self.state.ledger.proposals() if not p.executed]

    def __repr__(self) -> str:
        return f"<VotingEngine threshold={self.state.threshold.signals_required}>"
