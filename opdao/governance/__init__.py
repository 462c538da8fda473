"""
Operator Governance

Provides:
  - OperatorRegistry                               (registry.py)
  - ProposalStatus / Proposal / ProposalLedger     (proposals.py)
  - VoteRecord / VotingEngine                      (voting.py)
  - DAOCore dispatcher                             (dispatcher.py)
  - Treasury guard                                 (treasury.py)
  - Action extensions / ActionTable                (actions.py)
  - DAOState / ExecutionContext / ThresholdConfig  (state.py)
"""

from .actions import (
    Action,
    ActionKind,
    ActionTable,
    AddOperator,
    Bootstrap,
    RemoveOperator,
    TransferFunds,
    action_from_dict,
)
from .registry import OperatorRegistry
from .proposals import (
    Proposal,
    ProposalLedger,
    ProposalStatus,
    VoteRecord,
)
from .state import (
    DAOState,
    ExecutionContext,
    ThresholdConfig,
)
from .treasury import Treasury
from .dispatcher import DAOCore
from .voting import VotingEngine

__all__ = [
    # Actions
    "Action",
    "ActionKind",
    "ActionTable",
    "AddOperator",
    "Bootstrap",
    "RemoveOperator",
    "TransferFunds",
    "action_from_dict",
    # Registry
    "OperatorRegistry",
    # Proposals
    "Proposal",
    "ProposalLedger",
    "ProposalStatus",
    "VoteRecord",
    # State
    "DAOState",
    "ExecutionContext",
    "ThresholdConfig",
    # Execution
    "DAOCore",
    "Treasury",
    "VotingEngine",
]
