"""
Proposal Ledger

Defines the proposal lifecycle (PENDING → EXECUTED), the Proposal dataclass
holding per-operator votes, and the ledger that allocates sequential ids.
Proposals are never deleted; executed ones stay for audit.
"""

import copy
import hashlib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..constants import (
    GOVERNANCE_FIRST_PROPOSAL_ID,
    GOVERNANCE_MAX_DESCRIPTION_LENGTH,
    VALID_DESCRIPTION_PATTERN,
)
from ..exceptions import (
    AlreadyExecutedError,
    AlreadyVotedError,
    InvalidProposalError,
    NotConstructedError,
    NotOperatorError,
    ProposalNotFoundError,
    UnknownExtensionError,
)
from ..logger import get_logger

if TYPE_CHECKING:
    from .state import DAOState

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class ProposalStatus(IntEnum):
    """Lifecycle stage. EXECUTED is terminal."""
    PENDING = 0
    EXECUTED = 1


_VALID_TRANSITIONS: Dict[ProposalStatus, set] = {
    ProposalStatus.PENDING:  {ProposalStatus.EXECUTED},
    ProposalStatus.EXECUTED: set(),
}


# ══════════════════════════════════════════════════════════════════════
#  VOTES
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VoteRecord:
    """A signal cast by an operator. Rejections count as having voted."""
    proposal_id: int
    voter: str
    approve: bool
    block_height: int = 0
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "voter": self.voter,
            "approve": self.approve,
            "blockHeight": self.block_height,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VoteRecord":
        return cls(
            proposal_id=data["proposalId"],
            voter=data["voter"],
            approve=bool(data["approve"]),
            block_height=data.get("blockHeight", 0),
            timestamp=data.get("timestamp", 0.0),
        )


# ══════════════════════════════════════════════════════════════════════
#  PROPOSAL
# ══════════════════════════════════════════════════════════════════════

@dataclass
class Proposal:
    """
    Request to apply one action extension once enough operators approve.

    Fields:
        id:              Sequential identifier, starting at 1
        description:     Bounded ASCII text
        action_ref:      Reference of the action extension to apply
        proposer:        Operator that created the proposal
        created_at:      Ledger timestamp of the creating transaction
        created_height:  Block height of the creating transaction
        votes:           operator → VoteRecord, at most one per operator
        status:          PENDING or EXECUTED
    """
    id: int
    description: str
    action_ref: str
    proposer: str
    created_at: float = 0.0
    created_height: int = 0
    votes: Dict[str, VoteRecord] = field(default_factory=dict)
    status: ProposalStatus = ProposalStatus.PENDING
    executed_at: Optional[float] = None
    executed_height: Optional[int] = None
    _history: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if self.id < GOVERNANCE_FIRST_PROPOSAL_ID:
            raise InvalidProposalError(f"Proposal id must be >= {GOVERNANCE_FIRST_PROPOSAL_ID}")
        if not self.action_ref:
            raise InvalidProposalError("Proposal action reference is required")
        if not self._history:
            self._history.append({
                "from": "INIT",
                "to": self.status.name,
                "reason": "created",
                "blockHeight": self.created_height,
            })

    # ── Properties ────────────────────────────────────────────────────

    @property
    def executed(self) -> bool:
        return self.status == ProposalStatus.EXECUTED

    @property
    def approve_count(self) -> int:
        return sum(1 for record in self.votes.values() if record.approve)

    @property
    def reject_count(self) -> int:
        return sum(1 for record in self.votes.values() if not record.approve)

    @property
    def ballot(self) -> Dict[str, bool]:
        """operator → approve, in voting order."""
        return {voter: record.approve for voter, record in self.votes.items()}

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    @property
    def proposal_hash(self) -> str:
        """Deterministic hash for on-chain anchoring."""
        payload = (
            str(self.id).encode()
            + self.description.encode()
            + self.action_ref.encode()
            + self.proposer.encode()
            + str(self.created_height).encode()
        )
        return hashlib.blake2b(payload, digest_size=32).hexdigest()

    def has_voted(self, voter: str) -> bool:
        return voter in self.votes

    # ── State transitions ─────────────────────────────────────────────

    def record_vote(self, record: VoteRecord) -> None:
        """Votes may only be added before execution, once per operator."""
        if self.executed:
            raise AlreadyExecutedError(f"Proposal #{self.id} is already executed")
        if record.voter in self.votes:
            raise AlreadyVotedError(f"{record.voter} already voted on proposal #{self.id}")
        self.votes[record.voter] = record

    def mark_executed(self, block_height: int, timestamp: float) -> None:
        """PENDING → EXECUTED."""
        if ProposalStatus.EXECUTED not in _VALID_TRANSITIONS[self.status]:
            raise AlreadyExecutedError(f"Proposal #{self.id} is already executed")
        self._history.append({
            "from": self.status.name,
            "to": ProposalStatus.EXECUTED.name,
            "reason": f"{self.approve_count} approving signals",
            "blockHeight": block_height,
        })
        self.status = ProposalStatus.EXECUTED
        self.executed_at = timestamp
        self.executed_height = block_height
        logger.info(f"Proposal #{self.id}: PENDING → EXECUTED ({self.action_ref})")

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "actionRef": self.action_ref,
            "proposer": self.proposer,
            "status": self.status.name,
            "executed": self.executed,
            "approveCount": self.approve_count,
            "rejectCount": self.reject_count,
            "votes": [record.to_dict() for record in self.votes.values()],
            "proposalHash": self.proposal_hash,
            "createdAt": self.created_at,
            "createdHeight": self.created_height,
            "executedAt": self.executed_at,
            "executedHeight": self.executed_height,
            "history": self.history,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proposal":
        votes = [VoteRecord.from_dict(v) for v in data.get("votes", [])]
        return cls(
            id=data["id"],
            description=data["description"],
            action_ref=data["actionRef"],
            proposer=data["proposer"],
            created_at=data.get("createdAt", 0.0),
            created_height=data.get("createdHeight", 0),
            votes={record.voter: record for record in votes},
            status=ProposalStatus[data.get("status", "PENDING")],
            executed_at=data.get("executedAt"),
            executed_height=data.get("executedHeight"),
            _history=list(data.get("history", [])),
        )

    def __repr__(self) -> str:
        return (
            f"<Proposal #{self.id} action={self.action_ref} "
            f"status={self.status.name} approvals={self.approve_count}>"
        )


# ══════════════════════════════════════════════════════════════════════
#  LEDGER
# ══════════════════════════════════════════════════════════════════════

class ProposalLedger:
    """
    Stores proposals keyed by a strictly increasing id.

    Only operators may create proposals, and only after the bootstrap ran.
    """

    def __init__(
        self,
        state: "DAOState",
        max_description_length: int = GOVERNANCE_MAX_DESCRIPTION_LENGTH,
    ):
        self._state = state
        self.max_description_length = max_description_length
        self._proposals: Dict[int, Proposal] = {}
        self._next_id: int = GOVERNANCE_FIRST_PROPOSAL_ID
        self._journals: List[Dict[int, Optional[Proposal]]] = []

    def validate_description(self, description: str) -> None:
        if not isinstance(description, str) or not description:
            raise InvalidProposalError("Proposal description cannot be empty")
        if len(description) > self.max_description_length:
            raise InvalidProposalError(
                f"Description is {len(description)} chars, "
                f"maximum is {self.max_description_length}"
            )
        if not VALID_DESCRIPTION_PATTERN.match(description):
            raise InvalidProposalError("Description must be printable ASCII")

    def create_proposal(self, caller: str, description: str, action_ref: str) -> int:
        """
        Store a new pending proposal and return its id.

        All checks run before the id counter or the store is touched.
        """
        state = self._state
        state.require_no_execution_in_flight()
        if not state.constructed:
            raise NotConstructedError("DAO bootstrap has not run")
        if not state.registry.is_operator(caller):
            raise NotOperatorError(f"{caller} is not an operator")
        self.validate_description(description)
        if action_ref not in state.actions:
            raise UnknownExtensionError(f"Unknown action reference: {action_ref}")

        pid = self._next_id
        self.journal(pid)
        proposal = Proposal(
            id=pid,
            description=description,
            action_ref=action_ref,
            proposer=caller,
            created_at=state.host.timestamp,
            created_height=state.host.block_height,
        )
        self._proposals[pid] = proposal
        self._next_id += 1

        state.emit(
            "proposal-created",
            proposalId=pid,
            proposer=caller,
            actionRef=action_ref,
            description=description,
        )
        logger.info(f"Proposal #{pid} created by {caller}: {action_ref}")
        return pid

    # ── Queries ───────────────────────────────────────────────────────

    def get(self, proposal_id: int) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(f"Proposal #{proposal_id} does not exist")
        return proposal

    def exists(self, proposal_id: int) -> bool:
        return proposal_id in self._proposals

    def proposals(self) -> List[Proposal]:
        return [self._proposals[pid] for pid in sorted(self._proposals)]

    @property
    def count(self) -> int:
        return len(self._proposals)

    @property
    def next_id(self) -> int:
        return self._next_id

    # ── Snapshot ──────────────────────────────────────────────────────
    #
    # Each open savepoint owns an undo journal: proposal id -> copy taken
    # before its first change inside the savepoint (None for proposals
    # created inside it). Only touched proposals are copied.

    def journal(self, proposal_id: int) -> None:
        """Record *proposal_id* in every open savepoint before mutating it."""
        current = self._proposals.get(proposal_id)
        for entries in self._journals:
            if proposal_id not in entries:
                entries[proposal_id] = copy.deepcopy(current) if current is not None else None

    def take_snapshot(self) -> Dict[str, Any]:
        journal: Dict[int, Optional[Proposal]] = {}
        self._journals.append(journal)
        return {"journal": journal, "next_id": self._next_id}

    def restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        for pid, saved in snapshot["journal"].items():
            if saved is None:
                self._proposals.pop(pid, None)
            else:
                self._proposals[pid] = saved
        self._next_id = snapshot["next_id"]
        self._close_journal(snapshot["journal"])

    def release_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self._close_journal(snapshot["journal"])

    def _close_journal(self, journal: Dict[int, Optional[Proposal]]) -> None:
        while self._journals:
            if self._journals.pop() is journal:
                break

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nextId": self._next_id,
            "proposals": [p.to_dict() for p in self.proposals()],
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self._proposals = {}
        for item in data.get("proposals", []):
            proposal = Proposal.from_dict(item)
            self._proposals[proposal.id] = proposal
        self._next_id = data.get(
            "nextId",
            max(self._proposals, default=GOVERNANCE_FIRST_PROPOSAL_ID - 1) + 1,
        )

    def __repr__(self) -> str:
        return f"<ProposalLedger proposals={self.count} next_id={self._next_id}>"
