"""
DAO State Container

Explicit state owned by the governance engine and passed by reference to
every component: bootstrap flag, allow-listed extensions, the in-flight
execution context, the event log, and the operator registry and proposal
ledger it owns.
"""

import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from ..constants import (
    DAO_CORE_CONTRACT,
    GOVERNANCE_MAX_DESCRIPTION_LENGTH,
    GOVERNANCE_SIGNALS_REQUIRED,
)
from ..exceptions import ReentrantCallError, UnauthorizedError
from ..host import ExecutionEnvironment, contract_principal
from ..logger import get_logger
from .actions import ActionTable
from .proposals import ProposalLedger
from .registry import OperatorRegistry

if TYPE_CHECKING:
    from .treasury import Treasury

logger = get_logger(__name__)


@dataclass(frozen=True)
class ThresholdConfig:
    """Approving signals required to execute. Independent of operator count."""
    signals_required: int = GOVERNANCE_SIGNALS_REQUIRED

    def __post_init__(self):
        if not isinstance(self.signals_required, int) or isinstance(self.signals_required, bool):
            raise TypeError(f"signals_required must be int, got {type(self.signals_required).__name__}")
        if self.signals_required < 1:
            raise ValueError(f"signals_required must be >= 1, got {self.signals_required}")

    def is_met(self, approve_count: int) -> bool:
        return approve_count >= self.signals_required

    def __repr__(self) -> str:
        return f"ThresholdConfig({self.signals_required} signals)"


@dataclass(frozen=True, eq=False)
class ExecutionContext:
    """
    Capability issued by the dispatcher while an action is being applied.

    Privileged mutators accept a context and check it is the one currently
    active on the state; identity comparison, so it cannot be forged.
    """
    caller: str
    action_ref: str
    proposal_id: Optional[int]
    block_height: int
    state: "DAOState"
    treasury: "Treasury"

    @property
    def registry(self) -> OperatorRegistry:
        return self.state.registry


class DAOState:
    """
    All mutable governance state, snapshotted as one unit by the host.
    """

    def __init__(
        self,
        host: ExecutionEnvironment,
        deployer: str,
        actions: ActionTable,
        threshold: Optional[ThresholdConfig] = None,
        max_description_length: int = GOVERNANCE_MAX_DESCRIPTION_LENGTH,
        enforce_extension_allowlist: bool = True,
    ):
        self.host = host
        self.deployer = deployer
        self.dao_address = contract_principal(deployer, DAO_CORE_CONTRACT)
        self.actions = actions
        self.threshold = threshold or ThresholdConfig()
        self.enforce_extension_allowlist = enforce_extension_allowlist

        self.constructed: bool = False
        self.registered_extensions: Set[str] = set()
        self.active_context: Optional[ExecutionContext] = None
        self._events: List[Dict[str, Any]] = []

        self.registry = OperatorRegistry(self)
        self.ledger = ProposalLedger(self, max_description_length=max_description_length)

        host.register_participant(self)

    # ── Execution guard ───────────────────────────────────────────────

    @property
    def execution_in_flight(self) -> bool:
        return self.active_context is not None

    def require_no_execution_in_flight(self) -> None:
        """Entry check for signal / create_proposal."""
        if self.active_context is not None:
            raise ReentrantCallError(
                f"Governance call while {self.active_context.action_ref} is being applied"
            )

    def require_active_context(self, context: Optional[ExecutionContext]) -> None:
        """Privileged calls must present the dispatcher's active context."""
        if context is None or self.active_context is None or context is not self.active_context:
            raise UnauthorizedError("Privileged call outside the dispatcher's execution context")

    # ── Extensions ────────────────────────────────────────────────────

    def enable_extension(self, ref: str, context: ExecutionContext) -> None:
        self.require_active_context(context)
        if ref in self.registered_extensions:
            return
        self.registered_extensions.add(ref)
        self.emit("extension-enabled", extension=ref)
        logger.info(f"Extension enabled: {ref}")

    def is_extension(self, ref: str) -> bool:
        return ref in self.registered_extensions

    # ── Events ────────────────────────────────────────────────────────

    def emit(self, event: str, **payload: Any) -> Dict[str, Any]:
        entry = {"event": event, "blockHeight": self.host.block_height, **payload}
        self._events.append(entry)
        return entry

    @property
    def events(self) -> List[Dict[str, Any]]:
        return list(self._events)

    # ── Snapshot ──────────────────────────────────────────────────────

    def take_snapshot(self) -> Dict[str, Any]:
        return {
            "constructed": self.constructed,
            "extensions": set(self.registered_extensions),
            "events": len(self._events),
            "registry": self.registry.take_snapshot(),
            "ledger": self.ledger.take_snapshot(),
        }

    def restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self.constructed = snapshot["constructed"]
        self.registered_extensions = set(snapshot["extensions"])
        del self._events[snapshot["events"]:]
        self.registry.restore_snapshot(snapshot["registry"])
        self.ledger.restore_snapshot(snapshot["ledger"])

    def release_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self.ledger.release_snapshot(snapshot["ledger"])

    # ── State root ────────────────────────────────────────────────────

    def compute_state_root(self) -> str:
        """
        Deterministic blake2b-256 commitment over operators, extensions and
        proposals (ids, actions, votes, execution flags).
        """
        hasher = hashlib.blake2b(digest_size=32)
        hasher.update(f"constructed:{int(self.constructed)}".encode())
        for address in self.registry.operators():
            hasher.update(f"op:{address}".encode())
        for ref in sorted(self.registered_extensions):
            hasher.update(f"ext:{ref}".encode())
        for proposal in self.ledger.proposals():
            votes = ",".join(
                f"{voter}={int(approve)}" for voter, approve in sorted(proposal.ballot.items())
            )
            hasher.update(
                f"p:{proposal.id}:{proposal.action_ref}:{int(proposal.executed)}:{votes}".encode()
            )
        return hasher.hexdigest()

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployer": self.deployer,
            "constructed": self.constructed,
            "signalsRequired": self.threshold.signals_required,
            "registeredExtensions": sorted(self.registered_extensions),
            "operators": self.registry.to_dict(),
            "ledger": self.ledger.to_dict(),
            "events": self.events,
            "stateRoot": self.compute_state_root(),
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.constructed = bool(data.get("constructed", False))
        self.registered_extensions = set(data.get("registeredExtensions", []))
        self.registry.load_dict(data.get("operators", {}))
        self.ledger.load_dict(data.get("ledger", {}))
        self._events = list(data.get("events", []))

    def __repr__(self) -> str:
        return (
            f"<DAOState constructed={self.constructed} "
            f"operators={self.registry.count} proposals={self.ledger.count}>"
        )
