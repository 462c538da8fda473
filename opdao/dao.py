"""
Operator DAO

Wires the host, DAO state, treasury, dispatcher and voting engine into one
object exposing the external operations:

    construct / create-proposal / signal / is-operator / is-proposal-approved

plus treasury deposits, read-only helpers, state export and a
result-returning ``call()`` entry point for scripted use.

Usage:

    dao = OperatorDAO.from_config("config.toml")
    dao.construct(deployer)
    pid = dao.create_proposal(op1, "Add operator 4", "dp001-add-operator")
    dao.signal(op1, pid, True)
    dao.signal(op2, pid, True)   # threshold reached → executed
"""

import hashlib
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .config import DAOConfig, load_config
from .exceptions import DAOError
from .governance import (
    ActionTable,
    DAOCore,
    DAOState,
    Proposal,
    ThresholdConfig,
    Treasury,
    VoteRecord,
    VotingEngine,
)
from .host import ExecutionEnvironment
from .logger import get_logger

logger = get_logger(__name__)

STATE_FORMAT_VERSION = 1


# ---------------------------------------------------------------------------
# Call result
# ---------------------------------------------------------------------------

class TxResult:
    """Outcome of one ``OperatorDAO.call``: ok value or err code."""

    __slots__ = ("success", "value", "error_code", "error", "logs")

    def __init__(
        self,
        success: bool = True,
        value: Any = None,
        error_code: Optional[int] = None,
        error: str = "",
        logs: Optional[List[Dict[str, Any]]] = None,
    ):
        self.success = success
        self.value = value
        self.error_code = error_code
        self.error = error
        self.logs = logs or []

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"ok": self.value, "logs": self.logs}
        return {"err": self.error_code, "error": self.error}

    def __repr__(self) -> str:
        if self.success:
            return f"<TxResult ok {self.value!r}>"
        return f"<TxResult err u{self.error_code} {self.error!r}>"


# ---------------------------------------------------------------------------
# DAO facade
# ---------------------------------------------------------------------------

class OperatorDAO:
    """One DAO deployment on one host."""

    def __init__(
        self,
        config: Optional[DAOConfig] = None,
        host: Optional[ExecutionEnvironment] = None,
        actions: Optional[ActionTable] = None,
    ):
        self.config = config or DAOConfig()
        self.host = host or ExecutionEnvironment(balances=self.config.genesis.balances)
        self.actions = actions if actions is not None else self.config.build_actions()

        dao_cfg = self.config.dao
        self.state = DAOState(
            self.host,
            deployer=dao_cfg.deployer,
            actions=self.actions,
            threshold=ThresholdConfig(dao_cfg.signals_required),
            max_description_length=dao_cfg.max_description_length,
            enforce_extension_allowlist=dao_cfg.enforce_extension_allowlist,
        )
        self.treasury = Treasury(self.state, dao_cfg.treasury_contract)
        self.core = DAOCore(self.state, self.treasury)
        self.voting = VotingEngine(self.state, self.core)

        self._calls: Dict[str, Callable[..., Any]] = {
            "construct": self.construct,
            "create-proposal": self.create_proposal,
            "signal": self.signal,
            "deposit": self.deposit,
            "is-operator": lambda _sender, address: self.is_operator(address),
            "is-proposal-approved": lambda _sender, pid: self.is_proposal_approved(pid),
        }

    @classmethod
    def from_config(cls, path: Optional[str] = None) -> "OperatorDAO":
        config = load_config(path)
        config.validate()
        return cls(config)

    @property
    def deployer(self) -> str:
        return self.state.deployer

    @property
    def address(self) -> str:
        return self.state.dao_address

    @property
    def block_height(self) -> int:
        return self.host.block_height

    # ── State-changing operations ─────────────────────────────────────

    def construct(self, caller: str, bootstrap_ref: Optional[str] = None) -> bool:
        """One-time bootstrap; defaults to the configured bootstrap action."""
        ref = bootstrap_ref or self.config.bootstrap.ref
        with self.host.atomic():
            return self.core.construct(caller, ref)

    def create_proposal(self, caller: str, description: str, action_ref: str) -> int:
        with self.host.atomic():
            return self.state.ledger.create_proposal(caller, description, action_ref)

    def signal(
        self,
        caller: str,
        proposal_id: int,
        approve: bool,
        action_ref: Optional[str] = None,
    ) -> bool:
        return self.voting.signal(caller, proposal_id, approve, action_ref)

    def deposit(self, sender: str, amount: Decimal) -> Decimal:
        with self.host.atomic():
            return self.treasury.deposit(sender, Decimal(str(amount)))

    # ── Read-only ─────────────────────────────────────────────────────

    def is_operator(self, address: str) -> bool:
        return self.state.registry.is_operator(address)

    def is_proposal_approved(self, proposal_id: int) -> bool:
        return self.voting.is_proposal_approved(proposal_id)

    def get_proposal(self, proposal_id: int) -> Proposal:
        return self.state.ledger.get(proposal_id)

    def get_vote(self, proposal_id: int, voter: str) -> Optional[bool]:
        return self.voting.get_vote(proposal_id, voter)

    def get_votes(self, proposal_id: int) -> List[VoteRecord]:
        return self.voting.get_votes(proposal_id)

    def proposal_count(self) -> int:
        return self.state.ledger.count

    def operators(self) -> List[str]:
        return self.state.registry.operators()

    def treasury_balance(self) -> Decimal:
        return self.treasury.balance

    def get_balance(self, address: str) -> Decimal:
        return self.host.get_balance(address)

    @property
    def events(self) -> List[Dict[str, Any]]:
        return self.state.events

    # ── Ledger-style entry point ──────────────────────────────────────

    def call(self, method: str, sender: str, *args: Any) -> TxResult:
        """
        Run *method* as *sender* and report ok/err instead of raising.

        Method names use the ledger spelling (``create-proposal``);
        underscores are accepted too.
        """
        handler = self._calls.get(method.replace("_", "-"))
        if handler is None:
            return TxResult(success=False, error=f"Unknown method: {method}")

        first_event = len(self.state.events)
        try:
            value = handler(sender, *args)
        except DAOError as e:
            logger.debug(f"{method} by {sender} failed: u{e.code} {e}")
            return TxResult(success=False, error_code=e.code, error=str(e))
        return TxResult(success=True, value=value, logs=self.state.events[first_event:])

    # ── State export ──────────────────────────────────────────────────

    def compute_state_root(self) -> str:
        """blake2b-256 over the governance root and every ledger balance."""
        hasher = hashlib.blake2b(digest_size=32)
        hasher.update(self.state.compute_state_root().encode())
        for address, balance in self.host.to_dict()["balances"].items():
            hasher.update(f"bal:{address}:{balance}".encode())
        return hasher.hexdigest()

    def export_state(self) -> Dict[str, Any]:
        return {
            "version": STATE_FORMAT_VERSION,
            "host": self.host.to_dict(),
            "dao": self.state.to_dict(),
            "treasury": self.treasury.to_dict(),
            "executionLog": self.core.execution_log,
            "stateRoot": self.compute_state_root(),
        }

    def load_state(self, data: Dict[str, Any]) -> None:
        """
        Restore a snapshot produced by ``export_state``.

        The current state is kept if the snapshot is rejected.

        Raises:
            ValueError: unsupported version, or the recomputed state root
                differs from the stored one
        """
        version = data.get("version", STATE_FORMAT_VERSION)
        if version != STATE_FORMAT_VERSION:
            raise ValueError(f"Unsupported state format version: {version}")
        if self.host.in_transaction:
            raise RuntimeError("Cannot load state inside a transaction")

        previous = self.export_state()
        try:
            self._apply_state(data)
            expected = data.get("stateRoot")
            if expected and expected != self.compute_state_root():
                raise ValueError("State root mismatch after load")
        except Exception:
            self._apply_state(previous)
            raise
        logger.debug(
            f"Loaded DAO state at height {self.host.block_height}: "
            f"{self.state.registry.count} operators, {self.state.ledger.count} proposals"
        )

    def _apply_state(self, data: Dict[str, Any]) -> None:
        self.host.load_dict(data.get("host", {}))
        self.state.load_dict(data.get("dao", {}))
        self.core.load_execution_log(data.get("executionLog", []))

    def __repr__(self) -> str:
        return (
            f"<OperatorDAO {self.address} constructed={self.state.constructed} "
            f"operators={self.state.registry.count} proposals={self.state.ledger.count}>"
        )
