"""
Host Execution Environment

Stands in for the ledger that hosts the governance contracts. It supplies
the three guarantees the governance engine relies on:

  - Serialized operations: one transaction runs to completion before the
    next begins (re-entrant lock; nested calls are savepoints).
  - Atomic commit/abort: every registered participant is snapshotted when a
    transaction starts, restored if it raises and released if it commits.
  - Ledger-level balances, block height and timestamp.

Usage:

    host = ExecutionEnvironment()
    host.register_participant(state)
    with host.atomic():
        ...  # any exception restores host + participants
"""

import threading
import time
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from .exceptions import InsufficientFundsError, InvalidAmountError
from .logger import get_logger

logger = get_logger(__name__)

ZERO = Decimal("0")


class Snapshottable(Protocol):
    """Anything whose state can be captured and restored by the host."""

    def take_snapshot(self) -> Any: ...

    def restore_snapshot(self, snapshot: Any) -> None: ...

    def release_snapshot(self, snapshot: Any) -> None: ...


def contract_principal(deployer: str, contract_name: str) -> str:
    """Address of a contract deployed by *deployer*."""
    return f"{deployer}.{contract_name}"


class ExecutionEnvironment:
    """
    Serial, atomic transaction host with a balance ledger.

    Every participant registered with ``register_participant`` takes part in
    each transaction's snapshot/restore cycle. The host itself always does.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        balances: Optional[Dict[str, Decimal]] = None,
    ):
        self._clock = clock or time.time
        self._lock = threading.RLock()
        self._participants: List[Snapshottable] = [self]
        self._depth = 0

        # --- Ledger state (part of the host snapshot) ---
        self._balances: Dict[str, Decimal] = {
            addr: Decimal(amount) for addr, amount in (balances or {}).items()
        }
        self.block_height: int = 0
        self.timestamp: float = 0.0

        # --- Counters ---
        self._committed: int = 0
        self._aborted: int = 0

    # ── Participants ──────────────────────────────────────────────────

    def register_participant(self, participant: Snapshottable) -> None:
        if participant not in self._participants:
            self._participants.append(participant)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    # ── Transactions ──────────────────────────────────────────────────

    @contextmanager
    def atomic(self) -> Iterator["ExecutionEnvironment"]:
        """
        Run the enclosed block as one all-or-nothing transaction.

        A top-level transaction opens a new block (height + 1, fresh
        timestamp). Nested calls reuse the block and act as savepoints.
        """
        with self._lock:
            snapshots = [(p, p.take_snapshot()) for p in self._participants]
            if self._depth == 0:
                self.block_height += 1
                self.timestamp = self._clock()
            self._depth += 1
            try:
                yield self
            except Exception as e:
                for participant, snapshot in reversed(snapshots):
                    participant.restore_snapshot(snapshot)
                if self._depth == 1:
                    self._aborted += 1
                    logger.debug(f"Transaction aborted, state restored: {e}")
                raise
            else:
                for participant, snapshot in reversed(snapshots):
                    participant.release_snapshot(snapshot)
                if self._depth == 1:
                    self._committed += 1
            finally:
                self._depth -= 1

    def take_snapshot(self) -> Dict[str, Any]:
        """Capture current ledger state for potential revert."""
        return {
            "balances": dict(self._balances),
            "block_height": self.block_height,
            "timestamp": self.timestamp,
        }

    def restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self._balances = dict(snapshot["balances"])
        self.block_height = snapshot["block_height"]
        self.timestamp = snapshot["timestamp"]

    def release_snapshot(self, snapshot: Dict[str, Any]) -> None:
        pass

    # ── Balances ──────────────────────────────────────────────────────

    def get_balance(self, address: str) -> Decimal:
        return self._balances.get(address, ZERO)

    def mint(self, address: str, amount: Decimal) -> None:
        """Credit *address* out of thin air (genesis allocations, faucets)."""
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmountError(f"Mint amount must be positive, got {amount}")
        self._balances[address] = self.get_balance(address) + amount

    def transfer(self, sender: str, recipient: str, amount: Decimal) -> None:
        """Ledger-level transfer between two principals."""
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmountError(f"Transfer amount must be positive, got {amount}")
        if sender == recipient:
            raise InvalidAmountError("Sender and recipient must differ")
        balance = self.get_balance(sender)
        if balance < amount:
            raise InsufficientFundsError(
                f"Insufficient balance: {sender} has {balance}, needs {amount}"
            )
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.get_balance(recipient) + amount

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blockHeight": self.block_height,
            "timestamp": self.timestamp,
            "balances": {addr: str(b) for addr, b in sorted(self._balances.items())},
            "committed": self._committed,
            "aborted": self._aborted,
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.block_height = data.get("blockHeight", 0)
        self.timestamp = data.get("timestamp", 0.0)
        self._balances = {
            addr: Decimal(b) for addr, b in data.get("balances", {}).items()
        }
        self._committed = data.get("committed", 0)
        self._aborted = data.get("aborted", 0)

    def __repr__(self) -> str:
        return (
            f"<ExecutionEnvironment height={self.block_height} "
            f"accounts={len(self._balances)}>"
        )
