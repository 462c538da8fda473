"""
Action Extensions

The closed set of actions a proposal (or the bootstrap) can apply:

  - Bootstrap:       seed the operator set and enable extensions (construct only)
  - AddOperator:     add one operator
  - RemoveOperator:  remove one operator
  - TransferFunds:   release treasury funds to a recipient

Each action is an immutable value with a single ``apply(context)`` operation.
Actions are addressed by reference strings through an ``ActionTable``; the
dispatcher decides whether a reference may run.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Dict, Iterable, Iterator, List, Tuple

from ..exceptions import InvalidAmountError, UnknownExtensionError

if TYPE_CHECKING:
    from .state import ExecutionContext


class ActionKind(str, Enum):
    """Tag of each action variant."""
    BOOTSTRAP = "bootstrap"
    ADD_OPERATOR = "add-operator"
    REMOVE_OPERATOR = "remove-operator"
    TRANSFER_FUNDS = "transfer-funds"


@dataclass(frozen=True)
class Action(ABC):
    """An action extension addressed by *ref*."""
    ref: str
    kind: ClassVar[ActionKind]

    def __post_init__(self):
        if not self.ref:
            raise ValueError("Action reference cannot be empty")

    @abstractmethod
    def apply(self, context: "ExecutionContext") -> Dict[str, Any]:
        """Perform the action's effect; return a summary of the changes."""

    def to_dict(self) -> Dict[str, Any]:
        return {"ref": self.ref, "kind": self.kind.value}


@dataclass(frozen=True)
class Bootstrap(Action):
    """Initial authority: operators and the extensions the DAO accepts."""
    kind: ClassVar[ActionKind] = ActionKind.BOOTSTRAP
    operators: Tuple[str, ...] = ()
    extensions: Tuple[str, ...] = ()

    def __post_init__(self):
        super().__post_init__()
        # Accept lists from config files
        object.__setattr__(self, "operators", tuple(self.operators))
        object.__setattr__(self, "extensions", tuple(self.extensions))
        if not self.operators:
            raise ValueError("Bootstrap needs at least one operator")

    def apply(self, context: "ExecutionContext") -> Dict[str, Any]:
        added = [op for op in self.operators if context.registry.add_operator(op, context)]
        for ref in self.extensions:
            context.state.enable_extension(ref, context)
        return {"operators": added, "extensions": list(self.extensions)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "operators": list(self.operators),
            "extensions": list(self.extensions),
        }


@dataclass(frozen=True)
class AddOperator(Action):
    kind: ClassVar[ActionKind] = ActionKind.ADD_OPERATOR
    operator: str = ""

    def __post_init__(self):
        super().__post_init__()
        if not self.operator:
            raise ValueError(f"{self.ref}: operator address is required")

    def apply(self, context: "ExecutionContext") -> Dict[str, Any]:
        added = context.registry.add_operator(self.operator, context)
        return {"operator": self.operator, "added": added}

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "operator": self.operator}


@dataclass(frozen=True)
class RemoveOperator(Action):
    kind: ClassVar[ActionKind] = ActionKind.REMOVE_OPERATOR
    operator: str = ""

    def __post_init__(self):
        super().__post_init__()
        if not self.operator:
            raise ValueError(f"{self.ref}: operator address is required")

    def apply(self, context: "ExecutionContext") -> Dict[str, Any]:
        removed = context.registry.remove_operator(self.operator, context)
        return {"operator": self.operator, "removed": removed}

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "operator": self.operator}


@dataclass(frozen=True)
class TransferFunds(Action):
    kind: ClassVar[ActionKind] = ActionKind.TRANSFER_FUNDS
    amount: Decimal = Decimal("0")
    recipient: str = ""

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if self.amount <= 0:
            raise InvalidAmountError(f"{self.ref}: amount must be positive")
        if not self.recipient:
            raise ValueError(f"{self.ref}: recipient is required")

    def apply(self, context: "ExecutionContext") -> Dict[str, Any]:
        context.treasury.transfer(self.amount, self.recipient, context)
        return {"recipient": self.recipient, "amount": str(self.amount)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "amount": str(self.amount),
            "recipient": self.recipient,
        }


_ACTION_TYPES: Dict[ActionKind, type] = {
    ActionKind.BOOTSTRAP: Bootstrap,
    ActionKind.ADD_OPERATOR: AddOperator,
    ActionKind.REMOVE_OPERATOR: RemoveOperator,
    ActionKind.TRANSFER_FUNDS: TransferFunds,
}


def action_from_dict(data: Dict[str, Any]) -> Action:
    """Build an action from a config/serialized mapping with a ``kind`` tag."""
    try:
        kind = ActionKind(data["kind"])
    except (KeyError, ValueError):
        raise ValueError(f"Unknown action kind: {data.get('kind')!r}")
    ref = data.get("ref", "")

    if kind == ActionKind.BOOTSTRAP:
        return Bootstrap(
            ref=ref,
            operators=tuple(data.get("operators", ())),
            extensions=tuple(data.get("extensions", ())),
        )
    elif kind == ActionKind.ADD_OPERATOR:
        return AddOperator(ref=ref, operator=data.get("operator", ""))
    elif kind == ActionKind.REMOVE_OPERATOR:
        return RemoveOperator(ref=ref, operator=data.get("operator", ""))
    return TransferFunds(
        ref=ref,
        amount=Decimal(str(data.get("amount", "0"))),
        recipient=data.get("recipient", ""),
    )


@dataclass
class ActionTable:
    """Reference table resolving action references to actions."""
    _actions: Dict[str, Action] = field(default_factory=dict)

    @classmethod
    def of(cls, actions: Iterable[Action]) -> "ActionTable":
        table = cls()
        for action in actions:
            table.register(action)
        return table

    def register(self, action: Action) -> None:
        if type(action) not in _ACTION_TYPES.values():
            raise TypeError(f"Unsupported action type: {type(action).__name__}")
        if action.ref in self._actions:
            raise ValueError(f"Action reference already registered: {action.ref}")
        self._actions[action.ref] = action

    def resolve(self, ref: str) -> Action:
        action = self._actions.get(ref)
        if action is None:
            raise UnknownExtensionError(f"Unknown action reference: {ref}")
        return action

    def refs(self) -> List[str]:
        return sorted(self._actions)

    def __contains__(self, ref: object) -> bool:
        return ref in self._actions

    def __iter__(self) -> Iterator[Action]:
        return iter(self._actions.values())

    def __len__(self) -> int:
        return len(self._actions)

    def to_dict(self) -> Dict[str, Any]:
        return {ref: self._actions[ref].to_dict() for ref in self.refs()}
