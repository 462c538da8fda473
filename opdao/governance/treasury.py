"""
Treasury Guard

Custodial balance held by the treasury contract principal. Anyone may
deposit; funds leave only through ``transfer``, which requires the
dispatcher's active execution context for an executed proposal.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..constants import TREASURY_CONTRACT
from ..exceptions import InsufficientFundsError, InvalidAmountError, UnauthorizedError
from ..host import contract_principal
from ..logger import get_logger

if TYPE_CHECKING:
    from .state import DAOState, ExecutionContext

logger = get_logger(__name__)


class Treasury:
    """Balance lives in the host ledger under ``<deployer>.treasury``."""

    def __init__(self, state: "DAOState", contract_name: str = TREASURY_CONTRACT):
        self._state = state
        self.address = contract_principal(state.deployer, contract_name)

    @property
    def balance(self) -> Decimal:
        return self._state.host.get_balance(self.address)

    def deposit(self, sender: str, amount: Decimal) -> Decimal:
        """Move *amount* from *sender* into the treasury. Open to anyone."""
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmountError(f"Deposit amount must be positive, got {amount}")
        self._state.host.transfer(sender, self.address, amount)
        self._state.emit("treasury-deposit", sender=sender, amount=str(amount))
        logger.info(f"Treasury deposit: {amount} from {sender}")
        return self.balance

    def transfer(
        self,
        amount: Decimal,
        recipient: str,
        context: Optional["ExecutionContext"] = None,
    ) -> Decimal:
        """
        Release *amount* to *recipient*.

        Raises:
            UnauthorizedError: no active dispatcher context, or the context
                does not belong to an executing proposal
            InvalidAmountError: amount is not positive
            InsufficientFundsError: treasury balance is short
        """
        self._state.require_active_context(context)
        if context.proposal_id is None or context.caller != self._state.dao_address:
            raise UnauthorizedError("Treasury transfers require an executing proposal")

        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmountError(f"Transfer amount must be positive, got {amount}")
        if self.balance < amount:
            raise InsufficientFundsError(
                f"Treasury holds {self.balance}, cannot release {amount}"
            )

        self._state.host.transfer(self.address, recipient, amount)
        self._state.emit(
            "treasury-transfer",
            recipient=recipient,
            amount=str(amount),
            proposalId=context.proposal_id,
        )
        logger.info(
            f"Treasury transfer: {amount} → {recipient} (proposal #{context.proposal_id})"
        )
        return self.balance

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "balance": str(self.balance)}

    def __repr__(self) -> str:
        return f"<Treasury {self.address} balance={self.balance}>"
