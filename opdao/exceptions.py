"""
Operator DAO Exceptions

Every governance failure carries a numeric code from the error
namespace in ``opdao.constants`` so that callers can map it to a ledger-style
``err`` response.
"""

from .constants import (
    ERR_ACTION_MISMATCH,
    ERR_ALREADY_CONSTRUCTED,
    ERR_ALREADY_EXECUTED,
    ERR_ALREADY_VOTED,
    ERR_INSUFFICIENT_FUNDS,
    ERR_INVALID_AMOUNT,
    ERR_INVALID_PROPOSAL,
    ERR_NOT_CONSTRUCTED,
    ERR_NOT_OPERATOR,
    ERR_PROPOSAL_NOT_FOUND,
    ERR_REENTRANT_CALL,
    ERR_UNAUTHORIZED,
    ERR_UNKNOWN_EXTENSION,
    ERROR_NAMES,
)


class DAOError(Exception):
    """Base exception for the governance engine."""
    code: int = ERR_UNAUTHORIZED

    def __init__(self, message: str = "", code: int = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.error_name)

    @property
    def error_name(self) -> str:
        return ERROR_NAMES.get(self.code, "unknown")


# ── Taxonomy ─────────────────────────────────────────────────────────

class AuthorizationError(DAOError):
    """Caller is not allowed to perform the operation."""


class StateConflictError(DAOError):
    """Operation conflicts with the current governance state."""


class NotFoundError(DAOError):
    """Referenced proposal, operator or extension does not exist."""


class ValidationError(DAOError):
    """Arguments are malformed."""


# ── Authorization ────────────────────────────────────────────────────

class UnauthorizedError(AuthorizationError):
    """Privileged call outside the dispatcher's execution context."""
    code = ERR_UNAUTHORIZED


class NotOperatorError(AuthorizationError):
    """Caller is not in the operator registry."""
    code = ERR_NOT_OPERATOR


# ── State conflicts ──────────────────────────────────────────────────

class AlreadyExecutedError(StateConflictError):
    code = ERR_ALREADY_EXECUTED


class AlreadyVotedError(StateConflictError):
    code = ERR_ALREADY_VOTED


class AlreadyConstructedError(StateConflictError):
    code = ERR_ALREADY_CONSTRUCTED


class NotConstructedError(StateConflictError):
    code = ERR_NOT_CONSTRUCTED


class ReentrantCallError(StateConflictError):
    """Governance entry point called while an action is being applied."""
    code = ERR_REENTRANT_CALL


class ActionMismatchError(StateConflictError):
    """Signal names a different action than the proposal."""
    code = ERR_ACTION_MISMATCH


class InsufficientFundsError(StateConflictError):
    code = ERR_INSUFFICIENT_FUNDS


# ── Not found ────────────────────────────────────────────────────────

class ProposalNotFoundError(NotFoundError):
    code = ERR_PROPOSAL_NOT_FOUND


class UnknownExtensionError(NotFoundError):
    code = ERR_UNKNOWN_EXTENSION


# ── Validation ───────────────────────────────────────────────────────

class InvalidProposalError(ValidationError):
    code = ERR_INVALID_PROPOSAL


class InvalidAmountError(ValidationError):
    code = ERR_INVALID_AMOUNT


class ConfigurationError(Exception):
    """Configuration error."""
    pass
