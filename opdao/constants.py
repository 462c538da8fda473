"""
Operator DAO Constants

This module consolidates the protocol constants and environment configuration
used throughout the package. Constants are organized by category for easy
reference and maintenance.
"""
import ast
import re
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

DAO_DEFAULTS = {
    'OPDAO_DEPLOYER':                  'ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM',
    'OPDAO_STATE_DB':                  'data/opdao.db',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# GOVERNANCE PARAMETERS
# ==================================================================================
# Approving signals needed to execute a proposal. Fixed: it does not scale
# with the size of the operator set.
GOVERNANCE_SIGNALS_REQUIRED = 2

# Proposal descriptions are bounded ASCII text
GOVERNANCE_MAX_DESCRIPTION_LENGTH = 256

# Proposal ids start at 1 and never repeat
GOVERNANCE_FIRST_PROPOSAL_ID = 1

# Contract names deployed under the deployer principal
DAO_CORE_CONTRACT = 'dao-core'
OPERATOR_GOVERNANCE_CONTRACT = 'operator-governance'
TREASURY_CONTRACT = 'treasury'

# Action references used by the reference deployment
BOOTSTRAP_REF = 'dp000-bootstrap'
ADD_OPERATOR_REF = 'dp001-add-operator'
REMOVE_OPERATOR_REF = 'dp002-remove-operator'
TRANSFER_FUNDS_REF = 'dp003-transfer-stx'


# ==================================================================================
# ERROR CODES
# ==================================================================================
# 4001, 4003 and 4004 match the deployed contracts. 4010 is unassigned.
ERR_UNAUTHORIZED = 4000
ERR_ALREADY_EXECUTED = 4001
ERR_PROPOSAL_NOT_FOUND = 4002
ERR_ALREADY_VOTED = 4003
ERR_NOT_OPERATOR = 4004
ERR_ALREADY_CONSTRUCTED = 4005
ERR_NOT_CONSTRUCTED = 4006
ERR_REENTRANT_CALL = 4007
ERR_ACTION_MISMATCH = 4008
ERR_INSUFFICIENT_FUNDS = 4009
ERR_INVALID_PROPOSAL = 4011
ERR_UNKNOWN_EXTENSION = 4012
ERR_INVALID_AMOUNT = 4013

ERROR_NAMES = {
    ERR_UNAUTHORIZED:        'unauthorized',
    ERR_ALREADY_EXECUTED:    'already-executed',
    ERR_PROPOSAL_NOT_FOUND:  'not-found',
    ERR_ALREADY_VOTED:       'already-voted',
    ERR_NOT_OPERATOR:        'not-operator',
    ERR_ALREADY_CONSTRUCTED: 'already-constructed',
    ERR_NOT_CONSTRUCTED:     'not-constructed',
    ERR_REENTRANT_CALL:      'reentrant-call',
    ERR_ACTION_MISMATCH:     'action-mismatch',
    ERR_INSUFFICIENT_FUNDS:  'insufficient-funds',
    ERR_INVALID_PROPOSAL:    'invalid-proposal',
    ERR_UNKNOWN_EXTENSION:   'unknown-extension',
    ERR_INVALID_AMOUNT:      'invalid-amount',
}


# ==================================================================================
# VALIDATION PATTERNS
# ==================================================================================
# Printable ASCII only, matching a string-ascii ledger field
VALID_DESCRIPTION_PATTERN = re.compile(r'^[\x20-\x7E]*$')

# Principals: a standard address, optionally followed by ".contract-name"
VALID_PRINCIPAL_PATTERN = re.compile(r'^[0-9A-Za-z]{1,64}(\.[a-zA-Z][a-zA-Z0-9\-_]{0,39})?$')


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = DAO_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Only calls ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        # ast.literal_eval expects "True"/"False"
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
