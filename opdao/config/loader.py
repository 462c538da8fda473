"""
Operator DAO TOML Configuration Loader

Loads every section of config.toml with environment variable overrides
(dataclass + from_dict + from_file per section).

Environment variable mapping:
    [dao] deployer                    → OPDAO_DEPLOYER
    [dao] signals_required            → OPDAO_SIGNALS_REQUIRED
    [dao] enforce_extension_allowlist → OPDAO_ENFORCE_ALLOWLIST
    [storage] path                    → OPDAO_STATE_DB
    [logging] level                   → OPDAO_LOG_LEVEL
    config file path                  → OPDAO_CONFIG
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    ADD_OPERATOR_REF,
    BOOTSTRAP_REF,
    GOVERNANCE_MAX_DESCRIPTION_LENGTH,
    GOVERNANCE_SIGNALS_REQUIRED,
    LOG_LEVEL,
    OPDAO_DEPLOYER,
    OPDAO_STATE_DB,
    REMOVE_OPERATOR_REF,
    TRANSFER_FUNDS_REF,
    TREASURY_CONTRACT,
    VALID_PRINCIPAL_PATTERN,
    parse_bool,
)
from ..exceptions import ConfigurationError, DAOError
from ..governance.actions import ActionKind, ActionTable, action_from_dict
from ..logger import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Reference deployment: three operators, 2-of-3 signals
# ---------------------------------------------------------------------------

REFERENCE_OPERATORS = [
    "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM",
    "ST2REHHS5J3CERCRBEPMGH7921Q6PYKAADT7JP2VB",
    "ST2NEB84ASENDXKYGJPQW86YXQCEFEX2ZQPG87ND",
]

REFERENCE_ACTIONS: List[Dict[str, Any]] = [
    {
        "ref": ADD_OPERATOR_REF,
        "kind": ActionKind.ADD_OPERATOR.value,
        "operator": "ST2JHG361ZXG51QTKY2NQCVBPPRRE2KZB1HR05NNC",
    },
    {
        "ref": REMOVE_OPERATOR_REF,
        "kind": ActionKind.REMOVE_OPERATOR.value,
        "operator": "ST2JHG361ZXG51QTKY2NQCVBPPRRE2KZB1HR05NNC",
    },
    {
        "ref": TRANSFER_FUNDS_REF,
        "kind": ActionKind.TRANSFER_FUNDS.value,
        "amount": "1000",
        "recipient": "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5",
    },
]

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class DAOSectionConfig:
    """[dao] section."""
    deployer: str = str(OPDAO_DEPLOYER)
    signals_required: int = GOVERNANCE_SIGNALS_REQUIRED
    max_description_length: int = GOVERNANCE_MAX_DESCRIPTION_LENGTH
    enforce_extension_allowlist: bool = True
    treasury_contract: str = TREASURY_CONTRACT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DAOSectionConfig":
        return cls(
            deployer=data.get("deployer", str(OPDAO_DEPLOYER)),
            signals_required=data.get("signals_required", GOVERNANCE_SIGNALS_REQUIRED),
            max_description_length=data.get(
                "max_description_length", GOVERNANCE_MAX_DESCRIPTION_LENGTH
            ),
            enforce_extension_allowlist=data.get("enforce_extension_allowlist", True),
            treasury_contract=data.get("treasury_contract", TREASURY_CONTRACT),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("OPDAO_DEPLOYER"):
            self.deployer = v
        if v := os.environ.get("OPDAO_SIGNALS_REQUIRED"):
            try:
                self.signals_required = int(v)
            except ValueError:
                raise ConfigurationError(f"OPDAO_SIGNALS_REQUIRED must be an integer: {v!r}")
        if v := os.environ.get("OPDAO_ENFORCE_ALLOWLIST"):
            parsed = parse_bool(v)
            if not isinstance(parsed, bool):
                raise ConfigurationError(f"OPDAO_ENFORCE_ALLOWLIST must be true/false: {v!r}")
            self.enforce_extension_allowlist = parsed


@dataclass
class BootstrapConfig:
    """[bootstrap] section: initial authority."""
    ref: str = BOOTSTRAP_REF
    operators: List[str] = field(default_factory=lambda: list(REFERENCE_OPERATORS))
    extensions: List[str] = field(default_factory=lambda: [
        ADD_OPERATOR_REF, REMOVE_OPERATOR_REF, TRANSFER_FUNDS_REF,
    ])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BootstrapConfig":
        defaults = cls()
        return cls(
            ref=data.get("ref", BOOTSTRAP_REF),
            operators=list(data.get("operators", defaults.operators)),
            extensions=list(data.get("extensions", defaults.extensions)),
        )

    def to_action_dict(self) -> Dict[str, Any]:
        return {
            "ref": self.ref,
            "kind": ActionKind.BOOTSTRAP.value,
            "operators": list(self.operators),
            "extensions": list(self.extensions),
        }


@dataclass
class GenesisConfig:
    """[genesis] section: ledger balances present before the first block."""
    balances: Dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenesisConfig":
        balances: Dict[str, Decimal] = {}
        for address, amount in data.get("balances", {}).items():
            try:
                balances[address] = Decimal(str(amount))
            except InvalidOperation:
                raise ConfigurationError(f"Invalid genesis balance for {address}: {amount!r}")
        return cls(balances=balances)


@dataclass
class StorageConfig:
    """[storage] section."""
    path: str = str(OPDAO_STATE_DB)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        return cls(path=data.get("path", str(OPDAO_STATE_DB)))

    def apply_env(self) -> None:
        if v := os.environ.get("OPDAO_STATE_DB"):
            self.path = v


@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = str(LOG_LEVEL)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(level=str(data.get("level", str(LOG_LEVEL))).upper())

    def apply_env(self) -> None:
        if v := os.environ.get("OPDAO_LOG_LEVEL"):
            self.level = v.upper()


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass
class DAOConfig:
    """Complete configuration of one DAO deployment."""
    dao: DAOSectionConfig = field(default_factory=DAOSectionConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    actions: List[Dict[str, Any]] = field(
        default_factory=lambda: [dict(a) for a in REFERENCE_ACTIONS]
    )
    genesis: GenesisConfig = field(default_factory=GenesisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DAOConfig":
        actions = data.get("actions")
        return cls(
            dao=DAOSectionConfig.from_dict(data.get("dao", {})),
            bootstrap=BootstrapConfig.from_dict(data.get("bootstrap", {})),
            actions=(
                [dict(a) for a in actions] if actions is not None
                else [dict(a) for a in REFERENCE_ACTIONS]
            ),
            genesis=GenesisConfig.from_dict(data.get("genesis", {})),
            storage=StorageConfig.from_dict(data.get("storage", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, path: str) -> "DAOConfig":
        """
        Load from TOML. A missing file yields defaults with env overrides.
        """
        p = Path(path)
        if not p.exists():
            logger.debug(f"Config file {path} not found, using defaults")
            cfg = cls()
            cfg.apply_env()
            return cfg

        try:
            with open(p, "rb") as f:
                raw = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}")

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.dao.apply_env()
        self.storage.apply_env()
        self.logging.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if not VALID_PRINCIPAL_PATTERN.match(self.dao.deployer or ""):
            raise ConfigurationError(f"Invalid deployer principal: {self.dao.deployer!r}")
        if isinstance(self.dao.signals_required, bool) or \
                not isinstance(self.dao.signals_required, int) or self.dao.signals_required < 1:
            raise ConfigurationError("signals_required must be an integer >= 1")
        if self.dao.max_description_length < 1:
            raise ConfigurationError("max_description_length must be >= 1")
        if not self.bootstrap.operators:
            raise ConfigurationError("bootstrap.operators cannot be empty")
        for operator in self.bootstrap.operators:
            if not VALID_PRINCIPAL_PATTERN.match(operator):
                raise ConfigurationError(f"Invalid operator principal: {operator!r}")
        if len(set(self.bootstrap.operators)) != len(self.bootstrap.operators):
            raise ConfigurationError("bootstrap.operators contains duplicates")
        if self.logging.level not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.logging.level}")

        known = {a.get("ref") for a in self.actions}
        for ref in self.bootstrap.extensions:
            if ref not in known:
                raise ConfigurationError(f"bootstrap extension {ref!r} has no [[actions]] entry")
        self.build_actions()
        return True

    def build_actions(self) -> ActionTable:
        """Action table holding the bootstrap plus every [[actions]] entry."""
        try:
            return ActionTable.of(
                action_from_dict(data)
                for data in [self.bootstrap.to_action_dict(), *self.actions]
            )
        except (ValueError, TypeError, DAOError) as e:
            raise ConfigurationError(f"Invalid action definition: {e}")

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "dao": {
                "deployer": self.dao.deployer,
                "signals_required": self.dao.signals_required,
                "max_description_length": self.dao.max_description_length,
                "enforce_extension_allowlist": self.dao.enforce_extension_allowlist,
                "treasury_contract": self.dao.treasury_contract,
            },
            "bootstrap": self.bootstrap.to_action_dict(),
            "actions": [dict(a) for a in self.actions],
            "genesis": {
                "balances": {k: str(v) for k, v in self.genesis.balances.items()},
            },
            "storage": {"path": self.storage.path},
            "logging": {"level": self.logging.level},
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> DAOConfig:
    """
    Load DAO configuration.

    Resolution order:
        1. Explicit *path* argument
        2. OPDAO_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("OPDAO_CONFIG", "config.toml")

    return DAOConfig.from_file(path)
