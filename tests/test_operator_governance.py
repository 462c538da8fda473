"""
Operator Governance Test Suite

Coverage:
  Registry   : membership queries, privileged mutation guard
  Bootstrap  : one-time construct, deployer check, action table lookups
  Proposals  : sequential ids, operator-only creation, description bounds
  Voting     : 2-of-N threshold, duplicate votes, exactly-once execution
  Execution  : add/remove operator, treasury release, atomic rollback
  Dispatcher : allow-list, re-entrancy, direct-call guards
  Facade     : ledger-style call() results, state export/import
"""

import json
import os
import sys
from decimal import Decimal
from unittest.mock import patch

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from opdao.config import DAOConfig
from opdao.constants import (
    ADD_OPERATOR_REF,
    BOOTSTRAP_REF,
    ERR_ALREADY_EXECUTED,
    ERR_ALREADY_VOTED,
    ERR_NOT_OPERATOR,
    REMOVE_OPERATOR_REF,
    TRANSFER_FUNDS_REF,
)
from opdao.dao import OperatorDAO, TxResult
from opdao.exceptions import (
    ActionMismatchError,
    AlreadyConstructedError,
    AlreadyExecutedError,
    AlreadyVotedError,
    AuthorizationError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidProposalError,
    NotConstructedError,
    NotOperatorError,
    ProposalNotFoundError,
    ReentrantCallError,
    StateConflictError,
    UnauthorizedError,
    UnknownExtensionError,
)
from opdao.governance import (
    ActionTable,
    AddOperator,
    Bootstrap,
    ExecutionContext,
    Proposal,
    ProposalStatus,
    RemoveOperator,
    ThresholdConfig,
    TransferFunds,
    action_from_dict,
)
from opdao.host import ExecutionEnvironment


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

DEPLOYER = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
OP1 = DEPLOYER
OP2 = "ST2REHHS5J3CERCRBEPMGH7921Q6PYKAADT7JP2VB"
OP3 = "ST2NEB84ASENDXKYGJPQW86YXQCEFEX2ZQPG87ND"
NEW_OP = "ST2JHG361ZXG51QTKY2NQCVBPPRRE2KZB1HR05NNC"   # added by dp001
RECIPIENT = "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5"  # paid by dp003
FUNDER = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"
OUTSIDER = "ST3AM1A56AK2C1XAFJ4115ZSV26EB49BVQ10MGCS0"


def make_config(extensions=None, **dao_overrides) -> DAOConfig:
    cfg = DAOConfig()
    cfg.dao.deployer = DEPLOYER
    cfg.genesis.balances = {FUNDER: Decimal("1000000")}
    if extensions is not None:
        cfg.bootstrap.extensions = list(extensions)
    for key, value in dao_overrides.items():
        setattr(cfg.dao, key, value)
    return cfg


def make_dao(constructed=True, **kwargs) -> OperatorDAO:
    dao = OperatorDAO(make_config(**kwargs))
    if constructed:
        dao.construct(DEPLOYER)
    return dao


def approve(dao, pid, *voters):
    """Approve *pid* with each voter in turn, return the last result."""
    result = None
    for voter in voters:
        result = dao.signal(voter, pid, True)
    return result


# ══════════════════════════════════════════════════════════════════════
#  OPERATOR REGISTRY
# ══════════════════════════════════════════════════════════════════════


class TestOperatorRegistry:
    """Membership queries and the privileged mutation guard."""

    def test_bootstrap_operators_registered(self):
        dao = make_dao()
        assert dao.is_operator(OP1)
        assert dao.is_operator(OP2)
        assert dao.is_operator(OP3)
        assert dao.operators() == sorted([OP1, OP2, OP3])

    def test_unknown_address_is_not_operator(self):
        dao = make_dao()
        assert dao.is_operator(OUTSIDER) is False
        assert dao.is_operator("") is False

    def test_add_without_context_unauthorized(self):
        dao = make_dao()
        with pytest.raises(UnauthorizedError):
            dao.state.registry.add_operator(OUTSIDER, None)
        assert not dao.is_operator(OUTSIDER)

    def test_forged_context_unauthorized(self):
        dao = make_dao()
        forged = ExecutionContext(
            caller=dao.address,
            action_ref=ADD_OPERATOR_REF,
            proposal_id=1,
            block_height=dao.block_height,
            state=dao.state,
            treasury=dao.treasury,
        )
        with pytest.raises(UnauthorizedError):
            dao.state.registry.add_operator(OUTSIDER, forged)
        with pytest.raises(UnauthorizedError):
            dao.state.registry.remove_operator(OP3, forged)
        assert dao.is_operator(OP3)

    def test_count(self):
        dao = make_dao()
        assert dao.state.registry.count == 3


# ══════════════════════════════════════════════════════════════════════
#  BOOTSTRAP
# ══════════════════════════════════════════════════════════════════════


class TestConstruct:
    """One-time bootstrap through the dispatcher."""

    def test_construct_returns_true(self):
        dao = make_dao(constructed=False)
        assert dao.construct(DEPLOYER) is True
        assert dao.state.constructed

    def test_construct_enables_extensions(self):
        dao = make_dao()
        assert dao.core.registered_extensions() == sorted(
            [ADD_OPERATOR_REF, REMOVE_OPERATOR_REF, TRANSFER_FUNDS_REF]
        )

    def test_not_operator_before_construct(self):
        dao = make_dao(constructed=False)
        assert not dao.is_operator(OP1)

    def test_second_construct_rejected(self):
        dao = make_dao()
        with pytest.raises(AlreadyConstructedError):
            dao.construct(DEPLOYER)

    def test_second_construct_rejected_for_any_caller(self):
        dao = make_dao()
        with pytest.raises(AlreadyConstructedError):
            dao.construct(OUTSIDER)

    def test_non_deployer_rejected(self):
        dao = make_dao(constructed=False)
        with pytest.raises(UnauthorizedError, match="deployer"):
            dao.construct(OUTSIDER)
        assert not dao.state.constructed
        assert dao.operators() == []

    def test_unknown_bootstrap_ref(self):
        dao = make_dao(constructed=False)
        with pytest.raises(UnknownExtensionError):
            dao.construct(DEPLOYER, "dp999-missing")
        assert not dao.state.constructed

    def test_non_bootstrap_ref_rejected(self):
        dao = make_dao(constructed=False)
        with pytest.raises(UnauthorizedError, match="not a bootstrap"):
            dao.construct(DEPLOYER, ADD_OPERATOR_REF)
        assert not dao.state.constructed

    def test_construct_emits_events(self):
        dao = make_dao()
        names = [e["event"] for e in dao.events]
        assert names.count("operator-added") == 3
        assert names.count("extension-enabled") == 3
        assert names[-1] == "construct"

    def test_failed_construct_leaves_block_height(self):
        dao = make_dao(constructed=False)
        with pytest.raises(UnauthorizedError):
            dao.construct(OUTSIDER)
        assert dao.block_height == 0


# ══════════════════════════════════════════════════════════════════════
#  PROPOSALS
# ══════════════════════════════════════════════════════════════════════


class TestProposalCreation:
    """Sequential ids and creation preconditions."""

    def test_ids_start_at_one(self):
        dao = make_dao()
        assert dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF) == 1
        assert dao.create_proposal(OP2, "Remove operator", REMOVE_OPERATOR_REF) == 2
        assert dao.proposal_count() == 2

    def test_new_proposal_is_pending(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        p = dao.get_proposal(pid)
        assert p.status == ProposalStatus.PENDING
        assert not p.executed
        assert p.votes == {}
        assert p.proposer == OP1
        assert p.action_ref == ADD_OPERATOR_REF
        assert p.created_height == dao.block_height

    def test_non_operator_rejected(self):
        dao = make_dao()
        with pytest.raises(NotOperatorError) as exc:
            dao.create_proposal(OUTSIDER, "Sneaky", ADD_OPERATOR_REF)
        assert exc.value.code == ERR_NOT_OPERATOR
        assert dao.proposal_count() == 0
        assert dao.state.ledger.next_id == 1

    def test_before_construct_rejected(self):
        dao = make_dao(constructed=False)
        with pytest.raises(NotConstructedError):
            dao.create_proposal(OP1, "Too early", ADD_OPERATOR_REF)

    def test_empty_description_rejected(self):
        dao = make_dao()
        with pytest.raises(InvalidProposalError, match="empty"):
            dao.create_proposal(OP1, "", ADD_OPERATOR_REF)

    def test_description_length_bound(self):
        dao = make_dao()
        assert dao.create_proposal(OP1, "x" * 256, ADD_OPERATOR_REF) == 1
        with pytest.raises(InvalidProposalError, match="maximum"):
            dao.create_proposal(OP1, "x" * 257, ADD_OPERATOR_REF)

    def test_non_ascii_description_rejected(self):
        dao = make_dao()
        with pytest.raises(InvalidProposalError, match="ASCII"):
            dao.create_proposal(OP1, "Pay the café", ADD_OPERATOR_REF)

    def test_unknown_action_rejected(self):
        dao = make_dao()
        with pytest.raises(UnknownExtensionError):
            dao.create_proposal(OP1, "Nothing", "dp999-missing")

    def test_failed_creation_does_not_consume_id(self):
        dao = make_dao()
        with pytest.raises(NotOperatorError):
            dao.create_proposal(OUTSIDER, "Sneaky", ADD_OPERATOR_REF)
        assert dao.create_proposal(OP1, "Real", ADD_OPERATOR_REF) == 1

    def test_unknown_proposal_lookup(self):
        dao = make_dao()
        with pytest.raises(ProposalNotFoundError):
            dao.get_proposal(42)

    def test_proposal_hash_deterministic(self):
        dao = make_dao()
        p = dao.get_proposal(dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF))
        assert p.proposal_hash == p.proposal_hash
        assert len(p.proposal_hash) == 64

    def test_invalid_proposal_fields(self):
        with pytest.raises(InvalidProposalError):
            Proposal(id=0, description="x", action_ref=ADD_OPERATOR_REF, proposer=OP1)
        with pytest.raises(InvalidProposalError):
            Proposal(id=1, description="x", action_ref="", proposer=OP1)


class TestProposalLifecycle:
    """PENDING → EXECUTED is the only transition."""

    def test_history_tracks_execution(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        history = dao.get_proposal(pid).history
        assert [h["to"] for h in history] == ["PENDING", "EXECUTED"]

    def test_mark_executed_twice_raises(self):
        p = Proposal(id=1, description="x", action_ref=ADD_OPERATOR_REF, proposer=OP1)
        p.mark_executed(block_height=5, timestamp=1.0)
        assert p.executed_height == 5
        with pytest.raises(AlreadyExecutedError):
            p.mark_executed(block_height=6, timestamp=2.0)

    def test_to_dict_from_dict(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, True)
        dao.signal(OP3, pid, False)
        d = dao.get_proposal(pid).to_dict()
        assert d["approveCount"] == 1
        assert d["rejectCount"] == 1
        p2 = Proposal.from_dict(d)
        assert p2.ballot == {OP1: True, OP3: False}
        assert p2.status == ProposalStatus.PENDING
        assert p2.proposal_hash == d["proposalHash"]


# ══════════════════════════════════════════════════════════════════════
#  VOTING
# ══════════════════════════════════════════════════════════════════════


class TestSignal:
    """Threshold voting and exactly-once execution."""

    def test_first_approval_does_not_execute(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        assert dao.signal(OP1, pid, True) is False
        assert dao.is_proposal_approved(pid) is False
        assert dao.voting.approve_count(pid) == 1

    def test_second_approval_executes(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, True)
        assert dao.signal(OP2, pid, True) is True
        assert dao.is_proposal_approved(pid) is True
        assert dao.is_operator(NEW_OP)

    def test_signal_after_execution_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        with pytest.raises(AlreadyExecutedError) as exc:
            dao.signal(OP3, pid, True)
        assert exc.value.code == ERR_ALREADY_EXECUTED

    def test_signal_after_remove_operator_execution_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Remove operator", REMOVE_OPERATOR_REF)
        assert approve(dao, pid, OP1, OP2) is True
        assert dao.is_operator(OP3)

        result = dao.call("signal", OP3, pid, True)
        assert not result.success
        assert result.error_code == ERR_ALREADY_EXECUTED

    def test_reference_deployment_keeps_voters(self):
        dao = OperatorDAO()
        dao.construct(dao.config.dao.deployer)
        voters = dao.operators()
        pid = dao.create_proposal(voters[0], "Remove operator", REMOVE_OPERATOR_REF)
        approve(dao, pid, voters[0], voters[1])
        assert dao.operators() == voters
        with pytest.raises(AlreadyExecutedError):
            dao.signal(voters[2], pid, False)

    def test_executed_checked_before_already_voted(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        with pytest.raises(AlreadyExecutedError):
            dao.signal(OP1, pid, True)

    def test_double_vote_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, True)
        with pytest.raises(AlreadyVotedError) as exc:
            dao.signal(OP1, pid, True)
        assert exc.value.code == ERR_ALREADY_VOTED
        assert dao.voting.approve_count(pid) == 1

    def test_reject_counts_as_voted(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, False)
        with pytest.raises(AlreadyVotedError):
            dao.signal(OP1, pid, True)
        assert dao.get_vote(pid, OP1) is False

    def test_rejections_do_not_count_toward_threshold(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        assert dao.signal(OP1, pid, False) is False
        assert dao.signal(OP2, pid, True) is False
        assert dao.signal(OP3, pid, True) is True
        assert dao.is_operator(NEW_OP)

    def test_non_operator_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        with pytest.raises(NotOperatorError):
            dao.signal(OUTSIDER, pid, True)
        assert dao.get_vote(pid, OUTSIDER) is None

    def test_not_operator_checked_before_not_found(self):
        dao = make_dao()
        with pytest.raises(NotOperatorError):
            dao.signal(OUTSIDER, 99, True)

    def test_unknown_proposal(self):
        dao = make_dao()
        with pytest.raises(ProposalNotFoundError):
            dao.signal(OP1, 99, True)
        with pytest.raises(ProposalNotFoundError):
            dao.is_proposal_approved(99)

    def test_action_mismatch_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        with pytest.raises(ActionMismatchError):
            dao.signal(OP1, pid, True, REMOVE_OPERATOR_REF)
        assert dao.get_vote(pid, OP1) is None

    def test_matching_action_ref_accepted(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        assert dao.signal(OP1, pid, True, ADD_OPERATOR_REF) is False

    def test_get_votes(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, True)
        dao.signal(OP3, pid, False)
        votes = dao.get_votes(pid)
        assert [(v.voter, v.approve) for v in votes] == [(OP1, True), (OP3, False)]
        assert all(v.proposal_id == pid for v in votes)

    def test_proposals_are_independent(self):
        dao = make_dao()
        p1 = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        p2 = dao.create_proposal(OP1, "Remove operator", REMOVE_OPERATOR_REF)
        dao.signal(OP1, p1, True)
        dao.signal(OP2, p2, True)
        assert dao.voting.approve_count(p1) == 1
        assert dao.voting.approve_count(p2) == 1
        assert [p.id for p in dao.voting.pending_proposals()] == [p1, p2]

    def test_vote_events(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        names = [e["event"] for e in dao.events]
        tail = names[names.index("proposal-created"):]
        assert tail == [
            "proposal-created",
            "vote-cast",
            "vote-cast",
            "operator-added",
            "proposal-executed",
        ]


class TestThresholdConfig:
    """Fixed approval threshold."""

    def test_default_is_two(self):
        assert ThresholdConfig().signals_required == 2

    def test_is_met(self):
        t = ThresholdConfig(2)
        assert not t.is_met(1)
        assert t.is_met(2)
        assert t.is_met(3)

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            ThresholdConfig(0)
        with pytest.raises(TypeError):
            ThresholdConfig(True)

    def test_threshold_does_not_scale_with_operators(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        assert dao.state.registry.count == 4

        pid = dao.create_proposal(OP1, "Pay out", TRANSFER_FUNDS_REF)
        dao.deposit(FUNDER, Decimal("5000"))
        assert approve(dao, pid, NEW_OP, OP3) is True

    def test_configurable_threshold(self):
        dao = make_dao(signals_required=3)
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        assert approve(dao, pid, OP1, OP2) is False
        assert dao.signal(OP3, pid, True) is True


# ══════════════════════════════════════════════════════════════════════
#  EXECUTION
# ══════════════════════════════════════════════════════════════════════


class TestExecution:
    """Action extensions applied through executed proposals."""

    def test_remove_operator(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        assert dao.is_operator(NEW_OP)

        pid = dao.create_proposal(OP1, "Remove operator", REMOVE_OPERATOR_REF)
        assert approve(dao, pid, OP1, OP2) is True
        assert not dao.is_operator(NEW_OP)
        assert dao.core.execution_log[-1]["changes"] == {"operator": NEW_OP, "removed": True}

        pid = dao.create_proposal(OP1, "Add operator again", ADD_OPERATOR_REF)
        with pytest.raises(NotOperatorError):
            dao.signal(NEW_OP, pid, True)

    def test_remove_non_member_is_noop(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Remove operator", REMOVE_OPERATOR_REF)
        assert approve(dao, pid, OP1, OP2) is True

        assert dao.is_proposal_approved(pid)
        assert dao.operators() == sorted([OP1, OP2, OP3])
        assert dao.core.execution_log[-1]["changes"] == {"operator": NEW_OP, "removed": False}
        assert "operator-removed" not in [e["event"] for e in dao.events]

    def test_failed_action_rolls_back_signal(self):
        dao = make_dao(extensions=[ADD_OPERATOR_REF])
        dao.deposit(FUNDER, Decimal("5000"))
        pid = dao.create_proposal(OP1, "Pay out", TRANSFER_FUNDS_REF)
        dao.signal(OP1, pid, True)
        height = dao.block_height
        events = len(dao.events)
        with pytest.raises(UnauthorizedError):
            dao.signal(OP2, pid, True)

        p = dao.get_proposal(pid)
        assert not p.executed
        assert dao.get_vote(pid, OP1) is True
        assert dao.get_vote(pid, OP2) is None
        assert dao.block_height == height
        assert len(dao.events) == events

    def test_add_existing_operator_is_noop(self):
        cfg = make_config()
        cfg.actions = [{"ref": "dp010-add-op2", "kind": "add-operator", "operator": OP2}]
        cfg.bootstrap.extensions = ["dp010-add-op2"]
        dao = OperatorDAO(cfg)
        dao.construct(DEPLOYER)

        pid = dao.create_proposal(OP1, "Add operator 2 again", "dp010-add-op2")
        assert approve(dao, pid, OP1, OP2) is True
        assert dao.state.registry.count == 3
        assert dao.core.execution_log[-1]["changes"] == {"operator": OP2, "added": False}

    def test_transfer_funds(self):
        dao = make_dao()
        dao.deposit(FUNDER, Decimal("5000"))
        assert dao.treasury_balance() == Decimal("5000")

        pid = dao.create_proposal(OP1, "Pay the recipient", TRANSFER_FUNDS_REF)
        approve(dao, pid, OP1, OP2)
        assert dao.get_balance(RECIPIENT) == Decimal("1000")
        assert dao.treasury_balance() == Decimal("4000")

    def test_transfer_insufficient_funds_rolls_back(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Pay the recipient", TRANSFER_FUNDS_REF)
        dao.signal(OP1, pid, True)
        with pytest.raises(InsufficientFundsError):
            dao.signal(OP2, pid, True)
        assert not dao.is_proposal_approved(pid)
        assert dao.get_vote(pid, OP2) is None
        assert dao.get_balance(RECIPIENT) == 0

        # Funded later, the same vote goes through
        dao.deposit(FUNDER, Decimal("1000"))
        assert dao.signal(OP2, pid, True) is True
        assert dao.treasury_balance() == 0
        assert dao.get_balance(RECIPIENT) == Decimal("1000")

    def test_execution_log(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        log = dao.core.execution_log
        assert dao.core.execution_count() == 2  # bootstrap + dp001
        assert log[0]["actionRef"] == BOOTSTRAP_REF
        assert log[0]["proposalId"] is None
        assert log[1]["proposalId"] == pid

    def test_context_cleared_after_execution(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        assert dao.state.active_context is None
        assert not dao.state.execution_in_flight


class TestTreasury:
    """Deposits are open, releases require an executing proposal."""

    def test_deposit(self):
        dao = make_dao()
        assert dao.deposit(FUNDER, Decimal("250")) == Decimal("250")
        assert dao.get_balance(FUNDER) == Decimal("999750")
        assert dao.treasury.address == f"{DEPLOYER}.treasury"

    def test_deposit_without_balance(self):
        dao = make_dao()
        with pytest.raises(InsufficientFundsError):
            dao.deposit(OUTSIDER, Decimal("1"))
        assert dao.treasury_balance() == 0

    def test_deposit_non_positive(self):
        dao = make_dao()
        with pytest.raises(InvalidAmountError):
            dao.deposit(FUNDER, Decimal("0"))

    def test_direct_transfer_unauthorized(self):
        dao = make_dao()
        dao.deposit(FUNDER, Decimal("5000"))
        with pytest.raises(UnauthorizedError):
            dao.treasury.transfer(Decimal("100"), OUTSIDER)
        assert dao.treasury_balance() == Decimal("5000")

    def test_bootstrap_context_cannot_spend(self):
        dao = make_dao(constructed=False)
        dao.deposit(FUNDER, Decimal("5000"))
        context = ExecutionContext(
            caller=dao.address,
            action_ref=BOOTSTRAP_REF,
            proposal_id=None,
            block_height=dao.block_height,
            state=dao.state,
            treasury=dao.treasury,
        )
        dao.state.active_context = context
        try:
            with pytest.raises(UnauthorizedError, match="executing proposal"):
                dao.treasury.transfer(Decimal("100"), OUTSIDER, context)
        finally:
            dao.state.active_context = None


# ══════════════════════════════════════════════════════════════════════
#  DISPATCHER GUARDS
# ══════════════════════════════════════════════════════════════════════


class TestDispatcher:
    """execute_extension only from the threshold-crossing path."""

    def test_below_threshold_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, True)
        with pytest.raises(UnauthorizedError, match="approvals"):
            dao.core.execute_extension(ADD_OPERATOR_REF, dao.get_proposal(pid))
        assert not dao.is_operator(NEW_OP)

    def test_unstored_proposal_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        impostor = Proposal(id=pid, description="x", action_ref=ADD_OPERATOR_REF, proposer=OP1)
        with pytest.raises(UnauthorizedError, match="not executable"):
            dao.core.execute_extension(ADD_OPERATOR_REF, impostor)

        ghost = Proposal(id=99, description="x", action_ref=ADD_OPERATOR_REF, proposer=OP1)
        with pytest.raises(ProposalNotFoundError):
            dao.core.execute_extension(ADD_OPERATOR_REF, ghost)

    def test_ref_must_match_proposal(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        with pytest.raises(UnauthorizedError, match="does not authorize"):
            dao.core.execute_extension(REMOVE_OPERATOR_REF, dao.get_proposal(pid))

    def test_executed_proposal_rejected(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        approve(dao, pid, OP1, OP2)
        with pytest.raises(UnauthorizedError):
            dao.core.execute_extension(ADD_OPERATOR_REF, dao.get_proposal(pid))
        assert dao.core.execution_count() == 2

    def test_allowlist_blocks_unregistered_extension(self):
        dao = make_dao(extensions=[ADD_OPERATOR_REF, REMOVE_OPERATOR_REF])
        dao.deposit(FUNDER, Decimal("5000"))
        pid = dao.create_proposal(OP1, "Pay out", TRANSFER_FUNDS_REF)
        dao.signal(OP1, pid, True)
        with pytest.raises(UnauthorizedError, match="not an enabled extension"):
            dao.signal(OP2, pid, True)
        assert dao.treasury_balance() == Decimal("5000")
        assert not dao.is_proposal_approved(pid)

    def test_allowlist_can_be_disabled(self):
        dao = make_dao(extensions=[ADD_OPERATOR_REF], enforce_extension_allowlist=False)
        dao.deposit(FUNDER, Decimal("5000"))
        pid = dao.create_proposal(OP1, "Pay out", TRANSFER_FUNDS_REF)
        assert approve(dao, pid, OP1, OP2) is True
        assert dao.get_balance(RECIPIENT) == Decimal("1000")

    def test_bootstrap_cannot_run_through_proposal(self):
        dao = make_dao(enforce_extension_allowlist=False)
        pid = dao.create_proposal(OP1, "Bootstrap again", BOOTSTRAP_REF)
        dao.signal(OP1, pid, True)
        with pytest.raises(UnauthorizedError, match="construct"):
            dao.signal(OP2, pid, True)

    def test_is_dao_or_extension(self):
        dao = make_dao()
        assert dao.core.is_dao_or_extension(dao.address)
        assert dao.core.is_dao_or_extension(f"{DEPLOYER}.{ADD_OPERATOR_REF}")
        assert not dao.core.is_dao_or_extension(f"{DEPLOYER}.dp999-missing")
        assert not dao.core.is_dao_or_extension(OP1)


class TestReentrancy:
    """Governance entry points refuse to run while an action is applied."""

    def test_create_proposal_during_execution(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, True)

        def reenter(context):
            return {"nested": dao.create_proposal(OP1, "Nested", ADD_OPERATOR_REF)}

        with patch.object(AddOperator, "apply", side_effect=reenter):
            with pytest.raises(ReentrantCallError):
                dao.signal(OP2, pid, True)

        assert dao.proposal_count() == 1
        assert not dao.is_proposal_approved(pid)
        assert dao.state.active_context is None

    def test_signal_during_execution(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        other = dao.create_proposal(OP1, "Remove operator", REMOVE_OPERATOR_REF)
        dao.signal(OP1, pid, True)

        def reenter(context):
            dao.signal(OP3, other, True)
            return {}

        with patch.object(AddOperator, "apply", side_effect=reenter):
            with pytest.raises(ReentrantCallError):
                dao.signal(OP2, pid, True)

        assert dao.get_vote(other, OP3) is None
        assert dao.get_vote(pid, OP2) is None

    def test_nested_execute_extension(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP1, pid, True)

        def reenter(context):
            return dao.core.execute_extension(ADD_OPERATOR_REF, dao.get_proposal(pid))

        with patch.object(AddOperator, "apply", side_effect=reenter):
            with pytest.raises(ReentrantCallError):
                dao.signal(OP2, pid, True)
        assert dao.core.execution_count() == 1


# ══════════════════════════════════════════════════════════════════════
#  HOST TRANSACTIONS
# ══════════════════════════════════════════════════════════════════════


class TestExecutionEnvironment:
    """All-or-nothing transactions over the balance ledger."""

    def test_commit_opens_block(self):
        host = ExecutionEnvironment(clock=lambda: 1000.0, balances={FUNDER: Decimal("100")})
        with host.atomic():
            host.transfer(FUNDER, OUTSIDER, Decimal("40"))
        assert host.block_height == 1
        assert host.timestamp == 1000.0
        assert host.get_balance(OUTSIDER) == Decimal("40")

    def test_abort_restores_everything(self):
        host = ExecutionEnvironment(balances={FUNDER: Decimal("100")})
        with pytest.raises(InsufficientFundsError):
            with host.atomic():
                host.transfer(FUNDER, OUTSIDER, Decimal("60"))
                host.transfer(FUNDER, OUTSIDER, Decimal("60"))
        assert host.get_balance(FUNDER) == Decimal("100")
        assert host.get_balance(OUTSIDER) == 0
        assert host.block_height == 0
        assert host.to_dict()["aborted"] == 1

    def test_nested_savepoint(self):
        host = ExecutionEnvironment(balances={FUNDER: Decimal("100")})
        with host.atomic():
            host.transfer(FUNDER, OUTSIDER, Decimal("10"))
            with pytest.raises(RuntimeError):
                with host.atomic():
                    host.transfer(FUNDER, OUTSIDER, Decimal("20"))
                    raise RuntimeError("inner")
            assert host.in_transaction
        assert host.get_balance(FUNDER) == Decimal("90")
        assert host.block_height == 1
        assert not host.in_transaction

    def test_dao_savepoints_undo_votes_and_proposals(self):
        dao = make_dao()
        kept = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        events = len(dao.events)
        with pytest.raises(RuntimeError):
            with dao.host.atomic():
                dao.signal(OP1, kept, True)
                created = dao.create_proposal(OP2, "Remove operator", REMOVE_OPERATOR_REF)
                with pytest.raises(AlreadyVotedError):
                    dao.signal(OP1, kept, False)
                assert dao.get_vote(kept, OP1) is True
                raise RuntimeError("abort")

        assert dao.get_vote(kept, OP1) is None
        assert dao.proposal_count() == 1
        assert dao.state.ledger.next_id == created
        assert len(dao.events) == events

    def test_rollback_leaves_untouched_proposals_alone(self):
        dao = make_dao()
        first = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        second = dao.create_proposal(OP1, "Remove operator", REMOVE_OPERATOR_REF)
        stored = dao.get_proposal(first)
        dao.signal(OP1, second, True)

        with patch.object(RemoveOperator, "apply", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                dao.signal(OP2, second, True)

        assert dao.get_proposal(first) is stored
        assert dao.get_vote(second, OP1) is True
        assert dao.get_vote(second, OP2) is None
        assert approve(dao, second, OP2) is True

    def test_transfer_validation(self):
        host = ExecutionEnvironment(balances={FUNDER: Decimal("100")})
        with pytest.raises(InvalidAmountError):
            host.transfer(FUNDER, OUTSIDER, Decimal("-1"))
        with pytest.raises(InvalidAmountError):
            host.transfer(FUNDER, FUNDER, Decimal("1"))

    def test_mint(self):
        host = ExecutionEnvironment()
        host.mint(OUTSIDER, Decimal("5"))
        assert host.get_balance(OUTSIDER) == Decimal("5")
        with pytest.raises(InvalidAmountError):
            host.mint(OUTSIDER, Decimal("0"))


# ══════════════════════════════════════════════════════════════════════
#  ACTIONS
# ══════════════════════════════════════════════════════════════════════


class TestActions:
    """Closed action set and the reference table."""

    def test_from_dict_each_kind(self):
        assert isinstance(action_from_dict(
            {"ref": "b", "kind": "bootstrap", "operators": [OP1]}), Bootstrap)
        assert isinstance(action_from_dict(
            {"ref": "a", "kind": "add-operator", "operator": OP1}), AddOperator)
        assert isinstance(action_from_dict(
            {"ref": "r", "kind": "remove-operator", "operator": OP1}), RemoveOperator)
        transfer = action_from_dict(
            {"ref": "t", "kind": "transfer-funds", "amount": "12.5", "recipient": OP1})
        assert isinstance(transfer, TransferFunds)
        assert transfer.amount == Decimal("12.5")

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown action kind"):
            action_from_dict({"ref": "x", "kind": "mint"})

    def test_bootstrap_needs_operators(self):
        with pytest.raises(ValueError):
            Bootstrap(ref="b", operators=())

    def test_transfer_amount_positive(self):
        with pytest.raises(InvalidAmountError):
            TransferFunds(ref="t", amount=Decimal("0"), recipient=OP1)

    def test_table_rejects_duplicates(self):
        table = ActionTable.of([AddOperator(ref="a", operator=OP1)])
        with pytest.raises(ValueError, match="already registered"):
            table.register(RemoveOperator(ref="a", operator=OP1))

    def test_table_resolve(self):
        table = ActionTable.of([AddOperator(ref="a", operator=OP1)])
        assert "a" in table
        assert len(table) == 1
        assert table.resolve("a").operator == OP1
        with pytest.raises(UnknownExtensionError):
            table.resolve("missing")

    def test_to_dict(self):
        action = TransferFunds(ref="t", amount=Decimal("3"), recipient=OP1)
        assert action.to_dict() == {
            "ref": "t", "kind": "transfer-funds", "amount": "3", "recipient": OP1,
        }


# ══════════════════════════════════════════════════════════════════════
#  FACADE: call() AND STATE EXPORT
# ══════════════════════════════════════════════════════════════════════


class TestCall:
    """Ledger-style ok/err results."""

    def test_construct_ok(self):
        dao = make_dao(constructed=False)
        result = dao.call("construct", DEPLOYER)
        assert isinstance(result, TxResult)
        assert result.success
        assert result.value is True
        assert "construct" in [e["event"] for e in result.logs]

    def test_reference_scenario(self):
        dao = make_dao(constructed=False)
        assert dao.call("construct", DEPLOYER).success
        assert dao.call("create-proposal", OP1, "Add operator", ADD_OPERATOR_REF).value == 1
        assert dao.call("create-proposal", OP2, "Pay out", TRANSFER_FUNDS_REF).value == 2

        assert dao.call("signal", OP1, 1, True).value is False
        dup = dao.call("signal", OP1, 1, True)
        assert not dup.success
        assert dup.error_code == ERR_ALREADY_VOTED

        assert dao.call("signal", OP2, 1, True).value is True
        late = dao.call("signal", OP3, 1, True)
        assert late.error_code == ERR_ALREADY_EXECUTED
        assert dao.call("is-proposal-approved", OUTSIDER, 1).value is True
        assert dao.call("is-operator", OUTSIDER, NEW_OP).value is True

    def test_not_operator_code(self):
        dao = make_dao()
        result = dao.call("create-proposal", OUTSIDER, "Sneaky", ADD_OPERATOR_REF)
        assert not result.success
        assert result.error_code == ERR_NOT_OPERATOR
        assert result.to_dict()["err"] == ERR_NOT_OPERATOR

    def test_underscore_method_names(self):
        dao = make_dao()
        assert dao.call("is_operator", OUTSIDER, OP1).value is True

    def test_unknown_method(self):
        dao = make_dao()
        result = dao.call("mint", OP1)
        assert not result.success
        assert result.error_code is None

    def test_failed_call_has_no_logs(self):
        dao = make_dao()
        result = dao.call("signal", OUTSIDER, 1, True)
        assert result.logs == []


class TestStateExport:
    """export_state / load_state round trip."""

    def _busy_dao(self):
        dao = make_dao()
        dao.deposit(FUNDER, Decimal("5000"))
        pid = dao.create_proposal(OP1, "Pay out", TRANSFER_FUNDS_REF)
        approve(dao, pid, OP1, OP2)
        pending = dao.create_proposal(OP2, "Add operator", ADD_OPERATOR_REF)
        dao.signal(OP3, pending, False)
        return dao

    def test_round_trip(self):
        dao = self._busy_dao()
        exported = json.loads(json.dumps(dao.export_state()))

        restored = OperatorDAO(make_config())
        restored.load_state(exported)
        assert restored.compute_state_root() == dao.compute_state_root()
        assert restored.operators() == dao.operators()
        assert restored.proposal_count() == 2
        assert restored.is_proposal_approved(1)
        assert restored.get_vote(2, OP3) is False
        assert restored.treasury_balance() == Decimal("4000")
        assert restored.block_height == dao.block_height
        assert restored.state.ledger.next_id == 3

    def test_restored_dao_keeps_voting(self):
        dao = self._busy_dao()
        restored = OperatorDAO(make_config())
        restored.load_state(dao.export_state())
        with pytest.raises(AlreadyVotedError):
            restored.signal(OP3, 2, True)
        assert approve(restored, 2, OP1, OP2) is True
        assert restored.is_operator(NEW_OP)

    def test_tampered_state_rejected(self):
        dao = self._busy_dao()
        exported = dao.export_state()
        exported["dao"]["constructed"] = False
        restored = OperatorDAO(make_config())
        with pytest.raises(ValueError, match="State root mismatch"):
            restored.load_state(exported)

    def test_rejected_load_keeps_current_state(self):
        exported = self._busy_dao().export_state()
        exported["dao"]["operators"][OUTSIDER] = 1

        target = make_dao()
        before = target.export_state()
        with pytest.raises(ValueError, match="State root mismatch"):
            target.load_state(exported)

        assert not target.is_operator(OUTSIDER)
        assert target.proposal_count() == 0
        assert target.treasury_balance() == Decimal("0")
        assert target.export_state() == before

        fresh = OperatorDAO(make_config())
        with pytest.raises(ValueError):
            fresh.load_state(exported)
        assert fresh.state.constructed is False
        assert not fresh.is_operator(OUTSIDER)

    def test_unsupported_version(self):
        restored = OperatorDAO(make_config())
        with pytest.raises(ValueError, match="version"):
            restored.load_state({"version": 99})

    def test_state_root_changes_with_votes(self):
        dao = make_dao()
        pid = dao.create_proposal(OP1, "Add operator", ADD_OPERATOR_REF)
        before = dao.compute_state_root()
        dao.signal(OP1, pid, True)
        assert dao.compute_state_root() != before


# ══════════════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════════════


class TestErrors:
    """Error codes and taxonomy."""

    def test_deployed_codes(self):
        assert AlreadyExecutedError.code == 4001
        assert AlreadyVotedError.code == 4003
        assert NotOperatorError.code == 4004

    def test_taxonomy(self):
        assert issubclass(NotOperatorError, AuthorizationError)
        assert issubclass(AlreadyVotedError, StateConflictError)
        assert issubclass(ReentrantCallError, StateConflictError)

    def test_error_name(self):
        err = AlreadyVotedError()
        assert err.error_name == "already-voted"
        assert str(err) == "already-voted"
