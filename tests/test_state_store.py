"""
SQLite state store tests.
"""

import os
import sys
from decimal import Decimal

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from opdao.config import DAOConfig
from opdao.constants import ADD_OPERATOR_REF
from opdao.dao import OperatorDAO
from opdao.storage import StateStoreSQLite


DEPLOYER = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
OP2 = "ST2REHHS5J3CERCRBEPMGH7921Q6PYKAADT7JP2VB"
OUTSIDER = "ST3AM1A56AK2C1XAFJ4115ZSV26EB49BVQ10MGCS0"


def make_dao() -> OperatorDAO:
    cfg = DAOConfig()
    cfg.dao.deployer = DEPLOYER
    cfg.genesis.balances = {DEPLOYER: Decimal("500")}
    dao = OperatorDAO(cfg)
    dao.construct(DEPLOYER)
    return dao


class TestStateStore:
    """dao_state row and tx_receipts log."""

    @pytest.mark.asyncio
    async def test_empty_store(self, tmp_path):
        store = await StateStoreSQLite.create(str(tmp_path / "data" / "opdao.db"))
        try:
            assert await store.load_state() is None
            assert await store.get_state_root() is None
            assert await store.get_receipts() == []
        finally:
            await store.close()
        assert os.path.exists(tmp_path / "data" / "opdao.db")

    @pytest.mark.asyncio
    async def test_save_and_reload(self, tmp_path):
        db_path = str(tmp_path / "opdao.db")
        dao = make_dao()
        pid = dao.create_proposal(DEPLOYER, "Add operator", ADD_OPERATOR_REF)
        dao.signal(DEPLOYER, pid, True)

        store = await StateStoreSQLite.create(db_path)
        try:
            await store.save_state(dao.export_state())
        finally:
            await store.close()

        store = await StateStoreSQLite.create(db_path)
        try:
            saved = await store.load_state()
            assert await store.get_state_root() == dao.compute_state_root()
        finally:
            await store.close()

        restored = OperatorDAO(dao.config)
        restored.load_state(saved)
        assert restored.compute_state_root() == dao.compute_state_root()
        assert restored.get_vote(pid, DEPLOYER) is True

    @pytest.mark.asyncio
    async def test_save_overwrites_single_row(self, tmp_path):
        dao = make_dao()
        store = await StateStoreSQLite.create(str(tmp_path / "opdao.db"))
        try:
            await store.save_state(dao.export_state())
            dao.create_proposal(DEPLOYER, "Add operator", ADD_OPERATOR_REF)
            await store.save_state(dao.export_state())

            saved = await store.load_state()
            assert saved["host"]["blockHeight"] == dao.block_height
            cursor = await store.connection.execute("SELECT COUNT(*) AS n FROM dao_state")
            row = await cursor.fetchone()
            assert row["n"] == 1
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_receipts(self, tmp_path):
        store = await StateStoreSQLite.create(str(tmp_path / "opdao.db"))
        try:
            await store.add_receipt(1, "construct", DEPLOYER, [], True, result=True)
            await store.add_receipt(
                2, "create-proposal", OUTSIDER, ["Sneaky", ADD_OPERATOR_REF], False,
                error_code=4004, error="not an operator",
            )
            await store.add_receipt(2, "deposit", OP2, [Decimal("5")], True, result=Decimal("5"))

            receipts = await store.get_receipts()
            assert [r["method"] for r in receipts] == ["deposit", "create-proposal", "construct"]
            assert receipts[0]["args"] == ["5"]
            assert receipts[2]["result"] is True

            failed = await store.get_receipts(sender=OUTSIDER)
            assert len(failed) == 1
            assert failed[0]["success"] is False
            assert failed[0]["error_code"] == 4004

            assert len(await store.get_receipts(limit=1)) == 1
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_close_twice(self, tmp_path):
        store = await StateStoreSQLite.create(str(tmp_path / "opdao.db"))
        await store.close()
        await store.close()
        assert store.connection is None
