import logging

import pytest

from jsonapi_pipeline import OperationContext, TxState, run_in_transaction, transaction
from jsonapi_pipeline.tx import current_tx


class FakeTx:
    def __init__(self, fail_rollback: bool = False) -> None:
        self.state = TxState.BEGUN
        self.fail_rollback = fail_rollback

    def commit(self) -> None:
        self.state = TxState.COMMITTED

    def rollback(self) -> None:
        if self.fail_rollback:
            raise RuntimeError("connection lost")
        self.state = TxState.ROLLED_BACK


class FakeDB:
    def __init__(self, tx: FakeTx = None) -> None:
        self.tx = tx or FakeTx()
        self.begun = 0

    def begin(self, ctx, options=None) -> FakeTx:
        self.begun += 1
        return self.tx


def test_commit_when_the_block_completes() -> None:
    db = FakeDB()

    with transaction(OperationContext.background(), db) as tx:
        assert current_tx() is tx

    assert db.tx.state is TxState.COMMITTED
    assert current_tx() is None


def test_rollback_when_the_block_raises() -> None:
    db = FakeDB()

    with pytest.raises(ValueError, match="after hook"):
        with transaction(OperationContext.background(), db):
            raise ValueError("after hook")

    assert db.tx.state is TxState.ROLLED_BACK


def test_failing_rollback_doesnt_mask_the_error(caplog: pytest.LogCaptureFixture) -> None:
    db = FakeDB(FakeTx(fail_rollback=True))

    with caplog.at_level(logging.ERROR):
        with pytest.raises(ValueError, match="original"):
            with transaction(OperationContext.background(), db):
                raise ValueError("original")

    assert "connection lost" in caplog.text


def test_running_transaction_is_reused() -> None:
    db = FakeDB()
    ctx = OperationContext.background()

    with transaction(ctx, db) as outer:
        with transaction(ctx, db) as inner:
            assert inner is outer
        # the nested block doesn't commit
        assert outer.state is TxState.BEGUN

    assert db.begun == 1
    assert db.tx.state is TxState.COMMITTED


def test_run_in_transaction() -> None:
    db = FakeDB()

    assert run_in_transaction(OperationContext.background(), db, None, lambda tx: tx is db.tx)
    assert db.tx.state is TxState.COMMITTED
