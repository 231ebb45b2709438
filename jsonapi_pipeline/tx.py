# -*- coding: utf-8 -*-

"""Transaction helpers.

An operation that writes more than one statement (f.i. an insert with relations, or a
relationship mutation) runs its hooks and writes in a single transaction:
- the transaction is committed when the operation completes
- the transaction is rolled back when any stage raises, the original error is re-raised
- a failing rollback is logged, it never masks the original error

The running transaction is tracked in a ContextVar so that nested helpers reuse it
instead of beginning a new one.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Iterator, Optional

import jsonapi_pipeline
from .context import OperationContext
from .db import DB, Tx, TxOptions

_CURRENT_TX: ContextVar[Optional[Tx]] = ContextVar("jsonapi_pipeline_tx", default=None)


def current_tx() -> Optional[Tx]:
    """Return the transaction of the running operation, if any."""
    tx = _CURRENT_TX.get()
    if tx is None or tx.state.done:
        return None
    return tx


def in_transaction(db: DB) -> bool:
    return isinstance(db, Tx) and not db.state.done


def rollback_quietly(tx: Tx) -> None:
    """Roll back, errors are logged and swallowed so the caller can raise the original error"""
    try:
        tx.rollback()
    except Exception as exc:  # pragma: no cover
        jsonapi_pipeline.log.error(f"Rolling back the transaction failed: {exc}")


@contextmanager
def transaction(ctx: OperationContext, db: DB, options: Optional[TxOptions] = None) -> Iterator[Tx]:
    """Run the block in a transaction

    When db is already a running transaction (or an operation transaction is active) it is reused
    and left for its owner to commit or roll back.

    :param ctx: operation context
    :param db: storage
    :param options: transaction options, only used when a new transaction is begun
    """
    running = db if in_transaction(db) else current_tx()
    if running is not None:
        yield running
        return

    tx = db.begin(ctx, options)
    token = _CURRENT_TX.set(tx)
    try:
        yield tx
    except BaseException:
        rollback_quietly(tx)
        raise
    else:
        if not tx.state.done:
            tx.commit()
    finally:
        _CURRENT_TX.reset(token)


def run_in_transaction(ctx: OperationContext, db: DB, options: Optional[TxOptions], fn: Callable[[Tx], Any]) -> Any:
    """
    :return: fn(tx), the transaction is committed when fn returns and rolled back when it raises
    """
    with transaction(ctx, db, options) as tx:
        return fn(tx)
