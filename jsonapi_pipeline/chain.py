"""Handler chain: before hook -> core handler -> after hook.

The stages run strictly in this order. An error raised by a stage aborts the chain and
propagates unchanged: no later stage runs and, when the chain runs in a transaction,
the transaction is rolled back.
"""

from typing import Any, Optional, Sequence

import jsonapi_pipeline
from .context import OperationContext
from .db import DB, TxOptions
from .errors import InternalError
from .handlers import OperationSlots
from .tx import transaction


def dispatch(slots: OperationSlots, ctx: OperationContext, db: DB, args: Sequence[Any], after_args: Sequence[Any] = (), required: bool = True) -> Any:
    """Run the stages of an operation

    :param slots: the resolved stages
    :param ctx: operation context
    :param db: storage, a transaction when the caller runs the chain in one
    :param args: arguments of the before hook and the core handler, after ctx and db
    :param after_args: arguments of the after hook preceding the result
    :param required: the core handler must return a result
    :return: the core handler result
    :raise InternalError: no core handler or no result
    """
    if slots.handle is None:
        raise InternalError(f"no handler for the '{slots.operation}' operation")
    if slots.before is not None:
        ctx.check()
        slots.before(ctx, db, *args)
    ctx.check()
    result = slots.handle(ctx, db, *args)
    if result is None and required:
        raise InternalError(f"the '{slots.operation}' handler returned no result")
    if slots.after is not None:
        ctx.check()
        slots.after(ctx, db, *after_args, result)
    return result


def execute(
    slots: OperationSlots,
    ctx: OperationContext,
    db: DB,
    args: Sequence[Any],
    after_args: Sequence[Any] = (),
    required: bool = True,
    with_transaction: bool = False,
    tx_options: Optional[TxOptions] = None,
) -> Any:
    """Run the chain, in a transaction when the caller requires one or the handler opts in

    The transaction is committed only after the after hook succeeded.
    """
    ctx = slots.context(ctx)
    options = slots.tx_options or tx_options
    if not with_transaction and slots.tx_options is None:
        return dispatch(slots, ctx, db, args, after_args, required)
    jsonapi_pipeline.log.debug(f"Running the '{slots.operation}' chain in a transaction")
    with transaction(ctx, db, options) as tx:
        return dispatch(slots, ctx, tx, args, after_args, required)
