"""
Transaction handling and auto-commit management.

`execute_update` is the commit/rollback wrapper used for DDL and other single
statements. `Transaction` groups several operations into one unit of work;
while one is active on a connection the wrapped operations leave commit and
rollback to it.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Any

from datasql.cursor import execute
from datasql.exceptions import StatementFailure
from datasql.strategy import get_db_strategy
from datasql.utils import get_raw_connection

logger = logging.getLogger(__name__)

_local = threading.local()


def _active() -> dict[int, bool]:
    if not hasattr(_local, 'active_transactions'):
        _local.active_transactions = {}
    return _local.active_transactions


def enable_auto_commit(cn: Any) -> None:
    """Enable auto-commit mode for a connection wrapper or raw connection.
    """
    get_db_strategy(cn).enable_autocommit(get_raw_connection(cn))


def disable_auto_commit(cn: Any) -> None:
    """Disable auto-commit mode for a connection wrapper or raw connection.
    """
    get_db_strategy(cn).disable_autocommit(get_raw_connection(cn))


def is_auto_commit(cn: Any) -> bool:
    return get_db_strategy(cn).is_autocommit(get_raw_connection(cn))


@contextmanager
def autocommit_disabled(cn: Any):
    """Run a block with auto-commit off, restoring the previous mode after.
    """
    was_enabled = is_auto_commit(cn)
    if was_enabled:
        disable_auto_commit(cn)
    try:
        yield
    finally:
        if was_enabled:
            enable_auto_commit(cn)


def rollback_quietly(cn: Any) -> None:
    """Best-effort rollback; failures are logged and swallowed."""
    logger.warning('Rolling back after a failed statement')
    try:
        get_raw_connection(cn).rollback()
    except Exception as e:
        logger.debug(f'Rollback failed: {e}')


def commit_unless_managed(cn: Any) -> None:
    """Commit when auto-commit is off and no Transaction owns the connection."""
    if not is_auto_commit(cn) and not Transaction.active(cn):
        get_raw_connection(cn).commit()


def execute_update(cn: Any, sql: str, *args: Any) -> int:
    """Execute a single statement under commit/rollback discipline.

    Returns the driver's rowcount.

    Raises
        StatementFailure: carrying the SQL and the driver error
    """
    cursor = get_raw_connection(cn).cursor()
    try:
        rowcount = execute(cn, cursor, sql, *args)
        commit_unless_managed(cn)
        return rowcount
    except Exception as e:
        if not Transaction.active(cn):
            rollback_quietly(cn)
        raise StatementFailure(f'Error executing statement: {sql}\n{e}', sql=sql, error=e) from e
    finally:
        cursor.close()


class Transaction:
    """Context manager for running multiple operations in one transaction.

    Uses thread-local storage to track transaction state. Nested transactions
    on the same connection within the same thread are not supported.

    Examples
        with Transaction(cn):
            create_table(cn, ds)
            insert_dataset(cn, ds)
    """

    def __init__(self, cn: Any) -> None:
        self.cn = cn
        if id(cn) in _active():
            raise RuntimeError('Nested transactions are not supported')

    @staticmethod
    def active(cn: Any) -> bool:
        """Whether a Transaction is open on `cn` in this thread."""
        return id(cn) in _active()

    def __enter__(self):
        _active()[id(self.cn)] = True
        disable_auto_commit(self.cn)
        logger.debug(f'Started transaction for connection {id(self.cn)}')
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        raw = get_raw_connection(self.cn)
        try:
            if exc_type is not None:
                raw.rollback()
                logger.warning('Rolling back the current transaction')
            else:
                raw.commit()
                logger.debug(f'Committed transaction for connection {id(self.cn)}')
        finally:
            _active().pop(id(self.cn), None)
            enable_auto_commit(self.cn)

    def execute(self, sql: str, *args: Any) -> int:
        """Execute SQL within the transaction."""
        return execute_update(self.cn, sql, *args)
