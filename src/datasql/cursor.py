"""
Cursor-level helpers shared by the read and write paths.

- `dumpsql` / `dumpsql_many` log statements, parameters and timings
- `execute` runs one statement on a DBAPI cursor
- `iter_rows` streams rows with fetchmany
- `RowReader` gives decoders 1-based access to the current row
- `PreparedStatement` binds parameters row by row and flushes batches
  through executemany
"""
import logging
import time
from collections.abc import Iterator
from functools import wraps
from typing import Any

from datasql.strategy import get_db_strategy
from datasql.utils import get_raw_connection

logger = logging.getLogger(__name__)

FETCH_SIZE = 5000


def _addcall(cn: Any, elapsed: float) -> None:
    addcall = getattr(cn, 'addcall', None)
    if callable(addcall):
        addcall(elapsed)


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(cn: Any, cursor: Any, sql: str, *args: Any):
        start = time.time()
        logger.debug(f'SQL:\n{sql}\nargs: {args}')
        try:
            return func(cn, cursor, sql, *args)
        except Exception as e:
            logger.debug(f'Error with query:\nSQL:\n{sql}\nargs: {args}\nerror: {e}')
            raise
        finally:
            elapsed = time.time() - start
            _addcall(cn, elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


def dumpsql_many(func):
    """Decorator for logging batch executions of a prepared statement."""
    @wraps(func)
    def wrapper(self: 'PreparedStatement', *args: Any, **kwargs: Any):
        start = time.time()
        rows = len(self.batch)
        logger.debug(f'SQL:\n{self.sql}\nparams: {rows} rows')
        try:
            return func(self, *args, **kwargs)
        except Exception:
            logger.error(f'Error with executemany:\nSQL:\n{self.sql}')
            raise
        finally:
            elapsed = time.time() - start
            _addcall(self.connwrapper, elapsed)
            logger.debug(f'Executemany time: {elapsed:.4f}s ({rows} rows)')
    return wrapper


@dumpsql
def execute(cn: Any, cursor: Any, sql: str, *args: Any) -> int:
    """Execute `sql` on `cursor`; placeholders are converted only when args are given."""
    if args:
        cursor.execute(get_db_strategy(cn).standardize_sql(sql), args)
    else:
        cursor.execute(sql)
    return cursor.rowcount


def iter_rows(cursor: Any, size: int = FETCH_SIZE) -> Iterator[tuple]:
    """Yield rows from a cursor, fetching `size` rows at a time."""
    while True:
        chunk = cursor.fetchmany(size)
        if not chunk:
            break
        yield from chunk


class RowReader:
    """Current-row accessor handed to decode functions.

    Positions are 1-based. `was_null` reports whether the last value read
    was SQL NULL.
    """
    __slots__ = ('row', '_was_null')

    def __init__(self) -> None:
        self.row: tuple = ()
        self._was_null = False

    def get_object(self, position: int) -> Any:
        value = self.row[position - 1]
        self._was_null = value is None
        return value

    def was_null(self) -> bool:
        return self._was_null


class PreparedStatement:
    """Parameterized statement executed in batches.

    Parameters are bound by 1-based position for the current row, the row is
    queued with `add_batch`, and `execute_batch` sends every queued row with
    one executemany call. The SQL uses `?` placeholders and is converted to
    the connection's style.

    `sql_type_index` is accepted by the binders but not forwarded: DB-API
    drivers pick the wire type from the python value.
    """

    def __init__(self, cn: Any, sql: str) -> None:
        self.connwrapper = cn
        self.sql = get_db_strategy(cn).standardize_sql(sql)
        self.dbapi_cursor = get_raw_connection(cn).cursor()
        self.parameters: list[Any] = []
        self.batch: list[tuple] = []
        self.closed = False

    def __enter__(self) -> 'PreparedStatement':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _bind(self, position: int, value: Any) -> None:
        if position < 1:
            raise IndexError(f'Parameter positions start at 1, got {position}')
        missing = position - len(self.parameters)
        if missing > 0:
            self.parameters.extend([None] * missing)
        self.parameters[position - 1] = value

    def set_object(self, position: int, value: Any, sql_type_index: int | None = None) -> None:
        self._bind(position, value)

    def set_null(self, position: int, sql_type_index: int | None = None) -> None:
        self._bind(position, None)

    def add_batch(self) -> None:
        """Queue the currently bound parameters as one row."""
        self.batch.append(tuple(self.parameters))

    @property
    def pending(self) -> int:
        return len(self.batch)

    @dumpsql_many
    def execute_batch(self) -> int:
        """Execute all queued rows; returns how many were sent."""
        if not self.batch:
            return 0
        self.dbapi_cursor.executemany(self.sql, self.batch)
        count = len(self.batch)
        self.batch = []
        return count

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.batch = []
            self.dbapi_cursor.close()
