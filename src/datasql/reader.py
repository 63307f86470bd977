"""
Read path: decode query results into batches of datasets.

`ResultSetBatches` walks an executed cursor and yields one `Dataset` per
batch of `batch_size` rows. Each column's datatype and decoder are resolved
once, up front, from the type registry; columns with no known datatype are
collected with a promotional parser and get the widest type their values
need.

States:

    OPEN -> STREAMING -> BATCH_READY -> STREAMING ... -> CLOSED

The cursor is released exactly once when the sequence reaches CLOSED, which
happens when the rows are exhausted, on `close()`, on leaving a `with` block,
or when decoding fails. A sequence that is neither drained nor closed keeps
its cursor open.
"""
import enum
import logging
from collections.abc import Iterator, Mapping
from typing import Any

from datasql.cursor import FETCH_SIZE, RowReader, execute, iter_rows
from datasql.dataset import Dataset
from datasql.options import READ_BATCH_SIZE, SqlOptions
from datasql.parsers import make_parser
from datasql.registry import TypeRegistry, get_registry
from datasql.strategy import get_db_strategy
from datasql.transaction import Transaction, is_auto_commit, rollback_quietly
from datasql.types import ColumnDescriptor, Datatype
from datasql.utils import database_name, get_raw_connection

logger = logging.getLogger(__name__)

__all__ = [
    'BatchState',
    'ResultSetBatches',
    'result_set_to_dataset_seq',
    'result_set_to_dataset',
    'sql_to_dataset_seq',
    'sql_to_dataset',
]


class BatchState(enum.Enum):
    OPEN = 'open'
    STREAMING = 'streaming'
    BATCH_READY = 'batch-ready'
    CLOSED = 'closed'


class ResultSetBatches:
    """Lazy sequence of datasets read from an executed cursor.
    """

    def __init__(self, cn: Any, cursor: Any, options: SqlOptions | Mapping | None = None,
                 registry: TypeRegistry | None = None, **kw: Any) -> None:
        opts = SqlOptions.load(options, **kw)
        self.cursor = cursor
        self.batch_size = opts.batch_size_or(READ_BATCH_SIZE)
        self.close_on_finish = opts.close
        self.statement = opts.statement
        self.dataset_name = opts.dataset_name
        self.state = BatchState.OPEN
        self.batches = 0
        self._lookahead: tuple | None = None
        self._reader = RowReader()

        try:
            if cursor.description is None:
                raise ValueError('Cursor has no result set to read')
            registry = get_registry(cn, registry or opts.registry)
            database = database_name(cn)
            strategy = get_db_strategy(cn) if not isinstance(cn, str) else None
            self.columns: list[tuple[ColumnDescriptor, Datatype | None, Any]] = []
            for item in cursor.description:
                if strategy is not None:
                    descriptor = strategy.describe_column(item, opts.key_fn)
                else:
                    descriptor = ColumnDescriptor.from_cursor_description(item, database, opts.key_fn)
                datatype, decode_fn = registry.resolve_read(database, descriptor, opts.parser_fn)
                self.columns.append((descriptor, datatype, decode_fn))
            self._rows = iter_rows(cursor, min(self.batch_size or FETCH_SIZE, FETCH_SIZE))
        except Exception:
            self._release()
            raise

        logger.debug(f'Reading {len(self.columns)} columns in batches of {self.batch_size}: '
                     f'{[(d.label, str(dt) if dt else None) for d, dt, _ in self.columns]}')

    def __iter__(self) -> Iterator[Dataset]:
        return self

    def __enter__(self) -> 'ResultSetBatches':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _next_row(self) -> tuple | None:
        if self._lookahead is not None:
            row, self._lookahead = self._lookahead, None
            return row
        return next(self._rows, None)

    def __next__(self) -> Dataset:
        if self.state is BatchState.CLOSED:
            raise StopIteration
        try:
            dataset, exhausted = self._read_batch()
        except Exception:
            self.close()
            raise
        if dataset.row_count == 0 and self.batches > 0:
            self.close()
            raise StopIteration
        self.batches += 1
        if exhausted:
            self.close()
        return dataset

    def _read_batch(self) -> tuple[Dataset, bool]:
        self.state = BatchState.STREAMING
        parsers = [make_parser(datatype) for _, datatype, _ in self.columns]
        decoders = [(idx + 1, parser, decode_fn)
                    for idx, (parser, (_, _, decode_fn)) in enumerate(zip(parsers, self.columns))]
        reader = self._reader
        row_idx = 0
        exhausted = False
        while self.batch_size is None or row_idx < self.batch_size:
            row = self._next_row()
            if row is None:
                exhausted = True
                break
            reader.row = row
            for position, parser, decode_fn in decoders:
                reader._was_null = False
                value = decode_fn(reader, position)
                if reader.was_null() or value is None:
                    continue
                parser.add_value(row_idx, value)
            row_idx += 1

        if not exhausted:
            self._lookahead = next(self._rows, None)
            exhausted = self._lookahead is None

        columns = []
        for (descriptor, _, _), parser in zip(self.columns, parsers):
            column = parser.finalize(descriptor.label, row_idx)
            column.metadata['result_set_metadata'] = descriptor
            columns.append(column)
        self.state = BatchState.BATCH_READY
        logger.debug(f'Batch {self.batches} ready with {row_idx} rows')
        return Dataset(columns, name=self.dataset_name), exhausted

    def _release(self) -> None:
        if not self.close_on_finish:
            return
        for resource in (self.cursor, self.statement):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as e:
                logger.debug(f'Error closing {type(resource).__name__}: {e}')

    def close(self) -> None:
        """Release the cursor (and statement) once; later calls do nothing."""
        if self.state is BatchState.CLOSED:
            return
        self.state = BatchState.CLOSED
        self._lookahead = None
        self._release()


def result_set_to_dataset_seq(cn: Any, cursor: Any, options: SqlOptions | Mapping | None = None,
                              **kw: Any) -> ResultSetBatches:
    """Lazy sequence of datasets over an executed cursor.

    `cn` may be a connection or a database identifier string.
    """
    return ResultSetBatches(cn, cursor, options, **kw)


def result_set_to_dataset(cn: Any, cursor: Any, options: SqlOptions | Mapping | None = None,
                          **kw: Any) -> Dataset:
    """Read the whole result into a single dataset.
    """
    opts = SqlOptions.load(options, **{**kw, 'batch_size': None})
    with ResultSetBatches(cn, cursor, opts) as batches:
        return next(batches)


def _open_query(cn: Any, sql: str, args: tuple, streaming: bool = False) -> Any:
    cursor = get_db_strategy(cn).open_read_cursor(get_raw_connection(cn), streaming)
    try:
        execute(cn, cursor, sql, *args)
    except Exception:
        try:
            cursor.close()
        except Exception as e:
            logger.debug(f'Error closing cursor after failed query: {e}')
        if not is_auto_commit(cn) and not Transaction.active(cn):
            rollback_quietly(cn)
        raise
    return cursor


def sql_to_dataset_seq(cn: Any, sql: str, *args: Any, options: SqlOptions | Mapping | None = None,
                       **kw: Any) -> ResultSetBatches:
    """Execute a query and return a lazy sequence of dataset batches.

    On PostgreSQL the rows come from a server-side cursor, so only the
    current fetch is held in memory. Drain the sequence or close it (or use
    it in a `with` block) to release the cursor.
    """
    cursor = _open_query(cn, sql, args, streaming=True)
    return ResultSetBatches(cn, cursor, options, **kw)


def sql_to_dataset(cn: Any, sql: str, *args: Any, options: SqlOptions | Mapping | None = None,
                   **kw: Any) -> Dataset:
    """Execute a query and return its full result as one dataset.

    The cursor is always closed.
    """
    opts = SqlOptions.load(options, **{**kw, 'batch_size': None, 'close': True})
    cursor = _open_query(cn, sql, args)
    with ResultSetBatches(cn, cursor, opts) as batches:
        return next(batches)
