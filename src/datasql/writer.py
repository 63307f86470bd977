"""
Write path: insert (or upsert) datasets through batched prepared statements.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import pandas as pd
from datasql.cursor import PreparedStatement
from datasql.dataset import Column, Dataset
from datasql.exceptions import MissingPrimaryKey, StatementFailure
from datasql.options import WRITE_BATCH_SIZE, SqlOptions
from datasql.registry import TypeRegistry, WriteMapping, get_registry
from datasql.schema import column_metadata, primary_key, table_name
from datasql.sql import sanitize
from datasql.transaction import Transaction, autocommit_disabled
from datasql.transaction import commit_unless_managed, is_auto_commit
from datasql.transaction import rollback_quietly
from datasql.utils import database_name

logger = logging.getLogger(__name__)

__all__ = [
    'ColumnBinder',
    'insert_sql',
    'upsert_sql',
    'execute_prepared_statement_batches',
    'insert_dataset',
]


def as_dataset(data: Any) -> Dataset:
    """Accept a Dataset or a pandas DataFrame."""
    if isinstance(data, Dataset):
        return data
    if isinstance(data, pd.DataFrame):
        return Dataset.from_pandas(data)
    raise TypeError(f'Expected Dataset or DataFrame, got {type(data).__name__}')


def _as_key_list(keys: Any) -> list[str]:
    if isinstance(keys, str) or not isinstance(keys, Sequence):
        keys = [keys]
    return [sanitize(k) for k in keys]


def upsert_keys(dataset: Any, opts: SqlOptions, force: bool = False) -> list[str]:
    """Conflict target columns, or an empty list for a plain insert.

    Raises
        MissingPrimaryKey: upsert requested and no keys could be resolved
    """
    if opts.postgres_upsert_keys is not None:
        keys = _as_key_list(opts.postgres_upsert_keys)
    elif opts.postgres_upsert or force:
        keys = primary_key(dataset, opts)
    else:
        return []
    if not keys:
        raise MissingPrimaryKey('Upsert requested but no primary key columns were found '
                                'in the options or the dataset metadata')
    return keys


def _build_insert(database: str, dataset: Any, opts: SqlOptions, registry: TypeRegistry,
                  keys: list[str]) -> str:
    metadata = column_metadata(dataset)
    names = [sanitize(meta['name']) for meta in metadata]
    placeholders = [registry.resolve_write(database, meta).insert_placeholder for meta in metadata]
    sql = f'INSERT INTO {table_name(dataset, opts)}( {", ".join(names)} ) VALUES ( {", ".join(placeholders)} )'
    if keys:
        updates = [f'{name}=excluded.{name}' for name in names if name not in keys]
        action = f'DO UPDATE SET {", ".join(updates)}' if updates else 'DO NOTHING'
        sql += f' ON CONFLICT ({", ".join(keys)}) {action}'
    return sql + ';'


def insert_sql(cn_or_database: Any, dataset: Any, options: SqlOptions | Mapping | None = None,
               registry: TypeRegistry | None = None, **kw: Any) -> str:
    """Insert statement with one placeholder per column.

    Becomes an upsert when `postgres_upsert_keys` is given or
    `postgres_upsert` is set.

    Example
        INSERT INTO stocks( date, symbol, price ) VALUES ( ?, ?, ? );
    """
    opts = SqlOptions.load(options, **kw)
    registry = get_registry(cn_or_database, registry or opts.registry)
    return _build_insert(database_name(cn_or_database), dataset, opts, registry,
                         upsert_keys(dataset, opts))


def upsert_sql(cn_or_database: Any, dataset: Any, options: SqlOptions | Mapping | None = None,
               registry: TypeRegistry | None = None, **kw: Any) -> str:
    """Insert statement that updates non-key columns on key conflicts.

    Example
        INSERT INTO stocks( date, symbol, price ) VALUES ( ?, ?, ? )
         ON CONFLICT (date, symbol) DO UPDATE SET price=excluded.price;
    """
    opts = SqlOptions.load(options, **kw)
    registry = get_registry(cn_or_database, registry or opts.registry)
    return _build_insert(database_name(cn_or_database), dataset, opts, registry,
                         upsert_keys(dataset, opts, force=True))


class ColumnBinder:
    """Binds one column's values to a fixed statement position.
    """

    def __init__(self, position: int, column: Column, mapping: WriteMapping) -> None:
        self.position = position
        self.column = column
        self.sql_type_index = mapping.sql_type_index
        self.encode_fn = mapping.encode_fn

    def bind(self, statement: Any, row: int) -> None:
        try:
            if row in self.column.missing:
                statement.set_null(self.position, self.sql_type_index)
            else:
                statement.set_object(self.position, self.encode_fn(self.column, row), self.sql_type_index)
        except Exception as e:
            raise StatementFailure(f'Failed to bind column {self.column.name!r} at row {row}: {e}',
                                   column=str(self.column.name), error=e) from e


def execute_prepared_statement_batches(cn: Any, statement_or_sql: Any, dataset: Any,
                                       options: SqlOptions | Mapping | None = None,
                                       registry: TypeRegistry | None = None, **kw: Any) -> int:
    """Bind every row of `dataset` and execute in batches of `batch_size`.

    Commits once after the last batch unless a `Transaction` owns the
    connection. Returns the number of rows sent.

    Raises
        UnmappedType: before anything is executed
        StatementFailure: binding or execution failed; the work is rolled back
    """
    dataset = as_dataset(dataset)
    opts = SqlOptions.load(options, **kw)
    batch_size = opts.batch_size_or(WRITE_BATCH_SIZE)
    managed = Transaction.active(cn)
    if not managed and is_auto_commit(cn):
        logger.warning('Auto-commit is enabled; each batch will be committed separately')

    registry = get_registry(cn, registry or opts.registry)
    database = database_name(cn)
    binders = [ColumnBinder(idx + 1, col, registry.resolve_write(database, col.write_metadata()))
               for idx, col in enumerate(dataset.columns)]

    owned = isinstance(statement_or_sql, str)
    statement = PreparedStatement(cn, statement_or_sql) if owned else statement_or_sql
    written = 0
    try:
        for row in range(dataset.row_count):
            for binder in binders:
                binder.bind(statement, row)
            statement.add_batch()
            if batch_size is not None and statement.pending >= batch_size:
                written += statement.execute_batch()
        written += statement.execute_batch()
        commit_unless_managed(cn)
    except Exception as e:
        if not managed:
            rollback_quietly(cn)
        if isinstance(e, StatementFailure):
            raise
        sql = getattr(statement, 'sql', None)
        raise StatementFailure(f'Batch execution failed after {written} rows: {e}', sql=sql, error=e) from e
    finally:
        if owned:
            statement.close()
    logger.debug(f'Wrote {written} rows to {database}')
    return written


def insert_dataset(cn: Any, dataset: Any, options: SqlOptions | Mapping | None = None,
                   registry: TypeRegistry | None = None, **kw: Any) -> int:
    """Insert (or upsert) every row of a dataset; returns the rows written.

    Auto-commit is switched off for the duration so the whole dataset is one
    unit of work.
    """
    dataset = as_dataset(dataset)
    opts = SqlOptions.load(options, **kw)
    registry = get_registry(cn, registry or opts.registry)
    sql = _build_insert(database_name(cn), dataset, opts, registry, upsert_keys(dataset, opts))
    if Transaction.active(cn):
        return execute_prepared_statement_batches(cn, sql, dataset, opts, registry)
    with autocommit_disabled(cn):
        return execute_prepared_statement_batches(cn, sql, dataset, opts, registry)
