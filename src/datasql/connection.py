"""
Database connection handling with SQLAlchemy.

This module provides:
1. The `connect()` function for creating new database connections
2. The `ConnectionWrapper` class, which owns a type registry and exposes the
   dataset operations as methods
3. Engine creation and management through a thread-safe registry

Engines never pool: every `connect()` opens a fresh DBAPI connection that is
closed with the wrapper.
"""
import atexit
import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Self

import sqlalchemy as sa
from datasql.dataset import Dataset
from datasql.options import DatabaseOptions, SqlOptions
from datasql.reader import ResultSetBatches, sql_to_dataset, sql_to_dataset_seq
from datasql.registry import TypeRegistry
from datasql.schema import create_sql
from datasql.strategy import get_db_strategy, get_strategy
from datasql.tables import create_table, drop_table, drop_table_when_exists
from datasql.tables import ensure_table, table_exists
from datasql.transaction import Transaction, execute_update
from datasql.types import Datatype
from datasql.utils import get_dialect_name
from datasql.writer import insert_dataset, insert_sql, upsert_sql
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'ConnectionWrapper',
    'connect',
    'configure_connection',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = repr(options)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = strategy.build_connection_url(options)
        engine_kwargs: dict[str, Any] = {'echo': False, 'poolclass': NullPool}
        engine_kwargs.update(strategy.get_engine_kwargs(options))
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)
        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')
        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def configure_connection(sa_connection: sa.engine.Connection) -> None:
    """Apply the dialect's adapters and auto-commit default to a new connection.
    """
    strategy = get_db_strategy(sa_connection)
    strategy.configure_connection(sa_connection.connection.driver_connection)


class ConnectionWrapper:
    """Wraps a SQLAlchemy connection to track calls and execution time.

    The wrapper owns a `TypeRegistry` with the built-in mappings; customize
    it with `set_datatype_mapping` without affecting other connections.
    Dataset operations are available as methods, and attribute access falls
    through to the SQLAlchemy connection, then the DBAPI connection.
    """

    def __init__(self, sa_connection: sa.engine.Connection | None = None,
                 options: DatabaseOptions | None = None,
                 registry: TypeRegistry | None = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine if sa_connection is not None else None
        self.options = options
        self.dbapi_connection = sa_connection.connection.driver_connection if sa_connection is not None else None
        self._dialect = get_dialect_name(sa_connection) if sa_connection is not None else None
        self.registry = registry if registry is not None else TypeRegistry.with_defaults()
        self.calls = 0
        self.time = 0.0

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __getattr__(self, name: str) -> Any:
        """Delegate attribute access to the SQLAlchemy connection or the raw connection.
        """
        if name in {'sa_connection', 'dbapi_connection'}:
            raise AttributeError(name)
        if hasattr(self.sa_connection, name):
            return getattr(self.sa_connection, name)
        return getattr(self.dbapi_connection, name)

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql' or 'sqlite')."""
        return self._dialect

    @property
    def closed(self) -> bool:
        return self.sa_connection is None or self.sa_connection.closed

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def cursor(self) -> Any:
        """Raw DBAPI cursor."""
        return self.dbapi_connection.cursor()

    def commit(self) -> None:
        self.dbapi_connection.commit()

    def rollback(self) -> None:
        self.dbapi_connection.rollback()

    def close(self) -> None:
        """Close the connection, committing pending work outside a transaction.
        """
        if self.closed:
            return
        try:
            if not Transaction.active(self) and not get_db_strategy(self).is_autocommit(self.dbapi_connection):
                self.dbapi_connection.commit()
        finally:
            self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1, self.calls):.3f}s per query)')

    def set_datatype_mapping(self, datatype: Datatype | str, sql_type_name: str,
                             sql_type_index: int | None = None, decode_fn: Callable | None = None,
                             encode_fn: Callable | None = None,
                             insert_placeholder: str | None = None) -> None:
        """Register a datatype <-> SQL type mapping for this connection's database.
        """
        self.registry.register(self.dialect, datatype, sql_type_name, sql_type_index,
                               decode_fn, encode_fn, insert_placeholder)

    def execute(self, sql: str, *args: Any) -> int:
        """Execute a statement and return the affected row count."""
        return execute_update(self, sql, *args)

    def transaction(self) -> Transaction:
        return Transaction(self)

    def create_sql(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> str:
        return create_sql(self, dataset, options, **kw)

    def insert_sql(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> str:
        return insert_sql(self, dataset, options, **kw)

    def upsert_sql(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> str:
        return upsert_sql(self, dataset, options, **kw)

    def table_exists(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> bool:
        return table_exists(self, dataset, options, **kw)

    def create_table(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> int:
        return create_table(self, dataset, options, **kw)

    def drop_table(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> int:
        return drop_table(self, dataset, options, **kw)

    def ensure_table(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> bool:
        return ensure_table(self, dataset, options, **kw)

    def drop_table_when_exists(self, dataset: Any, options: SqlOptions | Mapping | None = None,
                               **kw: Any) -> bool:
        return drop_table_when_exists(self, dataset, options, **kw)

    def insert_dataset(self, dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> int:
        return insert_dataset(self, dataset, options, **kw)

    def sql_to_dataset(self, sql: str, *args: Any, options: SqlOptions | Mapping | None = None,
                       **kw: Any) -> Dataset:
        return sql_to_dataset(self, sql, *args, options=options, **kw)

    def sql_to_dataset_seq(self, sql: str, *args: Any, options: SqlOptions | Mapping | None = None,
                           **kw: Any) -> ResultSetBatches:
        return sql_to_dataset_seq(self, sql, *args, options=options, **kw)

    def iter_datasets(self, sql: str, *args: Any, **kw: Any) -> Iterator[Dataset]:
        """Yield dataset batches for a query, closing the cursor when done.
        """
        with self.sql_to_dataset_seq(sql, *args, **kw) as batches:
            yield from batches


def connect(options: DatabaseOptions | Mapping[str, Any] | None = None,
            registry: TypeRegistry | None = None, **kw: Any) -> ConnectionWrapper:
    """Connect to a database.

    Args:
        options: DatabaseOptions, a dict of options, or None
        registry: type registry for the connection (default: built-in mappings)
        **kw: options as keyword arguments, overriding `options`

    Returns
        ConnectionWrapper with auto-commit enabled

    Examples
        cn = connect(drivername='sqlite', database=':memory:')
    """
    options = DatabaseOptions.load(options, **kw)
    engine = get_engine_for_options(options)
    sa_connection = engine.connect()
    configure_connection(sa_connection)
    logger.debug(f'Connected to {options.drivername} database {options.database}')
    return ConnectionWrapper(sa_connection, options, registry)
