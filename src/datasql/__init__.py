"""
Columnar datasets to and from SQL databases (PostgreSQL, SQLite).

All dataset operations can be called either as:
- Module functions: datasql.insert_dataset(cn, ds)
- ConnectionWrapper methods: cn.insert_dataset(ds)

Module functions also accept raw DBAPI connections and, for the pure SQL
builders, a database name such as 'postgresql'.
"""
__version__ = '0.1.0'

from typing import Any

from datasql.connection import ConnectionWrapper, connect
from datasql.dataset import Column, Dataset, concat_datasets
from datasql.exceptions import ConfigurationError, DatabaseError
from datasql.exceptions import IntegrityError, MissingPrimaryKey
from datasql.exceptions import OperationalError, ProgrammingError
from datasql.exceptions import StatementFailure, UnmappedType
from datasql.options import DatabaseOptions, SqlOptions
from datasql.reader import ResultSetBatches, result_set_to_dataset
from datasql.reader import result_set_to_dataset_seq, sql_to_dataset
from datasql.reader import sql_to_dataset_seq
from datasql.registry import TypeRegistry
from datasql.schema import create_sql
from datasql.tables import create_table, drop_table, drop_table_when_exists
from datasql.tables import ensure_table, table_exists
from datasql.transaction import Transaction as transaction
from datasql.transaction import disable_auto_commit, enable_auto_commit
from datasql.transaction import execute_update, is_auto_commit
from datasql.types import Datatype
from datasql.writer import execute_prepared_statement_batches, insert_dataset
from datasql.writer import insert_sql, upsert_sql


def set_datatype_mapping(registry: TypeRegistry | ConnectionWrapper, database: Any,
                         datatype: Datatype | str, sql_type_name: str,
                         sql_type_index: int | None = None, decode_fn: Any = None,
                         encode_fn: Any = None, insert_placeholder: str | None = None) -> None:
    """Register a datatype <-> SQL type mapping on a registry or a connection's registry.
    """
    if isinstance(registry, ConnectionWrapper):
        registry = registry.registry
    registry.register(database, datatype, sql_type_name, sql_type_index,
                      decode_fn, encode_fn, insert_placeholder)


def sql_to_dataframe(cn: Any, sql: str, *args: Any, **kw: Any) -> Any:
    """Run a query and return the result as a pandas DataFrame.
    """
    return sql_to_dataset(cn, sql, *args, **kw).to_pandas()


__all__ = [
    'Column',
    'ConfigurationError',
    'ConnectionWrapper',
    'DatabaseError',
    'DatabaseOptions',
    'Dataset',
    'Datatype',
    'IntegrityError',
    'MissingPrimaryKey',
    'OperationalError',
    'ProgrammingError',
    'ResultSetBatches',
    'SqlOptions',
    'StatementFailure',
    'TypeRegistry',
    'UnmappedType',
    'concat_datasets',
    'connect',
    'create_sql',
    'create_table',
    'disable_auto_commit',
    'drop_table',
    'drop_table_when_exists',
    'enable_auto_commit',
    'ensure_table',
    'execute_prepared_statement_batches',
    'execute_update',
    'insert_dataset',
    'insert_sql',
    'is_auto_commit',
    'result_set_to_dataset',
    'result_set_to_dataset_seq',
    'set_datatype_mapping',
    'sql_to_dataframe',
    'sql_to_dataset',
    'sql_to_dataset_seq',
    'table_exists',
    'transaction',
    'upsert_sql',
]
