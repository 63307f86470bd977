"""
Table level helpers built on the schema emitter and the statement wrapper.

`table_exists` probes with a zero-row query instead of catalog metadata, so
it works the same way on every engine; any failure of the probe counts as
"no such table".
"""
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from datasql.options import SqlOptions
from datasql.reader import sql_to_dataset
from datasql.schema import create_sql, table_name
from datasql.transaction import execute_update

if TYPE_CHECKING:
    from datasql.connection import ConnectionWrapper

logger = logging.getLogger(__name__)

__all__ = [
    'table_exists',
    'create_table',
    'drop_table',
    'ensure_table',
    'drop_table_when_exists',
]


def table_exists(cn: 'ConnectionWrapper', dataset: Any, options: SqlOptions | Mapping | None = None,
                 **kw: Any) -> bool:
    """Whether the table for `dataset` (or a table name) can be queried.
    """
    name = table_name(dataset, options, **kw)
    try:
        sql_to_dataset(cn, f'SELECT COUNT(*) FROM {name} WHERE 1 = 0')
        return True
    except Exception as e:
        logger.debug(f'Table {name} not found: {e}')
        return False


def create_table(cn: 'ConnectionWrapper', dataset: Any, options: SqlOptions | Mapping | None = None,
                 **kw: Any) -> int:
    """Create the table described by a dataset's columns and primary key.
    """
    sql = create_sql(cn, dataset, options, **kw)
    return execute_update(cn, sql)


def drop_table(cn: 'ConnectionWrapper', dataset: Any, options: SqlOptions | Mapping | None = None,
               **kw: Any) -> int:
    return execute_update(cn, f'DROP TABLE {table_name(dataset, options, **kw)}')


def ensure_table(cn: 'ConnectionWrapper', dataset: Any, options: SqlOptions | Mapping | None = None,
                 **kw: Any) -> bool:
    """Create the table unless it already exists; returns whether it was created.
    """
    opts = SqlOptions.load(options, **kw)
    if table_exists(cn, dataset, opts):
        return False
    create_table(cn, dataset, opts)
    logger.info(f'Created table {table_name(dataset, opts)}')
    return True


def drop_table_when_exists(cn: 'ConnectionWrapper', dataset: Any,
                           options: SqlOptions | Mapping | None = None, **kw: Any) -> bool:
    """Drop the table if it exists; returns whether it was dropped.
    """
    opts = SqlOptions.load(options, **kw)
    if not table_exists(cn, dataset, opts):
        return False
    drop_table(cn, dataset, opts)
    return True
