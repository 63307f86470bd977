"""
Schema (DDL) generation for datasets.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from datasql.dataset import Column, Dataset
from datasql.exceptions import ConfigurationError
from datasql.options import SqlOptions
from datasql.registry import TypeRegistry, get_registry
from datasql.sql import sanitize
from datasql.utils import database_name

logger = logging.getLogger(__name__)

__all__ = ['table_name', 'primary_key', 'column_metadata', 'create_sql']


def table_name(dataset: Dataset | str, options: SqlOptions | Mapping | None = None, **kw: Any) -> str:
    """Table name for a dataset.

    Strings are used verbatim. Otherwise `table_name` from the options or the
    dataset's name, sanitized.
    """
    if isinstance(dataset, str):
        return dataset
    opts = SqlOptions.load(options, **kw)
    name = opts.table_name if opts.table_name is not None else getattr(dataset, 'name', None)
    if name is None:
        raise ConfigurationError('Dataset has no name and no table_name option was given')
    return sanitize(name)


def primary_key(dataset: Any, options: SqlOptions | Mapping | None = None, **kw: Any) -> list[str]:
    """Sanitized primary key column names, possibly empty.

    Looks at the `primary_key`/`primary_keys` options first, then the same
    keys in the dataset metadata.
    """
    opts = SqlOptions.load(options, **kw)
    keys = opts.primary_key if opts.primary_key is not None else opts.primary_keys
    if keys is None:
        metadata = getattr(dataset, 'metadata', None) or {}
        keys = metadata.get('primary_key', metadata.get('primary_keys'))
    if keys is None:
        return []
    if isinstance(keys, str) or not isinstance(keys, Sequence):
        keys = [keys]
    return [sanitize(k) for k in keys]


def column_metadata(dataset: Any) -> list[dict[str, Any]]:
    """Per-column metadata dicts for a dataset or a sequence of column descriptions.

    Raises
        ConfigurationError: for anything that is not a Dataset, Columns or mappings
    """
    if isinstance(dataset, Dataset):
        return [col.write_metadata() for col in dataset.columns]
    if isinstance(dataset, Sequence) and not isinstance(dataset, str):
        result = []
        for item in dataset:
            if isinstance(item, Column):
                result.append(item.write_metadata())
            elif isinstance(item, Mapping):
                if 'name' not in item or 'datatype' not in item:
                    raise ConfigurationError(f'Column metadata needs name and datatype: {item!r}')
                result.append(dict(item))
            else:
                raise ConfigurationError(f'Unrecognized column metadata type: {type(item).__name__}')
        return result
    raise ConfigurationError(f'Unrecognized column metadata type: {type(dataset).__name__}')


def create_sql(cn_or_database: Any, dataset: Any, options: SqlOptions | Mapping | None = None,
               registry: TypeRegistry | None = None, **kw: Any) -> str:
    """Create table statement for a dataset.

    Every column gets the SQL type resolved through the registry, in column
    order, followed by a PRIMARY KEY clause when keys are known.

    Example
        CREATE TABLE stocks (
         date date,
         symbol varchar(4096),
         price double precision,
         PRIMARY KEY (date, symbol)
        );
    """
    opts = SqlOptions.load(options, **kw)
    registry = get_registry(cn_or_database, registry or opts.registry)
    database = database_name(cn_or_database)
    name = table_name(dataset, opts)
    lines = []
    for meta in column_metadata(dataset):
        mapping = registry.resolve_write(database, meta)
        lines.append(f' {sanitize(meta["name"])} {mapping.sql_type_name}')
    keys = primary_key(dataset, opts)
    if keys:
        lines.append(f' PRIMARY KEY ({", ".join(keys)})')
    sql = f'CREATE TABLE {name} (\n' + ',\n'.join(lines) + '\n);'
    logger.debug(f'Create table sql for {database}:\n{sql}')
    return sql
