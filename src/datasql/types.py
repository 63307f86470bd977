"""
Semantic datatypes, SQL type codes and cursor column descriptors.

This module provides:
- Datatype: the dataset-side type tag of a column
- SqlType: ANSI/JDBC style SQL type codes used when binding parameters
- ColumnDescriptor: column metadata from cursor descriptions
"""
import datetime
import decimal
import logging
import uuid
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Self

import numpy as np
from psycopg.postgres import types as pg_types

logger = logging.getLogger(__name__)


class Datatype(str, Enum):
    """Semantic datatype of a dataset column."""
    INT8 = 'int8'
    INT16 = 'int16'
    INT32 = 'int32'
    INT64 = 'int64'
    UINT8 = 'uint8'
    UINT16 = 'uint16'
    UINT32 = 'uint32'
    UINT64 = 'uint64'
    FLOAT32 = 'float32'
    FLOAT64 = 'float64'
    STRING = 'string'
    TEXT = 'text'
    BOOLEAN = 'boolean'
    UUID = 'uuid'
    LOCAL_DATE = 'local-date'
    LOCAL_TIME = 'local-time'
    INSTANT = 'instant'
    LOCAL_DATE_TIME = 'local-date-time'
    ZONED_DATE_TIME = 'zoned-date-time'
    DURATION = 'duration'
    OBJECT = 'object'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def coerce(cls, value: 'Datatype | str') -> 'Datatype':
        """Accept a Datatype or its string name."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls[str(value).upper().replace('-', '_')]


NUMPY_DTYPES: dict[Datatype, np.dtype] = {
    Datatype.INT8: np.dtype('int8'),
    Datatype.INT16: np.dtype('int16'),
    Datatype.INT32: np.dtype('int32'),
    Datatype.INT64: np.dtype('int64'),
    Datatype.UINT8: np.dtype('uint8'),
    Datatype.UINT16: np.dtype('uint16'),
    Datatype.UINT32: np.dtype('uint32'),
    Datatype.UINT64: np.dtype('uint64'),
    Datatype.FLOAT32: np.dtype('float32'),
    Datatype.FLOAT64: np.dtype('float64'),
    Datatype.BOOLEAN: np.dtype('bool'),
}

INTEGER_TYPES = frozenset(dt for dt, dtype in NUMPY_DTYPES.items() if dtype.kind in 'iu')
FLOAT_TYPES = frozenset({Datatype.FLOAT32, Datatype.FLOAT64})


def numpy_dtype(datatype: Datatype) -> np.dtype:
    """Backing numpy dtype for a datatype; object for everything non-numeric."""
    return NUMPY_DTYPES.get(datatype, np.dtype(object))


def missing_value(datatype: Datatype) -> Any:
    """Placeholder stored at missing positions.

    Never meaningful: the column's missing set decides absence.
    """
    if datatype in INTEGER_TYPES:
        return 0
    if datatype in FLOAT_TYPES:
        return np.nan
    if datatype is Datatype.BOOLEAN:
        return False
    return None


class SqlType(IntEnum):
    """ANSI/JDBC SQL type codes."""
    BIT = -7
    TINYINT = -6
    SMALLINT = 5
    INTEGER = 4
    BIGINT = -5
    FLOAT = 6
    REAL = 7
    DOUBLE = 8
    NUMERIC = 2
    DECIMAL = 3
    CHAR = 1
    VARCHAR = 12
    LONGVARCHAR = -1
    NVARCHAR = -9
    DATE = 91
    TIME = 92
    TIMESTAMP = 93
    TIMESTAMP_WITH_TIMEZONE = 2014
    BOOLEAN = 16
    BINARY = -2
    OTHER = 1111


SQL_TYPE_INDEXES: dict[str, SqlType] = {
    'bit': SqlType.BIT,
    'tinyint': SqlType.TINYINT,
    'smallint': SqlType.SMALLINT,
    'int2': SqlType.SMALLINT,
    'int': SqlType.INTEGER,
    'integer': SqlType.INTEGER,
    'int4': SqlType.INTEGER,
    'bigint': SqlType.BIGINT,
    'int8': SqlType.BIGINT,
    'float': SqlType.FLOAT,
    'real': SqlType.REAL,
    'float4': SqlType.REAL,
    'double': SqlType.DOUBLE,
    'double precision': SqlType.DOUBLE,
    'float8': SqlType.DOUBLE,
    'numeric': SqlType.NUMERIC,
    'decimal': SqlType.DECIMAL,
    'char': SqlType.CHAR,
    'bpchar': SqlType.CHAR,
    'varchar': SqlType.VARCHAR,
    'nvarchar': SqlType.NVARCHAR,
    'text': SqlType.LONGVARCHAR,
    'date': SqlType.DATE,
    'time': SqlType.TIME,
    'timestamp': SqlType.TIMESTAMP,
    'datetime': SqlType.TIMESTAMP,
    'datetime2': SqlType.TIMESTAMP,
    'timestamptz': SqlType.TIMESTAMP_WITH_TIMEZONE,
    'bool': SqlType.BOOLEAN,
    'boolean': SqlType.BOOLEAN,
    'bytea': SqlType.BINARY,
    'uniqueidentifier': SqlType.CHAR,
    'uuid': SqlType.OTHER,
    'interval': SqlType.OTHER,
}


def base_type_name(sql_type_name: str | None) -> str | None:
    """Lowercased type name without its length/precision suffix.

    >>> base_type_name('VARCHAR(4096)')
    'varchar'
    """
    if sql_type_name is None:
        return None
    return sql_type_name.split('(', 1)[0].strip().lower()


def type_index(sql_type_name: str) -> SqlType:
    """Binding type code for a SQL type name, OTHER when unknown."""
    return SQL_TYPE_INDEXES.get(base_type_name(sql_type_name), SqlType.OTHER)


def _class_name(cls: type) -> str:
    if cls.__module__ == 'builtins':
        return cls.__qualname__
    return f'{cls.__module__}.{cls.__qualname__}'


# Python classes psycopg returns for builtin PostgreSQL types

_postgres_classes: dict[str, type] = {}

for name in ('"char"', 'bpchar', 'varchar', 'name', 'text', 'json', 'jsonb'):
    _postgres_classes[name] = str
for name in ('int2', 'int4', 'int8', 'oid'):
    _postgres_classes[name] = int
for name in ('float4', 'float8'):
    _postgres_classes[name] = float
_postgres_classes['numeric'] = decimal.Decimal
_postgres_classes['bool'] = bool
_postgres_classes['date'] = datetime.date
for name in ('time', 'timetz'):
    _postgres_classes[name] = datetime.time
for name in ('timestamp', 'timestamptz'):
    _postgres_classes[name] = datetime.datetime
_postgres_classes['interval'] = datetime.timedelta
_postgres_classes['uuid'] = uuid.UUID
_postgres_classes['bytea'] = bytes

postgres_class_names: dict[str, str] = {k: _class_name(v) for k, v in _postgres_classes.items()}


def postgres_type_name(oid: int | None) -> str | None:
    """Resolve a PostgreSQL type OID to its registered type name."""
    if oid is None:
        return None
    info = pg_types.get(oid)
    if info is None:
        logger.debug(f'Unknown postgres type oid {oid}')
        return None
    return info.name


@dataclass
class ColumnDescriptor:
    """Query result column metadata.

    One per result column for the lifetime of a query execution.
    """
    name: str
    label: Any
    type_name: str | None = None
    type_index: int | None = None
    class_name: str | None = None
    nullable: bool | None = None
    precision: int | None = None
    scale: int | None = None

    @classmethod
    def from_cursor_description(cls, description_item: Any, connection_type: str,
                                key_fn=None) -> Self:
        """Create a descriptor from a cursor description item."""
        if connection_type == 'postgresql':
            column_info = cls._extract_postgres_column_info(description_item)
        elif connection_type == 'sqlite':
            column_info = cls._extract_sqlite_column_info(description_item)
        else:
            column_info = cls._extract_generic_column_info(description_item)

        type_name = column_info['type_name']
        if type_name is not None:
            column_info['type_index'] = type_index(type_name)
        label = column_info['name']
        if key_fn is not None:
            label = key_fn(label)
        return cls(label=label, **column_info)

    @classmethod
    def _extract_postgres_column_info(cls, description_item: Any) -> dict:
        type_name = postgres_type_name(getattr(description_item, 'type_code', None))
        return {
            'name': getattr(description_item, 'name', None),
            'type_name': type_name,
            'class_name': postgres_class_names.get(type_name),
            'precision': getattr(description_item, 'precision', None),
            'scale': getattr(description_item, 'scale', None),
            'nullable': None,
        }

    @classmethod
    def _extract_sqlite_column_info(cls, description_item: Any) -> dict:
        # sqlite3 reports only the name; the remaining six fields are None
        return {
            'name': description_item[0],
            'type_name': None,
            'class_name': None,
            'precision': None,
            'scale': None,
            'nullable': None,
        }

    @classmethod
    def _extract_generic_column_info(cls, description_item: Any) -> dict:
        type_code = description_item[1] if len(description_item) > 1 else None
        return {
            'name': description_item[0],
            'type_name': base_type_name(type_code) if isinstance(type_code, str) else None,
            'class_name': _class_name(type_code) if isinstance(type_code, type) else None,
            'precision': description_item[4] if len(description_item) > 4 else None,
            'scale': description_item[5] if len(description_item) > 5 else None,
            'nullable': bool(description_item[6]) if len(description_item) > 6 and description_item[6] is not None else None,
        }
