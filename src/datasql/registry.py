"""
Type registry mapping semantic datatypes to SQL types and back.

Write direction entries are keyed by (database, Datatype) and decide the SQL
type name used in DDL, the type code used when binding parameters, the encode
function applied to each value and the insert placeholder.

Read direction entries are keyed by (database, lowercased SQL type name) and
decide the datatype of the decoded column (None means infer it from the
values) and the decode function, called as ``decode_fn(reader, position)``
with a 1-based position.

Resolution precedence on write:

    column metadata > database entry (aliases followed) > DEFAULT_SQL_TYPES

and UnmappedType when nothing applies. On read:

    parser_fn[label] > database entry > long text types > HOST_CLASS_RULES > infer

A registry is a plain object. Connections own one built by
`TypeRegistry.with_defaults()`; operations accept an explicit registry to
override it.
"""
import datetime
import logging
import threading
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Self

import numpy as np
import pandas as pd
from datasql.exceptions import ConfigurationError, UnmappedType
from datasql.types import ColumnDescriptor, Datatype, SqlType, base_type_name
from datasql.types import type_index
from datasql.utils import database_name

logger = logging.getLogger(__name__)

__all__ = [
    'DEFAULT_SQL_TYPES',
    'HOST_CLASS_RULES',
    'TypeRegistry',
    'WriteMapping',
    'generic_decode',
    'generic_encode',
    'get_registry',
    'make_convert_decode',
    'make_convert_encode',
]

EncodeFn = Callable[[Any, int], Any]
DecodeFn = Callable[[Any, int], Any]

DEFAULT_SQL_TYPES: dict[Datatype, str] = {
    Datatype.INT8: 'tinyint',
    Datatype.INT16: 'smallint',
    Datatype.INT32: 'int',
    Datatype.INT64: 'bigint',
    Datatype.FLOAT32: 'float',
    Datatype.FLOAT64: 'double precision',
    Datatype.STRING: 'varchar(4096)',
    Datatype.TEXT: 'text',
    Datatype.LOCAL_DATE: 'date',
    Datatype.LOCAL_TIME: 'time',
    Datatype.INSTANT: 'timestamp',
}

# Written like another datatype unless a database entry says otherwise
DEFAULT_ALIASES: dict[Datatype, Datatype] = {
    Datatype.LOCAL_DATE_TIME: Datatype.INSTANT,
}

LONG_TEXT_TYPES = frozenset({'text', 'clob', 'ntext', 'longtext', 'mediumtext', 'longvarchar'})


def python_value(value: Any) -> Any:
    """Convert numpy/pandas scalars to the python objects drivers accept."""
    if isinstance(value, np.datetime64):
        return pd.Timestamp(value).to_pydatetime()
    if isinstance(value, np.timedelta64):
        return pd.Timedelta(value).to_pytimedelta()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, pd.Timedelta):
        return value.to_pytimedelta()
    return value


def generic_encode(column: Any, row: int) -> Any:
    """Encode the value at `row` as is."""
    return python_value(column.values[row])


def make_convert_encode(fn: Callable[[Any], Any]) -> EncodeFn:
    """Encoder applying `fn` to the python value at a row."""
    def encode(column: Any, row: int) -> Any:
        return fn(python_value(column.values[row]))
    return encode


def generic_decode(reader: Any, position: int) -> Any:
    """Decode the driver value as is."""
    return reader.get_object(position)


def make_convert_decode(fn: Callable[[Any], Any]) -> DecodeFn:
    """Decoder applying `fn` to non-null driver values."""
    def decode(reader: Any, position: int) -> Any:
        value = reader.get_object(position)
        if value is None:
            return None
        return fn(value)
    return decode


decode_text = make_convert_decode(str)

SQL_TYPE_ENCODERS: dict[str, EncodeFn] = {
    'text': make_convert_encode(str),
}


@dataclass(frozen=True)
class WriteEntry:
    sql_type_name: str | None = None
    sql_type_index: int | None = None
    encode_fn: EncodeFn | None = None
    insert_placeholder: str | None = None
    alias: Datatype | None = None


@dataclass(frozen=True)
class ReadEntry:
    datatype: Datatype | None
    decode_fn: DecodeFn


@dataclass(frozen=True)
class WriteMapping:
    """Fully resolved write-side handling of one column."""
    sql_type_name: str
    sql_type_index: int
    encode_fn: EncodeFn
    insert_placeholder: str = '?'


@dataclass(frozen=True)
class HostClassRule:
    """Read-side fallback keyed on the python class a driver returns."""
    predicate: Callable[[ColumnDescriptor], bool]
    datatype: Datatype
    decode_fn: DecodeFn


def _is_class(*class_names: str) -> Callable[[ColumnDescriptor], bool]:
    return lambda d: d.class_name in class_names


def _is_class_type(class_name: str, *type_names: str) -> Callable[[ColumnDescriptor], bool]:
    return lambda d: d.class_name == class_name and d.type_name in type_names


HOST_CLASS_RULES: tuple[HostClassRule, ...] = (
    HostClassRule(_is_class('str'), Datatype.STRING, generic_decode),
    HostClassRule(_is_class('bool'), Datatype.BOOLEAN, generic_decode),
    HostClassRule(_is_class_type('int', 'int2', 'smallint', 'tinyint'), Datatype.INT16, generic_decode),
    HostClassRule(_is_class_type('int', 'int4', 'int', 'integer'), Datatype.INT32, generic_decode),
    HostClassRule(_is_class('int'), Datatype.INT64, generic_decode),
    HostClassRule(_is_class_type('float', 'float4', 'real'), Datatype.FLOAT32, generic_decode),
    HostClassRule(_is_class('float'), Datatype.FLOAT64, generic_decode),
    HostClassRule(_is_class('datetime.date'), Datatype.LOCAL_DATE, generic_decode),
    HostClassRule(_is_class('datetime.time'), Datatype.LOCAL_TIME, generic_decode),
    HostClassRule(_is_class_type('datetime.datetime', 'timestamptz'), Datatype.ZONED_DATE_TIME, generic_decode),
    HostClassRule(_is_class('datetime.datetime'), Datatype.INSTANT, generic_decode),
    HostClassRule(_is_class('datetime.timedelta'), Datatype.DURATION, generic_decode),
    HostClassRule(_is_class('uuid.UUID'), Datatype.UUID, generic_decode),
)


def _coerce_datatype(datatype: Any, column: Any = None) -> Datatype:
    try:
        return Datatype.coerce(datatype)
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f'Unrecognized datatype {datatype!r} for column {column!r}') from e


class TypeRegistry:
    """Per-database type mapping rules.
    """

    def __init__(self) -> None:
        self._write: dict[str, dict[Datatype, WriteEntry]] = {}
        self._read: dict[str, dict[str, ReadEntry]] = {}
        self._lock = threading.RLock()

    @classmethod
    def with_defaults(cls) -> Self:
        """Registry holding the built-in PostgreSQL, SQL Server and SQLite rules."""
        registry = cls()
        install_default_mappings(registry)
        return registry

    def copy(self) -> Self:
        other = type(self)()
        with self._lock:
            other._write = {db: dict(entries) for db, entries in self._write.items()}
            other._read = {db: dict(entries) for db, entries in self._read.items()}
        return other

    def register(self, database: Any, datatype: Datatype | str, sql_type_name: str,
                 sql_type_index: int | None = None, decode_fn: DecodeFn | None = None,
                 encode_fn: EncodeFn | None = None, insert_placeholder: str | None = None) -> None:
        """Map `datatype` to `sql_type_name` in both directions for a database.

        Re-registering replaces both entries.
        """
        db = database_name(database)
        datatype = _coerce_datatype(datatype)
        if sql_type_index is None:
            sql_type_index = type_index(sql_type_name)
        write = WriteEntry(sql_type_name, int(sql_type_index), encode_fn, insert_placeholder)
        read = ReadEntry(datatype, decode_fn or generic_decode)
        with self._lock:
            self._write.setdefault(db, {})[datatype] = write
            self._read.setdefault(db, {})[base_type_name(sql_type_name)] = read
        logger.debug(f'Registered {db} {datatype} <-> {sql_type_name} ({sql_type_index})')

    def register_alias(self, database: Any, datatype: Datatype | str, alias: Datatype | str) -> None:
        """Write `datatype` columns the way `alias` columns are written."""
        db = database_name(database)
        with self._lock:
            self._write.setdefault(db, {})[_coerce_datatype(datatype)] = WriteEntry(alias=_coerce_datatype(alias))

    def register_read(self, database: Any, sql_type_name: str, datatype: Datatype | str | None,
                      decode_fn: DecodeFn | None = None) -> None:
        """Read-only mapping for a SQL type name."""
        db = database_name(database)
        datatype = None if datatype is None else _coerce_datatype(datatype)
        with self._lock:
            self._read.setdefault(db, {})[base_type_name(sql_type_name)] = ReadEntry(datatype, decode_fn or generic_decode)

    def write_entry(self, database: Any, datatype: Datatype | str) -> WriteEntry | None:
        return self._write.get(database_name(database), {}).get(_coerce_datatype(datatype))

    def read_entry(self, database: Any, sql_type_name: str) -> ReadEntry | None:
        return self._read.get(database_name(database), {}).get(base_type_name(sql_type_name))

    def _follow_aliases(self, db: str, datatype: Datatype) -> tuple[WriteEntry | None, Datatype]:
        seen = {datatype}
        while True:
            entry = self._write.get(db, {}).get(datatype)
            alias = entry.alias if entry is not None else DEFAULT_ALIASES.get(datatype)
            if alias is None or alias in seen:
                return entry, datatype
            seen.add(alias)
            datatype = alias

    def resolve_write(self, database: Any, column_metadata: Mapping[str, Any]) -> WriteMapping:
        """Resolve SQL type, binding type code, encoder and placeholder for a column.

        Raises
            UnmappedType: no SQL type for the column's datatype on this database
            ConfigurationError: malformed column metadata
        """
        db = database_name(database)
        name = column_metadata.get('name')
        if 'datatype' not in column_metadata:
            raise ConfigurationError(f'Column {name!r} metadata has no datatype')
        datatype = _coerce_datatype(column_metadata['datatype'], name)

        with self._lock:
            entry, resolved = self._follow_aliases(db, datatype)

        override_type = column_metadata.get('sql_datatype')
        sql_type_name = override_type
        if sql_type_name is None and entry is not None:
            sql_type_name = entry.sql_type_name
        if sql_type_name is None:
            sql_type_name = DEFAULT_SQL_TYPES.get(resolved)
        if sql_type_name is None:
            raise UnmappedType(db, str(datatype), name)

        column_to_sql = column_metadata.get('column_to_sql')
        if column_to_sql is not None:
            if not isinstance(column_to_sql, (tuple, list)) or len(column_to_sql) != 2 or not callable(column_to_sql[1]):
                raise ConfigurationError(f'column_to_sql for {name!r} must be (sql_type_index, encode_fn)')
            sql_type_index, encode_fn = column_to_sql
        else:
            use_entry = entry is not None and override_type is None
            sql_type_index = entry.sql_type_index if use_entry and entry.sql_type_index is not None else type_index(sql_type_name)
            encode_fn = entry.encode_fn if use_entry and entry.encode_fn is not None else None
            if encode_fn is None:
                encode_fn = SQL_TYPE_ENCODERS.get(base_type_name(sql_type_name), generic_encode)

        placeholder = column_metadata.get('insert_sql')
        if placeholder is None and entry is not None:
            placeholder = entry.insert_placeholder
        return WriteMapping(sql_type_name, int(sql_type_index), encode_fn, placeholder or '?')

    def resolve_read(self, database: Any, descriptor: ColumnDescriptor,
                     parser_fn: Mapping[Any, Any] | None = None) -> tuple[Datatype | None, DecodeFn]:
        """Resolve the datatype (None = infer) and decoder for a result column.
        """
        if parser_fn and descriptor.label in parser_fn:
            return _parser_fn_entry(descriptor.label, parser_fn[descriptor.label])

        type_name = base_type_name(descriptor.type_name)
        if type_name is not None:
            entry = self._read.get(database_name(database), {}).get(type_name)
            if entry is not None:
                return entry.datatype, entry.decode_fn
            if type_name in LONG_TEXT_TYPES:
                return Datatype.TEXT, decode_text

        for rule in HOST_CLASS_RULES:
            if rule.predicate(descriptor):
                return rule.datatype, rule.decode_fn

        return None, generic_decode


def _parser_fn_entry(label: Any, entry: Any) -> tuple[Datatype | None, DecodeFn]:
    if not isinstance(entry, (tuple, list)) or len(entry) != 2 or not callable(entry[1]):
        raise ConfigurationError(f'parser_fn entry for {label!r} must be (datatype or None, decode_fn)')
    datatype, decode_fn = entry
    if datatype is not None:
        datatype = _coerce_datatype(datatype, label)
    return datatype, decode_fn


def _to_microseconds(value: datetime.timedelta) -> int:
    return value // datetime.timedelta(microseconds=1)


def _from_microseconds(value: Any) -> datetime.timedelta:
    if isinstance(value, datetime.timedelta):
        return value
    return datetime.timedelta(microseconds=int(value))


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _promote_unsigned(registry: TypeRegistry, database: str) -> None:
    # no native unsigned types: widen to the next signed type
    registry.register_alias(database, Datatype.UINT8, Datatype.INT16)
    registry.register_alias(database, Datatype.UINT16, Datatype.INT32)
    registry.register_alias(database, Datatype.UINT32, Datatype.INT64)


def install_default_mappings(registry: TypeRegistry) -> None:
    """Built-in rules for the supported databases."""
    _promote_unsigned(registry, 'postgresql')
    registry.register_alias('postgresql', Datatype.INT8, Datatype.INT16)
    registry.register('postgresql', Datatype.STRING, 'varchar', SqlType.VARCHAR)
    registry.register('postgresql', Datatype.UUID, 'uuid', SqlType.OTHER,
                      make_convert_decode(_to_uuid), make_convert_encode(str),
                      insert_placeholder='? ::UUID')
    registry.register('postgresql', Datatype.BOOLEAN, 'bool', SqlType.BIT)
    registry.register('postgresql', Datatype.ZONED_DATE_TIME, 'timestamptz', SqlType.TIMESTAMP_WITH_TIMEZONE)
    registry.register('postgresql', Datatype.DURATION, 'interval', SqlType.OTHER)
    registry.register_read('postgresql', 'int2', Datatype.INT16)

    _promote_unsigned(registry, 'mssql')
    registry.register('mssql', Datatype.INSTANT, 'datetime2', SqlType.TIMESTAMP)
    registry.register('mssql', Datatype.UUID, 'uniqueidentifier', SqlType.CHAR,
                      make_convert_decode(_to_uuid), make_convert_encode(str))
    registry.register('mssql', Datatype.BOOLEAN, 'bit', SqlType.BIT)
    registry.register('mssql', Datatype.FLOAT64, 'float', SqlType.DOUBLE)
    registry.register_read('mssql', 'datetime', Datatype.INSTANT)

    _promote_unsigned(registry, 'sqlite')
    registry.register('sqlite', Datatype.BOOLEAN, 'boolean', SqlType.BOOLEAN)
    registry.register('sqlite', Datatype.UUID, 'uuid', SqlType.VARCHAR,
                      make_convert_decode(_to_uuid), make_convert_encode(str))
    registry.register('sqlite', Datatype.ZONED_DATE_TIME, 'timestamptz', SqlType.TIMESTAMP_WITH_TIMEZONE)
    registry.register('sqlite', Datatype.DURATION, 'interval', SqlType.BIGINT,
                      make_convert_decode(_from_microseconds), make_convert_encode(_to_microseconds))


def get_registry(cn: Any = None, registry: TypeRegistry | None = None) -> TypeRegistry:
    """Registry to use for an operation.

    An explicit registry wins, then the connection's own, then a fresh
    default registry.
    """
    if registry is not None:
        return registry
    owned = getattr(cn, 'registry', None)
    if isinstance(owned, TypeRegistry):
        return owned
    return TypeRegistry.with_defaults()
