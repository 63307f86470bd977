"""
Connection options and dataset operation options.

Both option classes accept an instance, a dict, or keyword arguments through
their `load` classmethod; unknown keys are rejected.
"""
import pathlib
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

from datasql.exceptions import ConfigurationError
from datasql.strategy import get_strategy_class

__all__ = [
    'DatabaseOptions',
    'SqlOptions',
    'READ_BATCH_SIZE',
    'WRITE_BATCH_SIZE',
]

READ_BATCH_SIZE = 64000
WRITE_BATCH_SIZE = 1024


class _Unset:
    def __repr__(self) -> str:
        return 'UNSET'


UNSET: Any = _Unset()


def _load(cls, options: Any, kw: dict[str, Any]):
    names = {f.name for f in fields(cls)}
    if options is None:
        options = {}
    if isinstance(options, cls):
        unknown = set(kw) - names
        if unknown:
            raise ConfigurationError(f'Unrecognized {cls.__name__} keys: {sorted(unknown)}')
        return replace(options, **kw) if kw else options
    if not isinstance(options, Mapping):
        raise ConfigurationError(f'Expected {cls.__name__}, dict or None, got {type(options).__name__}')
    merged = {**options, **kw}
    unknown = set(merged) - names
    if unknown:
        raise ConfigurationError(f'Unrecognized {cls.__name__} keys: {sorted(unknown)}')
    return cls(**merged)


def _scriptname() -> str | None:
    if not sys.argv or not sys.argv[0]:
        return None
    return pathlib.Path(sys.argv[0]).stem or None


@dataclass
class DatabaseOptions:
    """Connection options.

    supported driver names: `postgresql`, `sqlite`
    """
    drivername: str = 'postgresql'
    hostname: str | None = None
    username: str | None = None
    password: str | None = None
    database: str | None = None
    port: int = 0
    timeout: int = 0
    appname: str | None = None

    def __post_init__(self):
        try:
            strategy_cls = get_strategy_class(self.drivername)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        self.appname = self.appname or _scriptname() or 'python_console'
        try:
            strategy_cls.validate_options(self)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def load(cls, options: 'DatabaseOptions | Mapping[str, Any] | None' = None, **kw: Any) -> Self:
        return _load(cls, options, kw)


@dataclass
class SqlOptions:
    """Options recognized by the schema, read and write operations.

    table_name: overrides the dataset-derived table name
    primary_key / primary_keys: column name or list of names
    batch_size: rows per batch; None means a single unbounded batch.
        Defaults to READ_BATCH_SIZE on read and WRITE_BATCH_SIZE on write
    close: release the cursor (and `statement`) when a read finishes
    key_fn: renames result labels before they become column names
    parser_fn: {label: (datatype or None, decode_fn)} read overrides
    statement: extra closeable released along with the read cursor
    dataset_name: name given to datasets produced by a read
    postgres_upsert_keys: conflict columns; turns inserts into upserts
    postgres_upsert: upsert on the resolved primary key
    registry: TypeRegistry overriding the connection's
    """
    table_name: str | None = None
    primary_key: Any = None
    primary_keys: Any = None
    batch_size: int | None = field(default=UNSET)
    close: bool = True
    key_fn: Callable[[Any], Any] | None = None
    parser_fn: Mapping[Any, Any] | None = None
    statement: Any = None
    dataset_name: Any = None
    postgres_upsert_keys: Any = None
    postgres_upsert: bool = False
    registry: Any = None

    def __post_init__(self):
        if self.batch_size is not UNSET and self.batch_size is not None:
            if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size < 1:
                raise ConfigurationError(f'batch_size must be a positive integer or None, got {self.batch_size!r}')
        if self.key_fn is not None and not callable(self.key_fn):
            raise ConfigurationError('key_fn must be callable')
        if self.parser_fn is not None and not isinstance(self.parser_fn, Mapping):
            raise ConfigurationError('parser_fn must be a mapping of label to (datatype, decode_fn)')

    @classmethod
    def load(cls, options: 'SqlOptions | Mapping[str, Any] | None' = None, **kw: Any) -> Self:
        return _load(cls, options, kw)

    def batch_size_or(self, default: int | None) -> int | None:
        """Configured batch size, or `default` when none was given."""
        if self.batch_size is UNSET:
            return default
        return self.batch_size
