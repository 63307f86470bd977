"""
SQLite-specific strategy implementation.

sqlite3 reports no column types in cursor descriptions, so typed reads rely
on the converters registered here: values come back as python objects keyed
on the declared column type of the table (PARSE_DECLTYPES).
"""
import datetime
import logging
import sqlite3
import uuid
from typing import TYPE_CHECKING, Any

import dateutil.parser
import sqlalchemy as sa
from datasql.sql import standardize_placeholders
from datasql.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from datasql.options import DatabaseOptions

logger = logging.getLogger(__name__)


# Adapters (Python -> SQLite)

def adapt_date(val: datetime.date) -> str:
    return val.isoformat()


def adapt_datetime(val: datetime.datetime) -> str:
    return val.isoformat(sep=' ')


def adapt_time(val: datetime.time) -> str:
    return val.isoformat()


# Converters (SQLite -> Python)

def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def convert_time(val: bytes) -> datetime.time:
    return datetime.time.fromisoformat(val.decode())


def convert_boolean(val: bytes) -> bool:
    return bool(int(val))


def convert_uuid(val: bytes) -> uuid.UUID:
    return uuid.UUID(val.decode())


def convert_interval(val: bytes) -> datetime.timedelta:
    """Durations are stored as integer microseconds."""
    return datetime.timedelta(microseconds=int(val))


CONVERTERS = {
    'date': convert_date,
    'time': convert_time,
    'datetime': convert_datetime,
    'timestamp': convert_datetime,
    'timestamptz': convert_datetime,
    'bool': convert_boolean,
    'boolean': convert_boolean,
    'uuid': convert_uuid,
    'interval': convert_interval,
}


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        return {
            'connect_args': {
                # without PARSE_COLNAMES, labels such as "price [usd]" stay whole
                'detect_types': sqlite3.PARSE_DECLTYPES
            }
        }

    def register_type_adapters(self, raw_conn: Any) -> None:
        """Register adapters and converters for SQLite.

        sqlite3 keeps these process-wide; registering again is harmless.
        """
        sqlite3.register_adapter(datetime.date, adapt_date)
        sqlite3.register_adapter(datetime.datetime, adapt_datetime)
        sqlite3.register_adapter(datetime.time, adapt_time)
        sqlite3.register_adapter(uuid.UUID, str)

        for name, converter in CONVERTERS.items():
            sqlite3.register_converter(name, converter)

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure connection settings for SQLite.
        """
        self.register_type_adapters(raw_conn)
        raw_conn.execute('PRAGMA foreign_keys = ON')
        self.enable_autocommit(raw_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = None

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = 'DEFERRED'

    def is_autocommit(self, raw_conn: Any) -> bool:
        return raw_conn.isolation_level is None

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def standardize_sql(self, sql: str) -> str:
        """Convert PostgreSQL-style placeholders (%s) to SQLite-style (?).
        """
        return standardize_placeholders(sql, dialect='sqlite')
