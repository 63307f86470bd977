"""
Base strategy interface for database-specific behavior.

A strategy encapsulates what differs between drivers: how to build the
SQLAlchemy URL, how to configure a fresh connection, how auto-commit is
switched, how query results are fetched and how cursor descriptions
are read. Everything else in the package works against this
interface.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from datasql.types import ColumnDescriptor

if TYPE_CHECKING:
    from datasql.options import DatabaseOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for database-specific operations.
    """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the database connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            SQLAlchemy URL
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.
        """

    @abstractmethod
    def register_type_adapters(self, raw_conn: Any) -> None:
        """Register dialect-specific type adapters.

        Args:
            raw_conn: The raw DBAPI connection
        """

    @abstractmethod
    def configure_connection(self, raw_conn: Any) -> None:
        """Configure a freshly opened connection.

        Args:
            raw_conn: The raw DBAPI connection
        """

    @abstractmethod
    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw database connection.
        """

    @abstractmethod
    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode on a raw database connection.
        """

    @abstractmethod
    def is_autocommit(self, raw_conn: Any) -> bool:
        """Whether the raw connection commits every statement by itself.
        """

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def open_read_cursor(self, raw_conn: Any, streaming: bool = False) -> Any:
        """Cursor for a query whose rows are read in batches.

        Drivers that fetch lazily need nothing special, so the default is a
        plain cursor.
        """
        return raw_conn.cursor()

    def standardize_sql(self, sql: str) -> str:
        """Convert placeholders to this dialect's style.

        Default implementation is a no-op.
        """
        return sql

    def describe_column(self, description_item: Any, key_fn=None) -> ColumnDescriptor:
        """Build a ColumnDescriptor from one `cursor.description` entry.
        """
        return ColumnDescriptor.from_cursor_description(description_item, self.dialect_name, key_fn)
