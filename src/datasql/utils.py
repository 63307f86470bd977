"""Low-level connection utilities with no internal dependencies.

These utilities work with any database connection type (ConnectionWrapper,
SQLAlchemy connections, raw DBAPI connections) and import nothing from the
rest of the package.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)

DATABASE_ALIASES = {
    'postgres': 'postgresql',
    'postgresql+psycopg': 'postgresql',
    'microsoft sql server': 'mssql',
    'sqlserver': 'mssql',
    'sqlite3': 'sqlite',
}


def get_dialect_name(obj: Any) -> str:
    """Get dialect name for a database connection or engine.
    """
    if hasattr(obj, 'dialect'):
        dialect = obj.dialect
        if isinstance(dialect, str):
            return dialect.lower()
        return str(dialect.name).lower()

    if hasattr(obj, 'engine') and hasattr(obj.engine, 'dialect'):
        return str(obj.engine.dialect.name).lower()

    if hasattr(obj, 'dbapi_connection'):
        return get_dialect_name(obj.dbapi_connection)

    type_name = f'{type(obj).__module__}.{type(obj).__name__}'
    if 'psycopg' in type_name:
        return 'postgresql'
    if 'sqlite3' in type_name:
        return 'sqlite'

    raise AttributeError(f'Cannot determine dialect for {type(obj)}')


def get_raw_connection(connection: Any) -> Any:
    """Extract the raw DBAPI connection from a wrapper."""
    raw_conn = connection
    if hasattr(raw_conn, 'dbapi_connection'):
        raw_conn = raw_conn.dbapi_connection
    if hasattr(raw_conn, 'driver_connection'):
        raw_conn = raw_conn.driver_connection
    return raw_conn


def database_name(conn_or_name: Any) -> str:
    """Normalized database identifier used as the type registry's outer key.

    Accepts either a connection-like object or the identifier itself.
    """
    if isinstance(conn_or_name, str):
        name = conn_or_name.strip().lower()
    else:
        name = get_dialect_name(conn_or_name)
    return DATABASE_ALIASES.get(name, name)
