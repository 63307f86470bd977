"""
PostgreSQL-specific strategy implementation (psycopg 3).
"""
import logging
import uuid
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from datasql.sql import standardize_placeholders
from datasql.strategy.base import DatabaseStrategy, register_strategy
from psycopg.pq import TransactionStatus

if TYPE_CHECKING:
    from datasql.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname
        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query,
        )

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for PostgreSQL."""
        return {}

    def register_type_adapters(self, raw_conn: Any) -> None:
        """PostgreSQL with psycopg doesn't need special adapters.
        """

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure connection settings for PostgreSQL.
        """
        self.register_type_adapters(raw_conn)
        self.enable_autocommit(raw_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for PostgreSQL.
        """
        # psycopg refuses to switch modes inside a transaction
        status = raw_conn.info.transaction_status
        if status == TransactionStatus.INERROR:
            raw_conn.rollback()
        elif status != TransactionStatus.IDLE:
            raw_conn.commit()
        raw_conn.autocommit = True

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode for PostgreSQL.
        """
        raw_conn.autocommit = False

    def is_autocommit(self, raw_conn: Any) -> bool:
        return bool(raw_conn.autocommit)

    def open_read_cursor(self, raw_conn: Any, streaming: bool = False) -> Any:
        """Server-side cursor when streaming, so fetchmany pulls rows lazily.

        A client cursor loads the whole result during execute. In auto-commit
        mode the named cursor is declared WITH HOLD to outlive the implicit
        transaction.
        """
        if not streaming:
            return raw_conn.cursor()
        name = f'datasql_{uuid.uuid4().hex}'
        return raw_conn.cursor(name=name, withhold=self.is_autocommit(raw_conn))

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port']

    def standardize_sql(self, sql: str) -> str:
        """Convert SQLite-style placeholders (?) to PostgreSQL-style (%s).
        """
        return standardize_placeholders(sql, dialect='postgresql')
