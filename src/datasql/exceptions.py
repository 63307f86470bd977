"""
Dataset/database exception classes.
"""
import sqlite3

import psycopg


class DatabaseError(Exception):
    """Base class for all datasql errors.
    """


class UnmappedType(DatabaseError):
    """No SQL type could be resolved for a column's datatype.
    """

    def __init__(self, database: str, datatype: str, column: str | None = None):
        self.database = database
        self.datatype = datatype
        self.column = column
        where = f' (column {column!r})' if column is not None else ''
        super().__init__(f'Unable to find sql type for datatype {datatype!r} on {database!r}{where}')


class MissingPrimaryKey(DatabaseError):
    """Upsert requested but no conflict key columns could be resolved.
    """


class StatementFailure(DatabaseError):
    """A DDL or batch statement failed.

    Carries the offending SQL, the failing column (when binding failed) and
    the underlying driver error.
    """

    def __init__(self, message: str, sql: str | None = None,
                 column: str | None = None, error: BaseException | None = None):
        self.sql = sql
        self.column = column
        self.error = error
        super().__init__(message)


class ConfigurationError(DatabaseError):
    """Malformed options or column metadata.
    """


IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    psycopg.DatabaseError,
    sqlite3.ProgrammingError,
    sqlite3.DatabaseError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )
