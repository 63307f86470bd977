"""
Dialect strategy lookup.

Strategies are stateless, so one cached instance per dialect is shared.
"""
from functools import lru_cache

from datasql.strategy.base import _STRATEGY_REGISTRY
from datasql.strategy.base import DatabaseStrategy as DatabaseStrategy
from datasql.strategy.base import register_strategy as register_strategy
from datasql.strategy.postgres import PostgresStrategy as PostgresStrategy
from datasql.strategy.sqlite import SQLiteStrategy as SQLiteStrategy
from datasql.utils import get_dialect_name


def get_strategy_class(dialect: str) -> type[DatabaseStrategy]:
    """Strategy class registered for `dialect`.

    Raises
        ValueError: the dialect has no registered strategy
    """
    try:
        return _STRATEGY_REGISTRY[dialect]
    except KeyError:
        available = sorted(_STRATEGY_REGISTRY)
        raise ValueError(f'Unsupported dialect: {dialect}. Available: {available}') from None


@lru_cache(maxsize=8)
def get_strategy(dialect: str) -> DatabaseStrategy:
    """Strategy instance for a dialect name."""
    return get_strategy_class(dialect)()


def get_db_strategy(cn) -> DatabaseStrategy:
    """Strategy for a connection (wrapper, SQLAlchemy or raw DBAPI)."""
    return get_strategy(get_dialect_name(cn))
