"""
Tests for the engine registry used by `connect()`.
"""
from unittest.mock import MagicMock, patch

import pytest
from datasql import DatabaseOptions
from datasql.connection import dispose_all_engines, get_engine_for_options
from sqlalchemy.pool import NullPool


@pytest.fixture
def empty_engine_registry():
    with patch('datasql.connection._engine_registry', {}) as registry:
        yield registry


def test_engine_created_once_per_options(empty_engine_registry):
    factory = MagicMock()
    options = DatabaseOptions(drivername='sqlite', database='a.db')

    first = get_engine_for_options(options, engine_factory=factory)
    second = get_engine_for_options(DatabaseOptions(drivername='sqlite', database='a.db'),
                                    engine_factory=factory)

    assert first is second
    assert factory.call_count == 1
    url, = factory.call_args.args
    assert url.drivername == 'sqlite'
    assert url.database == 'a.db'
    assert factory.call_args.kwargs['poolclass'] is NullPool


def test_distinct_options_get_distinct_engines(empty_engine_registry):
    factory = MagicMock(side_effect=lambda url, **kw: MagicMock(name=str(url)))
    a = get_engine_for_options(DatabaseOptions(drivername='sqlite', database='a.db'), engine_factory=factory)
    b = get_engine_for_options(DatabaseOptions(drivername='sqlite', database='b.db'), engine_factory=factory)
    assert a is not b
    assert len(empty_engine_registry) == 2


def test_dispose_all_engines(empty_engine_registry):
    engine = MagicMock()
    get_engine_for_options(DatabaseOptions(drivername='sqlite', database='a.db'),
                           engine_factory=MagicMock(return_value=engine))
    dispose_all_engines()
    engine.dispose.assert_called_once()
    assert empty_engine_registry == {}


if __name__ == '__main__':
    __import__('pytest').main([__file__])
