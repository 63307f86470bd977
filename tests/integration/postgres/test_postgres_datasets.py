"""
Dataset round trips through PostgreSQL (requires Docker for the test container).
"""
import datetime
import math

import datasql as db
import psycopg
import pytest
from datasql import Column, Datatype, Dataset
from datasql.exceptions import StatementFailure
from datasql.reader import BatchState
from fixtures.values import column_values, make_stocks

# datatype written -> datatype read back
READ_BACK = {
    Datatype.INT8: Datatype.INT16,
    Datatype.INT16: Datatype.INT16,
    Datatype.INT32: Datatype.INT32,
    Datatype.INT64: Datatype.INT64,
    Datatype.FLOAT32: Datatype.FLOAT64,
    Datatype.UINT8: Datatype.INT16,
    Datatype.UINT16: Datatype.INT32,
    Datatype.UINT32: Datatype.INT64,
    Datatype.FLOAT64: Datatype.FLOAT64,
    Datatype.STRING: Datatype.STRING,
    Datatype.TEXT: Datatype.TEXT,
    Datatype.BOOLEAN: Datatype.BOOLEAN,
    Datatype.UUID: Datatype.UUID,
    Datatype.LOCAL_DATE: Datatype.LOCAL_DATE,
    Datatype.LOCAL_TIME: Datatype.LOCAL_TIME,
    Datatype.INSTANT: Datatype.INSTANT,
    Datatype.ZONED_DATE_TIME: Datatype.ZONED_DATE_TIME,
    Datatype.DURATION: Datatype.DURATION,
}


@pytest.mark.parametrize('n', [0, 1, 1000])
@pytest.mark.parametrize('datatype', list(READ_BACK), ids=str)
def test_round_trip(psql_conn, typed_columns, datatype, n):
    values = column_values(typed_columns[datatype], n)
    ds = Dataset([Column.from_values('v', datatype, values)], name='round_trip')
    psql_conn.create_table(ds)
    assert psql_conn.insert_dataset(ds) == n

    result = psql_conn.sql_to_dataset('SELECT v FROM round_trip')
    assert result['v'].datatype == READ_BACK[datatype]
    assert result['v'].missing == ds['v'].missing
    assert result['v'].to_list() == values


def test_zoned_timestamps_are_aware(psql_conn):
    ts = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=-5)))
    ds = Dataset([Column.from_values('ts', Datatype.ZONED_DATE_TIME, [ts])], name='events')
    psql_conn.create_table(ds)
    psql_conn.insert_dataset(ds)
    value = psql_conn.sql_to_dataset('SELECT ts FROM events')['ts'].get(0)
    assert value.tzinfo is not None
    assert value == ts


def test_stocks(psql_conn, stocks):
    psql_conn.create_table(stocks)
    psql_conn.insert_dataset(stocks)
    result = psql_conn.sql_to_dataset('SELECT * FROM stocks ORDER BY date, symbol')
    assert result.row_count == 2
    assert [c.datatype for c in result.columns] == [Datatype.LOCAL_DATE, Datatype.STRING, Datatype.FLOAT64]
    prices = result['price'].to_list()
    assert math.isclose(prices[0], 39.81)
    assert math.isclose(prices[1], 36.35)


def test_upsert(psql_conn, stocks):
    psql_conn.create_table(stocks)
    psql_conn.insert_dataset(stocks)
    changed = make_stocks()
    changed.columns[2] = Column.from_values('price', Datatype.FLOAT64, [40.0, 41.0])
    psql_conn.insert_dataset(changed, postgres_upsert=True)

    result = psql_conn.sql_to_dataset('SELECT price FROM stocks ORDER BY date')
    assert result['price'].to_list() == [40.0, 41.0]
    assert psql_conn.sql_to_dataset('SELECT COUNT(*) AS n FROM stocks')['n'].to_list() == [2]


def test_ensure_table(psql_conn, stocks):
    assert psql_conn.ensure_table(stocks) is True
    assert psql_conn.ensure_table(stocks) is False
    assert psql_conn.drop_table_when_exists(stocks) is True
    assert psql_conn.table_exists(stocks) is False


def test_failed_insert_rolls_back(psql_conn, stocks):
    psql_conn.create_table(stocks)
    duplicated = Dataset.from_dict({
        'date': [datetime.date(2000, 1, 1)] * 2,
        'symbol': ['MSFT'] * 2,
        'price': [1.0, 2.0],
    }, name='stocks')
    with pytest.raises(StatementFailure):
        psql_conn.insert_dataset(duplicated)
    assert psql_conn.sql_to_dataset('SELECT COUNT(*) AS n FROM stocks')['n'].to_list() == [0]
    assert db.is_auto_commit(psql_conn)


def test_batches(psql_conn):
    ds = Dataset.from_dict({'n': list(range(100))}, name='numbers')
    psql_conn.create_table(ds)
    psql_conn.insert_dataset(ds, batch_size=7)
    batches = list(psql_conn.iter_datasets('SELECT n FROM numbers WHERE n >= ? ORDER BY n', 10,
                                           batch_size=30))
    assert [b.row_count for b in batches] == [30, 30, 30]
    assert db.concat_datasets(batches)['n'].to_list() == list(range(10, 100))


def test_sequence_streams_from_server_cursor(psql_conn):
    ds = Dataset.from_dict({'n': list(range(250))}, name='numbers')
    psql_conn.create_table(ds)
    psql_conn.insert_dataset(ds)
    with psql_conn.sql_to_dataset_seq('SELECT n FROM numbers ORDER BY n', batch_size=40) as batches:
        assert isinstance(batches.cursor, psycopg.ServerCursor)
        first = next(batches)
        assert first['n'].to_list() == list(range(40))
        assert batches.state is BatchState.BATCH_READY
        rest = list(batches)
    assert [b.row_count for b in rest] == [40, 40, 40, 40, 40, 10]
    assert db.concat_datasets([first, *rest])['n'].to_list() == list(range(250))


def test_sequence_inside_transaction(psql_conn, stocks):
    psql_conn.create_table(stocks)
    with db.transaction(psql_conn):
        psql_conn.insert_dataset(stocks)
        batches = list(psql_conn.sql_to_dataset_seq('SELECT symbol FROM stocks', batch_size=1))
    assert [b.row_count for b in batches] == [1, 1]


if __name__ == '__main__':
    __import__('pytest').main([__file__])
