"""
Tests for the batched result decoder using fake cursors.
"""
import datetime
from types import SimpleNamespace

import datasql as db
import pytest
from datasql import Datatype
from datasql.reader import BatchState, ResultSetBatches


def description(*names):
    return [(name, None, None, None, None, None, None) for name in names]


def numbered_rows(n):
    return [(i, f'row{i}') for i in range(n)]


class TestBatching:
    """Batch boundaries and cursor release."""

    def test_batches_split_rows(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(5))
        cursor = cn.cursor()
        batches = list(db.result_set_to_dataset_seq(cn, cursor, batch_size=2))
        assert [b.row_count for b in batches] == [2, 2, 1]
        assert batches[2]['n'].to_list() == [4]
        assert cursor.closed == 1

    def test_no_trailing_empty_batch(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(4))
        cursor = cn.cursor()
        batches = list(db.result_set_to_dataset_seq(cn, cursor, batch_size=2))
        assert [b.row_count for b in batches] == [2, 2]
        assert cursor.closed == 1

    def test_empty_result_yields_one_empty_dataset(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=[])
        cursor = cn.cursor()
        batches = list(db.result_set_to_dataset_seq(cn, cursor))
        assert len(batches) == 1
        assert batches[0].row_count == 0
        assert batches[0].column_names == ['n', 's']
        assert cursor.closed == 1

    def test_unbounded_batch(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(100))
        ds = db.result_set_to_dataset(cn, cn.cursor(), batch_size=3)
        assert ds.row_count == 100

    @pytest.mark.parametrize('batch_size', [1, 25, 64000, None])
    def test_batch_size_is_transparent(self, fake_connection, batch_size):
        """Concatenated batches equal the single-batch read"""
        rows = [(i, None if i % 5 == 0 else f'v{i}') for i in range(60)]
        cn = fake_connection(description=description('n', 's'), rows=rows)
        batches = list(db.result_set_to_dataset_seq(cn, cn.cursor(), batch_size=batch_size))
        joined = db.concat_datasets(batches)
        assert joined['n'].to_list() == list(range(60))
        assert joined['s'].to_list() == [r[1] for r in rows]
        assert joined['s'].missing == {i for i in range(60) if i % 5 == 0}

    def test_state_transitions(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(3))
        batches = ResultSetBatches(cn, cn.cursor(), batch_size=2)
        assert batches.state is BatchState.OPEN
        next(batches)
        assert batches.state is BatchState.BATCH_READY
        next(batches)
        assert batches.state is BatchState.CLOSED
        with pytest.raises(StopIteration):
            next(batches)

    def test_close_releases_once(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(10))
        cursor = cn.cursor()
        batches = db.result_set_to_dataset_seq(cn, cursor, batch_size=2)
        next(batches)
        batches.close()
        batches.close()
        assert cursor.closed == 1
        assert list(batches) == []

    def test_context_manager_closes(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(10))
        cursor = cn.cursor()
        with db.result_set_to_dataset_seq(cn, cursor, batch_size=2) as batches:
            next(batches)
        assert cursor.closed == 1

    def test_close_option_leaves_cursor_open(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(3))
        cursor = cn.cursor()
        list(db.result_set_to_dataset_seq(cn, cursor, close=False))
        assert cursor.closed == 0

    def test_statement_closed_with_cursor(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(3))
        statement = cn.cursor()
        cursor = cn.cursor()
        list(db.result_set_to_dataset_seq(cn, cursor, statement=statement))
        assert cursor.closed == 1
        assert statement.closed == 1

    def test_decode_failure_closes_cursor(self, fake_connection):
        def explode(reader, position):
            raise ValueError('cannot decode')

        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(3))
        cursor = cn.cursor()
        batches = db.result_set_to_dataset_seq(cn, cursor, parser_fn={'s': (None, explode)})
        with pytest.raises(ValueError):
            next(batches)
        assert cursor.closed == 1
        assert batches.state is BatchState.CLOSED


class TestDecoding:
    """Column typing and overrides."""

    def test_inferred_types_and_missing(self, fake_connection):
        rows = [(1, 1.5, None), (None, 2, datetime.date(2020, 1, 2))]
        cn = fake_connection(description=description('i', 'f', 'd'), rows=rows)
        ds = db.result_set_to_dataset(cn, cn.cursor())
        assert ds['i'].datatype == Datatype.INT64
        assert ds['i'].missing == {1}
        assert ds['f'].datatype == Datatype.FLOAT64
        assert ds['f'].to_list() == [1.5, 2.0]
        assert ds['d'].datatype == Datatype.LOCAL_DATE
        assert ds['d'].to_list() == [None, datetime.date(2020, 1, 2)]

    def test_all_missing_column_is_boolean(self, fake_connection):
        cn = fake_connection(description=description('x'), rows=[(None,), (None,)])
        ds = db.result_set_to_dataset(cn, cn.cursor())
        assert ds['x'].datatype == Datatype.BOOLEAN
        assert ds['x'].missing == {0, 1}

    def test_key_fn_and_parser_fn(self, fake_connection):
        """parser_fn is keyed by the renamed label"""
        def doubled(reader, position):
            value = reader.get_object(position)
            return None if value is None else value * 2

        cn = fake_connection(description=description('N', 'S'), rows=numbered_rows(3))
        ds = db.result_set_to_dataset(cn, cn.cursor(), key_fn=str.lower,
                                      parser_fn={'n': (Datatype.INT32, doubled)})
        assert ds.column_names == ['n', 's']
        assert ds['n'].datatype == Datatype.INT32
        assert ds['n'].to_list() == [0, 2, 4]

    def test_none_from_decoder_is_missing(self, fake_connection):
        cn = fake_connection(description=description('n'), rows=[(1,), (2,)])
        ds = db.result_set_to_dataset(cn, cn.cursor(),
                                      parser_fn={'n': (Datatype.INT64, lambda r, p: None)})
        assert ds['n'].missing == {0, 1}

    def test_result_metadata_and_dataset_name(self, fake_connection):
        cn = fake_connection(description=description('n'), rows=[(1,)])
        ds = db.result_set_to_dataset(cn, cn.cursor(), dataset_name='numbers')
        assert ds.name == 'numbers'
        assert ds['n'].metadata['result_set_metadata'].name == 'n'

    def test_null_flag_does_not_leak_between_columns(self, fake_connection):
        """A decoder that reads the row directly is not affected by the previous column's null"""
        cn = fake_connection(description=description('a', 'b'), rows=[(None, 5), (1, 6)])
        ds = db.result_set_to_dataset(cn, cn.cursor(),
                                      parser_fn={'b': (Datatype.INT64, lambda r, p: r.row[p - 1])})
        assert ds['a'].missing == {0}
        assert ds['b'].missing == set()
        assert ds['b'].to_list() == [5, 6]

    def test_database_name_instead_of_connection(self, fake_connection):
        cn = fake_connection(description=description('n'), rows=[(1,), (2,)])
        ds = db.result_set_to_dataset('sqlite', cn.cursor())
        assert ds['n'].to_list() == [1, 2]


class TestSqlToDataset:

    def test_executes_with_parameters(self, fake_connection):
        cn = fake_connection(description=description('n', 's'), rows=numbered_rows(2))
        ds = db.sql_to_dataset(cn, 'select n, s from t where n > %s', 0)
        cursor = cn.cursors[0]
        assert cursor.executed == [('select n, s from t where n > ?', (0,))]
        assert ds.row_count == 2
        assert cursor.closed == 1

    def test_failure_closes_cursor_and_rolls_back(self, fake_connection):
        cn = fake_connection(description=description('n'), fail_on='broken')
        cn.isolation_level = 'DEFERRED'
        with pytest.raises(RuntimeError):
            db.sql_to_dataset_seq(cn, 'select broken')
        assert cn.cursors[0].closed == 1
        assert cn.rollbacks == 1

    def test_postgres_sequence_streams_from_named_cursor(self, fake_connection):
        cn = fake_connection(dialect='postgresql', description=[SimpleNamespace(name='n', type_code=20)],
                             rows=[(1,), (2,), (3,)])
        batches = db.sql_to_dataset_seq(cn, 'select n from t', batch_size=2)
        cursor = cn.cursors[0]
        assert cursor.kwargs['name'].startswith('datasql_')
        assert cursor.kwargs['withhold'] is True
        assert [b['n'].to_list() for b in batches] == [[1, 2], [3]]
        assert cursor.closed == 1

    def test_postgres_named_cursor_without_hold_in_manual_commit(self, fake_connection):
        cn = fake_connection(dialect='postgresql', description=[SimpleNamespace(name='n', type_code=20)],
                             rows=[(1,)])
        cn.autocommit = False
        with db.sql_to_dataset_seq(cn, 'select n from t'):
            assert cn.cursors[0].kwargs['withhold'] is False

    def test_full_read_uses_plain_cursor(self, fake_connection):
        cn = fake_connection(dialect='postgresql', description=[SimpleNamespace(name='n', type_code=20)],
                             rows=[(1,), (2,)])
        assert db.sql_to_dataset(cn, 'select n from t')['n'].to_list() == [1, 2]
        assert cn.cursors[0].kwargs == {}

    def test_sqlite_sequence_uses_plain_cursor(self, fake_connection):
        cn = fake_connection(description=description('n'), rows=[(1,)])
        list(db.sql_to_dataset_seq(cn, 'select n from t'))
        assert cn.cursors[0].kwargs == {}

    def test_failure_in_auto_commit_skips_rollback(self, fake_connection):
        cn = fake_connection(description=description('n'), fail_on='broken')
        with pytest.raises(RuntimeError):
            db.sql_to_dataset(cn, 'select broken')
        assert cn.rollbacks == 0


if __name__ == '__main__':
    __import__('pytest').main([__file__])
