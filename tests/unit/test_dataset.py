"""
Tests for the columnar containers and the column parsers.
"""
import datetime
import math
import uuid

import numpy as np
import pandas as pd
import pytest
from datasql import Column, Datatype, Dataset, concat_datasets
from datasql.parsers import FixedParser, PromotionalParser, make_parser, widen


class TestColumn:

    def test_missing_set_is_authoritative(self):
        """Sentinels at missing rows are never returned as data"""
        col = Column.from_values('n', Datatype.INT32, [1, None, 3])
        assert col.missing == {1}
        assert col.values[1] == 0
        assert col.to_list() == [1, None, 3]
        assert col.get(1) is None

    def test_float_sentinel(self):
        col = Column.from_values('x', Datatype.FLOAT64, [None, 2.5])
        assert math.isnan(col.values[0])
        assert col.to_list() == [None, 2.5]

    def test_numeric_backing_array(self):
        col = Column.from_values('n', 'int16', [1, 2])
        assert col.values.dtype == np.dtype('int16')
        assert isinstance(col.get(0), int)

    def test_object_backing_array(self):
        value = uuid.uuid4()
        col = Column.from_values('id', Datatype.UUID, [value])
        assert col.values.dtype == np.dtype(object)
        assert col.get(0) == value


class TestDataset:

    def test_from_dict_infers_types(self, stocks):
        assert stocks.column_names == ['date', 'symbol', 'price']
        assert [c.datatype for c in stocks.columns] == [Datatype.LOCAL_DATE, Datatype.STRING, Datatype.FLOAT64]
        assert stocks.row_count == 2
        assert stocks.metadata == {'primary_key': ['date', 'symbol']}

    def test_from_dict_with_declared_types(self):
        ds = Dataset.from_dict({'n': [1, None]}, datatypes={'n': 'int8'})
        assert ds['n'].datatype == Datatype.INT8
        assert ds['n'].missing == {1}

    def test_columns_must_share_row_count(self):
        with pytest.raises(ValueError):
            Dataset([Column.from_values('a', Datatype.INT64, [1]),
                     Column.from_values('b', Datatype.INT64, [1, 2])])

    def test_rows(self, stocks):
        assert list(stocks.rows())[1] == (datetime.date(2000, 2, 1), 'MSFT', 36.35)

    def test_pandas_round_trip(self):
        ds = Dataset.from_dict({'n': [1, None, 3], 's': ['a', 'b', None]}, name='t',
                               datatypes={'n': Datatype.INT32})
        df = ds.to_pandas()
        assert str(df['n'].dtype) == 'Int32'
        assert df.attrs['name'] == 't'

        back = Dataset.from_pandas(df)
        assert back.name == 't'
        assert back['n'].datatype == Datatype.INT32
        assert back['n'].to_list() == [1, None, 3]
        assert back['s'].to_list() == ['a', 'b', None]

    def test_from_pandas_datetimes(self):
        df = pd.DataFrame({
            'ts': pd.to_datetime(['2020-01-01 10:00', None]),
            'tz': pd.to_datetime(['2020-01-01 10:00', '2020-01-02 10:00']).tz_localize('UTC'),
            'd': pd.to_timedelta(['1s', '2s']),
        })
        ds = Dataset.from_pandas(df, name='times')
        assert ds['ts'].datatype == Datatype.INSTANT
        assert ds['ts'].to_list() == [datetime.datetime(2020, 1, 1, 10), None]
        assert ds['tz'].datatype == Datatype.ZONED_DATE_TIME
        assert ds['d'].datatype == Datatype.DURATION
        assert ds['d'].get(1) == datetime.timedelta(seconds=2)

    def test_to_arrow(self, stocks):
        table = stocks.to_arrow()
        assert table.num_rows == 2
        assert table.column_names == ['date', 'symbol', 'price']
        assert table.column('price').to_pylist() == [39.81, 36.35]

    def test_concat(self):
        first = Dataset.from_dict({'n': [1, 2]}, name='t')
        second = Dataset.from_dict({'n': [None, 4]}, name='t')
        joined = concat_datasets([first, second])
        assert joined['n'].to_list() == [1, 2, None, 4]
        assert joined['n'].missing == {2}

    def test_concat_reinfers_disagreeing_batches(self):
        first = Dataset.from_dict({'n': [1, 2]})
        second = Dataset.from_dict({'n': [2.5]})
        joined = concat_datasets([first, second])
        assert joined['n'].datatype == Datatype.FLOAT64
        assert joined['n'].to_list() == [1.0, 2.0, 2.5]


class TestParsers:

    def test_widen_ladder(self):
        assert widen(None, Datatype.INT64) == Datatype.INT64
        assert widen(Datatype.BOOLEAN, Datatype.INT64) == Datatype.INT64
        assert widen(Datatype.FLOAT64, Datatype.INT64) == Datatype.FLOAT64
        assert widen(Datatype.INT64, Datatype.STRING) == Datatype.STRING
        assert widen(Datatype.LOCAL_DATE, Datatype.STRING) == Datatype.STRING
        assert widen(Datatype.LOCAL_DATE, Datatype.INT64) == Datatype.OBJECT

    def test_promotional_int_to_float(self):
        parser = PromotionalParser()
        parser.add_value(0, 1)
        parser.add_value(1, 2.5)
        col = parser.finalize('x', 2)
        assert col.datatype == Datatype.FLOAT64
        assert col.to_list() == [1.0, 2.5]

    def test_promotional_all_missing_is_boolean(self):
        col = PromotionalParser().finalize('x', 3)
        assert col.datatype == Datatype.BOOLEAN
        assert col.missing == {0, 1, 2}

    def test_promotional_keeps_temporal_type(self):
        parser = PromotionalParser()
        parser.add_value(0, datetime.date(2020, 1, 1))
        assert parser.finalize('d', 1).datatype == Datatype.LOCAL_DATE

    def test_fixed_parser_gaps_are_missing(self):
        parser = FixedParser(Datatype.INT32)
        parser.add_value(1, 10)
        parser.add_value(3, 30)
        col = parser.finalize('n', 5)
        assert col.missing == {0, 2, 4}
        assert col.to_list() == [None, 10, None, 30, None]

    def test_make_parser(self):
        assert isinstance(make_parser(None), PromotionalParser)
        parser = make_parser(Datatype.STRING)
        assert type(parser) is FixedParser
        assert parser.datatype == Datatype.STRING


if __name__ == '__main__':
    __import__('pytest').main([__file__])
