"""
Columnar dataset containers.

A `Dataset` is an ordered set of named `Column`s sharing a row count. Each
column keeps a dense value array plus the set of row indices that are
missing. Values stored at missing indices are sentinels (see
`types.missing_value`) and are never read as data: every accessor consults
the missing set first.
"""
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Self

import numpy as np
import pandas as pd
import pyarrow as pa
from datasql.types import NUMPY_DTYPES, Datatype, missing_value, numpy_dtype

logger = logging.getLogger(__name__)

__all__ = ['Column', 'Dataset', 'concat_datasets']

PANDAS_NULLABLE_DTYPES = {
    Datatype.INT8: 'Int8',
    Datatype.INT16: 'Int16',
    Datatype.INT32: 'Int32',
    Datatype.INT64: 'Int64',
    Datatype.UINT8: 'UInt8',
    Datatype.UINT16: 'UInt16',
    Datatype.UINT32: 'UInt32',
    Datatype.UINT64: 'UInt64',
    Datatype.FLOAT32: 'Float32',
    Datatype.FLOAT64: 'Float64',
    Datatype.BOOLEAN: 'boolean',
}

_PANDAS_DTYPE_NAMES = {
    'int8': Datatype.INT8,
    'int16': Datatype.INT16,
    'int32': Datatype.INT32,
    'int64': Datatype.INT64,
    'uint8': Datatype.UINT8,
    'uint16': Datatype.UINT16,
    'uint32': Datatype.UINT32,
    'uint64': Datatype.UINT64,
    'float32': Datatype.FLOAT32,
    'float64': Datatype.FLOAT64,
    'bool': Datatype.BOOLEAN,
    'boolean': Datatype.BOOLEAN,
}


def build_values(datatype: Datatype, values: Sequence[Any], missing: Iterable[int]) -> np.ndarray:
    """Pack python values into the backing array for `datatype`.

    Missing positions are overwritten with the datatype's sentinel.
    """
    sentinel = missing_value(datatype)
    items = list(values)
    for idx in missing:
        items[idx] = sentinel
    dtype = numpy_dtype(datatype)
    if dtype == np.dtype(object):
        array = np.empty(len(items), dtype=object)
        array[:] = items
        return array
    return np.array(items, dtype=dtype)


@dataclass(eq=False)
class Column:
    """Named, typed column with an explicit missing set."""
    name: Any
    datatype: Datatype
    values: np.ndarray
    missing: frozenset[int] = frozenset()
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.datatype = Datatype.coerce(self.datatype)
        self.missing = frozenset(self.missing)

    @classmethod
    def from_values(cls, name: Any, datatype: Datatype | str, values: Sequence[Any],
                    metadata: dict | None = None) -> Self:
        """Build a column from python values; `None` marks a missing row."""
        datatype = Datatype.coerce(datatype)
        missing = frozenset(i for i, v in enumerate(values) if v is None)
        return cls(name, datatype, build_values(datatype, values, missing),
                   missing, dict(metadata or {}))

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.to_list())

    def __repr__(self) -> str:
        return f'Column(name={self.name!r}, datatype={self.datatype}, rows={len(self)}, missing={len(self.missing)})'

    def is_missing(self, row: int) -> bool:
        return row in self.missing

    def get(self, row: int) -> Any:
        """Value at `row`, or None when the row is missing."""
        if row in self.missing:
            return None
        value = self.values[row]
        if isinstance(value, np.generic):
            return value.item()
        return value

    def to_list(self) -> list[Any]:
        """Python values with None at missing positions."""
        return [self.get(i) for i in range(len(self))]

    def write_metadata(self) -> dict[str, Any]:
        """Column metadata as consumed by the schema emitter and write path."""
        return {**self.metadata, 'name': self.name, 'datatype': self.datatype}

    def to_pandas(self) -> pd.Series:
        dtype = PANDAS_NULLABLE_DTYPES.get(self.datatype, object)
        return pd.Series(pd.array(self.to_list(), dtype=dtype), name=self.name)


class Dataset:
    """Ordered collection of equally sized columns with dataset metadata.

    Recognized metadata keys: `primary_key` / `primary_keys`.
    """

    def __init__(self, columns: Iterable[Column] = (), name: Any = None,
                 metadata: Mapping[str, Any] | None = None) -> None:
        self.columns = list(columns)
        self.name = name
        self.metadata = dict(metadata or {})
        lengths = {len(col) for col in self.columns}
        if len(lengths) > 1:
            raise ValueError(f'Columns have differing row counts: {sorted(lengths)}')

    def __repr__(self) -> str:
        return f'Dataset(name={self.name!r}, columns={self.column_names}, rows={self.row_count})'

    def __len__(self) -> int:
        return self.row_count

    def __getitem__(self, name: Any) -> Column:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(name)

    def __contains__(self, name: Any) -> bool:
        return any(col.name == name for col in self.columns)

    @property
    def row_count(self) -> int:
        return len(self.columns[0]) if self.columns else 0

    @property
    def column_names(self) -> list[Any]:
        return [col.name for col in self.columns]

    def rows(self) -> Iterator[tuple]:
        """Iterate rows as tuples, None at missing positions."""
        for i in range(self.row_count):
            yield tuple(col.get(i) for col in self.columns)

    def to_dict(self) -> dict[Any, list[Any]]:
        return {col.name: col.to_list() for col in self.columns}

    @classmethod
    def from_dict(cls, data: Mapping[Any, Sequence[Any]], name: Any = None,
                  datatypes: Mapping[Any, Datatype | str] | None = None,
                  metadata: Mapping[str, Any] | None = None) -> Self:
        """Build a dataset from column lists.

        Column datatypes come from `datatypes` or are inferred as the widest
        type of the non-None values.
        """
        datatypes = datatypes or {}
        columns = []
        for col_name, values in data.items():
            values = list(values)
            if col_name in datatypes:
                columns.append(Column.from_values(col_name, datatypes[col_name], values))
                continue
            columns.append(infer_column(col_name, values))
        return cls(columns, name=name, metadata=metadata)

    @classmethod
    def from_pandas(cls, df: pd.DataFrame, name: Any = None,
                    metadata: Mapping[str, Any] | None = None) -> Self:
        """Build a dataset from a DataFrame.

        `df.attrs` supplies defaults for `name` and the dataset metadata.
        """
        attrs = dict(df.attrs)
        name = name if name is not None else attrs.pop('name', None)
        attrs.pop('column_types', None)
        columns = []
        for col_name in df.columns:
            series = df[col_name]
            datatype = _datatype_for_series(series)
            values = _python_values(series)
            if datatype is None:
                columns.append(infer_column(col_name, values))
            else:
                columns.append(Column.from_values(col_name, datatype, values))
        return cls(columns, name=name, metadata={**attrs, **(metadata or {})})

    def to_pandas(self) -> pd.DataFrame:
        """DataFrame using pandas nullable dtypes for numeric columns.

        Column datatypes are kept in `df.attrs['column_types']`.
        """
        df = pd.DataFrame({col.name: col.to_pandas() for col in self.columns})
        df.attrs['name'] = self.name
        df.attrs['column_types'] = {col.name: str(col.datatype) for col in self.columns}
        df.attrs.update(self.metadata)
        return df

    def to_arrow(self) -> pa.Table:
        """pyarrow Table with nulls at missing positions."""
        arrays = [pa.array(col.to_list(), type=_arrow_type(col.datatype)) for col in self.columns]
        schema_metadata = {'name': str(self.name)} if self.name is not None else None
        return pa.Table.from_arrays(arrays, names=[str(n) for n in self.column_names],
                                    metadata=schema_metadata)


def concat_datasets(datasets: Iterable[Dataset]) -> Dataset:
    """Concatenate datasets that share column names and datatypes.

    Used to join the batches of a streamed query back together.
    """
    datasets = list(datasets)
    if not datasets:
        return Dataset()
    first = datasets[0]
    columns = []
    for idx, col in enumerate(first.columns):
        parts = [ds.columns[idx] for ds in datasets]
        values = []
        for part in parts:
            values.extend(part.to_list())
        datatypes = {part.datatype for part in parts if len(part) > len(part.missing)}
        if len(datatypes) > 1:
            # batches inferred independently may disagree; re-infer over all rows
            columns.append(infer_column(col.name, values, col.metadata))
            continue
        datatype = datatypes.pop() if datatypes else col.datatype
        missing = frozenset(i for i, v in enumerate(values) if v is None)
        columns.append(Column(col.name, datatype, build_values(datatype, values, missing),
                              missing, dict(col.metadata)))
    return Dataset(columns, name=first.name, metadata=first.metadata)


def _datatype_for_series(series: pd.Series) -> Datatype | None:
    """Datatype for a pandas column, None when values must be inspected."""
    dtype = series.dtype
    if isinstance(dtype, pd.DatetimeTZDtype):
        return Datatype.ZONED_DATE_TIME
    if pd.api.types.is_datetime64_any_dtype(dtype):
        return Datatype.INSTANT
    if pd.api.types.is_timedelta64_dtype(dtype):
        return Datatype.DURATION
    if isinstance(dtype, pd.StringDtype):
        return Datatype.STRING
    return _PANDAS_DTYPE_NAMES.get(str(dtype).lower())


def _python_values(series: pd.Series) -> list[Any]:
    """Series values as python scalars with None for nulls."""
    mask = series.isna().to_numpy()
    values = series.astype(object).to_numpy()
    result = []
    for value, isnull in zip(values, mask):
        if isnull:
            result.append(None)
        elif isinstance(value, pd.Timestamp):
            result.append(value.to_pydatetime())
        elif isinstance(value, pd.Timedelta):
            result.append(value.to_pytimedelta())
        elif isinstance(value, np.generic):
            result.append(value.item())
        else:
            result.append(value)
    return result


def _arrow_type(datatype: Datatype) -> pa.DataType | None:
    if datatype in NUMPY_DTYPES:
        return pa.from_numpy_dtype(NUMPY_DTYPES[datatype])
    return {
        Datatype.STRING: pa.string(),
        Datatype.TEXT: pa.large_string(),
        Datatype.LOCAL_DATE: pa.date32(),
        Datatype.LOCAL_TIME: pa.time64('us'),
        Datatype.DURATION: pa.duration('us'),
    }.get(datatype)


def infer_column(name: Any, values: Sequence[Any], metadata: dict | None = None) -> Column:
    """Column of the widest datatype able to hold the non-None `values`."""
    from datasql.parsers import PromotionalParser

    parser = PromotionalParser()
    for i, value in enumerate(values):
        if value is not None:
            parser.add_value(i, value)
    column = parser.finalize(name, len(values))
    column.metadata.update(metadata or {})
    return column
