"""
Column parsers used while decoding result rows.

A parser receives decoded values tagged with their row index; rows that are
never given a value become missing when the parser is finalized into a
`Column`.

`FixedParser` is used when the column datatype is known up front.
`PromotionalParser` tracks the widest datatype seen so far and converts the
collected values when finalized:

    boolean < int64 < float64 < string

Non-scalar classes (dates, times, UUIDs, durations) keep their own datatype
while every value agrees; mixing them with anything other than strings
yields `object`. A column with no values at all is boolean.
"""
import datetime
import decimal
import uuid
from typing import Any

import numpy as np
from datasql.dataset import Column, build_values
from datasql.types import Datatype

__all__ = ['FixedParser', 'PromotionalParser', 'make_parser', 'value_datatype', 'widen']

_LADDER = (Datatype.BOOLEAN, Datatype.INT64, Datatype.FLOAT64, Datatype.STRING)

_CONVERTERS = {
    Datatype.BOOLEAN: bool,
    Datatype.INT64: int,
    Datatype.FLOAT64: float,
    Datatype.STRING: str,
}


def value_datatype(value: Any) -> Datatype:
    """Narrowest datatype describing a single python value."""
    if isinstance(value, (bool, np.bool_)):
        return Datatype.BOOLEAN
    if isinstance(value, (int, np.integer)):
        return Datatype.INT64
    if isinstance(value, (float, np.floating, decimal.Decimal)):
        return Datatype.FLOAT64
    if isinstance(value, str):
        return Datatype.STRING
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None and value.tzinfo.utcoffset(value) is not None:
            return Datatype.ZONED_DATE_TIME
        return Datatype.INSTANT
    if isinstance(value, datetime.date):
        return Datatype.LOCAL_DATE
    if isinstance(value, datetime.time):
        return Datatype.LOCAL_TIME
    if isinstance(value, datetime.timedelta):
        return Datatype.DURATION
    if isinstance(value, uuid.UUID):
        return Datatype.UUID
    return Datatype.OBJECT


def widen(current: Datatype | None, incoming: Datatype) -> Datatype:
    """Datatype able to hold values of both `current` and `incoming`."""
    if current is None or current == incoming:
        return incoming
    if current in _LADDER and incoming in _LADDER:
        return max(current, incoming, key=_LADDER.index)
    if Datatype.STRING in {current, incoming}:
        return Datatype.STRING
    return Datatype.OBJECT


class FixedParser:
    """Collects values for a column whose datatype is already known.
    """

    def __init__(self, datatype: Datatype) -> None:
        self.datatype = datatype
        self._values: list[Any] = []
        self._missing: set[int] = set()

    def __len__(self) -> int:
        return len(self._values)

    def _pad(self, row: int) -> None:
        gap = row - len(self._values)
        if gap > 0:
            self._missing.update(range(len(self._values), row))
            self._values.extend([None] * gap)

    def add_value(self, row: int, value: Any) -> None:
        self._pad(row)
        self._values.append(value)

    def _convert(self, values: list[Any]) -> list[Any]:
        return values

    def finalize(self, name: Any, row_count: int) -> Column:
        """Column of `row_count` rows; unfilled rows are missing."""
        self._pad(row_count)
        missing = frozenset(self._missing)
        values = self._convert(self._values)
        return Column(name, self.datatype, build_values(self.datatype, values, missing), missing)


class PromotionalParser(FixedParser):
    """Collects values of an unknown datatype, widening as values arrive.
    """

    def __init__(self) -> None:
        super().__init__(None)

    def add_value(self, row: int, value: Any) -> None:
        self.datatype = widen(self.datatype, value_datatype(value))
        super().add_value(row, value)

    def _convert(self, values: list[Any]) -> list[Any]:
        converter = _CONVERTERS.get(self.datatype)
        if converter is None:
            return values
        return [None if v is None else converter(v) for v in values]

    def finalize(self, name: Any, row_count: int) -> Column:
        if self.datatype is None:
            self.datatype = Datatype.BOOLEAN
        return super().finalize(name, row_count)


def make_parser(datatype: Datatype | None) -> FixedParser:
    """Fixed parser for a known datatype, promotional otherwise."""
    if datatype is None:
        return PromotionalParser()
    return FixedParser(datatype)
