# Notus: aggregate nearby air quality and weather sensor readings
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Composable DataFrame transformation functions.

This module provides small, pure functions that transform DataFrames in
predictable ways. Functions can be composed together using `pipe()` or
`compose()` to build provider normalisation pipelines.

All transformer functions follow the pattern:
    - Take configuration as arguments
    - Return a function that transforms a DataFrame
    - Are pure (no side effects)
    - Are composable

Example:
    >>> normalise = compose(
    ...     coalesce_columns("value", "pm2.5", "pm2.5_60minute", "pm2.5_alt"),
    ...     filter_rows(lambda df: df["value"].notna()),
    ...     add_column("pollutant", "PM2.5"),
    ... )
    >>> df_normalised = normalise(df_raw)
"""

from functools import reduce
from typing import Any, Callable

import pandas as pd

Transformer = Callable[[pd.DataFrame], pd.DataFrame]


def pipe(df: pd.DataFrame, *functions: Transformer) -> pd.DataFrame:
    """Run `df` through each transformer in turn."""
    return reduce(lambda data, func: func(data), functions, df)


def compose(*functions: Transformer) -> Transformer:
    """
    Bundle transformers into one reusable normaliser.

    Each provider builds its pipeline once with `compose` and applies it to
    every response.
    """

    def composed(df: pd.DataFrame) -> pd.DataFrame:
        return pipe(df, *functions)

    return composed


def add_column(name: str, value: Any | Callable[[pd.DataFrame], Any]) -> Transformer:
    """
    Return a function that sets column `name`.

    `value` is either a constant for every row, or a callable that takes the
    DataFrame and returns a Series.

    Example:
        >>> transform = add_column("sensor_id", lambda df: df["sensor_index"].astype(str))
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        column = value(df) if callable(value) else value
        return df.assign(**{name: column})

    return transform


def ensure_columns(*columns: str, fill: Any = None) -> Transformer:
    """
    Return a function that adds any missing columns, filled with `fill`.

    Providers omit fields they have no value for, so a pipeline that reads
    optional fields by name declares them first.
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in columns if col not in df.columns]
        if not missing:
            return df
        return df.assign(**{col: fill for col in missing})

    return transform


def coalesce_columns(target: str, *candidates: str) -> Transformer:
    """
    Return a function that fills `target` from the first non-null candidate.

    Candidates are tried in priority order, per row. Candidates missing from
    the DataFrame are skipped. A companion column `<target>_field` records
    which candidate supplied each value (None where every candidate was null).

    Example:
        >>> transform = coalesce_columns("value", "pm2.5", "pm2.5_60minute", "pm2.5_alt")
        >>> df = transform(df)
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        values = pd.Series(float("nan"), index=df.index, dtype="float64")
        fields = pd.Series(None, index=df.index, dtype="object")

        for candidate in candidates:
            if candidate not in df.columns:
                continue
            column = pd.to_numeric(df[candidate], errors="coerce")
            fill_mask = values.isna() & column.notna()
            values = values.where(~fill_mask, column)
            fields = fields.mask(fill_mask, candidate)

        # Rows no candidate filled hold None, not NaN
        fields = pd.Series(
            [field if isinstance(field, str) else None for field in fields],
            index=df.index,
            dtype="object",
        )
        return df.assign(**{target: values, f"{target}_field": fields})

    return transform


def convert_timestamps(column: str, **kwargs) -> Transformer:
    """
    Return a function that converts a column to datetime type.

    Missing columns are left alone.

    Args:
        column: Name of the column to convert
        **kwargs: Additional arguments passed to pd.to_datetime()
            Common options:
            - unit: 's' for seconds, 'ms' for milliseconds
            - utc: True to treat as UTC
            - errors: 'coerce' to turn unparseable values into NaT
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        if column not in df.columns:
            return df
        return df.assign(**{column: pd.to_datetime(df[column], **kwargs)})

    return transform


def filter_rows(predicate: Callable[[pd.DataFrame], pd.Series]) -> Transformer:
    """
    Return a function that keeps the rows where `predicate(df)` is True.

    An empty DataFrame is passed through untouched, since it may lack the
    columns the predicate reads.
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        if df.empty:
            return df
        return df[predicate(df)]

    return transform


def select_columns(*columns: str) -> Transformer:
    """Return a function that keeps `columns`, skipping any that are absent."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df[[col for col in columns if col in df.columns]]

    return transform
