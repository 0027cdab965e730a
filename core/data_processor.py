import datetime
import numbers
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

# Whole-number columns with these exact names are time axes, not measures
TIME_PART_COLUMNS = {"hour", "day", "week", "month", "quarter", "year"}
DATE_NAME_HINTS = {"date", "time", "timestamp", "day", "week", "month", "year", "hour", "period"}


class ColumnKind(str, Enum):
    NUMERIC = "numeric"
    TEMPORAL = "temporal"
    CATEGORICAL = "categorical"


def _is_missing(value: Any) -> bool:
    return value is None or (pd.api.types.is_scalar(value) and bool(pd.isna(value)))


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Number) and not isinstance(value, (bool, np.bool_))


def _is_integral(value: Any) -> bool:
    if not _is_number(value):
        return False
    try:
        return float(value).is_integer()
    except (TypeError, ValueError, OverflowError):
        return False


def _is_temporal_value(value: Any) -> bool:
    return isinstance(value, (datetime.date, datetime.datetime, np.datetime64))


def _has_date_hint(name: str) -> bool:
    tokens = re.split(r"[^a-z0-9]+", name.lower())
    return any(token in DATE_NAME_HINTS for token in tokens)


class DataProcessor:
    """Inspect and normalize SQL result sets held as DataFrames"""

    def classify_columns(self, df: pd.DataFrame) -> Dict[str, ColumnKind]:
        return {str(column): self.classify_column(str(column), df[column]) for column in df.columns}

    def classify_column(self, name: str, series: pd.Series) -> ColumnKind:
        if pd.api.types.is_bool_dtype(series):
            return ColumnKind.CATEGORICAL

        if pd.api.types.is_datetime64_any_dtype(series):
            return ColumnKind.TEMPORAL

        values = [v for v in series.tolist() if not _is_missing(v)]

        # EXTRACT(HOUR ...) arrives as int, float or Decimal depending on the driver
        if name.lower() in TIME_PART_COLUMNS and values and all(_is_integral(v) for v in values):
            return ColumnKind.TEMPORAL

        if pd.api.types.is_numeric_dtype(series):
            return ColumnKind.NUMERIC

        # Object columns: drivers hand back Decimal, date and str values here
        if not values:
            return ColumnKind.CATEGORICAL
        if all(_is_temporal_value(v) for v in values):
            return ColumnKind.TEMPORAL
        if all(_is_number(v) for v in values):
            return ColumnKind.NUMERIC
        if _has_date_hint(name) and all(isinstance(v, str) for v in values):
            parsed = pd.to_datetime(pd.Series(values), errors="coerce", format="ISO8601")
            if parsed.notna().all():
                return ColumnKind.TEMPORAL
        return ColumnKind.CATEGORICAL

    def temporal_sort_key(self, series: pd.Series) -> pd.Series:
        """Sortable representation of a column classified as temporal"""
        if pd.api.types.is_datetime64_any_dtype(series) or pd.api.types.is_numeric_dtype(series):
            return series
        values = [v for v in series.tolist() if not _is_missing(v)]
        if values and all(_is_number(v) for v in values):
            return pd.to_numeric(series, errors="coerce").astype(float)
        if all(_is_temporal_value(v) for v in values):
            return pd.to_datetime(series, errors="coerce")
        return pd.to_datetime(series, errors="coerce", format="ISO8601")

    def to_records(self, df: pd.DataFrame) -> List[Dict[str, Any]]:
        """Row dicts holding only JSON-serializable values"""
        columns = [str(c) for c in df.columns]
        return [
            {column: self._json_safe(value) for column, value in zip(columns, row)}
            for row in df.itertuples(index=False, name=None)
        ]

    def canonical_key(self, df: pd.DataFrame, float_precision: Optional[int] = None) -> Tuple:
        """
        Hashable identity of a result set: the sorted column names plus the
        multiset of rows, both independent of the order the database used.
        """
        columns = [str(c) for c in df.columns]
        order = sorted(range(len(columns)), key=lambda i: columns[i])
        rows = [
            tuple(self._canonical_value(row[i], float_precision) for i in order)
            for row in df.itertuples(index=False, name=None)
        ]
        rows.sort(key=repr)
        return tuple(columns[i] for i in order), tuple(rows)

    def _json_safe(self, value: Any) -> Any:
        if _is_missing(value):
            return None
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if isinstance(value, numbers.Integral):
            return int(value)
        if _is_number(value):
            return float(value)
        if isinstance(value, np.datetime64):
            return pd.Timestamp(value).isoformat()
        if isinstance(value, (datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, (str, dict, list)):
            return value
        return str(value)

    def _canonical_value(self, value: Any, float_precision: Optional[int]) -> Any:
        if _is_missing(value):
            return None
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if _is_number(value):
            number = float(value)
            if float_precision is not None:
                number = round(number, float_precision)
            return number + 0.0  # folds -0.0 into 0.0
        if isinstance(value, np.datetime64):
            return pd.Timestamp(value).isoformat()
        if isinstance(value, (datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, str):
            return value
        return str(value)
