"""
Chart inference: picks a chart for a result set from its shape alone.

Only two-column results are charted:
  temporal + numeric            -> line, sorted along the time axis
  categorical + numeric         -> bar, when the categories fit on one axis
  numeric part + numeric whole  -> pie with the part and the remainder,
                                   when the names say which is the total
Anything else gets no chart and is shown as text.
"""
import logging
import re
from typing import List, Optional, Tuple

import pandas as pd

from core.data_processor import ColumnKind, DataProcessor
from schemas.chat import ChartConfig, ChartData, ChartType

logger = logging.getLogger(__name__)

WHOLE_TOKENS = {"total", "all"}


def _tokens(name: str) -> List[str]:
    return [t for t in re.split(r"[^a-z0-9]+", name.lower()) if t]


def _names_part_and_whole(part: str, whole: str) -> bool:
    """`whole` carries a total/all marker and shares what it counts with `part`"""
    whole_tokens = set(_tokens(whole))
    part_tokens = set(_tokens(part))
    if not WHOLE_TOKENS & whole_tokens or WHOLE_TOKENS & part_tokens:
        return False
    return bool((whole_tokens - WHOLE_TOKENS) & part_tokens)


class ChartInferenceEngine:
    def __init__(self, max_categories: int = 20, processor: Optional[DataProcessor] = None):
        self.max_categories = max_categories
        self.processor = processor or DataProcessor()

    def infer(self, df: pd.DataFrame) -> List[ChartData]:
        if df is None or df.empty or len(df.columns) != 2:
            return []

        kinds = self.processor.classify_columns(df)
        if len(kinds) != 2:   # duplicate column names
            return []
        by_kind = {kind: [c for c, k in kinds.items() if k == kind] for kind in ColumnKind}
        temporal = by_kind[ColumnKind.TEMPORAL]
        numeric = by_kind[ColumnKind.NUMERIC]
        categorical = by_kind[ColumnKind.CATEGORICAL]

        if len(temporal) == 1 and len(numeric) == 1:
            return [self._time_series(df, temporal[0], numeric[0])]

        if len(categorical) == 1 and len(numeric) == 1 and len(df) <= self.max_categories:
            return [self._chart(ChartType.BAR, df, categorical[0], numeric[0])]

        if len(numeric) == 2:
            split = self._part_of_whole(df, numeric[0], numeric[1])
            if split is not None:
                return [self._proportion(df, *split)]

        logger.debug("No chart fits columns %s", kinds)
        return []

    def _chart(self, chart_type: ChartType, df: pd.DataFrame, x_key: str, y_key: str) -> ChartData:
        return ChartData(
            type=chart_type,
            data=self.processor.to_records(df),
            config=ChartConfig(x_key=x_key, y_key=y_key),
        )

    def _time_series(self, df: pd.DataFrame, x_key: str, y_key: str) -> ChartData:
        sort_key = self.processor.temporal_sort_key(df[x_key])
        order = sort_key.sort_values(kind="mergesort", na_position="last").index
        ordered = df.loc[order].reset_index(drop=True)
        return self._chart(ChartType.LINE, ordered, x_key, y_key)

    def _part_of_whole(self, df: pd.DataFrame, first: str, second: str) -> Optional[Tuple[str, str]]:
        """
        (part, whole) when the names pair up as a subset and its total
        (delivered_orders / total_orders, paid_count / all_count) and the
        part is a non-negative share of the whole on every row.
        """
        for part, whole in ((first, second), (second, first)):
            if not _names_part_and_whole(part, whole):
                continue
            a = pd.to_numeric(df[part], errors="coerce").astype(float)
            b = pd.to_numeric(df[whole], errors="coerce").astype(float)
            if a.isna().any() or b.isna().any() or (a < 0).any():
                return None
            if (a <= b).all() and (a < b).any():
                return part, whole
            return None
        return None

    def _proportion(self, df: pd.DataFrame, part: str, whole: str) -> ChartData:
        part_total = float(pd.to_numeric(df[part]).astype(float).sum())
        whole_total = float(pd.to_numeric(df[whole]).astype(float).sum())
        return ChartData(
            type=ChartType.PIE,
            data=[
                {"name": part, "value": part_total},
                {"name": f"{whole} (remaining)", "value": whole_total - part_total},
            ],
            config=ChartConfig(x_key="name", y_key="value"),
        )
