# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from mangrove_16s.stats.results import SUMMARY_COLUMNS
from mangrove_16s.utils.io import export_table

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

NUMERIC_COLUMNS = ('statistic', 'effect_size', 'p_value', 'p_adj')
TEXT_COLUMNS = ('test', 'factors', 'term', 'metric', 'feature', 'status', 'message')

# ==================================================================================== #

class ResultTable:
    """
    Flat, queryable view over heterogeneous test results.

    One row per summary line of every result (a PERMANOVA contributes one
    row per term, a differential abundance run one row per taxon). Values a
    test does not produce are ``<NA>``; nothing is filled with 0 or 1.
    """

    def __init__(self, results: Iterable[Any]):
        self._results = tuple(results)
        rows = [row.__dict__ for result in self._results for row in result.summary()]
        df = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
        for column in NUMERIC_COLUMNS:
            df[column] = pd.to_numeric(df[column], errors='coerce').astype('Float64')
        df['significant'] = df['significant'].astype('boolean')
        for column in TEXT_COLUMNS:
            df[column] = df[column].astype('string')
        self._frame = df

    @classmethod
    def from_battery(cls, battery) -> "ResultTable":
        return cls(battery.results)

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return f"ResultTable({len(self)} rows, tests={sorted(self._frame['test'].dropna().unique())})"

    @property
    def results(self) -> tuple:
        return self._results

    def to_frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def query(
        self,
        min_effect: Optional[float] = None,
        max_p: Optional[float] = None,
        test: Optional[Union[str, Sequence[str]]] = None,
        factors: Optional[str] = None,
        adjusted: bool = False,
        significant_only: bool = False,
        sort_by: Optional[Union[str, Sequence[str]]] = 'p_value',
        ascending: bool = True,
    ) -> pd.DataFrame:
        """
        Filter and sort the table; the table itself is never modified.

        Rows whose effect size or p-value is missing never pass a threshold on
        that column, and missing values sort last.

        Args:
            min_effect:       Keep rows with ``|effect_size| ≥ min_effect``.
            max_p:            Keep rows with p ≤ ``max_p``.
            test:             Test name(s) to keep.
            factors:          Design or factor label to keep.
            adjusted:         Threshold ``p_adj`` instead of ``p_value``.
            significant_only: Keep rows flagged significant.
            sort_by:          Column(s) to sort by.
            ascending:        Sort direction.

        Returns:
            A new DataFrame.
        """
        df = self._frame
        mask = pd.Series(True, index=df.index)
        if test is not None:
            mask &= df['test'].isin([test] if isinstance(test, str) else list(test)).fillna(False)
        if factors is not None:
            mask &= (df['factors'] == factors).fillna(False)
        if min_effect is not None:
            mask &= (df['effect_size'].abs() >= min_effect).fillna(False)
        if max_p is not None:
            p = df['p_adj'] if adjusted else df['p_value']
            mask &= (p <= max_p).fillna(False)
        if significant_only:
            mask &= df['significant'].fillna(False)

        out = df[mask.astype(bool)]
        if sort_by is not None:
            out = out.sort_values(sort_by, ascending=ascending, na_position='last', kind='stable')
        return out.reset_index(drop=True)

    def export(self, path: Union[str, Path], **query) -> Path:
        """Write the (optionally queried) table; format follows the suffix."""
        df = self.query(**query) if query else self.to_frame()
        path = export_table(df, path, index=False)
        logger.info(f"Exported {len(df)} result rows → {path}")
        return path
