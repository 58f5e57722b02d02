# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

# Third Party Imports
import pandas as pd

# Local Imports
from mangrove_16s import constants

logger = logging.getLogger("mangrove_16s")

# ==================================================================================== #

def _canonical(value: Any, domain: Sequence[Any], column: str) -> Any:
    """Map a raw covariate value onto its controlled vocabulary."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return pd.NA
    for level in domain:
        if isinstance(level, int):
            try:
                if float(value) == level:
                    return level
            except (TypeError, ValueError):
                continue
        elif str(value).strip().lower() == str(level).lower():
            return level
    raise ValueError(
        f"Value {value!r} in column '{column}' is outside the allowed levels "
        f"{list(domain)}"
    )


def depth_group(depth: Any) -> Any:
    """Collapse sampling depth (cm) to '5' or '20-40'."""
    if depth is None or pd.isna(depth):
        return pd.NA
    return constants.DEPTH_GROUPS[int(depth)]


class SampleMetadata:
    """
    Per-sample covariates with controlled categorical domains.

    Values are validated once at construction; the wrapped frame is never
    handed out without copying, so the store behaves as an immutable value.

    Attributes:
        domains: Column name → allowed levels, in reporting order.
    """

    def __init__(
        self,
        frame: pd.DataFrame,
        domains: Optional[Dict[str, Tuple]] = None
    ):
        self.domains = dict(constants.CATEGORICAL_DOMAINS if domains is None else domains)
        df = frame.copy()
        df.index = df.index.astype(str)
        df.index.name = 'sample'
        if df.index.has_duplicates:
            dupes = df.index[df.index.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate sample IDs in metadata: {dupes[:5]}")

        for column, domain in self.domains.items():
            if column == constants.DEPTH_GROUP_COLUMN or column not in df.columns:
                continue
            df[column] = pd.Series(
                [_canonical(v, domain, column) for v in df[column]],
                index=df.index, dtype=object
            )

        if constants.DEPTH_COLUMN in df.columns:
            df[constants.DEPTH_GROUP_COLUMN] = pd.Series(
                [depth_group(v) for v in df[constants.DEPTH_COLUMN]],
                index=df.index, dtype=object
            )
        elif constants.DEPTH_GROUP_COLUMN in df.columns:
            df[constants.DEPTH_GROUP_COLUMN] = pd.Series(
                [_canonical(v, constants.DEPTH_GROUP_LEVELS, constants.DEPTH_GROUP_COLUMN)
                 for v in df[constants.DEPTH_GROUP_COLUMN]],
                index=df.index, dtype=object
            )
        self._frame = df

    # ------------------------------------------------------------------ loaders --- #

    @classmethod
    def from_tsv(cls, tsv_path: Union[str, Path], **kwargs) -> "SampleMetadata":
        """Load and standardize a sample metadata TSV file.

        Args:
            tsv_path: Path to metadata TSV file.

        Returns:
            Validated metadata store.

        Raises:
            FileNotFoundError: If specified path doesn't exist.
        """
        tsv_path = Path(tsv_path)
        if not tsv_path.exists():
            raise FileNotFoundError(f"Metadata file not found: {tsv_path}")

        df = pd.read_csv(tsv_path, sep='\t', dtype=str)
        df.columns = df.columns.str.strip().str.lower()
        # QIIME-style '#q2:types' directive row
        if len(df) and str(df.iloc[0, 0]).startswith('#q2:'):
            df = df.iloc[1:]

        id_col = next((c for c in constants.META_ID_COLUMNS if c in df.columns), df.columns[0])
        df = df.set_index(id_col)
        logger.debug(f"Loaded metadata for {len(df)} samples from {tsv_path}")
        return cls(df, **kwargs)

    # --------------------------------------------------------------- accessors --- #

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    @property
    def sample_ids(self) -> List[str]:
        return self._frame.index.tolist()

    @property
    def columns(self) -> List[str]:
        return self._frame.columns.tolist()

    def __len__(self) -> int:
        return len(self._frame)

    def __contains__(self, sample_id: str) -> bool:
        return sample_id in self._frame.index

    def __repr__(self) -> str:
        return f"SampleMetadata({len(self)} samples, columns={self.columns})"

    def row(self, sample_id: str) -> pd.Series:
        return self._frame.loc[sample_id].copy()

    def column(self, name: str, samples: Optional[Iterable[str]] = None) -> pd.Series:
        if name not in self._frame.columns:
            raise KeyError(f"Metadata column '{name}' not found")
        series = self._frame[name]
        if samples is not None:
            series = series.loc[list(samples)]
        return series.copy()

    def levels(self, factor: str, samples: Optional[Iterable[str]] = None) -> List[Any]:
        """Observed levels of ``factor``, in domain order when the domain is known."""
        observed = self.column(factor, samples).dropna().unique().tolist()
        domain = self.domains.get(factor)
        if domain is None:
            return sorted(observed, key=str)
        return [level for level in domain if level in observed]

    def complete_cases(
        self,
        factors: Iterable[str],
        samples: Optional[Iterable[str]] = None
    ) -> List[str]:
        """Sample IDs with every listed factor present."""
        factors = list(factors)
        missing = [f for f in factors if f not in self._frame.columns]
        if missing:
            raise KeyError(f"Metadata columns not found: {missing}")
        df = self._frame if samples is None else self._frame.loc[list(samples)]
        return df.index[df[factors].notna().all(axis=1)].tolist()

    def subset(self, samples: Iterable[str]) -> "SampleMetadata":
        """New store restricted to ``samples``, in the given order."""
        return SampleMetadata(self._frame.loc[list(samples)], domains=self.domains)
