# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

# Third-Party Imports
import pandas as pd

# Local Imports
from mangrove_16s.stats.design import Design

# ==================================================================================== #

RECORDED = 'recorded'

SUMMARY_COLUMNS = [
    'test', 'factors', 'term', 'metric', 'feature', 'statistic', 'effect_size',
    'p_value', 'p_adj', 'significant', 'status', 'message',
]


@dataclass(frozen=True)
class SummaryRow:
    """One line of the aggregated result table.

    Fields a test does not produce stay ``None`` and are reported as missing,
    never as 0 or 1.
    """
    test: str
    factors: str
    term: Optional[str] = None
    metric: Optional[str] = None
    feature: Optional[str] = None
    statistic: Optional[float] = None
    effect_size: Optional[float] = None
    p_value: Optional[float] = None
    p_adj: Optional[float] = None
    significant: Optional[bool] = None
    status: str = RECORDED
    message: Optional[str] = None

# ==================================== PERMANOVA ===================================== #

@dataclass(frozen=True)
class PermanovaTerm:
    term: str
    df: int
    sum_of_squares: float
    mean_squares: Optional[float]
    f_statistic: Optional[float]
    r2: float
    p_value: Optional[float]


@dataclass(frozen=True)
class PermanovaResult:
    """Sequential (type I) PERMANOVA table for one design."""
    test = 'permanova'

    design: Design
    terms: Tuple[PermanovaTerm, ...]
    residual_df: int
    residual_ss: float
    total_df: int
    total_ss: float
    n_samples: int
    permutations: int
    metric: Optional[str] = None

    def term(self, name: str) -> PermanovaTerm:
        for t in self.terms:
            if t.term == name:
                return t
        raise KeyError(f"No term '{name}' in {self.design}")

    def to_frame(self) -> pd.DataFrame:
        """adonis2-style table: terms, Residual and Total rows."""
        rows = [
            {'term': t.term, 'Df': t.df, 'SumOfSqs': t.sum_of_squares, 'R2': t.r2,
             'F': t.f_statistic, 'Pr(>F)': t.p_value}
            for t in self.terms
        ]
        rows.append({'term': 'Residual', 'Df': self.residual_df,
                     'SumOfSqs': self.residual_ss,
                     'R2': self.residual_ss / self.total_ss})
        rows.append({'term': 'Total', 'Df': self.total_df,
                     'SumOfSqs': self.total_ss, 'R2': 1.0})
        return pd.DataFrame(rows).set_index('term')

    def summary(self) -> List[SummaryRow]:
        return [
            SummaryRow(
                test=self.test, factors=self.design.label, term=t.term,
                metric=self.metric, statistic=t.f_statistic,
                effect_size=t.r2 if t.df else None,
                p_value=t.p_value,
                message=None if t.df else 'term is aliased with earlier terms',
            )
            for t in self.terms
        ]


@dataclass(frozen=True)
class PairwiseComparison:
    group_a: Any
    group_b: Any
    n: int
    statistic: Optional[float]
    effect_size: Optional[float]
    p_value: Optional[float]
    p_adj: Optional[float]
    significant: Optional[bool]


@dataclass(frozen=True)
class PairwisePermanovaResult:
    """Post-hoc PERMANOVA over every pair of levels of one factor."""
    test = 'pairwise_permanova'

    factor: str
    comparisons: Tuple[PairwiseComparison, ...]
    permutations: int
    correction: str = 'bonferroni'
    metric: Optional[str] = None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([c.__dict__ for c in self.comparisons])

    def summary(self) -> List[SummaryRow]:
        return [
            SummaryRow(
                test=self.test, factors=self.factor,
                term=f"{c.group_a} vs {c.group_b}", metric=self.metric,
                statistic=c.statistic, effect_size=c.effect_size,
                p_value=c.p_value, p_adj=c.p_adj, significant=c.significant,
            )
            for c in self.comparisons
        ]

# ================================ DISPERSION / ANOVA ================================ #

@dataclass(frozen=True)
class DispersionResult:
    """Homogeneity of multivariate dispersion (betadisper + ANOVA)."""
    test = 'betadisper'

    factor: str
    f_statistic: float
    p_value: float
    eta_squared: float
    df_between: int
    df_within: int
    distances: pd.Series = field(compare=False, repr=False)
    group_dispersion: Tuple[Tuple[Any, float], ...] = ()
    permutation_p_value: Optional[float] = None
    metric: Optional[str] = None

    def summary(self) -> List[SummaryRow]:
        rows = [SummaryRow(
            test=self.test, factors=self.factor, metric=self.metric,
            statistic=self.f_statistic, effect_size=self.eta_squared,
            p_value=self.p_value,
        )]
        if self.permutation_p_value is not None:
            rows.append(SummaryRow(
                test=self.test, factors=self.factor, term='permutest',
                metric=self.metric, statistic=self.f_statistic,
                p_value=self.permutation_p_value,
            ))
        return rows

# ================================== NONPARAMETRIC =================================== #

@dataclass(frozen=True)
class NormalityResult:
    """Shapiro-Wilk test of one metric within one group."""
    test = 'shapiro'

    metric: str
    factor: str
    group: Any
    n: int
    statistic: Optional[float]
    p_value: Optional[float]
    status: str = RECORDED
    message: Optional[str] = None

    @property
    def is_normal(self) -> Optional[bool]:
        return None if self.p_value is None else bool(self.p_value >= 0.05)

    def summary(self) -> List[SummaryRow]:
        return [SummaryRow(
            test=self.test, factors=self.factor, term=str(self.group),
            metric=self.metric, statistic=self.statistic, p_value=self.p_value,
            status=self.status, message=self.message,
        )]


@dataclass(frozen=True)
class KruskalResult:
    """Kruskal-Wallis H test of one metric across the levels of one factor."""
    test = 'kruskal'

    metric: str
    factor: str
    statistic: float
    p_value: float
    epsilon_squared: float
    n: int
    n_groups: int

    def summary(self) -> List[SummaryRow]:
        return [SummaryRow(
            test=self.test, factors=self.factor, metric=self.metric,
            statistic=self.statistic, effect_size=self.epsilon_squared,
            p_value=self.p_value,
        )]


@dataclass(frozen=True)
class PairwiseWilcoxonResult:
    """Pairwise Mann-Whitney U tests with multiple-testing correction."""
    test = 'pairwise_wilcoxon'

    metric: str
    factor: str
    comparisons: Tuple[PairwiseComparison, ...]
    correction: str
    alpha: float

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([c.__dict__ for c in self.comparisons])

    def summary(self) -> List[SummaryRow]:
        return [
            SummaryRow(
                test=self.test, factors=self.factor,
                term=f"{c.group_a} vs {c.group_b}", metric=self.metric,
                statistic=c.statistic, effect_size=c.effect_size,
                p_value=c.p_value, p_adj=c.p_adj, significant=c.significant,
            )
            for c in self.comparisons
        ]

# ============================== DIFFERENTIAL ABUNDANCE ============================== #

@dataclass(frozen=True)
class DifferentialAbundanceResult:
    """Per-taxon negative binomial contrast ``numerator`` vs ``denominator``.

    ``table`` is indexed by taxon with columns baseMean, log2FoldChange,
    lfcSE, stat, pvalue, padj, significant and status.
    """
    test = 'differential_abundance'

    factor: str
    numerator: Any
    denominator: Any
    table: pd.DataFrame = field(compare=False, repr=False)
    alpha: float
    lfc_threshold: float
    rank: Optional[str] = None

    @property
    def contrast(self) -> str:
        return f"{self.numerator} vs {self.denominator}"

    @property
    def significant_taxa(self) -> pd.DataFrame:
        return self.table[self.table['significant']]

    def summary(self) -> List[SummaryRow]:
        rows = []
        for taxon, r in self.table.iterrows():
            computable = r['status'] == RECORDED
            rows.append(SummaryRow(
                test=self.test, factors=self.factor, term=self.contrast,
                metric=self.rank, feature=str(taxon),
                statistic=r['stat'] if computable else None,
                effect_size=r['log2FoldChange'] if computable else None,
                p_value=r['pvalue'] if computable else None,
                p_adj=r['padj'] if computable else None,
                significant=bool(r['significant']) if computable else None,
                status=r['status'],
            ))
        return rows

# ===================================== FAILURES ===================================== #

@dataclass(frozen=True)
class TestFailure:
    """A configured test that could not be computed."""
    __test__ = False

    test: str
    factors: str
    status: str
    message: str
    metric: Optional[str] = None

    def summary(self) -> List[SummaryRow]:
        return [SummaryRow(
            test=self.test, factors=self.factors, metric=self.metric,
            status=self.status, message=self.message,
        )]
