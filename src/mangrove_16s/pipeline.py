# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Dict, Optional, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from mangrove_16s import constants
from mangrove_16s.amplicon_data.filtering import filter_prevalence, group_prevalence_summary
from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.config import Config
from mangrove_16s.diversity.alpha import alpha_diversity
from mangrove_16s.diversity.beta import distance_matrix, ordination_frame, pcoa, percent_explained
from mangrove_16s.errors import EstimationError, InsufficientGroups, NotComputable
from mangrove_16s.function.picrust import load_pathway_abundance
from mangrove_16s.stats.aggregate import ResultTable
from mangrove_16s.stats.battery import (
    BatteryInputs, TestBattery, TestKind, TestParameters, build_specs
)
from mangrove_16s.utils.io import export_table, load_abundance_table

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# ==================================================================================== #

class Results:
    """Container for organizing analysis results."""
    def __init__(self):
        self.table: Optional[AbundanceTable] = None
        self.prevalence = None
        self.alpha_diversity: Optional[pd.DataFrame] = None
        self.distance_matrix = None
        self.ordination = None
        self.battery: Optional[TestBattery] = None
        self.result_table: Optional[ResultTable] = None
        self.pathways: Optional[AbundanceTable] = None
        self.pathway_results: Optional[ResultTable] = None
        self.exported: Dict[str, Path] = {}


class MangroveAnalyzer:
    """Orchestrates the downstream analysis of one sediment survey.

    Load → prevalence filter → alpha diversity → distances and PCoA →
    test battery (including differential abundance) → result table →
    export. Each module can be disabled in the configuration.
    """

    def __init__(
        self,
        config: Union[Dict, Config],
        output_dir: Optional[Union[str, Path]] = None,
        table: Optional[AbundanceTable] = None,
    ):
        self.config = config if isinstance(config, Config) else Config(config)
        self.output_dir = Path(output_dir or self.config.get('output_dir'))
        self.random_state = self.config.get('random_state', constants.DEFAULT_RANDOM_STATE)
        self.n_jobs = self.config.get('n_jobs', constants.DEFAULT_N_JOBS)
        self.results = Results()
        self.results.table = table

    def run(self) -> Results:
        """Execute the complete analysis pipeline."""
        logger.info("Starting mangrove 16S analysis pipeline...")
        if self.results.table is None:
            self._load_data()
        self._run_modules()
        self._export()
        self._log_analysis_summary()
        logger.info("Analysis pipeline completed successfully!")
        return self.results

    # ------------------------------------------------------------------ loading --- #

    def _load_data(self) -> None:
        inputs = self.config.get('inputs', {})
        missing = [k for k in ('table', 'metadata') if not inputs.get(k)]
        if missing:
            raise ValueError(f"Missing required inputs in configuration: {missing}")
        logger.info("Loading data...")
        self.results.table = load_abundance_table(
            inputs['table'], inputs.get('taxonomy'),
            metadata_path=inputs['metadata'], tree_path=inputs.get('tree'),
        )

    # ------------------------------------------------------------------ modules --- #

    def _run_modules(self) -> None:
        """Run all enabled analysis modules."""
        analysis_modules = [
            ('filtering', self._run_filtering),
            ('alpha_diversity', self._run_alpha_diversity),
            ('beta_diversity', self._run_beta_diversity),
            ('stats', self._run_statistical_analysis),
            ('pathways', self._run_pathways),
        ]
        for module_name, module_func in analysis_modules:
            enabled = self.config.is_enabled(module_name) or (
                module_name == 'stats' and self.config.is_enabled('differential_abundance')
            )
            if enabled:
                logger.info(f"Running {module_name} analysis...")
                try:
                    module_func()
                except (InsufficientGroups, EstimationError, NotComputable) as e:
                    logger.error(f"Error in {module_name} analysis ({e.status}): {e}")
            else:
                logger.info(f"Skipping '{module_name}' analysis: disabled in configuration")

    def _run_filtering(self) -> None:
        result = filter_prevalence(
            self.results.table,
            threshold=self.config.get_parameter(
                'filtering', 'prevalence_threshold', constants.DEFAULT_PREVALENCE_THRESHOLD),
            rank=self.config.get_parameter(
                'filtering', 'rank', constants.DEFAULT_PREVALENCE_RANK),
            min_taxa_per_group=self.config.get_parameter(
                'filtering', 'min_taxa_per_phylum', constants.DEFAULT_MIN_TAXA_PER_PHYLUM),
        )
        self.results.prevalence = result
        self.results.table = result.table

    def _run_alpha_diversity(self) -> None:
        self.results.alpha_diversity = alpha_diversity(
            self.results.table,
            self.config.get_parameter('alpha_diversity', 'metrics', constants.DEFAULT_ALPHA_METRICS),
        )

    def _run_beta_diversity(self) -> None:
        metric = self.config.get_parameter('beta_diversity', 'metric', constants.DEFAULT_METRIC)
        self.results.distance_matrix = distance_matrix(self.results.table, metric)
        self.results.ordination = pcoa(
            self.results.distance_matrix,
            self.config.get_parameter('beta_diversity', 'n_dimensions', constants.DEFAULT_N_PCOA),
        )
        explained = percent_explained(self.results.ordination)
        logger.info(
            "PCoA variance explained: "
            + ", ".join(f"{axis} {pct:.1f}%" for axis, pct in explained.items())
        )

    def _parameters(self, da_rank: Optional[str] = None) -> TestParameters:
        get = self.config.get_parameter
        return TestParameters(
            permutations=get('stats', 'permutations', constants.DEFAULT_PERMUTATIONS),
            alpha=get('stats', 'alpha', constants.DEFAULT_ALPHA),
            da_alpha=get('differential_abundance', 'alpha', constants.DEFAULT_ALPHA),
            correction=get('stats', 'correction', constants.DEFAULT_CORRECTION),
            lfc_threshold=get('differential_abundance', 'lfc_threshold',
                              constants.DEFAULT_LFC_THRESHOLD),
            da_rank=da_rank,
            dispersion_permutations=get('stats', 'dispersion_permutations', 0),
        )

    def _run_statistical_analysis(self) -> None:
        """Build and run the test battery over the enabled inputs."""
        stats_enabled = self.config.is_enabled('stats')
        da_enabled = self.config.is_enabled('differential_abundance')

        table = self.results.table
        get = self.config.get_parameter
        specs = build_specs(
            factors=get('stats', 'factors', constants.DEFAULT_FACTORS),
            alpha_metrics=(
                list(self.results.alpha_diversity.columns)
                if stats_enabled and self.results.alpha_diversity is not None else ()
            ),
            designs=get('stats', 'designs'),
            posthoc_factors=get('stats', 'posthoc_factors', [constants.ZONE_COLUMN]),
            dispersion_factors=get('stats', 'dispersion_factors'),
            contrasts=get('differential_abundance', 'contrasts', []) if da_enabled else (),
            beta=stats_enabled and self.results.distance_matrix is not None,
        )
        inputs = BatteryInputs(
            metadata=table.metadata,
            distance_matrix=self.results.distance_matrix,
            alpha_diversity=self.results.alpha_diversity,
            table=AbundanceTable(table.to_dataframe(), table.taxonomy, metadata=table.metadata),
            metric=get('beta_diversity', 'metric', constants.DEFAULT_METRIC),
        )
        battery = TestBattery(
            inputs, specs, self._parameters(get('differential_abundance', 'rank')),
            self.random_state,
        )
        battery.run(n_jobs=self.n_jobs)
        self.results.battery = battery
        self.results.result_table = ResultTable.from_battery(battery)

    def _run_pathways(self) -> None:
        """Prevalence-filter PICRUSt2 pathways and test the configured contrasts."""
        path = self.config.get('inputs', {}).get('pathways')
        if not path:
            logger.warning("Pathway analysis enabled but no 'inputs.pathways' file given")
            return
        pathways = load_pathway_abundance(path, self.results.table.metadata)
        pathways = filter_prevalence(
            pathways,
            threshold=self.config.get_parameter(
                'pathways', 'prevalence_threshold', constants.DEFAULT_PREVALENCE_THRESHOLD),
            rank=None,
        ).table
        self.results.pathways = pathways

        specs = build_specs(
            alpha_metrics=(), beta=False,
            contrasts=self.config.get_parameter('pathways', 'contrasts', []),
        )
        if not specs:
            return
        battery = TestBattery(
            BatteryInputs(metadata=pathways.metadata, table=pathways),
            specs, self._parameters(), self.random_state,
        )
        battery.run(n_jobs=self.n_jobs)
        self.results.pathway_results = ResultTable.from_battery(battery)

    # ------------------------------------------------------------------- export --- #

    def _export(self) -> None:
        out = self.output_dir
        formats = self.config.get_parameter('export', 'formats', ['tsv'])
        exported = self.results.exported

        if self.results.prevalence is not None:
            result = self.results.prevalence
            exported['prevalence'] = export_table(result.prevalence, out / 'prevalence.tsv')
            if result.rank is not None and result.rank in result.prevalence.columns:
                exported['group_prevalence'] = export_table(
                    group_prevalence_summary(result.prevalence, result.rank),
                    out / f'{result.rank.lower()}_prevalence.tsv',
                )
        if self.results.alpha_diversity is not None:
            exported['alpha_diversity'] = export_table(
                self.results.alpha_diversity, out / 'alpha_diversity.tsv')
        if self.results.ordination is not None:
            exported['pcoa'] = export_table(
                ordination_frame(self.results.ordination, self.results.table.metadata),
                out / 'pcoa.tsv',
            )
            exported['pcoa_variance'] = export_table(
                percent_explained(self.results.ordination).to_frame(),
                out / 'pcoa_variance.tsv',
            )
        if self.results.battery is not None:
            for result in self.results.battery.by_kind(TestKind.DIFFERENTIAL_ABUNDANCE):
                name = f"da_{result.factor}_{result.numerator}_vs_{result.denominator}"
                exported[name] = export_table(result.table, out / 'differential' / f'{name}.tsv')
        for name, table in (('results', self.results.result_table),
                            ('pathway_results', self.results.pathway_results)):
            if table is None:
                continue
            for fmt in formats:
                exported[f'{name}.{fmt}'] = table.export(out / f'{name}.{fmt}')

    # ------------------------------------------------------------------ summary --- #

    def _log_analysis_summary(self) -> None:
        """Log comprehensive analysis summary."""
        logger.info("=" * 60)
        logger.info("ANALYSIS SUMMARY")
        logger.info("=" * 60)
        table = self.results.table
        if table is not None:
            logger.info(f"Data: {table.n_samples} samples, {table.n_taxa} taxa")
        if self.results.prevalence is not None:
            logger.info(f"Prevalence filter removed {self.results.prevalence.n_removed} taxa")
        if self.results.battery is not None:
            logger.info(f"Tests: {self.results.battery!r}")
        if self.results.result_table is not None:
            n_sig = int(self.results.result_table.to_frame()['significant'].fillna(False).sum())
            logger.info(f"Result rows: {len(self.results.result_table)} ({n_sig} flagged significant)")
        logger.info(f"Outputs written to {self.output_dir}")
        logger.info("=" * 60)

# ==================================================================================== #

def run_analysis(
    config: Union[Dict, Config],
    output_dir: Optional[Union[str, Path]] = None,
) -> MangroveAnalyzer:
    analyzer = MangroveAnalyzer(config=config, output_dir=output_dir)
    analyzer.run()
    return analyzer
