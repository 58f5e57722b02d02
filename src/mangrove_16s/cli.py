"""
Mangrove 16S downstream analysis
----------------------------------------------------------------------------------------
Prevalence filtering, alpha and beta diversity, PERMANOVA and related tests, and
negative binomial differential abundance for a zone × season × depth sediment survey.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import argparse
import logging
from pathlib import Path
from typing import List, Optional

# Third-Party Imports
import pandas as pd

# Local Imports
from mangrove_16s import constants
from mangrove_16s.config import Config, get_config
from mangrove_16s.logger import setup_logging
from mangrove_16s.pipeline import run_analysis

# ========================== INITIALIZATION & CONFIGURATION ========================== #

pd.set_option('display.max_colwidth', None)

# ==================================================================================== #

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run mangrove 16S downstream analysis.")
    parser.add_argument(
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG,
        help="Path to the configuration file.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Override the configured output directory.",
    )
    parser.add_argument(
        "--n-jobs",
        type=int,
        default=None,
        help="Worker processes for the test battery.",
    )
    parser.add_argument(
        "--permutations",
        type=int,
        default=None,
        help="Override the number of PERMANOVA permutations.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show DEBUG messages on the console.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Run the entire workflow."""
    args = parse_args(argv)
    config = get_config(args.config)
    if args.n_jobs is not None:
        config['n_jobs'] = args.n_jobs
    if args.permutations is not None:
        config['stats']['permutations'] = args.permutations

    output_dir = Path(args.output_dir or config['output_dir'])
    logger = setup_logging(
        Path(config.get('log_dir') or output_dir / constants.DEFAULT_LOG_DIR),
        console_level=logging.DEBUG if args.verbose else logging.INFO,
    )
    logger.info(f"Configuration: {args.config}")
    run_analysis(Config(config), output_dir=output_dir)


if __name__ == "__main__":
    main()
