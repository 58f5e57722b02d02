# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import copy
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Third-Party Imports
import yaml

# Local Imports
from mangrove_16s import constants

# ================================= DEFAULT VALUES =================================== #

DEFAULT_CONFIG: Dict[str, Any] = {
    "output_dir": constants.DEFAULT_OUTPUT_DIR,
    "log_dir": constants.DEFAULT_LOG_DIR,
    "random_state": constants.DEFAULT_RANDOM_STATE,
    "n_jobs": constants.DEFAULT_N_JOBS,
    "inputs": {
        "table": None,
        "taxonomy": None,
        "tree": None,
        "metadata": None,
        "pathways": None,
    },
    "filtering": {
        "enabled": True,
        "prevalence_threshold": constants.DEFAULT_PREVALENCE_THRESHOLD,
        "rank": constants.DEFAULT_PREVALENCE_RANK,
        "min_taxa_per_phylum": constants.DEFAULT_MIN_TAXA_PER_PHYLUM,
    },
    "alpha_diversity": {
        "enabled": True,
        "metrics": list(constants.DEFAULT_ALPHA_METRICS),
    },
    "beta_diversity": {
        "enabled": True,
        "metric": constants.DEFAULT_METRIC,
        "n_dimensions": constants.DEFAULT_N_PCOA,
    },
    "stats": {
        "enabled": True,
        "factors": list(constants.DEFAULT_FACTORS),
        "permutations": constants.DEFAULT_PERMUTATIONS,
        "alpha": constants.DEFAULT_ALPHA,
        "correction": constants.DEFAULT_CORRECTION,
        "designs": None,
        "posthoc_factors": [constants.ZONE_COLUMN],
        "dispersion_factors": None,
        "dispersion_permutations": 0,
    },
    "differential_abundance": {
        "enabled": True,
        "rank": None,
        "alpha": constants.DEFAULT_ALPHA,
        "lfc_threshold": constants.DEFAULT_LFC_THRESHOLD,
        "contrasts": [],
    },
    "pathways": {
        "enabled": False,
        "prevalence_threshold": constants.DEFAULT_PREVALENCE_THRESHOLD,
        "contrasts": [],
    },
    "export": {
        "formats": ["tsv"],
    },
}

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            if value.startswith("./") or value.startswith("../"):
                config[key] = (config_dir / value).resolve()
        elif isinstance(value, dict):
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def merge_config(base: Dict, override: Dict) -> Dict:
    """Recursively merge ``override`` onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config(
    config_path: Union[str, Path] = constants.DEFAULT_CONFIG
) -> Dict:
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}

    config = resolve_relative_paths(config, config_path.resolve().parent)
    return merge_config(DEFAULT_CONFIG, config)


class Config:
    """Configuration container for analysis parameters."""
    def __init__(self, config: Optional[Dict] = None):
        self.config = merge_config(DEFAULT_CONFIG, config or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def is_enabled(self, module: str) -> bool:
        """Check if a specific analysis module is enabled."""
        return self.config.get(module, {}).get('enabled', False)

    def get_parameter(self, module: str, parameter: str, default: Any = None) -> Any:
        """Get a specific parameter for an analysis module."""
        value = self.config.get(module, {}).get(parameter, default)
        return default if value is None else value
