from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #
# See supported colors at: https://www.w3schools.com/colors/colors_x11.asp

# Character width of the progress bar description
DEFAULT_N: int = 40
# Color of the progress bar description text
DEFAULT_DESCRIPTION_STYLE: str = "white"
# Width of the progress bar
DEFAULT_BAR_WIDTH: int = 40
# Color of the filled/complete portion of the progress bar
DEFAULT_BAR_COLUMN_COMPLETE_STYLE: str = "honeydew2"
# Color used when the progress bar is finished
DEFAULT_FINISHED_STYLE: str = "dark_cyan"
# Color of the percentage complete text (e.g., "85%")
DEFAULT_PROGRESS_PERCENTAGE_STYLE: str = "honeydew2"
# Color of the "X of Y complete" text (e.g., "42/65")
DEFAULT_M_OF_N_COMPLETE_STYLE: str = "honeydew2"
# Color of the time elapsed display (e.g., "0:01:25")
DEFAULT_TIME_ELAPSED_STYLE: str = "light_sky_blue1"
# Color of the estimated time remaining display (e.g., "0:00:34")
DEFAULT_TIME_REMAINING_STYLE: str = "thistle1"
# Color of the failed-test count next to the M of N text
DEFAULT_FAILED_STYLE: str = "light_salmon1"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #
# Go up two levels
DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "references" / "config.yaml"
DEFAULT_OUTPUT_DIR = "results"
DEFAULT_LOG_DIR = "logs"

# ==================================================================================== #
# METADATA
# ==================================================================================== #
DEFAULT_META_ID_COLUMN = '#sampleid'
META_ID_COLUMNS = ('#sampleid', 'sample-id', 'sampleid', 'sample_id', 'id')

ZONE_COLUMN = 'zone'
SEASON_COLUMN = 'season'
DEPTH_COLUMN = 'depth'
DEPTH_GROUP_COLUMN = 'depth_group'

# Controlled vocabularies, in reporting order
ZONE_LEVELS = ('Fringe', 'Basin', 'Impaired')
SEASON_LEVELS = ('dry', 'flood')
DEPTH_LEVELS = (5, 20, 40)
DEPTH_GROUP_LEVELS = ('5', '20-40')
DEPTH_GROUPS = {5: '5', 20: '20-40', 40: '20-40'}

CATEGORICAL_DOMAINS = {
    ZONE_COLUMN: ZONE_LEVELS,
    SEASON_COLUMN: SEASON_LEVELS,
    DEPTH_COLUMN: DEPTH_LEVELS,
    DEPTH_GROUP_COLUMN: DEPTH_GROUP_LEVELS,
}
DEFAULT_FACTORS = (ZONE_COLUMN, SEASON_COLUMN, DEPTH_GROUP_COLUMN)

# ==================================================================================== #
# TAXONOMY
# ==================================================================================== #
TAXONOMIC_RANKS = (
    'Kingdom', 'Phylum', 'Class', 'Order', 'Family', 'Genus', 'Species'
)
RANK_PREFIXES = {
    'd': 'Kingdom', 'k': 'Kingdom', 'p': 'Phylum', 'c': 'Class', 'o': 'Order',
    'f': 'Family', 'g': 'Genus', 's': 'Species'
}
UNKNOWN_TAXON = 'Unknown'
PATHWAY_RANK = 'Pathway'

# ==================================================================================== #
# FILTERING
# ==================================================================================== #
DEFAULT_PREVALENCE_THRESHOLD = 0.02
DEFAULT_PREVALENCE_RANK = 'Phylum'
# Phyla with fewer prevalent taxa than this are removed before thresholding
DEFAULT_MIN_TAXA_PER_PHYLUM = 2

# ==================================================================================== #
# DIVERSITY
# ==================================================================================== #
DEFAULT_ALPHA_METRICS = ('observed', 'shannon', 'simpson', 'chao1')
KNOWN_ALPHA_METRICS = (
    'observed', 'shannon', 'simpson', 'chao1', 'ace', 'inverse_simpson',
    'pielou_evenness'
)
DEFAULT_METRIC = 'braycurtis'
KNOWN_BETA_METRICS = ('braycurtis', 'jaccard')
DEFAULT_N_PCOA = 2

# ==================================================================================== #
# STATISTICS
# ==================================================================================== #
DEFAULT_PERMUTATIONS = 9999
DEFAULT_ALPHA = 0.05
DEFAULT_LFC_THRESHOLD = 1.0
DEFAULT_CORRECTION = 'bonferroni'
DEFAULT_DA_CORRECTION = 'fdr_bh'
DEFAULT_RANDOM_STATE = 42
DEFAULT_N_JOBS = 1
MIN_NORMALITY_SAMPLES = 3
