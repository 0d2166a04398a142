from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #
# See supported colors at: https://www.w3schools.com/colors/colors_x11.asp

# Total character width of the progress bar text
DEFAULT_PROGRESS_TEXT_N: int = 65
DEFAULT_N: int = 65
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
# Color of the "X of Y complete" text (e.g., "42 of 65")
DEFAULT_M_OF_N_COMPLETE_STYLE: str = "honeydew2"
# Color of the time elapsed display (e.g., "E: 00:01:25")
DEFAULT_TIME_ELAPSED_STYLE: str = "light_sky_blue1"
# Color of the estimated time remaining display (e.g., "R: 00:00:34")
DEFAULT_TIME_REMAINING_STYLE: str = "thistle1"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #
# Go up two levels
DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "references" / "config.yaml"
DEFAULT_OUTPUT_DIR = Path("report")
DEFAULT_LOG_DIR = Path("logs")

# ==================================================================================== #
# METADATA
# ==================================================================================== #
DEFAULT_META_ID_COLUMN = 'SampleID'
DEFAULT_CATEGORICAL_COVARIATE = 'sex'
DEFAULT_CONTINUOUS_COVARIATE = 'score'

# ==================================================================================== #
# IMAGING / SECONDARY FEATURES
# ==================================================================================== #
SAMPLES_AS_ROWS = 'samples_as_rows'
SAMPLES_AS_COLUMNS = 'samples_as_columns'
DEFAULT_FEATURE_ORIENTATION = SAMPLES_AS_ROWS

# ==================================================================================== #
# DIVERSITY
# ==================================================================================== #
DEFAULT_ALPHA_METRICS = ('observed_features', 'shannon')
DEFAULT_TAXON_METRICS = ('braycurtis', 'jaccard')
DEFAULT_METRIC = 'braycurtis'
DEFAULT_IMAGING_METRIC = 'euclidean'
DEFAULT_GENE_FUNCTION_METRIC = 'braycurtis'

# Minimum relative abundance a taxon must exceed in at least one sample
DEFAULT_MIN_REL_ABUNDANCE: float = 0.01
# Upper clip for heatmap colour scaling (presentation only)
DEFAULT_SATURATION_LIMIT: float = 0.4

# ==================================================================================== #
# ORDINATION
# ==================================================================================== #
DEFAULT_N_PCOA = None
DEFAULT_N_AXES: int = 2
# Relative tolerance below which an eigenvalue is treated as zero
DEFAULT_EIGEN_TOLERANCE: float = 1e-8

# ==================================================================================== #
# STATISTICS
# ==================================================================================== #
DEFAULT_SIGNIFICANCE: float = 0.05
DEFAULT_PERMUTATIONS: int = 999
DEFAULT_RANDOM_STATE: int = 1
DEFAULT_PSEUDOCOUNT: float = 1e-6
DEFAULT_MANTEL_METHOD = 'pearson'
DEFAULT_MIN_COMMON_SAMPLES: int = 2
# Below this many samples permutation tests are flagged as underpowered
DEFAULT_MIN_PERMUTATION_SAMPLES: int = 10
