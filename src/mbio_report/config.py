# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

# Third-Party Imports
import yaml

# Local Imports
from mbio_report import constants

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class InputPaths:
    """Locations of the input tables. Only the loader reads these."""
    metadata: Path
    abundance: Path
    imaging: Optional[Path] = None
    gene_function: Optional[Path] = None
    imaging_orientation: str = constants.DEFAULT_FEATURE_ORIENTATION
    gene_function_orientation: str = constants.SAMPLES_AS_COLUMNS


@dataclass(frozen=True)
class AnalysisSettings:
    """Named thresholds and covariates handed explicitly to every stage."""
    sample_id_column: str = constants.DEFAULT_META_ID_COLUMN
    categorical_covariate: str = constants.DEFAULT_CATEGORICAL_COVARIATE
    continuous_covariate: str = constants.DEFAULT_CONTINUOUS_COVARIATE
    alpha_metrics: Tuple[str, ...] = constants.DEFAULT_ALPHA_METRICS
    taxon_metrics: Tuple[str, ...] = constants.DEFAULT_TAXON_METRICS
    imaging_metric: str = constants.DEFAULT_IMAGING_METRIC
    standardize_imaging: bool = False
    min_rel_abundance: float = constants.DEFAULT_MIN_REL_ABUNDANCE
    saturation_limit: float = constants.DEFAULT_SATURATION_LIMIT
    significance: float = constants.DEFAULT_SIGNIFICANCE
    permutations: int = constants.DEFAULT_PERMUTATIONS
    seed: int = constants.DEFAULT_RANDOM_STATE
    pseudocount: float = constants.DEFAULT_PSEUDOCOUNT
    n_axes: int = constants.DEFAULT_N_AXES
    mantel_method: str = constants.DEFAULT_MANTEL_METHOD

    def __post_init__(self):
        if not 0 <= self.min_rel_abundance < 1:
            raise ValueError(f"min_rel_abundance must be in [0, 1), got {self.min_rel_abundance}")
        if not 0 < self.saturation_limit <= 1:
            raise ValueError(f"saturation_limit must be in (0, 1], got {self.saturation_limit}")
        if not 0 < self.significance < 1:
            raise ValueError(f"significance must be in (0, 1), got {self.significance}")
        if self.permutations < 1:
            raise ValueError(f"permutations must be ≥ 1, got {self.permutations}")
        if self.pseudocount <= 0:
            raise ValueError(f"pseudocount must be positive, got {self.pseudocount}")
        if self.n_axes < 1:
            raise ValueError(f"n_axes must be ≥ 1, got {self.n_axes}")
        if self.mantel_method not in ('pearson', 'spearman'):
            raise ValueError(f"mantel_method must be 'pearson' or 'spearman', got {self.mantel_method!r}")
        # YAML gives lists
        object.__setattr__(self, 'alpha_metrics', tuple(self.alpha_metrics))
        object.__setattr__(self, 'taxon_metrics', tuple(self.taxon_metrics))


@dataclass(frozen=True)
class ReportConfig:
    inputs: InputPaths
    settings: AnalysisSettings = field(default_factory=AnalysisSettings)
    output_dir: Path = constants.DEFAULT_OUTPUT_DIR
    log_dir: Path = constants.DEFAULT_LOG_DIR

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            # Check if the value is a relative path
            if value.startswith("./") or value.startswith("../"):
                # Convert relative path to absolute path
                config[key] = str((config_dir / value).resolve())
        elif isinstance(value, dict):
            # Recursively handle nested dictionaries
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def _build(cls, values: Optional[Dict[str, Any]], section: str):
    values = dict(values or {})
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{section}' config section: {', '.join(unknown)}")
    return cls(**values)


def config_from_dict(config: Dict[str, Any]) -> ReportConfig:
    """Build an immutable ``ReportConfig`` from a parsed YAML mapping."""
    config = dict(config)
    unknown = sorted(set(config) - {'inputs', 'settings', 'output_dir', 'log_dir'})
    if unknown:
        raise ValueError(f"Unknown top-level config key(s): {', '.join(unknown)}")
    if 'inputs' not in config:
        raise ValueError("Config is missing the 'inputs' section")

    inputs = dict(config['inputs'])
    for key in ('metadata', 'abundance', 'imaging', 'gene_function'):
        if inputs.get(key) is not None:
            inputs[key] = Path(inputs[key])

    kwargs = {
        'inputs': _build(InputPaths, inputs, 'inputs'),
        'settings': _build(AnalysisSettings, config.get('settings'), 'settings'),
    }
    for key in ('output_dir', 'log_dir'):
        if config.get(key) is not None:
            kwargs[key] = Path(config[key])
    return ReportConfig(**kwargs)


def get_config(
    config_path: Union[str, Path] = constants.DEFAULT_CONFIG
) -> ReportConfig:
    # Load the YAML configuration file
    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}

    # Resolve any relative paths in the config
    config_dir = Path(config_path).resolve().parent
    config = resolve_relative_paths(config, config_dir)

    return config_from_dict(config)
