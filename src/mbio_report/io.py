# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

# Third-Party Imports
import pandas as pd
from biom import load_table

# Local Imports
from mbio_report import constants
from mbio_report.config import AnalysisSettings, InputPaths
from mbio_report.models import AbundanceMatrix, FeatureMatrix, SampleTable

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class ReportInputs:
    """Everything the report reads, already validated."""
    samples: SampleTable
    abundance: AbundanceMatrix
    imaging: Optional[FeatureMatrix] = None
    gene_function: Optional[FeatureMatrix] = None

# =============================== HELPER FUNCTIONS =================================== #

def _existing(path: Union[str, Path], what: str) -> Path:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    return path


def _separator(path: Path) -> str:
    return ',' if path.suffix.lower() == '.csv' else '\t'

# ==================================== FUNCTIONS ===================================== #

def load_metadata(
    path: Union[str, Path],
    id_column: str = constants.DEFAULT_META_ID_COLUMN
) -> SampleTable:
    """Load a sample metadata table (TSV, or CSV by suffix).

    Args:
        path:      Path to the metadata file.
        id_column: Column holding unique sample identifiers.

    Returns:
        SampleTable indexed by ``id_column``.

    Raises:
        FileNotFoundError:  If ``path`` doesn't exist.
        MissingColumnError: If ``id_column`` is absent.
    """
    path = _existing(path, "Metadata")
    df = pd.read_csv(path, sep=_separator(path))
    # QIIME-style headers
    df.columns = [c.lstrip('#') if c.lstrip('#') == id_column else c for c in df.columns]
    samples = SampleTable.from_frame(df, id_column=id_column)
    logger.info(f"Loaded metadata for {len(samples)} samples from {path.name}")
    return samples


def load_abundance(path: Union[str, Path]) -> AbundanceMatrix:
    """Load taxon counts as features × samples.

    ``.biom`` files are read with ``biom.load_table``; anything else is a
    delimited table with taxa as rows and the first column as taxon id.

    Raises:
        FileNotFoundError: If ``path`` doesn't exist.
    """
    path = _existing(path, "Abundance")
    if path.suffix.lower() == '.biom':
        df = load_table(str(path)).to_dataframe(dense=True)
    else:
        df = pd.read_csv(path, sep=_separator(path), index_col=0)
    abundance = AbundanceMatrix(df)
    logger.info(
        f"Loaded {abundance.shape[0]} taxa × {abundance.shape[1]} samples from {path.name}"
    )
    return abundance


def load_feature_table(
    path: Union[str, Path],
    orientation: str = constants.DEFAULT_FEATURE_ORIENTATION
) -> FeatureMatrix:
    """Load a secondary-domain table (imaging features, gene-function counts).

    Args:
        path:        Delimited file, first column as index.
        orientation: Whether samples are the rows or the columns of the file.

    Raises:
        FileNotFoundError: If ``path`` doesn't exist.
    """
    path = _existing(path, "Feature table")
    df = pd.read_csv(path, sep=_separator(path), index_col=0)
    features = FeatureMatrix.from_frame(df, orientation=orientation)
    logger.info(
        f"Loaded {features.data.shape[1]} features for {features.data.shape[0]} "
        f"samples from {path.name}"
    )
    return features


def load_inputs(
    paths: InputPaths,
    settings: Optional[AnalysisSettings] = None
) -> ReportInputs:
    settings = settings or AnalysisSettings()
    imaging = gene_function = None
    if paths.imaging is not None:
        imaging = load_feature_table(paths.imaging, paths.imaging_orientation)
    if paths.gene_function is not None:
        gene_function = load_feature_table(paths.gene_function, paths.gene_function_orientation)
    return ReportInputs(
        samples=load_metadata(paths.metadata, settings.sample_id_column),
        abundance=load_abundance(paths.abundance),
        imaging=imaging,
        gene_function=gene_function,
    )
