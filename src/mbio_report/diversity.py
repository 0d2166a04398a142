# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Iterable, Sequence

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import entropy
from skbio.diversity import alpha
from skbio.stats.distance import DistanceMatrix
from sklearn.metrics import pairwise_distances
from sklearn.preprocessing import StandardScaler

# Local Imports
from mbio_report import constants
from mbio_report.errors import DegenerateInputError, InputValidationError
from mbio_report.models import AbundanceMatrix, FeatureMatrix, ProportionMatrix

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

# ================================== CONSTANTS ======================================= #

# Accepted names → sklearn/scipy metric names
METRICS = {
    'braycurtis': 'braycurtis',
    'bray': 'braycurtis',
    'jaccard': 'jaccard',
    'binary': 'jaccard',
    'manhattan': 'cityblock',
    'cityblock': 'cityblock',
    'euclidean': 'euclidean',
}
# Metrics for which two all-zero samples are identical (0/0 in the formula)
EMPTY_PAIR_METRICS = {'braycurtis', 'jaccard'}

ALPHA_METRICS = ('observed_features', 'shannon')

# =============================== HELPER FUNCTIONS ==================================== #

def validate_min_samples(df: pd.DataFrame, min_samples: int = 2) -> None:
    """Validate that the input contains sufficient samples for analysis.

    Args:
        df:          Samples × features DataFrame.
        min_samples: Minimum required number of samples (default: 2).

    Raises:
        DegenerateInputError: If number of samples is less than required minimum.
    """
    if len(df) < min_samples:
        raise DegenerateInputError(
            f"At least {min_samples} samples required, got {len(df)}"
        )


def resolve_metric(metric: str) -> str:
    try:
        return METRICS[metric.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown distance metric {metric!r}; choose from {sorted(METRICS)}"
        ) from None

# ================================ BETA DIVERSITY ==================================== #

def distance_matrix(
    features: pd.DataFrame,
    metric: str = constants.DEFAULT_METRIC
) -> DistanceMatrix:
    """Pairwise distances between samples (rows) of a feature table.

    - braycurtis: Σ|x−y| / Σ(x+y)
    - jaccard:    presence/absence (value > 0); shared absences ignored
    - manhattan, euclidean: Lp metrics on the raw values

    Args:
        features: Samples × features DataFrame.
        metric:   Distance metric name.

    Returns:
        Symmetric, zero-diagonal DistanceMatrix over ``features.index``.

    Raises:
        InputValidationError: For NaN or infinite values.
        DegenerateInputError: Fewer than 2 samples.
    """
    name = resolve_metric(metric)
    validate_min_samples(features, min_samples=2)
    sample_ids = features.index.astype(str).tolist()
    data = features.to_numpy(dtype=float)

    if np.isnan(data).any():
        raise InputValidationError("Input data contains NaN values")
    if np.isinf(data).any():
        raise InputValidationError("Input data contains infinite values")
    if name in EMPTY_PAIR_METRICS and (data < 0).any():
        raise InputValidationError(f"{name} requires non-negative values")

    if name == 'jaccard':
        data = data > 0

    with np.errstate(invalid='ignore', divide='ignore'):
        dist_array = pairwise_distances(data, metric=name)

    if name in EMPTY_PAIR_METRICS:
        empty = ~data.any(axis=1)
        both_empty = np.logical_and.outer(empty, empty)
        dist_array[both_empty] = 0.0
    if np.isnan(dist_array).any():
        raise InputValidationError(f"{name} distances undefined for some sample pairs")

    # Ensure exact symmetry and a hollow diagonal
    dist_array = (dist_array + dist_array.T) / 2
    np.fill_diagonal(dist_array, 0.0)
    dist_array[dist_array < 0] = 0.0

    return DistanceMatrix(dist_array, ids=sample_ids)


def taxon_distance(
    proportions: ProportionMatrix,
    metric: str = constants.DEFAULT_METRIC,
    min_rel_abundance: float = constants.DEFAULT_MIN_REL_ABUNDANCE
) -> DistanceMatrix:
    """Between-sample distances in taxon-proportion space.

    Zero-count samples are excluded and only taxa above ``min_rel_abundance``
    in at least one sample contribute. Proportions are not renormalised after
    filtering.
    """
    filtered = proportions.defined().filter_features(min_rel_abundance)
    if filtered.data.empty:
        raise DegenerateInputError(
            f"No taxa exceed relative abundance {min_rel_abundance}"
        )
    logger.debug(
        f"{metric} distance over {filtered.data.shape[0]} taxa × "
        f"{filtered.data.shape[1]} samples"
    )
    return distance_matrix(filtered.samples_by_features(), metric=metric)


def feature_distance(
    features: FeatureMatrix,
    metric: str = constants.DEFAULT_IMAGING_METRIC,
    standardize: bool = False
) -> DistanceMatrix:
    """Between-sample distances in a secondary (e.g. imaging) feature space.

    Samples with any missing feature value are dropped.
    """
    df = features.data
    incomplete = df.index[df.isnull().any(axis=1)].tolist()
    if incomplete:
        logger.warning(
            f"Dropping {len(incomplete)} sample(s) with missing feature values: {incomplete[:5]}"
        )
        df = df.drop(index=incomplete)
    if standardize:
        constant = df.columns[df.std(ddof=0) == 0]
        if len(constant):
            logger.debug(f"Dropping {len(constant)} constant feature(s) before scaling")
            df = df.drop(columns=constant)
        df = pd.DataFrame(
            StandardScaler().fit_transform(df.values), index=df.index, columns=df.columns
        )
    return distance_matrix(df, metric=metric)

# ================================ ALPHA DIVERSITY =================================== #

def _is_integer_like(values: np.ndarray) -> bool:
    return np.allclose(values, np.round(values), atol=1e-5)


def alpha_diversity(
    abundance: AbundanceMatrix,
    metrics: Sequence[str] = ALPHA_METRICS
) -> pd.DataFrame:
    """Per-sample richness and Shannon index (natural log).

    Args:
        abundance: Counts, features × samples.
        metrics:   Subset of ('observed_features', 'shannon').

    Returns:
        DataFrame (samples × metrics). Zero-count samples are NaN.
    """
    unknown = [m for m in metrics if m not in ALPHA_METRICS]
    if unknown:
        raise ValueError(f"Unsupported alpha diversity metric(s): {unknown}")

    counts = abundance.data
    results = pd.DataFrame(index=counts.columns)
    integer_like = _is_integer_like(counts.values)
    if not integer_like and 'shannon' in metrics:
        logger.warning(
            "Non-integer abundance values; Shannon index computed from proportions"
        )

    for metric in metrics:
        values = []
        for sample in counts.columns:
            vals = counts[sample].to_numpy()
            if vals.sum() == 0:
                values.append(np.nan)
            elif metric == 'observed_features':
                values.append(float((vals > 0).sum()))
            elif integer_like:
                values.append(alpha.shannon(np.round(vals).astype(int), base=np.e))
            else:
                values.append(float(entropy(vals)))
        results[metric] = values
    return results


def attach_alpha_diversity(samples, abundance: AbundanceMatrix, metrics: Iterable[str]):
    """Return ``samples`` with any requested alpha measure it lacks computed from counts."""
    missing = [m for m in metrics if m not in samples.data.columns]
    if not missing:
        return samples
    computable = [m for m in missing if m in ALPHA_METRICS]
    if computable:
        logger.info(f"Computing alpha diversity from counts: {', '.join(computable)}")
        samples = samples.with_columns(alpha_diversity(abundance, computable))
    return samples
