# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import itertools
import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.linalg import eigh
from skbio import OrdinationResults
from skbio.stats.distance import DistanceMatrix

# Local Imports
from mbio_report import constants
from mbio_report.alignment import assert_aligned, common_ids
from mbio_report.errors import ConvergenceWarning, DegenerateInputError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class AxisReflection:
    """Best sign-reflection of one ordination onto another.

    ``signs`` holds +1/−1 per compared axis; ``coordinates`` are the second
    ordination's (unscaled) coordinates with those signs applied.
    """
    signs: Tuple[int, ...]
    discrepancy: float
    coordinates: pd.DataFrame
    candidates: pd.DataFrame

# =============================== HELPER FUNCTIONS ==================================== #

def gower_center(dm: DistanceMatrix) -> np.ndarray:
    """Double-centred matrix G = J(−½D²)J used by PCoA and pseudo-ANOVA."""
    a = -0.5 * np.square(dm.data)
    row_means = a.mean(axis=1, keepdims=True)
    col_means = a.mean(axis=0, keepdims=True)
    return a - row_means - col_means + a.mean()


def create_result_dataframe(
    data: np.ndarray,
    index,
    prefix: str,
    n_components: int
) -> pd.DataFrame:
    """Samples × components frame with ``prefix``-numbered columns."""
    columns = [f"{prefix}{i+1}" for i in range(n_components)]
    return pd.DataFrame(data, index=index, columns=columns)

# ================================ CORE FUNCTIONALITY ================================ #

def pcoa(
    dm: DistanceMatrix,
    n_dimensions: Optional[int] = constants.DEFAULT_N_PCOA,
    tolerance: float = constants.DEFAULT_EIGEN_TOLERANCE
) -> OrdinationResults:
    """Principal Coordinates Analysis (classical metric MDS).

    The squared distances are double-centred and eigendecomposed. Axes are
    ordered by descending eigenvalue and sample coordinates are eigenvectors
    scaled by √eigenvalue. Only axes with positive eigenvalues are returned.
    ``proportion_explained`` divides each eigenvalue by the sum of *all*
    eigenvalues, negative ones included.

    Axis signs are arbitrary; see ``match_axis_signs``.

    Args:
        dm:           Distance matrix.
        n_dimensions: Maximum number of axes to return (default: all positive).
        tolerance:    Eigenvalues below ``tolerance × largest`` count as zero.

    Returns:
        skbio OrdinationResults with ``samples`` columns PC1..PCk.
    """
    n = dm.shape[0]
    if n < 2:
        raise DegenerateInputError("PCoA requires at least 2 samples")

    centered = gower_center(dm)
    eigvals, eigvecs = eigh(centered)
    order = np.argsort(eigvals)[::-1]
    eigvals, eigvecs = eigvals[order], eigvecs[:, order]

    total = eigvals.sum()
    scale = max(abs(eigvals[0]), abs(eigvals[-1]), np.finfo(float).tiny)
    threshold = tolerance * scale

    negative = eigvals < -threshold
    if negative.any():
        message = (
            f"PCoA produced {int(negative.sum())} negative eigenvalue(s) "
            f"(smallest {eigvals[negative].min():.4g}); they count toward "
            "variance explained but their axes are not returned"
        )
        logger.debug(message)
        warnings.warn(message, ConvergenceWarning, stacklevel=2)

    positive = eigvals > threshold
    k = int(positive.sum())
    if n_dimensions is not None:
        k = min(k, n_dimensions)

    if total > threshold:
        proportion = eigvals[:k] / total
    else:
        proportion = np.zeros(k)

    coords = eigvecs[:, :k] * np.sqrt(eigvals[:k])
    axis_names = [f"PC{i+1}" for i in range(k)]
    samples = create_result_dataframe(coords, list(dm.ids), "PC", k)

    return OrdinationResults(
        short_method_name='PCoA',
        long_method_name='Principal Coordinate Analysis',
        eigvals=pd.Series(eigvals[:k], index=axis_names),
        samples=samples,
        proportion_explained=pd.Series(proportion, index=axis_names),
    )


def percent_explained(ordination: OrdinationResults) -> pd.Series:
    """Variance explained per axis, in percent (display rounding is the caller's)."""
    return ordination.proportion_explained * 100


def _normalise(coords: np.ndarray) -> np.ndarray:
    centered = coords - coords.mean(axis=0)
    norm = np.linalg.norm(centered)
    return centered / norm if norm > 0 else centered


def match_axis_signs(
    reference: OrdinationResults,
    other: OrdinationResults,
    n_axes: int = constants.DEFAULT_N_AXES
) -> AxisReflection:
    """Find the axis reflection of ``other`` that best matches ``reference``.

    Eigenvector signs are not determined, so two independently computed
    ordinations can agree up to a flip of any axis. Samples are reconciled,
    each coordinate block is centred and scaled to unit Frobenius norm, and all
    2^k sign combinations of the first ``n_axes`` axes of ``other`` are scored
    by the sum of squared coordinate differences. In two dimensions that is
    the four cases: unflipped, x flipped, y flipped and both flipped. The
    first minimum wins, so the unflipped case is preferred on ties.

    Raises:
        AlignmentError:       Fewer than 2 shared samples.
        DegenerateInputError: Either ordination has fewer than ``n_axes`` axes.
    """
    for name, ordination in (("reference", reference), ("other", other)):
        if ordination.samples.shape[1] < n_axes:
            raise DegenerateInputError(
                f"{name} ordination has {ordination.samples.shape[1]} axes, "
                f"{n_axes} required"
            )

    shared = common_ids(
        reference.samples.index, other.samples.index,
        context="ordination comparison"
    )
    ref = reference.samples.loc[shared].iloc[:, :n_axes]
    oth = other.samples.loc[shared].iloc[:, :n_axes]
    assert_aligned(ref.index, oth.index, context="ordination comparison")

    ref_n = _normalise(ref.to_numpy())
    oth_n = _normalise(oth.to_numpy())

    rows = []
    best_signs, best_score = None, np.inf
    for signs in itertools.product((1, -1), repeat=n_axes):
        score = float(np.sum((ref_n - oth_n * np.asarray(signs)) ** 2))
        rows.append({'signs': signs, 'discrepancy': score})
        if score < best_score:
            best_signs, best_score = signs, score

    aligned = oth * np.asarray(best_signs)
    aligned.columns = ref.columns
    logger.debug(f"Best axis reflection {best_signs} (discrepancy {best_score:.4g})")
    return AxisReflection(
        signs=tuple(int(s) for s in best_signs),
        discrepancy=best_score,
        coordinates=aligned,
        candidates=pd.DataFrame(rows),
    )
