# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from typing import Optional, Sequence, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from rich.progress import Progress
from scipy.stats import pearsonr, rankdata, spearmanr
from skbio.stats.distance import DistanceMatrix

# Local Imports
from mbio_report import constants
from mbio_report.alignment import assert_aligned, reconcile, reconcile_distances
from mbio_report.association import INTERCEPT, design_matrix
from mbio_report.errors import DegenerateInputError, StatisticalAssumptionViolation
from mbio_report.models import PSEUDO_ANOVA_COLUMNS, PermutationTestResult, SampleTable
from mbio_report.ordination import gower_center
from mbio_report.utils.progress import PermutationTracker

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

# Slack when comparing permuted to observed statistics
EPS = np.sqrt(np.finfo(float).eps)

ALTERNATIVES = ('greater', 'less', 'two-sided')

# =============================== HELPER FUNCTIONS =================================== #

def permutation_p_value(
    observed: float,
    permuted: Sequence[float],
    tolerance: float = EPS
) -> float:
    """(#{permuted ≥ observed} + 1) / (N + 1).

    Always within [1/(N+1), 1]. An undefined observed statistic gives 1.
    """
    permuted = np.asarray(permuted, dtype=float)
    if np.isnan(observed):
        return 1.0
    with np.errstate(invalid='ignore'):
        hits = int(np.sum(permuted >= observed - tolerance))
    return (hits + 1) / (len(permuted) + 1)


def _check_power(n: int, test: str) -> None:
    if n < constants.DEFAULT_MIN_PERMUTATION_SAMPLES:
        message = (
            f"{test} on only {n} samples; the permutation test has little power"
        )
        warnings.warn(message, StatisticalAssumptionViolation, stacklevel=3)


def _projection(x: np.ndarray) -> Tuple[np.ndarray, int]:
    """Hat matrix X X⁺ and the rank of X."""
    return x @ np.linalg.pinv(x), int(np.linalg.matrix_rank(x))

# ============================ DISTANCE-MATRIX REGRESSION ============================ #

def pseudo_anova(
    dm: DistanceMatrix,
    samples: SampleTable,
    categorical: Union[str, Sequence[str], None] = constants.DEFAULT_CATEGORICAL_COVARIATE,
    continuous: Union[str, Sequence[str], None] = constants.DEFAULT_CONTINUOUS_COVARIATE,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: int = constants.DEFAULT_RANDOM_STATE,
    progress: Optional[Progress] = None,
) -> pd.DataFrame:
    """Permutational ANOVA on a distance matrix with sequential terms.

    The total sum of squared distances (trace of the Gower-centred matrix G) is
    split into one sequential sum of squares per covariate,
    SS_k = tr(H_k G) − tr(H_{k−1} G), where H_k projects onto the intercept and
    the first k terms, and a residual. Each replicate permutes the rows and
    columns of G with one draw from ``numpy.random.default_rng(seed)`` and
    recomputes every term's pseudo-F.

    Args:
        dm:           Distance matrix.
        samples:      Sample metadata holding the covariates.
        categorical:  Categorical covariate column(s), entered first.
        continuous:   Continuous covariate column(s).
        permutations: Number of permutations.
        seed:         Seed for the permutation stream.
        progress:     Optional Rich progress bar.

    Returns:
        DataFrame indexed by term, plus ``Residual`` and ``Total`` rows, with
        columns Df, SumOfSqs, R2, F and p_value.

    Raises:
        AlignmentError:       Identifiers cannot be reconciled.
        MissingColumnError:   A covariate column is absent.
        DegenerateInputError: No residual degrees of freedom.
    """
    if permutations < 1:
        raise ValueError("permutations must be ≥ 1")

    dm, aligned = reconcile(dm, samples, context="pseudo-ANOVA")
    design = design_matrix(aligned, categorical, continuous)
    complete = design.index.tolist()
    if len(complete) < dm.shape[0]:
        dm = dm.filter(complete)
    assert_aligned(dm.ids, design.index, context="pseudo-ANOVA")

    n = dm.shape[0]
    _check_power(n, "Pseudo-ANOVA")

    x = design.matrix
    columns = [INTERCEPT]
    hats, ranks = [], []
    h0, rank0 = _projection(x[columns].to_numpy())
    for term_columns in design.terms.values():
        columns = columns + term_columns
        h, rank = _projection(x[columns].to_numpy())
        hats.append(h)
        ranks.append(rank)

    term_names = list(design.terms)
    df_terms = np.diff([rank0] + ranks).astype(float)
    df_resid = n - ranks[-1]
    if df_resid < 1:
        raise DegenerateInputError(
            f"Pseudo-ANOVA has no residual degrees of freedom ({n} samples, rank {ranks[-1]})"
        )

    def sums_of_squares(g: np.ndarray):
        fitted = [np.sum(h0 * g)] + [np.sum(h * g) for h in hats]
        ss_terms = np.diff(fitted)
        ss_resid = np.trace(g) - fitted[-1]
        return ss_terms, ss_resid

    def pseudo_f(ss_terms: np.ndarray, ss_resid: float) -> np.ndarray:
        with np.errstate(divide='ignore', invalid='ignore'):
            return (ss_terms / df_terms) / (ss_resid / df_resid)

    g = gower_center(dm)
    ss_total = float(np.trace(g))
    ss_terms, ss_resid = sums_of_squares(g)

    if np.isclose(ss_total, 0.0):
        logger.warning("All pairwise distances are zero; nothing to partition")
        f_obs = np.full(len(term_names), np.nan)
        r2 = np.zeros(len(term_names))
        ss_terms, ss_resid, ss_total = np.zeros(len(term_names)), 0.0, 0.0
        p_values = [1.0] * len(term_names)
    else:
        f_obs = pseudo_f(ss_terms, ss_resid)
        r2 = ss_terms / ss_total
        rng = np.random.default_rng(seed)
        f_perm = np.empty((permutations, len(term_names)))
        with PermutationTracker(progress, "Pseudo-ANOVA permutations", permutations) as tracker:
            for i in range(permutations):
                order = rng.permutation(n)
                permuted = g[np.ix_(order, order)]
                f_perm[i] = pseudo_f(*sums_of_squares(permuted))
                tracker.advance()
        p_values = [
            permutation_p_value(f_obs[k], f_perm[:, k]) for k in range(len(term_names))
        ]

    table = pd.DataFrame(
        {
            'Df': list(df_terms) + [df_resid, n - 1],
            'SumOfSqs': list(ss_terms) + [ss_resid, ss_total],
            'R2': list(r2) + [ss_resid / ss_total if ss_total else 0.0, 1.0 if ss_total else 0.0],
            'F': list(f_obs) + [np.nan, np.nan],
            'p_value': list(p_values) + [np.nan, np.nan],
        },
        index=pd.Index(term_names + ['Residual', 'Total'], name='term'),
        columns=PSEUDO_ANOVA_COLUMNS,
    )
    table.attrs['permutations'] = permutations
    table.attrs['n_samples'] = n
    if design.dropped:
        table.attrs['dropped_terms'] = list(design.dropped)
    logger.debug(f"Pseudo-ANOVA on {n} samples:\n{table}")
    return table

# ================================ MATRIX CONCORDANCE ================================ #

def _standardise(values: np.ndarray) -> np.ndarray:
    return (values - values.mean()) / values.std()


def mantel(
    dm_x: DistanceMatrix,
    dm_y: DistanceMatrix,
    method: str = constants.DEFAULT_MANTEL_METHOD,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: int = constants.DEFAULT_RANDOM_STATE,
    alternative: str = 'greater',
    progress: Optional[Progress] = None,
) -> PermutationTestResult:
    """Mantel test of correlation between two distance matrices.

    The statistic is the Pearson (or Spearman) correlation of corresponding
    upper-triangle entries. Each replicate permutes the rows and columns of
    ``dm_y`` together with one draw from ``numpy.random.default_rng(seed)``.

    Raises:
        AlignmentError:       Fewer than 3 shared samples.
        DegenerateInputError: A matrix has constant off-diagonal distances.
    """
    if method not in ('pearson', 'spearman'):
        raise ValueError(f"Unknown Mantel method {method!r}; use 'pearson' or 'spearman'")
    if alternative not in ALTERNATIVES:
        raise ValueError(f"alternative must be one of {ALTERNATIVES}")
    if permutations < 1:
        raise ValueError("permutations must be ≥ 1")

    x, y = reconcile_distances(dm_x, dm_y, min_common=3, context="Mantel test")
    assert_aligned(x.ids, y.ids, context="Mantel test")
    n = x.shape[0]
    _check_power(n, "Mantel test")

    rows, cols = np.triu_indices(n, k=1)
    x_vec, y_vec = x.data[rows, cols], y.data[rows, cols]
    for name, vec in (("first", x_vec), ("second", y_vec)):
        if np.allclose(vec, vec[0]):
            raise DegenerateInputError(
                f"Mantel test: {name} distance matrix has constant off-diagonal entries"
            )

    if method == 'pearson':
        statistic = float(pearsonr(x_vec, y_vec)[0])
    else:
        statistic = float(spearmanr(x_vec, y_vec)[0])
        x_vec, y_vec = rankdata(x_vec), rankdata(y_vec)

    # Standardised y entries as a square matrix so a permutation of rows and
    # columns yields the permuted standardised vector directly
    z_x = _standardise(x_vec)
    z_y = np.zeros((n, n))
    z_y[rows, cols] = _standardise(y_vec)
    z_y = z_y + z_y.T

    rng = np.random.default_rng(seed)
    permuted = np.empty(permutations)
    with PermutationTracker(progress, "Mantel permutations", permutations) as tracker:
        for i in range(permutations):
            order = rng.permutation(n)
            shuffled = z_y[np.ix_(order, order)]
            permuted[i] = np.mean(z_x * shuffled[rows, cols])
            tracker.advance()

    if alternative == 'greater':
        p_value = permutation_p_value(statistic, permuted)
    elif alternative == 'less':
        p_value = permutation_p_value(-statistic, -permuted)
    else:
        p_value = permutation_p_value(abs(statistic), np.abs(permuted))

    logger.debug(f"Mantel ({method}) r={statistic:.4f}, p={p_value:.4g}, n={n}")
    return PermutationTestResult(
        method='Mantel',
        test_statistic_name=f"{method} r",
        statistic=statistic,
        p_value=p_value,
        permutations=permutations,
        n_samples=n,
    )
