# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

# Third-Party Imports
import numpy as np
import pandas as pd
import statsmodels.api as sm
from rich.progress import Progress
from statsmodels.stats.multitest import multipletests

# Local Imports
from mbio_report import constants
from mbio_report.alignment import assert_aligned, reconcile_table
from mbio_report.composition import log_proportions
from mbio_report.errors import DegenerateInputError
from mbio_report.models import (
    ASSOCIATION_COLUMNS, ProportionMatrix, SampleTable, empty_association_result
)
from mbio_report.utils.progress import PermutationTracker

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

INTERCEPT = 'Intercept'

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class Design:
    """Model matrix plus the ordered term → column mapping it was built from."""
    matrix: pd.DataFrame
    terms: Dict[str, List[str]]
    dropped: Tuple[str, ...] = ()

    @property
    def index(self) -> pd.Index:
        return self.matrix.index

    @property
    def term_columns(self) -> List[str]:
        return [c for cols in self.terms.values() for c in cols]

# =============================== HELPER FUNCTIONS =================================== #

def _as_list(value: Union[None, str, Sequence[str]]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def design_matrix(
    samples: SampleTable,
    categorical: Union[str, Sequence[str], None] = constants.DEFAULT_CATEGORICAL_COVARIATE,
    continuous: Union[str, Sequence[str], None] = constants.DEFAULT_CONTINUOUS_COVARIATE,
) -> Design:
    """Treatment-coded design matrix: intercept + categorical dummies + numeric terms.

    Categorical levels are sorted and the first one is the reference; dummy
    columns are named ``"<column>[T.<level>]"``. Rows missing any covariate
    are dropped. A covariate with a single level or zero variance cannot be
    estimated; it is dropped from the model with a warning.

    Raises:
        MissingColumnError:   A covariate column is absent.
        DegenerateInputError: No estimable covariate remains.
    """
    categorical, continuous = _as_list(categorical), _as_list(continuous)
    samples.require(*categorical, *continuous)

    frame = samples.data[categorical + continuous].copy()
    for col in continuous:
        frame[col] = pd.to_numeric(frame[col], errors='coerce')
    complete = frame.dropna()
    if len(complete) < len(frame):
        logger.info(
            f"Dropping {len(frame) - len(complete)} sample(s) with missing covariates"
        )

    matrix = pd.DataFrame({INTERCEPT: 1.0}, index=complete.index)
    terms: Dict[str, List[str]] = {}
    dropped = []

    for col in categorical:
        values = complete[col].astype(str)
        levels = sorted(values.unique())
        if len(levels) < 2:
            logger.warning(f"Covariate '{col}' has a single level; excluded from the model")
            dropped.append(col)
            continue
        columns = []
        for level in levels[1:]:
            name = f"{col}[T.{level}]"
            matrix[name] = (values == level).astype(float)
            columns.append(name)
        terms[col] = columns

    for col in continuous:
        values = complete[col].astype(float)
        if len(values) < 2 or np.isclose(values.std(ddof=0), 0.0):
            logger.warning(f"Covariate '{col}' has zero variance; excluded from the model")
            dropped.append(col)
            continue
        matrix[col] = values
        terms[col] = [col]

    if not terms:
        raise DegenerateInputError(
            f"No estimable covariates among {categorical + continuous}"
        )
    return Design(matrix=matrix, terms=terms, dropped=tuple(dropped))


def benjamini_hochberg(p_values: Sequence[float]) -> np.ndarray:
    """Benjamini-Hochberg adjusted p-values; NaN entries stay NaN and are not counted."""
    p = np.asarray(p_values, dtype=float)
    adjusted = np.full(p.shape, np.nan)
    mask = np.isfinite(p)
    if mask.any():
        adjusted[mask] = multipletests(p[mask], method='fdr_bh')[1]
    return adjusted


def significant(
    results: pd.DataFrame,
    threshold: float = constants.DEFAULT_SIGNIFICANCE,
    column: str = 'p_value'
) -> pd.DataFrame:
    """Rows below ``threshold``. Presentation filter; never feeds back into FDR."""
    return results[results[column] < threshold]

# ================================ CORE FUNCTIONALITY ================================ #

def fit_ols(
    response: pd.Series,
    design: Design,
    entity: Optional[str] = None
) -> List[Dict]:
    """Fit ``response ~ design`` by ordinary least squares.

    Returns one row per non-intercept design column with the estimate, its
    standard error, t statistic and two-sided p-value.

    Raises:
        DegenerateInputError: Constant response or no residual degrees of freedom.
    """
    entity = entity if entity is not None else str(response.name)
    assert_aligned(response.index, design.index, context=f"model for '{entity}'")

    y = pd.to_numeric(response, errors='coerce')
    keep = y.notna()
    y = y[keep]
    x = design.matrix.loc[keep[keep].index]

    estimable = [INTERCEPT] + [c for c in design.term_columns if x[c].std(ddof=0) > 0]
    if len(estimable) < 1 + len(design.term_columns):
        logger.debug(f"'{entity}': dropping constant design column(s) after subsetting")
    x = x[estimable]

    if len(y) <= x.shape[1]:
        raise DegenerateInputError(
            f"'{entity}': {len(y)} observations for {x.shape[1]} parameters"
        )
    if np.isclose(y.std(ddof=0), 0.0):
        raise DegenerateInputError(f"'{entity}': response has zero variance")

    model = sm.OLS(y.astype(float), x.astype(float)).fit()
    rows = []
    for column in estimable[1:]:
        rows.append({
            'entity': entity,
            'term': column,
            'estimate': model.params[column],
            'std_error': model.bse[column],
            't_value': model.tvalues[column],
            'p_value': model.pvalues[column],
            'q_value': np.nan,
            'n_samples': int(model.nobs),
        })
    return rows


def associate_alpha_diversity(
    samples: SampleTable,
    measures: Sequence[str] = constants.DEFAULT_ALPHA_METRICS,
    categorical: Union[str, Sequence[str], None] = constants.DEFAULT_CATEGORICAL_COVARIATE,
    continuous: Union[str, Sequence[str], None] = constants.DEFAULT_CONTINUOUS_COVARIATE,
) -> pd.DataFrame:
    """One linear model per alpha-diversity measure: measure ~ covariates.

    Raises:
        MissingColumnError: A measure or covariate column is absent.
    """
    measures = _as_list(measures)
    samples.require(*measures)
    design = design_matrix(samples, categorical, continuous)

    rows = []
    for measure in measures:
        response = samples.data.loc[design.index, measure].rename(measure)
        try:
            rows.extend(fit_ols(response, design, entity=measure))
        except DegenerateInputError as e:
            logger.warning(f"Skipping alpha measure: {e}")

    if not rows:
        return empty_association_result()
    return pd.DataFrame(rows, columns=ASSOCIATION_COLUMNS)


def associate_taxa(
    proportions: ProportionMatrix,
    samples: SampleTable,
    categorical: Union[str, Sequence[str], None] = constants.DEFAULT_CATEGORICAL_COVARIATE,
    continuous: Union[str, Sequence[str], None] = constants.DEFAULT_CONTINUOUS_COVARIATE,
    min_rel_abundance: float = constants.DEFAULT_MIN_REL_ABUNDANCE,
    pseudocount: float = constants.DEFAULT_PSEUDOCOUNT,
    progress: Optional[Progress] = None,
) -> pd.DataFrame:
    """Per-taxon linear models of log proportion with BH FDR per term.

    Zero-count samples are excluded and the remaining samples reconciled with
    the metadata. Taxa that exceed ``min_rel_abundance`` in at least one sample
    are tested on ln(proportion + pseudocount). Taxa whose response is
    constant are skipped. The BH correction runs over every tested taxon for
    each term before any significance filtering.

    Raises:
        AlignmentError:     Fewer than 2 samples shared with the metadata.
        MissingColumnError: A covariate column is absent.
    """
    defined = proportions.defined()
    shared, aligned = reconcile_table(
        defined.sample_ids, samples, context="taxon table vs metadata"
    )
    filtered = defined.subset_samples(shared).filter_features(min_rel_abundance)
    design = design_matrix(aligned, categorical, continuous)
    log_props = log_proportions(filtered, pseudocount).loc[:, design.index]

    rows = []
    skipped = 0
    with PermutationTracker(progress, "Per-taxon models", len(log_props)) as tracker:
        for taxon in log_props.index:
            try:
                rows.extend(fit_ols(log_props.loc[taxon], design, entity=str(taxon)))
            except DegenerateInputError as e:
                logger.debug(f"Skipping taxon: {e}")
                skipped += 1
            tracker.advance()
    if skipped:
        logger.info(f"Skipped {skipped} taxa with degenerate responses")

    if not rows:
        return empty_association_result()
    results = pd.DataFrame(rows, columns=ASSOCIATION_COLUMNS)
    for term, idx in results.groupby('term', sort=False).groups.items():
        results.loc[idx, 'q_value'] = benjamini_hochberg(results.loc[idx, 'p_value'])
    logger.info(
        f"Tested {results['entity'].nunique()} taxa across "
        f"{results['term'].nunique()} term(s)"
    )
    return results
