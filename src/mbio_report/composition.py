# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from mbio_report import constants
from mbio_report.models import AbundanceMatrix, ProportionMatrix

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

# ==================================== FUNCTIONS ===================================== #

def to_proportions(abundance: AbundanceMatrix) -> ProportionMatrix:
    """Convert counts to within-sample proportions.

    Each column is divided by its total. A sample with zero total count has no
    defined composition; its column is left all-NaN and callers exclude it
    with ``ProportionMatrix.defined()``.

    Args:
        abundance: Counts, features × samples.

    Returns:
        ProportionMatrix of identical shape.
    """
    totals = abundance.sample_totals()
    zero = totals[totals == 0].index.tolist()
    if zero:
        logger.warning(
            f"{len(zero)} sample(s) have zero total count; proportions undefined: {zero[:5]}"
        )
    proportions = abundance.data.div(totals.replace(0, np.nan), axis=1)
    return ProportionMatrix(proportions)


def log_proportions(
    proportions: ProportionMatrix,
    pseudocount: float = constants.DEFAULT_PSEUDOCOUNT
) -> pd.DataFrame:
    """Natural log of proportion + pseudocount (features × samples)."""
    return np.log(proportions.data + pseudocount)
