"""
Sample identifier reconciliation.

Every statistic computed jointly over two structures (a distance matrix and a
sample table, or two distance matrices) goes through one of these functions.
They intersect identifiers, restrict and reorder both sides to the
intersection, and then verify position-by-position that the orders agree.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Sequence, Tuple

# Third-Party Imports
from skbio.stats.distance import DistanceMatrix

# Local Imports
from mbio_report import constants
from mbio_report.errors import AlignmentError
from mbio_report.models import SampleTable

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

# ==================================== FUNCTIONS ===================================== #

def common_ids(
    ordered: Sequence[str],
    other: Sequence[str],
    min_common: int = constants.DEFAULT_MIN_COMMON_SAMPLES,
    context: str = "reconciliation"
) -> list:
    """Identifiers present in both, in the order of ``ordered``."""
    other_set = set(map(str, other))
    shared = [i for i in map(str, ordered) if i in other_set]
    n_dropped = len(ordered) - len(shared)
    if n_dropped or len(other_set) != len(shared):
        logger.info(
            f"{context}: {len(shared)} shared samples "
            f"({len(ordered)} vs {len(other_set)} before reconciliation)"
        )
    if len(shared) < min_common:
        raise AlignmentError(
            f"{context}: only {len(shared)} common sample identifier(s), "
            f"need at least {min_common}"
        )
    return shared


def assert_aligned(
    left: Sequence[str],
    right: Sequence[str],
    context: str = "joint statistic"
) -> None:
    """Hard failure unless both identifier sequences match position by position."""
    left, right = [str(i) for i in left], [str(i) for i in right]
    if len(left) != len(right):
        raise AlignmentError(
            f"{context}: {len(left)} vs {len(right)} samples after reconciliation"
        )
    mismatched = [(i, a, b) for i, (a, b) in enumerate(zip(left, right)) if a != b]
    if mismatched:
        position, a, b = mismatched[0]
        raise AlignmentError(
            f"{context}: {len(mismatched)} misordered sample(s); first at position "
            f"{position} ({a!r} vs {b!r})"
        )


def reconcile(
    dm: DistanceMatrix,
    samples: SampleTable,
    min_common: int = constants.DEFAULT_MIN_COMMON_SAMPLES,
    context: str = "distance matrix vs metadata"
) -> Tuple[DistanceMatrix, SampleTable]:
    """Restrict a distance matrix and a sample table to their shared samples.

    The distance matrix order is kept. Both outputs are new objects whose
    identifiers are verified to be in identical order.
    """
    shared = common_ids(dm.ids, samples.ids, min_common=min_common, context=context)
    filtered_dm = dm if list(dm.ids) == shared else dm.filter(shared)
    filtered_samples = samples.subset(shared)
    assert_aligned(filtered_dm.ids, filtered_samples.ids, context=context)
    return filtered_dm, filtered_samples


def reconcile_distances(
    dm_a: DistanceMatrix,
    dm_b: DistanceMatrix,
    min_common: int = constants.DEFAULT_MIN_COMMON_SAMPLES,
    context: str = "distance matrix vs distance matrix"
) -> Tuple[DistanceMatrix, DistanceMatrix]:
    """Restrict two distance matrices to their shared samples, in ``dm_a`` order."""
    shared = common_ids(dm_a.ids, dm_b.ids, min_common=min_common, context=context)
    filtered_a = dm_a if list(dm_a.ids) == shared else dm_a.filter(shared)
    filtered_b = dm_b.filter(shared)
    assert_aligned(filtered_a.ids, filtered_b.ids, context=context)
    return filtered_a, filtered_b


def reconcile_table(
    ids: Sequence[str],
    samples: SampleTable,
    min_common: int = constants.DEFAULT_MIN_COMMON_SAMPLES,
    context: str = "feature table vs metadata"
) -> Tuple[list, SampleTable]:
    """Shared identifiers (in ``ids`` order) and the matching sample table rows."""
    shared = common_ids(ids, samples.ids, min_common=min_common, context=context)
    filtered_samples = samples.subset(shared)
    assert_aligned(shared, filtered_samples.ids, context=context)
    return shared, filtered_samples
