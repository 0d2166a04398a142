"""
Tests for principal coordinates analysis and axis-sign matching.
"""
import warnings

import numpy as np
import pandas as pd
import pytest
from skbio import OrdinationResults
from skbio.stats.distance import DistanceMatrix
from skbio.stats.ordination import pcoa as skbio_pcoa

from mbio_report.diversity import distance_matrix
from mbio_report.errors import AlignmentError, ConvergenceWarning, DegenerateInputError
from mbio_report.ordination import match_axis_signs, pcoa, percent_explained


@pytest.fixture
def euclidean_dm(imaging):
    return distance_matrix(imaging.data, 'euclidean')


def _flipped(ordination, column):
    samples = ordination.samples.copy()
    samples[column] = -samples[column]
    return OrdinationResults(
        short_method_name=ordination.short_method_name,
        long_method_name=ordination.long_method_name,
        eigvals=ordination.eigvals,
        samples=samples,
        proportion_explained=ordination.proportion_explained,
    )


def test_pcoa_matches_scikit_bio_eigenvalues(euclidean_dm):
    ours = pcoa(euclidean_dm)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        reference = skbio_pcoa(euclidean_dm)
    k = len(ours.eigvals)
    assert k == 5
    np.testing.assert_allclose(ours.eigvals.values, reference.eigvals.values[:k], rtol=1e-6)
    np.testing.assert_allclose(
        np.abs(ours.samples.values), np.abs(reference.samples.values[:, :k]), atol=1e-6
    )


def test_pcoa_reproduces_euclidean_distances(euclidean_dm):
    coords = pcoa(euclidean_dm).samples.values
    diff = coords[:, None, :] - coords[None, :, :]
    np.testing.assert_allclose(np.sqrt((diff ** 2).sum(-1)), euclidean_dm.data, atol=1e-8)


def test_pcoa_axes_are_ordered_and_labelled(euclidean_dm):
    ordination = pcoa(euclidean_dm, n_dimensions=3)
    assert list(ordination.samples.columns) == ['PC1', 'PC2', 'PC3']
    assert list(ordination.samples.index) == list(euclidean_dm.ids)
    assert (np.diff(ordination.eigvals.values) <= 0).all()
    explained = percent_explained(ordination)
    assert explained.iloc[0] > explained.iloc[1] > 0
    assert explained.sum() <= 100 + 1e-9


def test_pcoa_negative_eigenvalues_warn_and_are_dropped():
    # Violates the triangle inequality, so the Gower matrix is indefinite
    data = np.array([
        [0.0, 1.0, 1.0, 5.0],
        [1.0, 0.0, 1.0, 1.0],
        [1.0, 1.0, 0.0, 1.0],
        [5.0, 1.0, 1.0, 0.0],
    ])
    dm = DistanceMatrix(data, ids=['a', 'b', 'c', 'd'])
    with pytest.warns(ConvergenceWarning):
        ordination = pcoa(dm)
    assert (ordination.eigvals > 0).all()
    # Negative eigenvalues stay in the denominator
    assert ordination.proportion_explained.sum() > 1.0


def test_pcoa_of_identical_samples_has_no_axes():
    dm = DistanceMatrix(np.zeros((4, 4)), ids=list('abcd'))
    ordination = pcoa(dm)
    assert ordination.samples.shape == (4, 0)


def test_pcoa_needs_two_samples():
    with pytest.raises(DegenerateInputError):
        pcoa(DistanceMatrix(np.zeros((1, 1)), ids=['a']))


@pytest.mark.parametrize('column, expected', [
    ('PC1', (-1, 1)),
    ('PC2', (1, -1)),
])
def test_match_axis_signs_recovers_reflection(euclidean_dm, column, expected):
    reference = pcoa(euclidean_dm)
    reflection = match_axis_signs(reference, _flipped(reference, column))
    assert reflection.signs == expected
    assert reflection.discrepancy == pytest.approx(0.0, abs=1e-12)
    np.testing.assert_allclose(
        reflection.coordinates.values, reference.samples.iloc[:, :2].values
    )
    assert len(reflection.candidates) == 4


def test_match_axis_signs_prefers_unflipped_on_identity(euclidean_dm):
    reference = pcoa(euclidean_dm)
    assert match_axis_signs(reference, reference).signs == (1, 1)


def test_match_axis_signs_generalises_to_more_axes(euclidean_dm):
    reference = pcoa(euclidean_dm)
    other = _flipped(_flipped(reference, 'PC1'), 'PC3')
    reflection = match_axis_signs(reference, other, n_axes=3)
    assert reflection.signs == (-1, 1, -1)
    assert len(reflection.candidates) == 8


def test_match_axis_signs_reconciles_samples(euclidean_dm):
    reference = pcoa(euclidean_dm)
    subset = pcoa(euclidean_dm.filter(list(euclidean_dm.ids)[:2]))
    with pytest.raises(DegenerateInputError):
        match_axis_signs(reference, subset)

    other = _flipped(reference, 'PC1')
    shuffled = OrdinationResults(
        'PCoA', 'Principal Coordinate Analysis', other.eigvals,
        samples=other.samples.iloc[::-1].rename(index={'S01': 'X01'}),
        proportion_explained=other.proportion_explained,
    )
    reflection = match_axis_signs(reference, shuffled)
    assert reflection.signs == (-1, 1)
    assert 'X01' not in reflection.coordinates.index


def test_match_axis_signs_requires_shared_samples(euclidean_dm):
    reference = pcoa(euclidean_dm)
    renamed = OrdinationResults(
        'PCoA', 'Principal Coordinate Analysis', reference.eigvals,
        samples=reference.samples.rename(index=lambda s: f"other_{s}"),
        proportion_explained=reference.proportion_explained,
    )
    with pytest.raises(AlignmentError):
        match_axis_signs(reference, renamed)
