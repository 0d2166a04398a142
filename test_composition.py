"""
Tests for count → proportion conversion and the data model containers.
"""
import numpy as np
import pandas as pd
import pytest

from mbio_report.composition import log_proportions, to_proportions
from mbio_report.errors import InputValidationError, MissingColumnError, ReportError
from mbio_report.models import AbundanceMatrix, FeatureMatrix, SampleTable


def test_proportion_columns_sum_to_one(abundance):
    proportions = to_proportions(abundance)
    assert proportions.data.shape == abundance.shape
    np.testing.assert_allclose(proportions.data.sum(axis=0), 1.0, atol=1e-9)


def test_zero_count_sample_is_undefined_and_excluded():
    counts = pd.DataFrame(
        {'A': [3, 1, 0], 'B': [0, 0, 0], 'C': [1, 1, 2]},
        index=['t1', 't2', 't3'],
    )
    abundance = AbundanceMatrix(counts)
    assert abundance.sample_totals().tolist() == [4, 0, 4]
    proportions = to_proportions(abundance)
    assert proportions.undefined_samples == ['B']
    assert proportions.data['B'].isnull().all()

    defined = proportions.defined()
    assert defined.sample_ids == ['A', 'C']
    np.testing.assert_allclose(defined.data.sum(axis=0), 1.0)


def test_filter_features_uses_strict_cutoff():
    counts = pd.DataFrame(
        {'A': [98, 1, 1], 'B': [99, 1, 0]},
        index=['t1', 't2', 't3'],
    )
    proportions = to_proportions(AbundanceMatrix(counts))
    # t2 is exactly 0.01 in both samples and must not pass
    assert proportions.filter_features(0.01).feature_ids == ['t1']
    # Proportions are not renormalised after filtering
    assert proportions.filter_features(0.01).data.loc['t1', 'A'] == pytest.approx(0.98)


def test_log_proportions_uses_natural_log_and_pseudocount():
    proportions = to_proportions(AbundanceMatrix(pd.DataFrame({'A': [1, 0]}, index=['x', 'y'])))
    logged = log_proportions(proportions, pseudocount=1e-6)
    assert logged.loc['x', 'A'] == pytest.approx(np.log(1 + 1e-6))
    assert logged.loc['y', 'A'] == pytest.approx(np.log(1e-6))


def test_containers_do_not_share_state(abundance):
    proportions = to_proportions(abundance)
    before = abundance.data.copy()
    proportions.data.iloc[0, 0] = -1
    pd.testing.assert_frame_equal(abundance.data, before)


def test_abundance_rejects_negative_counts():
    with pytest.raises(InputValidationError):
        AbundanceMatrix(pd.DataFrame({'A': [1, -1]}, index=['x', 'y']))


def test_abundance_rejects_duplicate_feature_ids():
    df = pd.DataFrame([[1, 2], [3, 4]], index=['x', 'x'], columns=['A', 'B'])
    with pytest.raises(InputValidationError):
        AbundanceMatrix(df)


def test_sample_table_requires_id_column(metadata_df):
    with pytest.raises(MissingColumnError) as excinfo:
        SampleTable.from_frame(metadata_df, id_column='subject')
    assert isinstance(excinfo.value, KeyError)
    assert isinstance(excinfo.value, ReportError)
    assert 'subject' in str(excinfo.value)


def test_sample_table_subset_keeps_requested_order(samples):
    subset = samples.subset(['S03', 'S01', 'S02'])
    assert subset.ids == ['S03', 'S01', 'S02']
    assert len(samples) == 20


def test_group_counts(samples):
    counts = samples.group_counts('sex')
    assert counts.set_index('sex')['n_samples'].to_dict() == {'F': 10, 'M': 10}


def test_feature_matrix_orientation():
    df = pd.DataFrame({'S1': [1.0, 2.0], 'S2': [3.0, 4.0]}, index=['f1', 'f2'])
    features = FeatureMatrix.from_frame(df, orientation='samples_as_columns')
    assert features.sample_ids == ['S1', 'S2']
    assert list(features.data.columns) == ['f1', 'f2']
    with pytest.raises(ValueError):
        FeatureMatrix.from_frame(df, orientation='diagonal')
