"""
Tests for design matrices, per-entity OLS and Benjamini-Hochberg correction.
"""
import numpy as np
import pandas as pd
import pytest

from conftest import DIFFERENTIAL_TAXON
from mbio_report.association import (
    associate_alpha_diversity, associate_taxa, benjamini_hochberg, design_matrix,
    fit_ols, significant
)
from mbio_report.composition import to_proportions
from mbio_report.diversity import attach_alpha_diversity
from mbio_report.errors import DegenerateInputError, MissingColumnError
from mbio_report.models import ASSOCIATION_COLUMNS, SampleTable


def test_benjamini_hochberg_is_monotone_and_conservative():
    raw = np.array([0.001, 0.01, 0.02, 0.04, 0.5])
    adjusted = benjamini_hochberg(raw)
    assert (adjusted >= raw).all()
    assert (np.diff(adjusted) >= 0).all()
    assert (adjusted <= 1).all()
    np.testing.assert_allclose(adjusted, [0.005, 0.025, 0.0333333, 0.05, 0.5], rtol=1e-5)


def test_benjamini_hochberg_ignores_missing_values():
    adjusted = benjamini_hochberg([0.01, np.nan, 0.02])
    assert np.isnan(adjusted[1])
    np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.02])


def test_design_matrix_treatment_coding(samples):
    design = design_matrix(samples, 'sex', 'score')
    assert list(design.matrix.columns) == ['Intercept', 'sex[T.M]', 'score']
    assert design.terms == {'sex': ['sex[T.M]'], 'score': ['score']}
    assert design.matrix['sex[T.M]'].sum() == 10


def test_design_matrix_drops_single_level_covariate(metadata_df):
    metadata_df['sex'] = 'F'
    design = design_matrix(SampleTable.from_frame(metadata_df), 'sex', 'score')
    assert design.dropped == ('sex',)
    assert list(design.terms) == ['score']


def test_design_matrix_without_estimable_terms(metadata_df):
    metadata_df['sex'] = 'F'
    metadata_df['score'] = 1.0
    with pytest.raises(DegenerateInputError):
        design_matrix(SampleTable.from_frame(metadata_df), 'sex', 'score')


def test_design_matrix_missing_column(samples):
    with pytest.raises(MissingColumnError):
        design_matrix(samples, 'sex', 'age')


def test_design_matrix_drops_incomplete_rows(metadata_df):
    metadata_df.loc[0, 'score'] = np.nan
    design = design_matrix(SampleTable.from_frame(metadata_df), 'sex', 'score')
    assert len(design.index) == 19
    assert 'S01' not in design.index


def test_fit_ols_recovers_known_coefficients(samples):
    design = design_matrix(samples, 'sex', 'score')
    noise = np.random.default_rng(5).normal(0, 0.01, len(samples))
    response = pd.Series(
        2.0 + 3.0 * design.matrix['sex[T.M]'] + 0.5 * design.matrix['score'] + noise,
        index=design.index, name='y'
    )
    rows = pd.DataFrame(fit_ols(response, design)).set_index('term')
    assert rows.loc['sex[T.M]', 'estimate'] == pytest.approx(3.0, abs=0.05)
    assert rows.loc['score', 'estimate'] == pytest.approx(0.5, abs=0.01)
    assert (rows['p_value'] < 1e-6).all()
    assert (rows['n_samples'] == 20).all()


def test_fit_ols_rejects_constant_response(samples):
    design = design_matrix(samples, 'sex', 'score')
    with pytest.raises(DegenerateInputError):
        fit_ols(pd.Series(1.0, index=design.index, name='flat'), design)


def test_associate_alpha_diversity(samples, abundance):
    with_alpha = attach_alpha_diversity(samples, abundance, ['observed_features', 'shannon'])
    results = associate_alpha_diversity(with_alpha, ['observed_features', 'shannon'])
    assert list(results.columns) == ASSOCIATION_COLUMNS
    assert set(results['entity']) == {'observed_features', 'shannon'}
    assert set(results['term']) == {'sex[T.M]', 'score'}
    assert results['q_value'].isnull().all()


def test_associate_alpha_diversity_missing_measure(samples):
    with pytest.raises(MissingColumnError):
        associate_alpha_diversity(samples, ['chao1'])


def test_differential_taxon_survives_fdr(samples, abundance):
    results = associate_taxa(to_proportions(abundance), samples, 'sex', 'score')
    assert results['entity'].nunique() >= 20

    hit = results[(results['entity'] == DIFFERENTIAL_TAXON) & (results['term'] == 'sex[T.M]')]
    assert len(hit) == 1
    assert hit['estimate'].iloc[0] > 0
    assert hit['p_value'].iloc[0] < 0.001
    assert hit['q_value'].iloc[0] < 0.05

    assert (results['q_value'] >= results['p_value']).all()
    assert DIFFERENTIAL_TAXON in set(significant(results, 0.05, column='q_value')['entity'])


def test_fdr_is_applied_per_term(samples, abundance):
    results = associate_taxa(to_proportions(abundance), samples, 'sex', 'score')
    for term, group in results.groupby('term'):
        np.testing.assert_allclose(group['q_value'], benjamini_hochberg(group['p_value']))


def test_associate_taxa_reconciles_samples(samples, abundance):
    proportions = to_proportions(abundance)
    partial = SampleTable(samples.data.iloc[:15])
    results = associate_taxa(proportions, partial, 'sex', 'score')
    assert (results['n_samples'] == 15).all()
