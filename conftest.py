"""
Shared synthetic datasets for the test modules.

Twenty samples split 10/10 by ``sex`` with a continuous ``score``. Taxon T00
is absent from every F sample and abundant in every M sample; the remaining
24 taxa are Poisson noise around the same mean.
"""
import numpy as np
import pandas as pd
import pytest
from skbio.stats.distance import DistanceMatrix

from mbio_report.config import AnalysisSettings
from mbio_report.io import ReportInputs
from mbio_report.models import AbundanceMatrix, FeatureMatrix, SampleTable

N_SAMPLES = 20
N_TAXA = 25
SAMPLE_IDS = [f"S{i:02d}" for i in range(1, N_SAMPLES + 1)]
TAXON_IDS = [f"T{i:02d}" for i in range(N_TAXA)]
DIFFERENTIAL_TAXON = "T00"


def make_metadata(seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    return pd.DataFrame({
        'SampleID': SAMPLE_IDS,
        'sex': ['F'] * 10 + ['M'] * 10,
        'score': rng.normal(50, 10, N_SAMPLES).round(2),
    })


def make_counts(seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    counts = rng.poisson(50, size=(N_TAXA, N_SAMPLES)).astype(float)
    counts[0, :10] = 0
    counts[0, 10:] = rng.poisson(200, size=10) + 1
    return pd.DataFrame(counts, index=TAXON_IDS, columns=SAMPLE_IDS)


def make_imaging(seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed + 1)
    shift = np.repeat([0.0, 2.0], 10)[:, None]
    values = rng.normal(0, 1, size=(N_SAMPLES, 5)) + shift
    return pd.DataFrame(
        values, index=SAMPLE_IDS, columns=[f"feature_{i}" for i in range(5)]
    )


@pytest.fixture
def metadata_df() -> pd.DataFrame:
    return make_metadata()


@pytest.fixture
def samples(metadata_df) -> SampleTable:
    return SampleTable.from_frame(metadata_df, id_column='SampleID')


@pytest.fixture
def abundance() -> AbundanceMatrix:
    return AbundanceMatrix(make_counts())


@pytest.fixture
def imaging() -> FeatureMatrix:
    return FeatureMatrix(make_imaging())


@pytest.fixture
def inputs(samples, abundance, imaging) -> ReportInputs:
    return ReportInputs(samples=samples, abundance=abundance, imaging=imaging)


@pytest.fixture
def fast_settings() -> AnalysisSettings:
    return AnalysisSettings(permutations=99, seed=7)


@pytest.fixture
def group_dm() -> DistanceMatrix:
    """Euclidean distances between two well-separated clusters of 10 points."""
    rng = np.random.default_rng(3)
    points = rng.normal(0, 0.1, size=(N_SAMPLES, 2))
    points[10:, 0] += 5
    diff = points[:, None, :] - points[None, :, :]
    return DistanceMatrix(np.sqrt((diff ** 2).sum(axis=-1)), ids=SAMPLE_IDS)
