"""
Typed containers passed between pipeline stages.

Each container copies its frame on construction and every method returns a
new container, so no stage can mutate another stage's input.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import List, Sequence

# Third-Party Imports
import pandas as pd

# Local Imports
from mbio_report import constants
from mbio_report.errors import InputValidationError, MissingColumnError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

# ================================= RESULT COLUMNS =================================== #

ASSOCIATION_COLUMNS = [
    'entity', 'term', 'estimate', 'std_error', 't_value', 'p_value', 'q_value', 'n_samples'
]
PSEUDO_ANOVA_COLUMNS = ['Df', 'SumOfSqs', 'R2', 'F', 'p_value']

# =============================== HELPER FUNCTIONS =================================== #

def _validate_ids(ids: pd.Index, what: str) -> pd.Index:
    if ids.isnull().any():
        raise InputValidationError(f"{what} contain null identifiers")
    ids = ids.astype(str)
    duplicated = ids[ids.duplicated()].unique()
    if len(duplicated):
        raise InputValidationError(
            f"{what} contain {len(duplicated)} duplicate identifier(s): {list(duplicated[:5])}"
        )
    return ids


def _to_numeric(df: pd.DataFrame, what: str) -> pd.DataFrame:
    try:
        return df.apply(pd.to_numeric).astype(float)
    except (TypeError, ValueError) as e:
        raise InputValidationError(f"{what} contains non-numeric values: {e}") from e

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class SampleTable:
    """Sample metadata, one row per unique sample identifier."""
    data: pd.DataFrame

    def __post_init__(self):
        data = self.data.copy()
        data.index = _validate_ids(data.index, "Sample table")
        data.index.name = data.index.name or constants.DEFAULT_META_ID_COLUMN
        object.__setattr__(self, 'data', data)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        id_column: str = constants.DEFAULT_META_ID_COLUMN
    ) -> "SampleTable":
        if id_column in df.columns:
            df = df.set_index(id_column)
        elif df.index.name != id_column:
            raise MissingColumnError(id_column, context="sample metadata")
        return cls(df)

    @property
    def ids(self) -> List[str]:
        return self.data.index.tolist()

    def __len__(self) -> int:
        return len(self.data)

    def require(self, *columns: str) -> "SampleTable":
        missing = [c for c in columns if c not in self.data.columns]
        if missing:
            raise MissingColumnError(missing, context="sample metadata")
        return self

    def subset(self, ids: Sequence[str]) -> "SampleTable":
        """Rows for ``ids``, in exactly that order."""
        missing = [i for i in ids if i not in self.data.index]
        if missing:
            raise KeyError(f"Sample(s) not in table: {missing[:5]}")
        return SampleTable(self.data.loc[list(ids)])

    def with_columns(self, columns: pd.DataFrame) -> "SampleTable":
        """New table with ``columns`` joined on sample id (existing columns win)."""
        columns = columns.copy()
        columns.index = columns.index.astype(str)
        new = columns.columns.difference(self.data.columns)
        return SampleTable(self.data.join(columns[new], how='left'))

    def group_counts(self, column: str) -> pd.DataFrame:
        self.require(column)
        counts = self.data[column].value_counts(dropna=False).sort_index()
        return counts.rename_axis(column).reset_index(name='n_samples')


@dataclass(frozen=True)
class AbundanceMatrix:
    """Non-negative counts, features (taxa) as rows and samples as columns."""
    data: pd.DataFrame

    def __post_init__(self):
        data = _to_numeric(self.data, "Abundance table")
        data.index = _validate_ids(data.index, "Abundance feature ids")
        data.columns = _validate_ids(data.columns, "Abundance sample ids")
        if data.isnull().any().any():
            raise InputValidationError("Abundance table contains missing values")
        if (data.values < 0).any():
            raise InputValidationError("Abundance table contains negative counts")
        object.__setattr__(self, 'data', data)

    @property
    def sample_ids(self) -> List[str]:
        return self.data.columns.tolist()

    @property
    def feature_ids(self) -> List[str]:
        return self.data.index.tolist()

    @property
    def shape(self):
        return self.data.shape

    def sample_totals(self) -> pd.Series:
        return self.data.sum(axis=0)

    def subset_samples(self, ids: Sequence[str]) -> "AbundanceMatrix":
        return AbundanceMatrix(self.data.loc[:, list(ids)])


@dataclass(frozen=True)
class ProportionMatrix:
    """Within-sample proportions; all-NaN columns mark zero-count samples."""
    data: pd.DataFrame

    def __post_init__(self):
        object.__setattr__(self, 'data', self.data.copy())

    @property
    def sample_ids(self) -> List[str]:
        return self.data.columns.tolist()

    @property
    def feature_ids(self) -> List[str]:
        return self.data.index.tolist()

    @property
    def undefined_samples(self) -> List[str]:
        return self.data.columns[self.data.isnull().all(axis=0)].tolist()

    def defined(self) -> "ProportionMatrix":
        """Drop samples whose proportions are undefined (zero total count)."""
        undefined = self.undefined_samples
        if undefined:
            logger.warning(
                f"Excluding {len(undefined)} zero-count sample(s): {undefined[:5]}"
            )
            return ProportionMatrix(self.data.drop(columns=undefined))
        return self

    def filter_features(self, min_rel_abundance: float) -> "ProportionMatrix":
        """Keep features whose proportion exceeds the cutoff in at least one sample."""
        keep = (self.data > min_rel_abundance).any(axis=1)
        logger.debug(
            f"{int(keep.sum())}/{len(keep)} features exceed relative abundance "
            f"{min_rel_abundance}"
        )
        return ProportionMatrix(self.data.loc[keep])

    def subset_samples(self, ids: Sequence[str]) -> "ProportionMatrix":
        return ProportionMatrix(self.data.loc[:, list(ids)])

    def samples_by_features(self) -> pd.DataFrame:
        return self.data.T.copy()


@dataclass(frozen=True)
class FeatureMatrix:
    """Secondary-domain (imaging, gene function) values, samples as rows."""
    data: pd.DataFrame

    def __post_init__(self):
        data = _to_numeric(self.data, "Feature table")
        data.index = _validate_ids(data.index, "Feature table sample ids")
        data.columns = data.columns.astype(str)
        object.__setattr__(self, 'data', data)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        orientation: str = constants.DEFAULT_FEATURE_ORIENTATION
    ) -> "FeatureMatrix":
        if orientation == constants.SAMPLES_AS_ROWS:
            return cls(df)
        if orientation == constants.SAMPLES_AS_COLUMNS:
            return cls(df.T)
        raise ValueError(
            f"Unknown orientation {orientation!r}; use "
            f"'{constants.SAMPLES_AS_ROWS}' or '{constants.SAMPLES_AS_COLUMNS}'"
        )

    @property
    def sample_ids(self) -> List[str]:
        return self.data.index.tolist()

    def to_abundance(self) -> AbundanceMatrix:
        """Counts view (features × samples), for count-like secondary tables."""
        return AbundanceMatrix(self.data.T)


@dataclass(frozen=True)
class PermutationTestResult:
    """Observed statistic and its empirical permutation p-value."""
    method: str
    test_statistic_name: str
    statistic: float
    p_value: float
    permutations: int
    n_samples: int

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([{
            'method': self.method,
            'statistic_name': self.test_statistic_name,
            'statistic': self.statistic,
            'p_value': self.p_value,
            'permutations': self.permutations,
            'n_samples': self.n_samples,
        }])


def empty_association_result() -> pd.DataFrame:
    return pd.DataFrame(columns=ASSOCIATION_COLUMNS)
