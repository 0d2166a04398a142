# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

# Third-Party Imports
import pandas as pd
from rich.progress import Progress
from skbio import OrdinationResults
from skbio.stats.distance import DistanceMatrix

# Local Imports
from mbio_report import constants
from mbio_report.alignment import reconcile_table
from mbio_report.association import (
    associate_alpha_diversity, associate_taxa, significant
)
from mbio_report.composition import to_proportions
from mbio_report.config import AnalysisSettings
from mbio_report.diversity import (
    attach_alpha_diversity, distance_matrix, feature_distance, taxon_distance
)
from mbio_report.errors import InputValidationError, ReportError
from mbio_report.io import ReportInputs
from mbio_report.models import ProportionMatrix
from mbio_report.multivariate import mantel, pseudo_anova
from mbio_report.ordination import match_axis_signs, pcoa, percent_explained
from mbio_report.utils.progress import get_progress_bar, _format_task_desc

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

OK, FAILED, SKIPPED = 'ok', 'failed', 'skipped'

SECTIONS = (
    'group_counts',
    'alpha_association',
    'taxon_association',
    'taxon_beta',
    'imaging_beta',
    'cross_domain',
    'gene_function_beta',
    'taxon_heatmap',
)

# Taxon metric compared against the imaging ordination
CROSS_DOMAIN_METRIC = constants.DEFAULT_METRIC

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class SectionOutcome:
    name: str
    status: str
    message: str = ''


class SectionSkipped(Exception):
    """Raised by a section whose optional input is absent."""

# ==================================== FUNCTIONS ===================================== #

def _format_signs(signs) -> str:
    return ','.join(f"{s:+d}" for s in signs)


def write_tables(
    results: Dict[str, Dict[str, pd.DataFrame]],
    outcomes: List[SectionOutcome],
    output_dir: Union[str, Path]
) -> Path:
    """Write every result table to ``<output_dir>/<section>/<name>.tsv``."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    for section, tables in results.items():
        section_dir = output_dir / section
        section_dir.mkdir(parents=True, exist_ok=True)
        for name, df in tables.items():
            df.to_csv(
                section_dir / f"{name}.tsv",
                sep='\t',
                index=not isinstance(df.index, pd.RangeIndex)
            )
    pd.DataFrame(
        [(o.name, o.status, o.message) for o in outcomes],
        columns=['section', 'status', 'message']
    ).to_csv(output_dir / 'sections.tsv', sep='\t', index=False)
    logger.info(f"Report tables written to {output_dir}")
    return output_dir

# ================================== REPORT RUNNER =================================== #

class StatisticalReport:
    """Runs every report section in order, each isolated from the others.

    A section that raises ``ReportError`` or ``InputValidationError`` is logged
    and recorded as failed; later sections still run. Intermediate distances
    and ordinations are cached so dependent sections reuse them, and
    recomputed if the section that would have produced them failed.
    """

    def __init__(
        self,
        inputs: ReportInputs,
        settings: Optional[AnalysisSettings] = None,
        show_progress: bool = True
    ):
        self.inputs = inputs
        self.settings = settings or AnalysisSettings()
        self.show_progress = show_progress

        self.results: Dict[str, Dict[str, pd.DataFrame]] = {}
        self.sections: List[SectionOutcome] = []

        self._progress: Optional[Progress] = None
        self._proportions: Optional[ProportionMatrix] = None
        self._distances: Dict[str, DistanceMatrix] = {}
        self._ordinations: Dict[str, OrdinationResults] = {}

    # CACHED INTERMEDIATES
    @property
    def proportions(self) -> ProportionMatrix:
        if self._proportions is None:
            self._proportions = to_proportions(self.inputs.abundance)
        return self._proportions

    def _taxon_distance(self, metric: str) -> DistanceMatrix:
        key = f"taxon_{metric}"
        if key not in self._distances:
            self._distances[key] = taxon_distance(
                self.proportions, metric, self.settings.min_rel_abundance
            )
        return self._distances[key]

    def _imaging_distance(self) -> DistanceMatrix:
        if 'imaging' not in self._distances:
            self._distances['imaging'] = feature_distance(
                self.inputs.imaging,
                self.settings.imaging_metric,
                standardize=self.settings.standardize_imaging
            )
        return self._distances['imaging']

    def _ordination(self, key: str, dm: DistanceMatrix) -> OrdinationResults:
        if key not in self._ordinations:
            self._ordinations[key] = pcoa(dm)
        return self._ordinations[key]

    def _pseudo_anova(self, dm: DistanceMatrix) -> pd.DataFrame:
        s = self.settings
        return pseudo_anova(
            dm, self.inputs.samples,
            categorical=s.categorical_covariate,
            continuous=s.continuous_covariate,
            permutations=s.permutations,
            seed=s.seed,
            progress=self._progress,
        )

    def _beta_tables(self, prefix: str, dm: DistanceMatrix) -> Dict[str, pd.DataFrame]:
        ordination = self._ordination(prefix, dm)
        return {
            f"{prefix}_coordinates": ordination.samples,
            f"{prefix}_percent_explained": percent_explained(ordination).to_frame('percent_explained'),
            f"{prefix}_pseudo_anova": self._pseudo_anova(dm),
        }

    # SECTIONS
    def _group_counts(self) -> Dict[str, pd.DataFrame]:
        column = self.settings.categorical_covariate
        return {'group_counts': self.inputs.samples.group_counts(column)}

    def _alpha_association(self) -> Dict[str, pd.DataFrame]:
        s = self.settings
        samples = attach_alpha_diversity(
            self.inputs.samples, self.inputs.abundance, s.alpha_metrics
        )
        models = associate_alpha_diversity(
            samples, s.alpha_metrics, s.categorical_covariate, s.continuous_covariate
        )
        return {
            'alpha_diversity': samples.data[list(s.alpha_metrics)],
            'models': models,
            'significant': significant(models, s.significance, column='p_value'),
        }

    def _taxon_association(self) -> Dict[str, pd.DataFrame]:
        s = self.settings
        models = associate_taxa(
            self.proportions, self.inputs.samples,
            categorical=s.categorical_covariate,
            continuous=s.continuous_covariate,
            min_rel_abundance=s.min_rel_abundance,
            pseudocount=s.pseudocount,
            progress=self._progress,
        )
        return {
            'models': models,
            'significant': significant(models, s.significance, column='q_value'),
        }

    def _taxon_beta(self) -> Dict[str, pd.DataFrame]:
        tables = {}
        for metric in self.settings.taxon_metrics:
            tables.update(self._beta_tables(f"taxon_{metric}", self._taxon_distance(metric)))
        return tables

    def _imaging_beta(self) -> Dict[str, pd.DataFrame]:
        if self.inputs.imaging is None:
            raise SectionSkipped("no imaging table")
        return self._beta_tables('imaging', self._imaging_distance())

    def _cross_domain(self) -> Dict[str, pd.DataFrame]:
        if self.inputs.imaging is None:
            raise SectionSkipped("no imaging table")
        s = self.settings
        taxon_dm = self._taxon_distance(CROSS_DOMAIN_METRIC)
        imaging_dm = self._imaging_distance()

        result = mantel(
            taxon_dm, imaging_dm,
            method=s.mantel_method,
            permutations=s.permutations,
            seed=s.seed,
            progress=self._progress,
        )
        reflection = match_axis_signs(
            self._ordination(f"taxon_{CROSS_DOMAIN_METRIC}", taxon_dm),
            self._ordination('imaging', imaging_dm),
            n_axes=s.n_axes,
        )
        logger.info(
            f"Mantel r={result.statistic:.3f} (p={result.p_value:.3g}); "
            f"imaging axes reflected {_format_signs(reflection.signs)}"
        )
        candidates = reflection.candidates.copy()
        candidates['signs'] = candidates['signs'].map(_format_signs)
        return {
            'mantel': result.to_frame(),
            'axis_reflections': candidates,
            'imaging_coordinates_aligned': reflection.coordinates,
        }

    def _gene_function_beta(self) -> Dict[str, pd.DataFrame]:
        if self.inputs.gene_function is None:
            raise SectionSkipped("no gene-function table")
        proportions = to_proportions(self.inputs.gene_function.to_abundance()).defined()
        dm = distance_matrix(proportions.samples_by_features(), constants.DEFAULT_GENE_FUNCTION_METRIC)
        return {'gene_function_pseudo_anova': self._pseudo_anova(dm)}

    def _taxon_heatmap(self) -> Dict[str, pd.DataFrame]:
        """Filtered proportions, samples grouped by the categorical covariate,
        clipped at the saturation limit for display."""
        s = self.settings
        filtered = self.proportions.defined().filter_features(s.min_rel_abundance)
        shared, samples = reconcile_table(
            filtered.sample_ids, self.inputs.samples, context="heatmap"
        )
        samples.require(s.categorical_covariate)
        order = (
            samples.data[s.categorical_covariate]
            .astype(str)
            .sort_values(kind='stable')
            .index.tolist()
        )
        clipped = filtered.data.loc[:, order].clip(upper=s.saturation_limit)
        return {
            'proportions': clipped,
            'sample_groups': samples.data.loc[order, [s.categorical_covariate]],
        }

    # EXECUTION
    def _run_section(self, name: str, section: Callable[[], Dict[str, pd.DataFrame]]) -> None:
        logger.info(f"Section '{name}'")
        try:
            self.results[name] = section()
        except SectionSkipped as e:
            logger.info(f"Section '{name}' skipped: {e}")
            self.sections.append(SectionOutcome(name, SKIPPED, str(e)))
        except (ReportError, InputValidationError) as e:
            logger.error(f"Section '{name}' failed: {e}")
            self.sections.append(SectionOutcome(name, FAILED, str(e)))
        else:
            self.sections.append(SectionOutcome(name, OK))

    def run(
        self,
        output_dir: Optional[Union[str, Path]] = None
    ) -> Dict[str, Dict[str, pd.DataFrame]]:
        self.results, self.sections = {}, []
        progress_bar = get_progress_bar(transient=True) if self.show_progress else None
        with progress_bar or nullcontext():
            self._progress = progress_bar
            task = None
            if progress_bar is not None:
                task = progress_bar.add_task(_format_task_desc("Report sections"), total=len(SECTIONS))
            for name in SECTIONS:
                self._run_section(name, getattr(self, f"_{name}"))
                if progress_bar is not None:
                    progress_bar.update(task, advance=1)
            self._progress = None

        failed = [o.name for o in self.sections if o.status == FAILED]
        if failed:
            logger.warning(f"{len(failed)} section(s) failed: {', '.join(failed)}")
        if output_dir is not None:
            write_tables(self.results, self.sections, output_dir)
        return self.results
