"""
Per-gene-set likelihood ratio test.

One task analyzes one gene set:

    1. Intersect the gene set with the genes of the expression matrix and
       skip it if the retained size is 0 or outside [min_gs_size, max_gs_size]
    2. Reshape the retained expression into long format
    3. Pick the single-probe model variant when one gene remains
    4. Fit H0 and H1 by maximum likelihood (not REML: deviances of models
       with different fixed effects are only comparable under ML)
    5. LR = deviance(H0) - deviance(H1), AIC/BIC and convergence codes of
       both models, and the H1 fitted values arranged as a
       [gene, subject, time] array

A failure in either fit only turns this gene set's row into NaN; it never
propagates to the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from tcgsa.config import TcGSAConfig
from tcgsa.core.expression import TimeCourseMatrix
from tcgsa.core.gene_sets import GeneSet
from tcgsa.stats.formula import PROBE, ModelSpec, ModelSpecPair
from tcgsa.stats.mixed_model import FittedModel, MixedModelBackend, ModelFitError
from tcgsa.stats.reshape import reshape_long

logger = logging.getLogger(__name__)

__all__ = [
    'FitStatus',
    'Estimation',
    'GeneSetTask',
    'FitContext',
    'GeneSetResult',
    'build_tasks',
    'fit_gene_set',
    'estimation_array',
]


class FitStatus(Enum):
    FITTED = "fitted"
    SIZE_EXCLUDED = "size_excluded"
    FIT_FAILED = "fit_failed"
    TASK_ERROR = "task_error"


@dataclass(frozen=True)
class Estimation:
    """Estimated expression dynamics of one gene set under H1.

    Attributes:
        values: Array (n_genes, n_subjects, n_times); NaN where a
            (gene, subject, time) combination was not observed or the
            models could not be fitted.
        genes: Labels of the first axis.
        subjects: Labels of the second axis.
        times: Labels of the third axis.
    """

    values: NDArray[np.float64] = field(repr=False)
    genes: Tuple[str, ...]
    subjects: Tuple
    times: Tuple

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.values.shape

    def gene(self, gene: str) -> pd.DataFrame:
        """Subjects × times table of one gene."""
        i = self.genes.index(gene)
        return pd.DataFrame(self.values[i], index=list(self.subjects), columns=list(self.times))


@dataclass(frozen=True)
class GeneSetTask:
    """Input of one gene set analysis.

    ``expression`` holds only the matrix rows of genes belonging to the set,
    so a task can be shipped to a worker process without the full matrix.
    """

    index: int
    gene_set: GeneSet
    expression: pd.DataFrame = field(repr=False)

    @property
    def name(self) -> str:
        return self.gene_set.name


@dataclass(frozen=True)
class FitContext:
    """Read-only inputs shared by every task of a batch."""

    design: pd.DataFrame = field(repr=False)
    config: TcGSAConfig
    specs: ModelSpecPair
    backend: MixedModelBackend
    subjects: Tuple
    times: Tuple

    @classmethod
    def create(
        cls,
        design: pd.DataFrame,
        config: TcGSAConfig,
        specs: ModelSpecPair,
        backend: MixedModelBackend,
    ) -> "FitContext":
        """Context with the estimation axes taken from the full design table."""
        return cls(
            design=design,
            # the progress sink stays with the scheduler
            config=replace(config, monitor_file=None),
            specs=specs,
            backend=backend,
            subjects=tuple(sorted(pd.unique(design[config.subject_name].dropna()))),
            times=tuple(sorted(pd.unique(design[config.time_name].dropna()))),
        )


@dataclass(frozen=True)
class GeneSetResult:
    """Outcome of one gene set analysis; NaN fields when not fitted."""

    index: int
    name: str
    status: FitStatus
    n_genes: int
    lr: float = np.nan
    aic_h0: float = np.nan
    aic_h1: float = np.nan
    bic_h0: float = np.nan
    bic_h1: float = np.nan
    cvg_h0: float = np.nan
    cvg_h1: float = np.nan
    estimation: Optional[Estimation] = None
    formulas: Optional[Tuple[str, str]] = None

    @property
    def fitted(self) -> bool:
        return self.status is FitStatus.FITTED

    @classmethod
    def missing(
        cls,
        index: int,
        name: str,
        status: FitStatus,
        n_genes: int = 0,
        estimation: Optional[Estimation] = None,
        formulas: Optional[Tuple[str, str]] = None,
    ) -> "GeneSetResult":
        return cls(index=index, name=name, status=status, n_genes=n_genes,
                   estimation=estimation, formulas=formulas)


def build_tasks(matrix: TimeCourseMatrix, gene_sets: Sequence[GeneSet]) -> list[GeneSetTask]:
    """One task per gene set, in gene set order."""
    return [
        GeneSetTask(index=i, gene_set=gs, expression=matrix.subset_genes(gs.genes))
        for i, gs in enumerate(gene_sets)
    ]


def estimation_array(
    data: pd.DataFrame,
    fitted: NDArray[np.float64],
    genes: Sequence[str],
    subjects: Sequence,
    times: Sequence,
    subject_name: str,
    time_name: str,
) -> Estimation:
    """
    Arrange per-observation fitted values as a [gene, subject, time] array.

    Combinations absent from ``data`` are NaN; replicated combinations are
    averaged.
    """
    frame = pd.DataFrame({
        "gene": data[PROBE].astype(str).to_numpy(),
        "subject": data[subject_name].to_numpy(),
        "time": data[time_name].to_numpy(),
        "fitted": np.asarray(fitted, dtype=np.float64),
    })
    table = frame.groupby(["gene", "subject", "time"], sort=False)["fitted"].mean()
    full_index = pd.MultiIndex.from_product(
        [list(genes), list(subjects), list(times)], names=["gene", "subject", "time"]
    )
    values = table.reindex(full_index).to_numpy(dtype=np.float64)
    return Estimation(
        values=values.reshape(len(genes), len(subjects), len(times)),
        genes=tuple(genes),
        subjects=tuple(subjects),
        times=tuple(times),
    )


def _try_fit(
    backend: MixedModelBackend,
    spec: ModelSpec,
    data: pd.DataFrame,
    gene_set: str,
    hypothesis: str,
) -> Optional[FittedModel]:
    try:
        return backend.fit(spec, data, reml=False)
    except ModelFitError as e:
        logger.debug(f"Gene set {gene_set}: {hypothesis} fit failed ({e})")
        return None


def fit_gene_set(task: GeneSetTask, context: FitContext) -> GeneSetResult:
    """
    Fit the H0/H1 mixed models of one gene set.

    Args:
        task: Gene set and its expression rows.
        context: Design, configuration, model specs and backend of the batch.

    Returns:
        GeneSetResult; all statistics NaN if the gene set size is out of
        bounds or either model failed.
    """
    config = context.config
    available = set(task.expression.index)
    probes = [g for g in dict.fromkeys(task.gene_set.genes) if g in available]
    n_genes = len(probes)

    if n_genes == 0 or n_genes < config.min_gs_size or n_genes > config.max_gs_size:
        logger.info(
            f"The size of the gene set {task.name} is problematic "
            f"(too many or too few genes): {n_genes} retained"
        )
        return GeneSetResult.missing(task.index, task.name, FitStatus.SIZE_EXCLUDED, n_genes)

    data = reshape_long(
        task.expression.loc[probes], context.design, config, context.specs.time_form
    )
    spec_h0, spec_h1 = context.specs.select(n_genes)
    formulas = (spec_h0.formula, spec_h1.formula)

    model_h0 = _try_fit(context.backend, spec_h0, data, task.name, "H0")
    model_h1 = _try_fit(context.backend, spec_h1, data, task.name, "H1")

    def _estimation(fitted: NDArray[np.float64]) -> Estimation:
        return estimation_array(
            data, fitted, probes, context.subjects, context.times,
            config.subject_name, config.time_name,
        )

    if model_h0 is None or model_h1 is None:
        logger.info(f"Unable to fit the mixed models for gene set {task.name}")
        return GeneSetResult.missing(
            task.index, task.name, FitStatus.FIT_FAILED, n_genes,
            estimation=_estimation(np.full(len(data), np.nan)),
            formulas=formulas,
        )

    return GeneSetResult(
        index=task.index,
        name=task.name,
        status=FitStatus.FITTED,
        n_genes=n_genes,
        lr=model_h0.deviance - model_h1.deviance,
        aic_h0=model_h0.aic,
        aic_h1=model_h1.aic,
        bic_h0=model_h0.bic,
        bic_h1=model_h1.bic,
        cvg_h0=float(model_h0.convergence_code),
        cvg_h1=float(model_h1.convergence_code),
        estimation=_estimation(model_h1.fitted_values),
        formulas=formulas,
    )
