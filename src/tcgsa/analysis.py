"""
Time-course gene set analysis (TcGSA) batch entry point.

For every gene set, two nested linear mixed models are fitted to the
expression of its genes over time, and their likelihood ratio measures how
much a time trend (heterogeneous across genes, subjects or groups) improves
the fit. Gene sets are independent, so they are dispatched across a worker
pool; the result keeps the input gene set order.

Example:
    >>> from tcgsa import tcgsa_lr
    >>> result = tcgsa_lr(
    ...     expr=expr, gene_sets=gmt, design=design,
    ...     subject_name="Patient_ID", time_name="TimePoint",
    ...     time_func="linear", n_workers=4,
    ... )
    >>> result.fit.sort_values("LR", ascending=False).head()

References:
    Hejblum, B.P., Skinner, J., Thiebaut, R. (2015) Time-Course Gene Set
    Analysis for Longitudinal Gene Expression Data. PLoS Comput Biol 11(6).
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Optional, Sequence, Union

import pandas as pd

from tcgsa.config import ParallelBackend, TcGSAConfig
from tcgsa.core.expression import TimeCourseMatrix
from tcgsa.core.gene_sets import GeneSetsLike, as_gene_sets
from tcgsa.parallel.progress import ProgressMonitor
from tcgsa.parallel.scheduler import run_tasks
from tcgsa.results import TcGSAResult, aggregate_results
from tcgsa.stats.formula import build_model_specs
from tcgsa.stats.gene_set_fit import (
    FitContext,
    FitStatus,
    GeneSetResult,
    GeneSetTask,
    build_tasks,
    fit_gene_set,
)
from tcgsa.stats.mixed_model import MixedModelBackend, StatsmodelsMixedLM

logger = logging.getLogger(__name__)

__all__ = ['run_tcgsa', 'tcgsa_lr']


def _task_error(task: GeneSetTask, error: BaseException) -> GeneSetResult:
    return GeneSetResult.missing(task.index, task.name, FitStatus.TASK_ERROR)


def run_tcgsa(
    matrix: TimeCourseMatrix,
    gene_sets: GeneSetsLike,
    config: Optional[TcGSAConfig] = None,
    model_backend: Optional[MixedModelBackend] = None,
) -> TcGSAResult:
    """
    Run the TcGSA likelihood ratio test on every gene set.

    Args:
        matrix: Expression matrix with its aligned design table.
        gene_sets: Mapping name -> gene ids, or GeneSet objects.
        config: Analysis configuration (defaults to TcGSAConfig()).
        model_backend: Mixed model fitting backend (defaults to
            StatsmodelsMixedLM()).

    Returns:
        TcGSAResult with one fit row and one estimation per gene set.

    Raises:
        ConfigurationError: If the configuration does not match the design.
    """
    config = config or TcGSAConfig()
    model_backend = model_backend or StatsmodelsMixedLM()
    gene_sets = as_gene_sets(gene_sets)
    design = matrix.design

    config.validate_design(design)
    specs = build_model_specs(config, design)

    logger.info(
        f"TcGSA: {len(gene_sets)} gene sets, {matrix.n_genes} genes, "
        f"{matrix.n_samples} samples, time_func={config.time_func!r}, "
        f"{config.n_workers} worker(s) ({config.backend.value})"
    )
    logger.debug(f"H0: {specs.h0.multi.formula}")
    logger.debug(f"H1: {specs.h1.multi.formula}")

    context = FitContext.create(design, config, specs, model_backend)
    tasks = build_tasks(matrix, gene_sets)
    monitor = ProgressMonitor(config.monitor_file, total=len(tasks))

    records = run_tasks(
        partial(fit_gene_set, context=context),
        tasks,
        n_workers=config.n_workers,
        backend=config.backend,
        monitor=monitor,
        on_error=_task_error,
    )

    logger.info("Combining the results...")
    return aggregate_results(records, gene_sets, config, design, specs.time_df)


def tcgsa_lr(
    expr: pd.DataFrame,
    gene_sets: GeneSetsLike,
    design: pd.DataFrame,
    subject_name: str = "Patient_ID",
    time_name: str = "TimePoint",
    crossed_random: bool = False,
    covariates_fixed: Union[str, Sequence[str], None] = None,
    time_covariates: Union[str, Sequence[str], None] = None,
    time_func: str = "linear",
    group_name: Optional[str] = None,
    separate_subjects: bool = False,
    min_gs_size: int = 10,
    max_gs_size: int = 500,
    n_workers: int = 1,
    backend: Union[str, ParallelBackend] = ParallelBackend.THREADS,
    monitor_file=None,
    model_backend: Optional[MixedModelBackend] = None,
) -> TcGSAResult:
    """
    Likelihood ratios of the gene sets under scrutiny.

    Args:
        expr: Gene expression, genes in rows and samples in columns.
        gene_sets: Mapping gene set name -> gene ids, or GeneSet objects.
        design: One row per sample, in the column order of ``expr``.
        subject_name: Design column of the subject identifiers.
        time_name: Design column of the time points.
        crossed_random: Model subject and gene random effects as one crossed
            (subject:gene) effect instead of two separate ones.
        covariates_fixed: Design columns added as fixed effects.
        time_covariates: Design columns interacting with time.
        time_func: "linear", "cubic", "splines", a design column (discrete
            time) or an expression over design columns.
        group_name: Design column of the treatment group, if any.
        separate_subjects: Look for gene sets with subject-specific trends.
            Incompatible with ``group_name``.
        min_gs_size: Minimum gene set size, inclusive.
        max_gs_size: Maximum gene set size, inclusive.
        n_workers: Number of parallel workers.
        backend: "sequential", "threads", "processes" or "joblib".
        monitor_file: Path or text stream receiving progress lines.
        model_backend: Mixed model fitting backend.

    Returns:
        TcGSAResult.

    Raises:
        ConfigurationError: Raised before any fitting for contradictory
            settings (e.g. ``group_name`` with ``separate_subjects``).
    """
    config = TcGSAConfig(
        subject_name=subject_name,
        time_name=time_name,
        crossed_random=crossed_random,
        covariates_fixed=covariates_fixed,
        time_covariates=time_covariates,
        time_func=time_func,
        group_name=group_name,
        separate_subjects=separate_subjects,
        min_gs_size=min_gs_size,
        max_gs_size=max_gs_size,
        n_workers=n_workers,
        backend=backend,
        monitor_file=monitor_file,
    )
    matrix = TimeCourseMatrix.from_frames(expr, design)
    return run_tcgsa(matrix, gene_sets, config, model_backend=model_backend)
