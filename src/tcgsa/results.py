"""
Assembly of per-gene-set records into the final TcGSA result.

The fit table has one row per input gene set, in input order, with the
columns LR, AIC_H0, AIC_H1, BIC_H0, BIC_H1, CVG_H0, CVG_H1. Gene sets that
were skipped or could not be fitted keep their row, filled with NaN.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from tcgsa.config import TcGSAConfig
from tcgsa.core.gene_sets import GeneSet
from tcgsa.stats.gene_set_fit import Estimation, GeneSetResult
from tcgsa.stats.mixed_model import ConvergenceCode

logger = logging.getLogger(__name__)

__all__ = [
    'FIT_COLUMNS',
    'ConvergenceSummary',
    'TcGSAResult',
    'aggregate_results',
    'summarize_convergence',
]

FIT_COLUMNS = ("LR", "AIC_H0", "AIC_H1", "BIC_H0", "BIC_H1", "CVG_H0", "CVG_H1")


@dataclass(frozen=True)
class ConvergenceSummary:
    """How many fitted models reached full convergence, per hypothesis.

    Attributes:
        n_models_h0: Gene sets with a convergence code under H0.
        n_converged_h0: Of those, how many have the "converged" code.
        n_models_h1: Gene sets with a convergence code under H1.
        n_converged_h1: Of those, how many have the "converged" code.
    """

    n_models_h0: int
    n_converged_h0: int
    n_models_h1: int
    n_converged_h1: int

    def __str__(self) -> str:
        return (
            f"{self.n_converged_h0} models out of {self.n_models_h0} have converged under H0 "
            f"and {self.n_converged_h1} models out of {self.n_models_h1} have converged under H1"
        )


@dataclass
class TcGSAResult:
    """Result of a TcGSA likelihood ratio batch.

    Attributes:
        fit: Fit table indexed by gene set name (see FIT_COLUMNS).
        time_func: The time functional form used.
        gene_sets: Gene set definitions, passed through.
        group_var: Group of every sample, or None without grouping.
        separate_subjects: Whether subject-heterogeneous trends were tested.
        estimations: One Estimation per gene set, in gene set order; None
            for gene sets whose size was out of bounds.
        time_df: Degrees of freedom of the spline time basis, None unless
            time_func is "splines".
        convergence: Convergence summary of both hypotheses.
    """

    fit: pd.DataFrame
    time_func: str
    gene_sets: Tuple[GeneSet, ...]
    group_var: Optional[pd.Series]
    separate_subjects: bool
    estimations: List[Optional[Estimation]]
    time_df: Optional[int]
    convergence: ConvergenceSummary

    @property
    def n_gene_sets(self) -> int:
        return len(self.gene_sets)

    @property
    def n_analyzed(self) -> int:
        """Gene sets with a likelihood ratio."""
        return int(self.fit["LR"].notna().sum())

    def __repr__(self) -> str:
        return (
            f"TcGSAResult(n_gene_sets={self.n_gene_sets}, n_analyzed={self.n_analyzed}, "
            f"time_func={self.time_func!r}, separate_subjects={self.separate_subjects})"
        )


def summarize_convergence(fit: pd.DataFrame) -> ConvergenceSummary:
    """Count non-missing and converged codes in CVG_H0 / CVG_H1."""
    def _counts(codes: pd.Series) -> Tuple[int, int]:
        present = codes.dropna()
        return len(present), int((present == ConvergenceCode.CONVERGED).sum())

    n_h0, ok_h0 = _counts(fit["CVG_H0"])
    n_h1, ok_h1 = _counts(fit["CVG_H1"])
    return ConvergenceSummary(n_h0, ok_h0, n_h1, ok_h1)


def aggregate_results(
    records: Sequence[GeneSetResult],
    gene_sets: Sequence[GeneSet],
    config: TcGSAConfig,
    design: pd.DataFrame,
    time_df: Optional[int],
) -> TcGSAResult:
    """
    Merge ordered per-gene-set records into a TcGSAResult.

    Args:
        records: One record per gene set, ``records[i].index == i``.
        gene_sets: The analyzed gene sets, in order.
        config: Configuration of the batch.
        design: Design table of the study.
        time_df: Spline degrees of freedom from the model specifications.

    Raises:
        ValueError: If records are missing or out of order.
    """
    if len(records) != len(gene_sets):
        raise ValueError(f"Expected {len(gene_sets)} records, got {len(records)}")
    misplaced = [i for i, r in enumerate(records) if r.index != i]
    if misplaced:
        raise ValueError(f"Records out of order at positions {misplaced[:5]}")

    fit = pd.DataFrame(
        {
            "LR": [r.lr for r in records],
            "AIC_H0": [r.aic_h0 for r in records],
            "AIC_H1": [r.aic_h1 for r in records],
            "BIC_H0": [r.bic_h0 for r in records],
            "BIC_H1": [r.bic_h1 for r in records],
            "CVG_H0": [r.cvg_h0 for r in records],
            "CVG_H1": [r.cvg_h1 for r in records],
        },
        index=pd.Index([gs.name for gs in gene_sets], name="geneset"),
        dtype=np.float64,
    )

    group_var = None
    if config.group_name is not None:
        group_var = design[config.group_name].copy()

    convergence = summarize_convergence(fit)
    logger.info(str(convergence))

    return TcGSAResult(
        fit=fit,
        time_func=config.time_func,
        gene_sets=tuple(gene_sets),
        group_var=group_var,
        separate_subjects=config.separate_subjects,
        estimations=[r.estimation for r in records],
        time_df=time_df,
        convergence=convergence,
    )
