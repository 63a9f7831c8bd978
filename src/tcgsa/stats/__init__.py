"""
Statistical modelling for time-course gene set analysis.

Exports:
- Model specification selection (H0 / H1 mixed models)
- Time-basis features (polynomial and natural spline)
- Long-format reshaping of gene set expression
- Mixed model fitting backends and the per-gene-set test
"""

from .formula import (
    GroupingMode,
    ModelSpec,
    ModelSpecPair,
    RandomEffect,
    RandomStructure,
    TimeForm,
    build_model_specs,
    build_time_form,
)
from .gene_set_fit import Estimation, FitStatus, GeneSetResult, fit_gene_set
from .mixed_model import (
    ConvergenceCode,
    FittedModel,
    MixedModelBackend,
    ModelFitError,
    StatsmodelsMixedLM,
)
from .reshape import reshape_long
from .time_basis import natural_spline_basis, spline_knots, time_basis

__all__ = [
    "GroupingMode",
    "ModelSpec",
    "ModelSpecPair",
    "RandomEffect",
    "RandomStructure",
    "TimeForm",
    "build_model_specs",
    "build_time_form",
    "Estimation",
    "FitStatus",
    "GeneSetResult",
    "fit_gene_set",
    "ConvergenceCode",
    "FittedModel",
    "MixedModelBackend",
    "ModelFitError",
    "StatsmodelsMixedLM",
    "reshape_long",
    "natural_spline_basis",
    "spline_knots",
    "time_basis",
]
