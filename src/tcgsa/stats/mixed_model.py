"""
Mixed-model fitting backends.

The gene set fitter only needs a narrow capability from a mixed model
library:

    backend.fit(spec, data, reml=False) -> FittedModel   (or ModelFitError)

exposing the deviance, AIC, BIC, a convergence code and the fitted values
(fixed effects plus predicted random effects) of every observation.

StatsmodelsMixedLM implements it with ``statsmodels`` MixedLM. Every random
effect of a ModelSpec becomes an independent variance component inside a
single group spanning all observations, the statsmodels idiom for crossed
random effects. Random slopes are therefore uncorrelated with the random
intercepts.

Convergence codes
-----------------
0 is the "converged" sentinel, as in lme4's ``optinfo$conv``:

    0  CONVERGED        optimizer converged, interior estimate, positive
                        definite parameter covariance
    1  BOUNDARY         converged, MLE on the boundary of the parameter
                        space (a variance component estimated at zero)
    2  HESSIAN_NOT_PD   converged, parameter covariance (inverse Hessian)
                        not finite or not positive definite
    3  NOT_CONVERGED    optimizer stopped without converging

For reference, the PORT optimizer codes reported by older lme4 versions:
3 X-convergence, 4 relative convergence, 5 both X- and relative convergence,
6 absolute function convergence, 7 singular convergence, 8 false
convergence, 9 function evaluation limit reached, 10 iteration limit
reached, 14 storage has been allocated, 15 LIV too small, 16 LV too small,
63 fn cannot be computed at initial par, 65 gr cannot be computed at
initial par. Code 7 maps to HESSIAN_NOT_PD and 8-10 to NOT_CONVERGED.

Codes are read from the fitted result, never from captured warnings, and
the backend leaves the process warning filters alone. Optimizer warnings
follow the caller's filters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Optional, Protocol, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from tcgsa.stats.formula import ModelSpec, RandomEffect

logger = logging.getLogger(__name__)

__all__ = [
    'ConvergenceCode',
    'FittedModel',
    'ModelFitError',
    'MixedModelBackend',
    'StatsmodelsMixedLM',
    'variance_components',
]


class ConvergenceCode(IntEnum):
    """Outcome of a mixed model optimization (0 means converged)."""

    CONVERGED = 0
    BOUNDARY = 1
    HESSIAN_NOT_PD = 2
    NOT_CONVERGED = 3


class ModelFitError(RuntimeError):
    """A mixed model could not be fitted."""


@dataclass(frozen=True)
class FittedModel:
    """Summary of a fitted mixed model.

    Attributes:
        formula: Display formula of the fitted specification.
        deviance: -2 * log-likelihood.
        aic: Akaike information criterion.
        bic: Bayesian information criterion.
        convergence_code: Optimizer diagnostic (see ConvergenceCode).
        fitted_values: Fitted value of every observation, in data row order.
    """

    formula: str
    deviance: float
    aic: float
    bic: float
    convergence_code: int
    fitted_values: NDArray[np.float64] = field(repr=False)

    @property
    def converged(self) -> bool:
        return self.convergence_code == ConvergenceCode.CONVERGED


class MixedModelBackend(Protocol):
    """Capability that fits a ModelSpec to a long-format table."""

    def fit(self, spec: ModelSpec, data: pd.DataFrame, reml: bool = False) -> FittedModel:
        ...


def _factor(grouping: Sequence[str]) -> str:
    return ":".join(f"C({g})" for g in grouping)


def _slope(term: str) -> str:
    return f"({term})" if any(op in term for op in "+*/") else term


def variance_components(random: Sequence[RandomEffect]) -> Dict[str, str]:
    """
    Variance-component formulas (statsmodels ``vc_formula``) for random effects.

    Each random intercept and each random slope term becomes its own
    component, e.g. ``(0 + t1 + t2 | probe)`` gives ``C(probe):t1`` and
    ``C(probe):t2``.
    """
    components: Dict[str, str] = {}
    for effect in random:
        factor = _factor(effect.grouping)
        group_label = ":".join(effect.grouping)
        for term in effect.terms:
            if term == "1":
                components[f"{group_label}"] = f"0 + {factor}"
            else:
                components[f"{term}|{group_label}"] = f"0 + {factor}:{_slope(term)}"
    return components


# Variance components at most this fraction of the residual variance are
# reported as boundary estimates
BOUNDARY_TOL = 1e-6

DEFAULT_METHODS = ("powell", "lbfgs")


def _covariance_is_pd(cov: NDArray[np.float64]) -> bool:
    if cov.size == 0:
        return True
    if not np.isfinite(cov).all():
        return False
    try:
        return bool(np.linalg.eigvalsh((cov + cov.T) / 2).min() > 0)
    except np.linalg.LinAlgError:
        return False


def _convergence_code(result) -> ConvergenceCode:
    """
    Convergence code of a fitted statsmodels MixedLM result.

    Checked in order: convergence flag, variance components at zero,
    then positive definiteness of the parameter covariance.
    """
    if not bool(result.converged):
        return ConvergenceCode.NOT_CONVERGED
    vcomp = np.asarray(result.vcomp, dtype=np.float64)
    if vcomp.size and (vcomp <= BOUNDARY_TOL * float(result.scale)).any():
        return ConvergenceCode.BOUNDARY
    if not _covariance_is_pd(np.asarray(result.cov_params(), dtype=np.float64)):
        return ConvergenceCode.HESSIAN_NOT_PD
    return ConvergenceCode.CONVERGED


class StatsmodelsMixedLM:
    """
    Mixed-model backend built on ``statsmodels.formula.api.mixedlm``.

    Args:
        method: Optimizer or sequence of optimizers passed to
            ``MixedLM.fit``, tried in order until one converges. Defaults to
            Powell, then L-BFGS.
        maxiter: Maximum number of optimizer iterations.
    """

    def __init__(
        self,
        method: str | Sequence[str] = DEFAULT_METHODS,
        maxiter: Optional[int] = None,
    ):
        self.method = [method] if isinstance(method, str) else list(method)
        self.maxiter = maxiter

    def fit(self, spec: ModelSpec, data: pd.DataFrame, reml: bool = False) -> FittedModel:
        """
        Fit ``spec`` to ``data``.

        Raises:
            ModelFitError: If the model cannot be built or optimized, or
                produces a non-finite log-likelihood.
        """
        import statsmodels.formula.api as smf

        vc = variance_components(spec.random)
        if not vc:
            raise ModelFitError(f"No random effects in {spec.formula}")

        fit_kwargs = {"reml": reml, "method": self.method}
        if self.maxiter is not None:
            fit_kwargs["maxiter"] = self.maxiter

        # Missing responses are left out of the fit and get NaN fitted values
        observed = data[spec.response].notna().to_numpy()
        used = data.loc[observed].reset_index(drop=True)
        if len(used) == 0:
            raise ModelFitError("No observed responses")

        # One group holding every observation; random effects live in vc
        groups = np.zeros(len(used), dtype=np.int64)

        try:
            model = smf.mixedlm(spec.fixed_formula, used, groups=groups, vc_formula=vc)
            result = model.fit(**fit_kwargs)
        except Exception as e:
            raise ModelFitError(f"{type(e).__name__}: {e}") from e

        llf = float(result.llf)
        if not np.isfinite(llf):
            raise ModelFitError(f"Non-finite log-likelihood for {spec.formula}")

        fitted_used = np.asarray(result.fittedvalues, dtype=np.float64)
        if fitted_used.shape != (len(used),):
            raise ModelFitError(
                f"Expected {len(used)} fitted values, got shape {fitted_used.shape}"
            )
        fitted = np.full(len(data), np.nan)
        fitted[observed] = fitted_used

        code = _convergence_code(result)
        if code != ConvergenceCode.CONVERGED:
            logger.debug(f"{spec.formula}: convergence code {code.name}")

        return FittedModel(
            formula=spec.formula,
            deviance=-2.0 * llf,
            aic=float(result.aic),
            bic=float(result.bic),
            convergence_code=int(code),
            fitted_values=fitted,
        )
