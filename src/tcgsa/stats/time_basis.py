"""
Time-basis features for longitudinal expression models.

The time trend of a gene set is modelled through derived columns of the
time variable:

    t1, t2, t3           standardized time and its square / cube
    spline_t1..spline_tK natural cubic spline basis (K = n_knots + 1)

Spline knots follow a fixed policy so that every gene set of a study shares
the same basis: ``ceil(n_distinct_times / 4)`` interior knots at evenly
spaced quantiles of the time variable, boundary knots at its range. The
basis columns are scaled by 10 so that the spline coefficients stay on a
scale the mixed model optimizer estimates reliably next to the variance
components.

The natural spline basis matches R's ``splines::ns(x, knots, Boundary.knots,
intercept = FALSE)`` up to the sign of each column: B-spline basis with the
intercept column removed, projected onto the null space of the second
derivative at both boundaries.
"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.interpolate import BSpline

__all__ = [
    'SPLINE_SCALE',
    'LINEAR_COLUMNS',
    'spline_knots',
    'spline_columns',
    'natural_spline_basis',
    'time_basis',
]

SPLINE_SCALE = 10.0
LINEAR_COLUMNS = ("t1", "t2", "t3")
SPLINE_PREFIX = "spline_t"


def spline_knots(time: NDArray | pd.Series) -> tuple[NDArray[np.float64], tuple[float, float]]:
    """
    Interior and boundary knots for the natural spline time basis.

    Args:
        time: Time value of every sample.

    Returns:
        (interior_knots, (lower_boundary, upper_boundary))
    """
    values = np.asarray(time, dtype=np.float64)
    n_knots = math.ceil(len(np.unique(values)) / 4)
    probs = np.arange(1, n_knots + 1) / (n_knots + 1)
    # numpy's default linear interpolation is R's quantile type 7
    interior = np.quantile(values, probs)
    return interior, (float(values.min()), float(values.max()))


def spline_columns(time: NDArray | pd.Series) -> list[str]:
    """Names of the spline basis columns for this time variable."""
    interior, _ = spline_knots(time)
    return [f"{SPLINE_PREFIX}{i}" for i in range(1, len(interior) + 2)]


def natural_spline_basis(
    x: NDArray | pd.Series,
    knots: NDArray,
    boundary_knots: tuple[float, float],
) -> NDArray[np.float64]:
    """
    Natural cubic spline basis without intercept.

    Args:
        x: Points at which to evaluate the basis.
        knots: Interior knots.
        boundary_knots: (lower, upper) boundary knots.

    Returns:
        Array (len(x), len(knots) + 1).
    """
    x = np.asarray(x, dtype=np.float64)
    lower, upper = boundary_knots
    augmented = np.concatenate([
        np.repeat(lower, 4),
        np.sort(np.asarray(knots, dtype=np.float64)),
        np.repeat(upper, 4),
    ])
    n_basis = len(augmented) - 4

    # Vector-valued coefficients: column j of the output is B-spline j
    bspline = BSpline(augmented, np.eye(n_basis), 3, extrapolate=True)
    basis = bspline(x)[:, 1:]
    constraint = bspline.derivative(2)(np.array([lower, upper]))[:, 1:]

    # Basis of the space orthogonal to the boundary second derivatives
    q, _ = np.linalg.qr(constraint.T, mode="complete")
    return (basis @ q)[:, 2:]


def time_basis(time: pd.Series) -> pd.DataFrame:
    """
    Derived time columns for one value per sample.

    Polynomial columns are computed from the standardized time (mean 0,
    sample standard deviation 1). Non-numeric time variables (discrete time
    points) get no derived columns.

    Args:
        time: Time variable of the design table.

    Returns:
        DataFrame aligned with ``time`` holding t1, t2, t3 and the spline
        basis columns.
    """
    if not pd.api.types.is_numeric_dtype(time):
        return pd.DataFrame(index=time.index)

    values = time.to_numpy(dtype=np.float64)
    sd = values.std(ddof=1) if len(values) > 1 else 0.0
    t1 = (values - values.mean()) / sd if sd > 0 else values - values.mean()

    columns = {"t1": t1, "t2": t1 ** 2, "t3": t1 ** 3}

    interior, boundary = spline_knots(values)
    if boundary[1] > boundary[0]:
        splines = natural_spline_basis(values, interior, boundary) * SPLINE_SCALE
        for i, name in enumerate(spline_columns(values)):
            columns[name] = splines[:, i]

    return pd.DataFrame(columns, index=time.index)
