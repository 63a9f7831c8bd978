"""
Pytest configuration and shared fixtures.

Provides a synthetic longitudinal expression study (subjects measured at
several time points, genes with and without a time trend) and a
deterministic stand-in for the mixed model library.
"""

import threading
import time

import numpy as np
import pandas as pd
import pytest

from tcgsa.core.expression import TimeCourseMatrix
from tcgsa.stats.mixed_model import FittedModel, ModelFitError


def generate_time_course_study(
    n_trend_genes: int = 15,
    n_flat_genes: int = 15,
    n_subjects: int = 6,
    time_points=(0, 1, 2, 3),
    noise: float = 0.3,
    seed: int = 42,
):
    """
    Generate a synthetic longitudinal expression study.

    Args:
        n_trend_genes: Genes whose expression increases linearly with time
        n_flat_genes: Genes without time trend
        n_subjects: Number of subjects, each sampled at every time point
        time_points: Sampling times
        noise: Residual standard deviation
        seed: Random seed for reproducibility

    Returns:
        (expr, design): expr is genes × samples, design has one row per
        sample with Patient_ID, TimePoint, Group (alternating by subject),
        Age and TP (time point label).

    Design:
        - Gene baselines ~ N(8, 1), subject offsets ~ N(0, 0.5)
        - Trend genes: slope ~ U(0.5, 1.5) per time unit
        - Samples ordered subject-major (P01_T0, P01_T1, ...)
    """
    rng = np.random.RandomState(seed)
    subjects = [f"P{i + 1:02d}" for i in range(n_subjects)]
    rows = [(s, t) for s in subjects for t in time_points]

    design = pd.DataFrame({
        "Patient_ID": [s for s, _ in rows],
        "TimePoint": [float(t) for _, t in rows],
        "Group": ["A" if subjects.index(s) % 2 == 0 else "B" for s, _ in rows],
        "Age": [30.0 + 5 * subjects.index(s) for s, _ in rows],
        "TP": [f"D{t}" for _, t in rows],
    })

    n_genes = n_trend_genes + n_flat_genes
    baseline = rng.normal(8, 1, size=n_genes)
    slopes = np.concatenate([rng.uniform(0.5, 1.5, n_trend_genes), np.zeros(n_flat_genes)])
    subject_offset = dict(zip(subjects, rng.normal(0, 0.5, n_subjects)))

    times = design["TimePoint"].to_numpy()
    offsets = design["Patient_ID"].map(subject_offset).to_numpy()
    data = (
        baseline[:, None]
        + offsets[None, :]
        + slopes[:, None] * times[None, :]
        + rng.normal(0, noise, size=(n_genes, len(design)))
    )

    gene_ids = [f"TREND_{i:02d}" for i in range(n_trend_genes)] + \
               [f"FLAT_{i:02d}" for i in range(n_flat_genes)]
    sample_ids = [f"{s}_T{int(t)}" for s, t in rows]
    expr = pd.DataFrame(data, index=gene_ids, columns=sample_ids)
    return expr, design


class FakeMixedModel:
    """
    Deterministic stand-in for a mixed model backend.

    Deviance is the residual sum of squares around the response mean minus
    the number of fixed terms, so H1 (more fixed terms) always has the lower
    deviance. Records every call.

    Args:
        fail_genes: Fits of data containing any of these genes raise
            ModelFitError when the model has a fixed "t1" term.
        delays: Seconds to sleep, keyed by number of genes in the data.
    """

    def __init__(self, fail_genes=(), delays=None):
        self.fail_genes = set(fail_genes)
        self.delays = delays or {}
        self.calls = []
        self._lock = threading.Lock()

    def fit(self, spec, data, reml=False):
        genes = list(data["probe"].cat.categories)
        with self._lock:
            self.calls.append((spec, tuple(genes), reml))

        delay = self.delays.get(len(genes), 0.0)
        if delay:
            time.sleep(delay)

        if self.fail_genes.intersection(genes) and "t1" in spec.fixed:
            raise ModelFitError("singular design")

        y = data["expression"].to_numpy()
        rss = float(((y - y.mean()) ** 2).sum())
        deviance = rss - len(spec.fixed)
        return FittedModel(
            formula=spec.formula,
            deviance=deviance,
            aic=deviance + 2 * (len(spec.fixed) + 1),
            bic=deviance + np.log(len(y)) * (len(spec.fixed) + 1),
            convergence_code=0,
            fitted_values=np.full(len(y), y.mean()),
        )


@pytest.fixture
def study():
    """(expr, design) with 15 trend genes, 15 flat genes, 6 subjects × 4 times."""
    return generate_time_course_study()


@pytest.fixture
def matrix(study):
    expr, design = study
    return TimeCourseMatrix.from_frames(expr, design)


@pytest.fixture
def gene_sets(study):
    """Gene sets of various sizes, including out-of-bounds ones."""
    expr, _ = study
    trend = [g for g in expr.index if g.startswith("TREND")]
    flat = [g for g in expr.index if g.startswith("FLAT")]
    return {
        "TREND_12": trend[:12],
        "FLAT_12": flat[:12],
        "TINY_3": trend[:3],
        "UNKNOWN": ["NOT_A_GENE_1", "NOT_A_GENE_2"],
        "MIXED_10_PLUS_MISSING": trend[:5] + flat[:5] + ["NOT_A_GENE_3"],
    }


@pytest.fixture
def fake_backend():
    return FakeMixedModel()
