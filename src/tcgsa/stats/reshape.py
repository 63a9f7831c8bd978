"""
Long-format observation tables for gene set mixed models.

A gene set's expression submatrix (genes × samples) is melted into one row
per (gene, sample) carrying the gene as a categorical ``probe`` column, the
``expression`` value, the identifying design variables and the derived
time-basis columns.

The result depends only on the gene list, the design table and the
configuration, so two tasks given the same gene set build identical tables
whatever order they run in.
"""

from __future__ import annotations

from typing import List

import numpy as np
import pandas as pd

from tcgsa.config import TcGSAConfig
from tcgsa.stats.formula import PROBE, RESPONSE, TimeForm
from tcgsa.stats.time_basis import time_basis

__all__ = ['identifier_columns', 'reshape_long']


def identifier_columns(config: TcGSAConfig, time_form: TimeForm) -> List[str]:
    """
    Design columns kept as identifiers in the long table.

    Subject, time, fixed covariates, time covariates, group and any design
    column read by the time form, without repeats or empty placeholders.
    """
    names = list(config.design_columns) + list(time_form.design_variables)
    return [n for n in dict.fromkeys(names) if n]


def reshape_long(
    expr: pd.DataFrame,
    design: pd.DataFrame,
    config: TcGSAConfig,
    time_form: TimeForm,
) -> pd.DataFrame:
    """
    Melt a gene set's expression into per-observation records.

    Args:
        expr: Expression of the retained genes (genes × samples), columns in
            the same order as the design rows.
        design: Design table, one row per sample.
        config: Analysis configuration.
        time_form: Resolved time form.

    Returns:
        DataFrame with n_genes * n_samples rows, gene-major: all samples of
        the first gene, then all samples of the second, and so on.

    Raises:
        ValueError: If expr and design disagree on the number of samples.
    """
    if expr.shape[1] != len(design):
        raise ValueError(
            f"expr has {expr.shape[1]} samples but design has {len(design)} rows"
        )

    genes = [str(g) for g in expr.index]
    id_cols = identifier_columns(config, time_form)

    wide = design.loc[:, id_cols].reset_index(drop=True)
    values = pd.DataFrame(expr.to_numpy(dtype=np.float64).T, columns=genes)
    wide = pd.concat([wide, values], axis=1)

    long = wide.melt(
        id_vars=id_cols,
        value_vars=genes,
        var_name=PROBE,
        value_name=RESPONSE,
    )
    long[PROBE] = pd.Categorical(long[PROBE], categories=genes)

    basis = time_basis(design[config.time_name].reset_index(drop=True))
    if len(basis.columns) > 0:
        tiled = pd.concat([basis] * len(genes), ignore_index=True)
        long = pd.concat([long, tiled], axis=1)

    return long
