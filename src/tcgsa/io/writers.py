"""
Writers for TcGSA results.

Output Files:
    1. {path}.fit.csv - fit table, one row per gene set (LR, AIC, BIC and
       convergence codes under H0 and H1); NaN rows for gene sets that
       were not analyzed
    2. {path}.estimations.npz - estimated expression arrays. For gene set
       i: ``gs{i}_values`` (genes × subjects × times) and the axis labels
       ``gs{i}_genes``, ``gs{i}_subjects``, ``gs{i}_times``. Gene sets
       without estimation have no entry
    3. {path}.summary.json - time form, spline df, convergence counts

Examples:
    >>> from pathlib import Path
    >>> from tcgsa.io.writers import write_results
    >>> paths = write_results(result, Path("output/tcgsa"))
    >>> paths["fit"]
    PosixPath('output/tcgsa.fit.csv')
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict

import numpy as np

from tcgsa.results import TcGSAResult
from tcgsa.utils.fileio import atomic_save_npz, atomic_write_csv, atomic_write_json

logger = logging.getLogger(__name__)

__all__ = ['write_results']


def _labels(values) -> np.ndarray:
    return np.asarray([str(v) for v in values])


def write_results(result: TcGSAResult, path: Path) -> Dict[str, Path]:
    """
    Write a TcGSAResult to disk.

    Args:
        result: Result of a TcGSA batch.
        path: Base path (without extension). Parent directories are created.

    Returns:
        Mapping of "fit", "estimations" and "summary" to the written files.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    paths = {
        "fit": path.with_name(path.name + ".fit.csv"),
        "estimations": path.with_name(path.name + ".estimations.npz"),
        "summary": path.with_name(path.name + ".summary.json"),
    }

    atomic_write_csv(paths["fit"], result.fit)
    logger.info(f"Wrote fit table to {paths['fit']}")

    arrays = {}
    for i, estimation in enumerate(result.estimations):
        if estimation is None:
            continue
        arrays[f"gs{i}_values"] = estimation.values
        arrays[f"gs{i}_genes"] = _labels(estimation.genes)
        arrays[f"gs{i}_subjects"] = _labels(estimation.subjects)
        arrays[f"gs{i}_times"] = _labels(estimation.times)
    atomic_save_npz(paths["estimations"], **arrays)
    logger.info(f"Wrote {len(arrays) // 4} estimation arrays to {paths['estimations']}")

    summary = {
        "time_func": result.time_func,
        "time_df": result.time_df,
        "separate_subjects": result.separate_subjects,
        "grouped": result.group_var is not None,
        "n_gene_sets": result.n_gene_sets,
        "n_analyzed": result.n_analyzed,
        "gene_sets": [gs.name for gs in result.gene_sets],
        "convergence": asdict(result.convergence),
    }
    atomic_write_json(paths["summary"], summary)
    logger.info(f"Wrote summary to {paths['summary']}")

    return paths
