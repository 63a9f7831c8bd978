"""
Core data structure for longitudinal expression data.

TimeCourseMatrix couples a gene expression matrix with the design table that
describes each sample (subject, time point, group, covariates).

Biological Context:
    Time-course transcriptomic studies measure the same subjects repeatedly:
    - Rows = genes (probes)
    - Columns = samples (one subject at one time point)
    - Design = one row per sample, in the same order as the columns

    Every gene set analysis slices this matrix by genes while keeping the
    full design, so the container offers cheap gene-wise subsetting.

Engineering Design:
    - Immutable: accessors never hand out a modifiable design
    - Validated: constructor checks shape and index consistency
    - Pandas-friendly: ``from_frames`` accepts a genes × samples DataFrame

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from tcgsa.core.expression import TimeCourseMatrix
    >>>
    >>> expr = pd.DataFrame(
    ...     np.random.rand(2, 4),
    ...     index=["GENE_A", "GENE_B"],
    ...     columns=["P1_T0", "P1_T1", "P2_T0", "P2_T1"],
    ... )
    >>> design = pd.DataFrame({
    ...     "Patient_ID": ["P1", "P1", "P2", "P2"],
    ...     "TimePoint": [0, 1, 0, 1],
    ... })
    >>> matrix = TimeCourseMatrix.from_frames(expr, design)
    >>> matrix.shape
    (2, 4)
"""

from __future__ import annotations

from typing import Iterable, List

import numpy as np
import pandas as pd

__all__ = ['TimeCourseMatrix']


class TimeCourseMatrix:
    """
    Immutable container for an expression matrix and its aligned design table.

    Attributes:
        data: Numerical expression matrix (genes × samples)
        gene_ids: Row identifiers (probe / gene ids)
        sample_ids: Column identifiers
        design: Per-sample experimental variables, indexed by sample_ids

    Shape Invariants:
        - data.shape[0] == len(gene_ids)
        - data.shape[1] == len(sample_ids)
        - design.index equals sample_ids
        - gene_ids are unique
    """

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index,
        sample_ids: pd.Index,
        design: pd.DataFrame,
    ):
        """
        Initialize TimeCourseMatrix with validation.

        Args:
            data: Expression matrix (genes × samples)
            gene_ids: Row identifiers
            sample_ids: Column identifiers
            design: DataFrame of experimental variables whose index matches
                sample_ids

        Raises:
            ValueError: If shapes are inconsistent, gene ids are duplicated
                or indices don't match
            TypeError: If data types are incorrect
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(gene_ids, pd.Index):
            raise TypeError(f"gene_ids must be pd.Index, got {type(gene_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")
        if not isinstance(design, pd.DataFrame):
            raise TypeError(f"design must be pd.DataFrame, got {type(design)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")

        n_genes, n_samples = data.shape

        if len(gene_ids) != n_genes:
            raise ValueError(
                f"gene_ids length ({len(gene_ids)}) must match data rows ({n_genes})"
            )
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )
        if gene_ids.has_duplicates:
            dupes = gene_ids[gene_ids.duplicated()].unique().tolist()[:5]
            raise ValueError(f"gene_ids must be unique, duplicated: {dupes}")

        if not design.index.equals(sample_ids):
            raise ValueError(
                "design.index must match sample_ids exactly. "
                f"Got {len(design.index)} design rows for {len(sample_ids)} samples."
            )

        self._data = np.asarray(data, dtype=np.float64)
        self._gene_ids = gene_ids
        self._sample_ids = sample_ids
        self._design = design

    @classmethod
    def from_frames(cls, expr: pd.DataFrame, design: pd.DataFrame) -> "TimeCourseMatrix":
        """
        Build from a genes × samples DataFrame and a design table.

        The design rows are matched to the expression columns by position
        (row i of the design describes column i of ``expr``), as the design
        table of a time-course study is usually stored without sample ids.

        Raises:
            ValueError: If the design does not have one row per sample.
        """
        if len(design) != expr.shape[1]:
            raise ValueError(
                f"design has {len(design)} rows but expr has {expr.shape[1]} sample columns"
            )
        sample_ids = pd.Index(expr.columns).astype(str)
        aligned = design.reset_index(drop=True)
        aligned.index = sample_ids
        return cls(
            data=expr.to_numpy(dtype=np.float64),
            gene_ids=pd.Index(expr.index).astype(str),
            sample_ids=sample_ids,
            design=aligned,
        )

    @property
    def data(self) -> np.ndarray:
        """Expression matrix (genes × samples)."""
        return self._data

    @property
    def gene_ids(self) -> pd.Index:
        """Row identifiers."""
        return self._gene_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._sample_ids

    @property
    def design(self) -> pd.DataFrame:
        """Design table (copy, so callers cannot mutate the container)."""
        return self._design.copy()

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_genes, n_samples)."""
        return self._data.shape

    @property
    def n_genes(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def intersect(self, genes: Iterable[str]) -> List[str]:
        """Genes present in the matrix, in the order given, without repeats."""
        available = set(self._gene_ids)
        return [g for g in dict.fromkeys(genes) if g in available]

    def subset_genes(self, genes: Iterable[str]) -> pd.DataFrame:
        """
        Expression rows for the given genes as a genes × samples DataFrame.

        Unknown genes are ignored; the result keeps the order of ``genes``.
        """
        kept = self.intersect(genes)
        positions = self._gene_ids.get_indexer(kept)
        return pd.DataFrame(
            self._data[positions, :],
            index=pd.Index(kept),
            columns=self._sample_ids,
        )

    def __repr__(self) -> str:
        return (
            f"TimeCourseMatrix(n_genes={self.n_genes}, n_samples={self.n_samples}, "
            f"design_columns={list(self._design.columns)})"
        )
