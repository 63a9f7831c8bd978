"""
Core data structures for time-course gene set analysis.

1. TimeCourseMatrix: expression matrix with its aligned design table
2. GeneSet: named gene identifier collection

Examples:
    >>> from tcgsa.core import TimeCourseMatrix, as_gene_sets
    >>> matrix = TimeCourseMatrix.from_frames(expr, design)
    >>> gene_sets = as_gene_sets({"M1.1": ["GENE_A", "GENE_B"]})
"""

from tcgsa.core.expression import TimeCourseMatrix
from tcgsa.core.gene_sets import GeneSet, as_gene_sets

__all__ = [
    'TimeCourseMatrix',
    'GeneSet',
    'as_gene_sets',
]
