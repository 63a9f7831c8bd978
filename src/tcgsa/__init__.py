"""
TcGSA - Time-course Gene Set Analysis

Identifies gene sets whose expression changes over time in longitudinal
transcriptomic studies, homogeneously or heterogeneously across genes,
subjects or treatment groups, through likelihood ratio tests between
nested linear mixed models fitted gene set by gene set.
"""

__version__ = "0.1.0"

from tcgsa.analysis import run_tcgsa, tcgsa_lr
from tcgsa.config import ConfigurationError, ParallelBackend, TcGSAConfig, load_config
from tcgsa.core.expression import TimeCourseMatrix
from tcgsa.core.gene_sets import GeneSet
from tcgsa.results import TcGSAResult

__all__ = [
    "tcgsa_lr",
    "run_tcgsa",
    "TcGSAConfig",
    "ConfigurationError",
    "ParallelBackend",
    "load_config",
    "TimeCourseMatrix",
    "GeneSet",
    "TcGSAResult",
]
