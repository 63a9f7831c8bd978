"""
I/O module for writing TcGSA results.

Examples:
    >>> from tcgsa.io import write_results
    >>> write_results(result, Path("output/tcgsa"))
"""

from tcgsa.io.writers import write_results

__all__ = ['write_results']
