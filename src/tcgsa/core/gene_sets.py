"""Gene set definitions passed through a TcGSA analysis."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Tuple, Union

__all__ = ['GeneSet', 'as_gene_sets']

GeneSetsLike = Union[Mapping[str, Sequence[str]], Iterable["GeneSet"]]


@dataclass(frozen=True)
class GeneSet:
    """A named, ordered collection of gene identifiers.

    Attributes:
        name: Gene set name (e.g. a pathway or blood transcription module).
        genes: Gene identifiers, in the order of the definition file.
        description: Optional free text carried along from the definition.
    """

    name: str
    genes: Tuple[str, ...]
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "genes", tuple(str(g) for g in self.genes))

    def __len__(self) -> int:
        return len(self.genes)


def as_gene_sets(gene_sets: GeneSetsLike) -> Tuple[GeneSet, ...]:
    """
    Normalize gene set definitions into an ordered tuple of GeneSet.

    Accepts either a mapping of name -> gene ids (insertion order is kept)
    or an iterable of GeneSet objects.
    """
    if isinstance(gene_sets, Mapping):
        return tuple(GeneSet(name=str(name), genes=tuple(genes)) for name, genes in gene_sets.items())

    result = []
    for gs in gene_sets:
        if not isinstance(gs, GeneSet):
            raise TypeError(f"Expected GeneSet, got {type(gs).__name__}")
        result.append(gs)
    return tuple(result)
