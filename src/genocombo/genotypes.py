from __future__ import annotations

import itertools
import logging
import math
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidPloidyError
from .models import Allele, Genotype

logger = logging.getLogger(__name__)


def count_genotypes(n_alleles: int, ploidy: int) -> int:
    """Number of distinct genotypes: C(n + ploidy - 1, ploidy)."""
    if n_alleles <= 0:
        return 1 if ploidy == 0 else 0
    return math.comb(n_alleles + ploidy - 1, ploidy)


def enumerate_genotypes(ploidy: int, alleles: Sequence[Allele]) -> List[Genotype]:
    """All distinct multisets of ``ploidy`` alleles drawn with repetition from ``alleles``.

    Ordering is lexicographic by allele index, so the first genotype is
    homozygous for ``alleles[0]`` and results are reproducible.

    Raises
    ------
    InvalidPloidyError
        ploidy <= 0 (except ploidy 0 with no alleles, which yields nothing).
    ValueError
        Empty or duplicated allele set.
    """
    alleles = list(alleles)
    if ploidy == 0 and not alleles:
        return []
    if ploidy <= 0:
        raise InvalidPloidyError(ploidy)
    if not alleles:
        raise ValueError(f"Cannot enumerate ploidy-{ploidy} genotypes from an empty allele set")
    if len(set(alleles)) != len(alleles):
        raise ValueError(f"Candidate alleles must be distinct: {[str(a) for a in alleles]}")

    return [
        Genotype(alleles=tuple(alleles[i] for i in idx))
        for idx in itertools.combinations_with_replacement(range(len(alleles)), ploidy)
    ]


class GenotypeCache:
    """Genotype lists keyed by (ploidy, candidate alleles), shared across positions.

    Entries are immutable once stored. Lookups, insertion and the hit/miss
    counters are lock-protected so one cache can be shared by worker threads.
    """

    def __init__(self) -> None:
        self._lists: Dict[Tuple[int, Tuple[Allele, ...]], Tuple[Genotype, ...]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._lists)

    def get(self, ploidy: int, alleles: Sequence[Allele]) -> Tuple[Genotype, ...]:
        key = (ploidy, tuple(alleles))
        with self._lock:
            cached = self._lists.get(key)
            if cached is not None:
                self.hits += 1
                return cached
            cached = tuple(enumerate_genotypes(ploidy, alleles))
            self._lists[key] = cached
            self.misses += 1
            return cached


def genotypes_by_ploidy(
    ploidies: Iterable[int],
    alleles: Sequence[Allele],
    *,
    cache: Optional[GenotypeCache] = None,
) -> Dict[int, Tuple[Genotype, ...]]:
    """Enumerate genotypes once per distinct ploidy present at a position."""
    out: Dict[int, Tuple[Genotype, ...]] = {}
    for p in ploidies:
        if p in out:
            continue
        if cache is not None:
            out[p] = cache.get(p, alleles)
        else:
            out[p] = tuple(enumerate_genotypes(p, alleles))
        logger.debug("Generated %d genotypes for ploidy %d", len(out[p]), p)
    return out
