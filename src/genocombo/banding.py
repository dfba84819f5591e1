"""Banded search over joint genotype combinations.

Combining every sample's full genotype list is exponential in the number of
samples. Instead, each sample contributes only a band of its best-ranked
genotypes, and combinations are expanded outward from the joint-best
assignment with a priority queue keyed by summed data log-likelihood:

- a sample's band holds at most ``bandwidth`` genotypes, each within
  ``band_threshold`` log units of that sample's best;
- at most ``max_combo_step`` samples may sit off their best genotype at once;
- expansion stops when the frontier is empty or ``max_combos`` are emitted.

Fully homozygous combinations (every sample homozygous for the same allele)
are then appended for each candidate allele whether or not banding reached
them; the probability of variation is computed from them.
"""

from __future__ import annotations

import heapq
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .models import Allele, ComboEntry, Genotype, GenotypeCombo, SampleLikelihoods

logger = logging.getLogger(__name__)


def band_width(table: SampleLikelihoods, bandwidth: int, band_threshold: float) -> int:
    """Number of top-ranked genotypes of one sample eligible for banding.

    The best genotype is always eligible.
    """
    if not table.ranked:
        return 0
    best = table.best_log_likelihood
    n = 0
    for i, (_, ll) in enumerate(table.ranked[: max(1, bandwidth)]):
        if i > 0 and best - ll > band_threshold:
            break
        n += 1
    return n


def _combo_from_state(tables: Sequence[SampleLikelihoods], state: Tuple[int, ...]) -> GenotypeCombo:
    entries = []
    for table, idx in zip(tables, state):
        g, ll = table.ranked[idx]
        entries.append(ComboEntry(sample=table.name, genotype_index=idx, genotype=g, log_likelihood=ll))
    return GenotypeCombo(entries=tuple(entries))


def banded_combos(
    tables: Sequence[SampleLikelihoods],
    *,
    bandwidth: int,
    band_threshold: float,
    max_combo_step: int,
    max_combos: Optional[int] = None,
) -> List[GenotypeCombo]:
    """Frontier expansion from the joint-best combination, best-first.

    Samples with no ranked genotypes are left out of every combination.
    """
    tables = [t for t in tables if t.ranked]
    if not tables:
        return []

    widths = [band_width(t, bandwidth, band_threshold) for t in tables]
    if max_combos is None:
        max_combos = 1 + bandwidth * len(tables) * max_combo_step

    def score(state: Tuple[int, ...]) -> float:
        return sum(t.ranked[i][1] for t, i in zip(tables, state))

    start = tuple(0 for _ in tables)
    order = 0
    frontier: List[Tuple[float, int, Tuple[int, ...]]] = [(-score(start), order, start)]
    seen = {start}
    out: List[GenotypeCombo] = []

    while frontier and len(out) < max_combos:
        _, _, state = heapq.heappop(frontier)
        out.append(_combo_from_state(tables, state))

        for i in range(len(state)):
            nxt_idx = state[i] + 1
            if nxt_idx >= widths[i]:
                continue
            nxt = state[:i] + (nxt_idx,) + state[i + 1 :]
            if nxt in seen:
                continue
            if sum(1 for x in nxt if x) > max_combo_step:
                continue
            seen.add(nxt)
            order += 1
            heapq.heappush(frontier, (-score(nxt), order, nxt))

    logger.debug(
        "Banding produced %d combos (widths=%s, step=%d, cap=%d)",
        len(out),
        widths,
        max_combo_step,
        max_combos,
    )
    return out


def homozygous_combos(
    tables: Sequence[SampleLikelihoods],
    genotypes_by_ploidy: Mapping[int, Sequence[Genotype]],
    alleles: Sequence[Allele],
) -> List[GenotypeCombo]:
    """One combination per candidate allele with every sample homozygous for it."""
    tables = [t for t in tables if t.ranked]
    if not tables:
        return []

    homs_by_ploidy: Dict[int, Dict[Allele, Genotype]] = {}
    for ploidy, genotypes in genotypes_by_ploidy.items():
        homs_by_ploidy[ploidy] = {g.alleles[0]: g for g in genotypes if g.is_homozygous}

    out: List[GenotypeCombo] = []
    for allele in alleles:
        entries = []
        for table in tables:
            g = homs_by_ploidy.get(table.ploidy, {}).get(allele)
            idx = table.index_of(g) if g is not None else None
            if g is None or idx is None:
                logger.debug("No homozygous %s genotype for sample %s", allele, table.name)
                break
            entries.append(
                ComboEntry(
                    sample=table.name,
                    genotype_index=idx,
                    genotype=table.ranked[idx][0],
                    log_likelihood=table.ranked[idx][1],
                )
            )
        else:
            out.append(GenotypeCombo(entries=tuple(entries)))
    return out


def banded_combos_with_homozygous(
    tables: Sequence[SampleLikelihoods],
    genotypes_by_ploidy: Mapping[int, Sequence[Genotype]],
    alleles: Sequence[Allele],
    *,
    bandwidth: int,
    band_threshold: float,
    max_combo_step: int,
    max_combos: Optional[int] = None,
) -> List[GenotypeCombo]:
    """Banded combinations plus every fully homozygous anchor combination."""
    combos = banded_combos(
        tables,
        bandwidth=bandwidth,
        band_threshold=band_threshold,
        max_combo_step=max_combo_step,
        max_combos=max_combos,
    )
    keys = {c.key for c in combos}
    added = 0
    for hc in homozygous_combos(tables, genotypes_by_ploidy, alleles):
        if hc.key not in keys:
            keys.add(hc.key)
            combos.append(hc)
            added += 1
    if added:
        logger.debug("Appended %d homozygous anchor combos outside the band", added)
    return combos
