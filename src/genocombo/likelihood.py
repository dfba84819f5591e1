from __future__ import annotations

import logging
from typing import List, MutableMapping, Optional, Sequence, Tuple

import numpy as np

from .models import Genotype, Sample, SampleLikelihoods
from .utils import effective_error_prob, finite_or_floor

logger = logging.getLogger(__name__)


def _observation_arrays(sample: Sample, *, error_cap: float) -> Tuple[List[str], np.ndarray]:
    bases: List[str] = []
    errors: List[float] = []
    for obs in sample.observations():
        bases.append(obs.base)
        errors.append(effective_error_prob(obs.baseq, obs.mapq, cap=error_cap))
    return bases, np.asarray(errors, dtype=np.float64)


def genotype_log_likelihoods(
    sample: Sample,
    genotypes: Sequence[Genotype],
    *,
    read_dependence_factor: float = 1.0,
    error_cap: float = 0.25,
    stats: Optional[MutableMapping[str, int]] = None,
) -> List[Tuple[Genotype, float]]:
    """Log-likelihood of a sample's observations under each candidate genotype.

    Each read is assumed to come from one of the genotype's ``ploidy`` copies
    chosen uniformly, so

        P(obs | G) = sum_a (c_a / ploidy) * P(obs | a)

    where ``P(obs | a)`` is ``1 - e`` if the observed allele is ``a`` and
    ``e / 3`` otherwise, with ``e`` the combined base/mapping error rate.
    Reads are independent; their log contributions are scaled by
    ``read_dependence_factor``. A sample with no observations yields 0.0 for
    every genotype.

    Returns one ``(genotype, log_likelihood)`` per input genotype, in input order.
    """
    bases, errors = _observation_arrays(sample, error_cap=error_cap)
    if not bases:
        return [(g, 0.0) for g in genotypes]

    log_match = np.log1p(-errors)
    log_mismatch = np.log(errors / 3.0)
    obs_bases = np.asarray(bases, dtype=object)

    out: List[Tuple[Genotype, float]] = []
    for g in genotypes:
        counts = g.allele_counts()
        # (n_obs, n_distinct_alleles) matrix of log[(c_a / ploidy) * P(obs | a)]
        cols = []
        for allele, c in counts.items():
            matches = obs_bases == allele.base
            cols.append(np.where(matches, log_match, log_mismatch) + np.log(c / g.ploidy))
        per_obs = np.logaddexp.reduce(np.column_stack(cols), axis=1)
        ll = read_dependence_factor * float(np.sum(per_obs))
        out.append((g, finite_or_floor(ll, stats=stats, what=f"likelihood for {sample.name} {g}")))
    return out


def rank_genotypes(
    name: str,
    ploidy: int,
    likelihoods: Sequence[Tuple[Genotype, float]],
) -> SampleLikelihoods:
    """Sort descending by log-likelihood; ties keep enumeration order."""
    ranked = sorted(likelihoods, key=lambda gl: -gl[1])
    return SampleLikelihoods(name=name, ploidy=ploidy, ranked=tuple(ranked))


def sample_likelihoods(
    sample: Sample,
    ploidy: int,
    genotypes: Sequence[Genotype],
    *,
    read_dependence_factor: float = 1.0,
    error_cap: float = 0.25,
    stats: Optional[MutableMapping[str, int]] = None,
) -> SampleLikelihoods:
    lls = genotype_log_likelihoods(
        sample,
        genotypes,
        read_dependence_factor=read_dependence_factor,
        error_cap=error_cap,
        stats=stats,
    )
    ranked = rank_genotypes(sample.name, ploidy, lls)
    logger.debug(
        "%s: %d observations, best genotype %s (%.3f)",
        sample.name,
        sample.observation_count(),
        ranked.ranked[0][0] if ranked.ranked else "-",
        ranked.ranked[0][1] if ranked.ranked else float("nan"),
    )
    return ranked
