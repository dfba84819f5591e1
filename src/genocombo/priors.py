"""Population-genetic prior over genotype combinations.

The prior of a combination factors into

- the probability of its allele-count spectrum under the Ewens sampling
  formula with mutation parameter ``theta``, optionally smoothed toward
  spectra one copy away (diffusion), and
- the probability of this particular assignment of genotypes to samples given
  that spectrum.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Dict, List, MutableMapping, Optional, Sequence, Tuple

from .models import Allele, GenotypeCombo, GenotypeComboResult
from .utils import log_multinomial_coefficient, logsumexp

logger = logging.getLogger(__name__)


def ewens_log_prob(counts: Sequence[int], theta: float) -> float:
    """ln P(allele counts) under the Ewens sampling formula.

    Only the multiset of non-zero counts matters: with ``a_j`` alleles seen
    exactly ``j`` times among ``n`` copies,

        P = n! / (theta (theta+1) ... (theta+n-1)) * prod_j theta^a_j / (j^a_j a_j!)
    """
    spectrum = [c for c in counts if c > 0]
    n = sum(spectrum)
    if n == 0:
        return 0.0
    lnp = math.lgamma(n + 1) + math.lgamma(theta) - math.lgamma(theta + n)
    for j, a_j in Counter(spectrum).items():
        lnp += a_j * math.log(theta) - a_j * math.log(j) - math.lgamma(a_j + 1)
    return lnp


def frequency_neighbors(
    counts: Dict[Allele, int],
    ref: Allele,
    alleles: Sequence[Allele],
) -> List[Dict[Allele, int]]:
    """Spectra one copy away: each alternate gains or loses one copy against the reference."""
    out: List[Dict[Allele, int]] = []
    ref_count = counts.get(ref, 0)
    for alt in alleles:
        if alt == ref:
            continue
        alt_count = counts.get(alt, 0)
        if ref_count > 0:
            nb = dict(counts)
            nb[ref] = ref_count - 1
            nb[alt] = alt_count + 1
            out.append(nb)
        if alt_count > 0:
            nb = dict(counts)
            nb[ref] = ref_count + 1
            nb[alt] = alt_count - 1
            out.append(nb)
    return out


def allele_frequency_log_prob(
    counts: Dict[Allele, int],
    ref: Allele,
    theta: float,
    *,
    diffusion_prior_scalar: float = 0.0,
    alleles: Optional[Sequence[Allele]] = None,
    stats: Optional[MutableMapping[str, int]] = None,
) -> float:
    """Ewens prior of a spectrum, blended with its neighbors when diffusion is on.

    With scalar ``d`` and ``k`` neighbors the blended probability is
    ``(P(s) + d * mean(P(neighbors))) / (1 + d)``, computed in log space.
    """
    base = ewens_log_prob(list(counts.values()), theta)
    if diffusion_prior_scalar <= 0:
        return base

    candidates = list(alleles) if alleles is not None else list(counts)
    neighbors = frequency_neighbors(counts, ref, candidates)
    if not neighbors:
        return base

    w = math.log(diffusion_prior_scalar / len(neighbors))
    terms = [base] + [w + ewens_log_prob(list(nb.values()), theta) for nb in neighbors]
    return logsumexp(terms, stats=stats) - math.log1p(diffusion_prior_scalar)


def genotype_given_frequency_log_prob(combo: GenotypeCombo, *, pooled: bool = False) -> float:
    """ln P(assignment of genotypes to samples | allele-count spectrum).

    Individuals: the ``n`` allele copies are exchangeable and dealt to samples
    without replacement (multivariate hypergeometric), i.e.
    ``sum_i ln multinom(ploidy_i; c_i) - ln multinom(n; c)``.

    Pools: each pool's copies are drawn with replacement from the cohort
    frequency, i.e. ``sum_i [ln multinom(ploidy_i; c_i) + sum_a c_ia ln(c_a / n)]``.
    """
    totals = combo.allele_counts()
    n = sum(totals.values())
    if n == 0:
        return 0.0

    lnp = 0.0
    for e in combo.entries:
        per_sample = e.genotype.allele_counts()
        lnp += log_multinomial_coefficient(e.genotype.ploidy, list(per_sample.values()))
        if pooled:
            for a, c in per_sample.items():
                lnp += c * math.log(totals[a] / n)

    if not pooled:
        lnp -= log_multinomial_coefficient(n, list(totals.values()))
    return lnp


def score_combo(
    combo: GenotypeCombo,
    ref: Allele,
    theta: float,
    *,
    pooled: bool = False,
    diffusion_prior_scalar: float = 0.0,
    alleles: Optional[Sequence[Allele]] = None,
    stats: Optional[MutableMapping[str, int]] = None,
) -> Tuple[float, float, float]:
    """Return ``(prior_ln, prior_ln_given_frequency, prior_ln_frequency)``."""
    freq_ln = allele_frequency_log_prob(
        combo.allele_counts(),
        ref,
        theta,
        diffusion_prior_scalar=diffusion_prior_scalar,
        alleles=alleles,
        stats=stats,
    )
    given_ln = genotype_given_frequency_log_prob(combo, pooled=pooled)
    return freq_ln + given_ln, given_ln, freq_ln


def score_combos(
    combos: Sequence[GenotypeCombo],
    ref: Allele,
    theta: float,
    *,
    pooled: bool = False,
    diffusion_prior_scalar: float = 0.0,
    alleles: Optional[Sequence[Allele]] = None,
    stats: Optional[MutableMapping[str, int]] = None,
) -> List[GenotypeComboResult]:
    results: List[GenotypeComboResult] = []
    for combo in combos:
        prior_ln, given_ln, freq_ln = score_combo(
            combo,
            ref,
            theta,
            pooled=pooled,
            diffusion_prior_scalar=diffusion_prior_scalar,
            alleles=alleles,
            stats=stats,
        )
        results.append(
            GenotypeComboResult(
                combo=combo,
                data_log_likelihood=combo.data_log_likelihood,
                prior_log_prob=prior_ln,
                prior_log_prob_given_frequency=given_ln,
                prior_log_prob_frequency=freq_ln,
            )
        )
    return results
