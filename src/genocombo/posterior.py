from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, MutableMapping, Optional, Sequence, Tuple

from .errors import EmptyCandidateSetError
from .models import Genotype, GenotypeComboResult
from .utils import clamp, logsumexp, safe_exp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PosteriorSummary:
    """Normalized posterior quantities for one position."""

    results: Tuple[GenotypeComboResult, ...]  # sorted best-first, after trimming
    normalizer: float
    marginals: Dict[str, Dict[Genotype, float]]  # normalized log posteriors
    p_var: float
    best: GenotypeComboResult


def sort_results(results: Sequence[GenotypeComboResult]) -> List[GenotypeComboResult]:
    """Descending by data log-likelihood + prior; stable for equal scores."""
    return sorted(results, key=lambda r: -r.score)


def trim_results(results: Sequence[GenotypeComboResult], depth: int) -> List[GenotypeComboResult]:
    """Keep at most ``depth`` combos, never dropping a homozygous one.

    One pass from the tail of the sorted list: each removed combo that is
    homozygous is set aside, and removal stops once the kept plus set-aside
    combos fit in ``depth``. Set-aside combos are then reinserted and the list
    is re-sorted. Heterozygous combos are retained by rank, homozygous combos
    regardless of rank; if there are more homozygous combos than ``depth``,
    all of them are kept and the result exceeds ``depth``.
    """
    if depth <= 0 or len(results) <= depth:
        return list(results)

    kept = list(results)
    set_aside: List[GenotypeComboResult] = []
    while kept and len(kept) + len(set_aside) > depth:
        r = kept.pop()
        if r.is_homozygous():
            set_aside.append(r)
    return sort_results(kept + set_aside)


def posterior_normalizer(
    results: Sequence[GenotypeComboResult],
    *,
    stats: Optional[MutableMapping[str, int]] = None,
) -> float:
    return logsumexp((r.score for r in results), stats=stats)


def marginal_log_probs(
    results: Sequence[GenotypeComboResult],
    normalizer: float,
    *,
    stats: Optional[MutableMapping[str, int]] = None,
) -> Dict[str, Dict[Genotype, float]]:
    """Per sample, per genotype: log-sum-exp of the scores of combos holding it, minus the normalizer.

    Samples absent from every combo (no data) have no entry.
    """
    scores: Dict[str, Dict[Genotype, List[float]]] = {}
    for r in results:
        s = r.score
        for e in r.combo.entries:
            scores.setdefault(e.sample, {}).setdefault(e.genotype, []).append(s)

    marginals: Dict[str, Dict[Genotype, float]] = {}
    for sample, by_genotype in scores.items():
        marginals[sample] = {
            g: logsumexp(vals, stats=stats) - normalizer for g, vals in by_genotype.items()
        }
    return marginals


def probability_of_variation(results: Sequence[GenotypeComboResult], normalizer: float) -> float:
    """1 - posterior mass of the combos in which no sample varies."""
    p_var = 1.0
    for r in results:
        if r.is_homozygous():
            p_var -= safe_exp(r.score - normalizer)
    return clamp(p_var, 0.0, 1.0)


def select_best_combo(
    results: Sequence[GenotypeComboResult],
    p_var: float,
    *,
    variant_threshold: float = 0.0,
) -> GenotypeComboResult:
    """First non-homozygous combo if the site reaches ``variant_threshold``, else the top combo."""
    if not results:
        raise EmptyCandidateSetError("No genotype combinations to choose from")
    if p_var >= variant_threshold:
        for r in results:
            if not r.is_homozygous():
                return r
    return results[0]


def aggregate(
    results: Sequence[GenotypeComboResult],
    *,
    posterior_integration_depth: int = 0,
    variant_threshold: float = 0.0,
    stats: Optional[MutableMapping[str, int]] = None,
) -> PosteriorSummary:
    """Sort, trim, normalize and marginalize scored combos for one position."""
    ordered = sort_results(results)
    ordered = trim_results(ordered, posterior_integration_depth)
    if not ordered:
        raise EmptyCandidateSetError(
            "Posterior aggregation received zero genotype combinations; "
            "homozygous anchor combos were not supplied."
        )
    if len(ordered) < len(results):
        logger.debug("Trimmed %d combos to %d", len(results), len(ordered))

    normalizer = posterior_normalizer(ordered, stats=stats)
    marginals = marginal_log_probs(ordered, normalizer, stats=stats)
    p_var = probability_of_variation(ordered, normalizer)
    best = select_best_combo(ordered, p_var, variant_threshold=variant_threshold)

    return PosteriorSummary(
        results=tuple(ordered),
        normalizer=normalizer,
        marginals=marginals,
        p_var=p_var,
        best=best,
    )
