from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, MutableMapping, Optional, Sequence, Set, Tuple

from tqdm import tqdm

from .banding import banded_combos_with_homozygous
from .config import CallerConfig
from .errors import InsufficientEvidence
from .genotypes import GenotypeCache, genotypes_by_ploidy
from .likelihood import sample_likelihoods
from .models import (
    CANONICAL_BASES,
    DELETION,
    INSERTION,
    MNP,
    REFERENCE,
    SNP,
    Allele,
    AlleleObservation,
    GenotypeCombo,
    Sample,
    SiteCall,
    SiteEvidence,
    reference_allele,
)
from .posterior import aggregate
from .priors import ewens_log_prob, score_combos
from .utils import NUMERIC_FAULTS, merge_counts

logger = logging.getLogger(__name__)

# Skip reasons, as counted in run summaries (sites_skipped_<reason>).
SKIP_OUTSIDE_REGIONS = "outside_regions"
SKIP_NON_ACGT_REFERENCE = "non_acgt_reference"
SKIP_NO_COVERAGE = "no_coverage"
SKIP_INSUFFICIENT_ALTERNATES = "insufficient_alternates"
SKIP_SINGLE_ALLELE = "single_candidate_allele"
SKIP_INSUFFICIENT_GENOTYPES = "insufficient_genotypes"

SKIP_REASONS = (
    SKIP_OUTSIDE_REGIONS,
    SKIP_NON_ACGT_REFERENCE,
    SKIP_NO_COVERAGE,
    SKIP_INSUFFICIENT_ALTERNATES,
    SKIP_SINGLE_ALLELE,
    SKIP_INSUFFICIENT_GENOTYPES,
)


def allowed_kinds(config: CallerConfig) -> Set[str]:
    kinds = {REFERENCE}
    if config.allow_snps:
        kinds.add(SNP)
    if config.allow_indels:
        kinds.update((INSERTION, DELETION))
    if config.allow_mnps:
        kinds.add(MNP)
    return kinds


def filter_observations(site: SiteEvidence, config: CallerConfig) -> Dict[str, Sample]:
    """Drop low-quality and disallowed observations; samples left empty are dropped."""
    kinds = allowed_kinds(config)
    out: Dict[str, Sample] = {}
    for name, sample in site.samples.items():
        kept = [
            o
            for o in sample.observations()
            if o.allele.kind in kinds
            and o.baseq >= config.min_base_quality
            and o.mapq >= config.min_mapping_quality
        ]
        if kept:
            out[name] = Sample.from_observations(name, kept)
    return out


def _passing_alternates(sample: Sample, ref: Allele, min_alt_count: int, min_alt_fraction: float) -> List[str]:
    total = sample.observation_count()
    if total == 0:
        return []
    return [
        base
        for base, n in sample.support().items()
        if base != ref.base and n >= min_alt_count and n / total >= min_alt_fraction
    ]


def sufficient_alternate_observations(
    samples: Dict[str, Sample],
    ref: Allele,
    *,
    min_alt_count: int,
    min_alt_fraction: float,
) -> bool:
    """True if any one sample carries an alternate with enough count and fraction of its reads."""
    return any(
        _passing_alternates(s, ref, min_alt_count, min_alt_fraction) for s in samples.values()
    )


def select_candidate_alleles(
    samples: Dict[str, Sample],
    ref: Allele,
    config: CallerConfig,
) -> List[Allele]:
    """Reference first, then alternates passing the support filters by total support.

    With ``force_canonical_alleles`` the alternates are the other three
    single-nucleotide alleles instead.
    """
    if config.force_canonical_alleles:
        return [ref] + [Allele(kind=SNP, sequence=b) for b in CANONICAL_BASES if b != ref.base]

    passing: Set[str] = set()
    for s in samples.values():
        passing.update(_passing_alternates(s, ref, config.min_alt_count, config.min_alt_fraction))

    support: Dict[str, int] = {}
    exemplar: Dict[str, Allele] = {}
    for s in samples.values():
        for base, group in s.groups.items():
            if base in passing:
                support[base] = support.get(base, 0) + len(group)
                exemplar.setdefault(base, group[0].allele)

    alts = sorted(passing, key=lambda b: (-support[b], b))
    return [ref] + [exemplar[b] for b in alts]


def alternate_alleles(combo: GenotypeCombo, ref: Allele) -> List[Tuple[Allele, int]]:
    """Non-reference alleles of a combo with their copy counts, most frequent first."""
    counts = combo.allele_counts()
    alts = [(a, c) for a, c in counts.items() if a != ref]
    alts.sort(key=lambda ac: (-ac[1], ac[0].base))
    return alts


def _reference_sample(ref: Allele, config: CallerConfig) -> Sample:
    obs = AlleleObservation(
        allele=ref,
        baseq=config.reference_quality,
        mapq=config.reference_quality,
        read_id=config.reference_sample_name,
    )
    return Sample.from_observations(config.reference_sample_name, [obs])


def _reference_or_skip(site: SiteEvidence) -> Allele:
    ref_base = site.ref.upper()
    if ref_base not in CANONICAL_BASES:
        raise InsufficientEvidence(
            SKIP_NON_ACGT_REFERENCE, detail=f"{site.chrom}:{site.pos1} reference base {site.ref!r}"
        )
    return reference_allele(ref_base)


def call_site(
    site: SiteEvidence,
    config: CallerConfig,
    *,
    cache: Optional[GenotypeCache] = None,
    stats: Optional[MutableMapping[str, int]] = None,
) -> SiteCall:
    """Filter evidence, choose candidate alleles and run the posterior engine for one position.

    Raises
    ------
    InsufficientEvidence
        The position is a normal no-call; ``reason`` is one of ``SKIP_REASONS``.
    EmptyCandidateSetError
        No combos reached aggregation (a logic fault, not a no-call).
    """
    site_stats: Dict[str, int] = {}
    try:
        where = f"{site.chrom}:{site.pos1}"
        if not config.in_regions(site.chrom, site.pos0):
            raise InsufficientEvidence(SKIP_OUTSIDE_REGIONS, detail=where)
        ref = _reference_or_skip(site)

        samples = filter_observations(site, config)
        if sum(s.observation_count() for s in samples.values()) == 0:
            raise InsufficientEvidence(SKIP_NO_COVERAGE, detail=where)

        if not sufficient_alternate_observations(
            samples, ref, min_alt_count=config.min_alt_count, min_alt_fraction=config.min_alt_fraction
        ):
            raise InsufficientEvidence(SKIP_INSUFFICIENT_ALTERNATES, detail=where)

        alleles = select_candidate_alleles(samples, ref, config)
        filtered = SiteEvidence(
            chrom=site.chrom, pos0=site.pos0, ref=ref.base, samples=samples, ploidy=site.ploidy
        )
        return _infer(filtered, alleles, config, cache, site_stats)
    finally:
        if stats is not None:
            merge_counts(stats, site_stats)


def infer_site(
    site: SiteEvidence,
    alleles: Sequence[Allele],
    config: CallerConfig,
    *,
    cache: Optional[GenotypeCache] = None,
    stats: Optional[MutableMapping[str, int]] = None,
) -> SiteCall:
    """Posterior engine for one position with caller-supplied candidate alleles.

    ``site`` observations are used as given (no quality or support filtering).
    """
    site_stats: Dict[str, int] = {}
    try:
        return _infer(site, alleles, config, cache, site_stats)
    finally:
        if stats is not None:
            merge_counts(stats, site_stats)


def _infer(
    site: SiteEvidence,
    alleles: Sequence[Allele],
    config: CallerConfig,
    cache: Optional[GenotypeCache],
    site_stats: Dict[str, int],
) -> SiteCall:
    where = f"{site.chrom}:{site.pos1}"
    ref = _reference_or_skip(site)
    alleles = list(alleles)
    if len(alleles) < 2:
        raise InsufficientEvidence(SKIP_SINGLE_ALLELE, detail=where)

    samples: Dict[str, Sample] = {}
    ploidies: Dict[str, int] = {}
    for name, sample in site.samples.items():
        if sample.observation_count() == 0:
            continue
        p = site.ploidy.get(name, config.ploidy_for(name))
        if p <= 0:
            logger.warning("%s: sample %s has invalid ploidy %d; treating as missing data", where, name, p)
            site_stats["samples_skipped_invalid_ploidy"] = site_stats.get("samples_skipped_invalid_ploidy", 0) + 1
            continue
        samples[name] = sample
        ploidies[name] = p
    coverage = sum(s.observation_count() for s in samples.values())
    if config.use_ref_allele:
        if config.reference_sample_name in site.samples:
            raise ValueError(
                f"{where}: sample name {config.reference_sample_name!r} is reserved for the reference "
                "pseudo-sample; rename the sample or set reference_sample_name"
            )
        samples[config.reference_sample_name] = _reference_sample(ref, config)
        ploidies[config.reference_sample_name] = 1

    by_ploidy = genotypes_by_ploidy(ploidies.values(), alleles, cache=cache)

    tables = [
        sample_likelihoods(
            samples[name],
            p,
            by_ploidy[p],
            read_dependence_factor=config.read_dependence_factor,
            error_cap=config.error_cap,
            stats=site_stats,
        )
        for name, p in ploidies.items()
    ]
    if sum(len(t.ranked) for t in tables) < 2:
        raise InsufficientEvidence(SKIP_INSUFFICIENT_GENOTYPES, detail=where)

    combos = banded_combos_with_homozygous(
        tables,
        by_ploidy,
        alleles,
        bandwidth=config.bandwidth,
        band_threshold=config.band_threshold,
        max_combo_step=config.max_combo_step,
        max_combos=config.max_banded_combos,
    )
    results = score_combos(
        combos,
        ref,
        config.theta,
        pooled=config.pooled,
        diffusion_prior_scalar=config.diffusion_prior_scalar,
        alleles=alleles,
        stats=site_stats,
    )
    summary = aggregate(
        results,
        posterior_integration_depth=config.posterior_integration_depth,
        variant_threshold=config.min_p_var,
        stats=site_stats,
    )

    best = summary.best.combo
    logger.debug(
        "%s: %d alleles, %d combos, pVar=%.6g, best=%s",
        where,
        len(alleles),
        len(combos),
        summary.p_var,
        best,
    )

    return SiteCall(
        chrom=site.chrom,
        pos0=site.pos0,
        ref=ref.base,
        alleles=tuple(alleles),
        coverage=coverage,
        p_var=summary.p_var,
        is_variant=summary.p_var >= config.min_p_var,
        best_combo=best,
        best_combo_score=summary.best.score,
        alternates=tuple(alternate_alleles(best, ref)),
        marginals=summary.marginals,
        posterior_normalizer=summary.normalizer,
        combos_evaluated=len(combos),
        best_combo_ewens_ln=ewens_log_prob(list(best.allele_counts().values()), config.theta),
        numeric_faults=site_stats.get(NUMERIC_FAULTS, 0),
        combo_results=summary.results if config.trace else (),
    )


def call_sites(
    sites: Iterable[SiteEvidence],
    config: CallerConfig,
    *,
    cache: Optional[GenotypeCache] = None,
    counts: Optional[Dict[str, int]] = None,
    progress: bool = False,
) -> Iterator[SiteCall]:
    """Call every position in turn, yielding results for processed positions.

    ``counts`` is filled with run counters: sites_total, sites_processed,
    sites_variant, sites_skipped_<reason>, numeric_faults and
    samples_skipped_invalid_ploidy.
    """
    config.validate()
    if cache is None:
        cache = GenotypeCache()
    if counts is None:
        counts = {}
    for key in ("sites_total", "sites_processed", "sites_variant", NUMERIC_FAULTS):
        counts.setdefault(key, 0)
    for reason in SKIP_REASONS:
        counts.setdefault(f"sites_skipped_{reason}", 0)

    it: Iterable[SiteEvidence] = sites
    if progress:
        it = tqdm(it, unit="site", desc="Calling sites")

    for site in it:
        counts["sites_total"] += 1
        try:
            call = call_site(site, config, cache=cache, stats=counts)
        except InsufficientEvidence as e:
            counts[f"sites_skipped_{e.reason}"] += 1
            logger.debug("Skipping %s:%d (%s)", site.chrom, site.pos1, e)
            continue

        counts["sites_processed"] += 1
        if call.is_variant:
            counts["sites_variant"] += 1
        yield call

    logger.info(
        "Sites total: %d, processed: %d, variant: %d",
        counts["sites_total"],
        counts["sites_processed"],
        counts["sites_variant"],
    )
