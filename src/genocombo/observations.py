"""Observation table hand-off from read-evidence extraction, and call row formatting.

The table is tab-separated (optionally gzipped) with a header line::

    chrom  pos  ref  sample  allele  kind  baseq  mapq  [read_id]

``pos`` is 1-based; rows for one position must be contiguous.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Iterator, List, Mapping, MutableMapping, Optional, Sequence, Set, Tuple

from .models import ALLELE_KINDS, DELETION, Allele, AlleleObservation, GenotypeComboResult, Sample, SiteCall, SiteEvidence
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

OBSERVATION_COLUMNS = ["chrom", "pos", "ref", "sample", "allele", "kind", "baseq", "mapq"]

CALLS_COLUMNS = [
    "chrom",
    "pos",
    "ref",
    "alleles",
    "coverage",
    "p_var",
    "is_variant",
    "best_combo",
    "alternates",
    "combos_evaluated",
    "posterior_normalizer",
    "best_combo_ewens_ln",
    "samples",
]

TRACE_COLUMNS = [
    "chrom",
    "pos",
    "combo",
    "data_ln",
    "prior_ln",
    "prior_given_frequency_ln",
    "prior_frequency_ln",
    "score",
    "posterior",
]


def parse_observation(fields: Sequence[str], columns: Mapping[str, int]) -> Tuple[str, int, str, str, AlleleObservation]:
    """Parse one table row into (chrom, pos0, ref, sample, observation).

    Raises ValueError on malformed rows.
    """
    chrom = fields[columns["chrom"]]
    pos1 = int(fields[columns["pos"]])
    if pos1 < 1:
        raise ValueError(f"position must be 1-based, got {pos1}")
    ref = fields[columns["ref"]].upper()
    sample = fields[columns["sample"]]
    seq = fields[columns["allele"]].upper()
    kind = fields[columns["kind"]].lower()
    if kind not in ALLELE_KINDS:
        raise ValueError(f"unknown allele kind {kind!r}")
    length = len(seq) if seq else 0
    if kind == DELETION and length == 0:
        raise ValueError("deletion alleles must list the deleted reference bases")
    read_id = fields[columns["read_id"]] if "read_id" in columns and columns["read_id"] < len(fields) else ""
    obs = AlleleObservation(
        allele=Allele(kind=kind, sequence=seq, length=max(1, length)),
        baseq=int(fields[columns["baseq"]]),
        mapq=int(fields[columns["mapq"]]),
        read_id=read_id,
    )
    return chrom, pos1 - 1, ref, sample, obs


def iter_sites(
    path: str | Path,
    *,
    ploidy: Optional[Mapping[str, int]] = None,
    stats: Optional[MutableMapping[str, int]] = None,
) -> Iterator[SiteEvidence]:
    """Stream per-position evidence from an observation table.

    Rows must be sorted by position within each chromosome, with each
    chromosome in one block. Malformed rows are skipped and counted
    (``rows_malformed``). An out-of-order row, a chromosome seen again after
    another one started, or rows that disagree on the reference base raise
    ValueError. Only the finished chromosome names and the last position are
    remembered between positions.
    """
    if stats is None:
        stats = {}
    stats.setdefault("rows_total", 0)
    stats.setdefault("rows_malformed", 0)
    ploidy = dict(ploidy or {})

    current: Optional[SiteEvidence] = None
    finished_chroms: Set[str] = set()
    last: Optional[Tuple[str, int]] = None

    with open_textmaybe_gzip(path, "rt") as fh:
        header = fh.readline().rstrip("\n").split("\t")
        missing = [c for c in OBSERVATION_COLUMNS if c not in header]
        if missing:
            raise ValueError(f"Observation table {path} is missing columns: {missing}")
        columns = {name: i for i, name in enumerate(header)}

        for lineno, line in enumerate(fh, start=2):
            if not line.strip() or line.startswith("#"):
                continue
            stats["rows_total"] += 1
            fields = line.rstrip("\n").split("\t")
            try:
                chrom, pos0, ref, sample, obs = parse_observation(fields, columns)
            except (ValueError, IndexError) as e:
                stats["rows_malformed"] += 1
                logger.warning("%s:%d: skipping malformed row (%s)", path, lineno, e)
                continue

            if current is not None and (current.chrom, current.pos0) != (chrom, pos0):
                last = (current.chrom, current.pos0)
                if chrom != current.chrom:
                    finished_chroms.add(current.chrom)
                yield current
                current = None
            if current is None:
                if chrom in finished_chroms or (last is not None and last[0] == chrom and pos0 < last[1]):
                    raise ValueError(
                        f"{path}:{lineno}: rows for {chrom}:{pos0 + 1} are not contiguous or out of order; "
                        "sort the table by chrom and pos."
                    )
                current = SiteEvidence(chrom=chrom, pos0=pos0, ref=ref, samples={}, ploidy=ploidy)
            elif current.ref != ref:
                raise ValueError(
                    f"{path}:{lineno}: reference base {ref} disagrees with {current.ref} at {chrom}:{pos0 + 1}"
                )
            current.samples.setdefault(sample, Sample(name=sample)).add(obs)

    if current is not None:
        yield current


def format_marginals(call: SiteCall) -> str:
    """``sample=genotype:probability`` for each sample's best-combo genotype."""
    parts: List[str] = []
    for e in call.best_combo.entries:
        ln = call.marginals.get(e.sample, {}).get(e.genotype)
        prob = math.exp(ln) if ln is not None else 0.0
        parts.append(f"{e.sample}={e.genotype}:{prob:.6f}")
    return ";".join(parts)


def format_call_row(call: SiteCall) -> str:
    alts = ",".join(f"{a}:{c}" for a, c in call.alternates) or "."
    return (
        f"{call.chrom}\t{call.pos1}\t{call.ref}\t"
        f"{','.join(str(a) for a in call.alleles)}\t{call.coverage}\t"
        f"{call.p_var:.6g}\t{int(call.is_variant)}\t{call.best_combo}\t{alts}\t"
        f"{call.combos_evaluated}\t{call.posterior_normalizer:.6f}\t"
        f"{call.best_combo_ewens_ln:.6f}\t{format_marginals(call)}\n"
    )


def format_trace_rows(call: SiteCall) -> List[str]:
    rows: List[str] = []
    for r in call.combo_results:
        rows.append(_trace_row(call, r))
    return rows


def _trace_row(call: SiteCall, r: GenotypeComboResult) -> str:
    posterior = math.exp(r.score - call.posterior_normalizer)
    return (
        f"{call.chrom}\t{call.pos1}\t{r.combo}\t{r.data_log_likelihood:.6f}\t"
        f"{r.prior_log_prob:.6f}\t{r.prior_log_prob_given_frequency:.6f}\t"
        f"{r.prior_log_prob_frequency:.6f}\t{r.score:.6f}\t{posterior:.6g}\n"
    )


def format_failed_bed(call: SiteCall) -> List[str]:
    """One BED line per candidate alternate of a position below the variant threshold."""
    return [
        f"{call.chrom}\t{call.pos0}\t{call.pos0 + a.length}\t{a}\n"
        for a in call.alleles
        if a.base != call.ref
    ]



def load_regions(path: str | Path) -> Tuple[Tuple[str, int, int], ...]:
    """Read target intervals from a BED file (first three columns, 0-based half-open)."""
    regions: List[Tuple[str, int, int]] = []
    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip() or line.startswith(("#", "track", "browser")):
                continue
            fields = line.rstrip("\n").split("\t")
            try:
                chrom, start, end = fields[0], int(fields[1]), int(fields[2])
            except (ValueError, IndexError):
                raise ValueError(f"{path}:{lineno}: expected 'chrom<TAB>start<TAB>end'") from None
            regions.append((chrom, start, end))
    logger.info("Loaded %d target regions from %s", len(regions), path)
    return tuple(regions)
