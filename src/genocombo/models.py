from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

# Allele kinds, as typed by the evidence extraction step.
REFERENCE = "reference"
SNP = "snp"
INSERTION = "insertion"
DELETION = "deletion"
MNP = "mnp"

ALLELE_KINDS = (REFERENCE, SNP, INSERTION, DELETION, MNP)

CANONICAL_BASES = ("A", "C", "G", "T")


@dataclass(frozen=True, eq=False)
class Allele:
    """A candidate or observed variant at one position.

    Attributes
    ----------
    kind:
        One of ``ALLELE_KINDS``.
    sequence:
        Allele content (inserted bases for insertions, deleted reference bases
        or empty for deletions).
    length:
        Reference span for deletions, sequence length otherwise.

    Two alleles are the same variant iff their :attr:`base` strings match, so a
    reference allele ``A`` and a synthesized canonical ``A`` compare equal.
    """

    kind: str
    sequence: str
    length: int = 1

    @property
    def base(self) -> str:
        if self.kind == INSERTION:
            return f"I{self.sequence}"
        if self.kind == DELETION:
            return f"D{self.length}"
        return self.sequence

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Allele):
            return NotImplemented
        return self.base == other.base

    def __hash__(self) -> int:
        return hash(self.base)

    def __str__(self) -> str:
        return self.base


def reference_allele(base: str) -> Allele:
    return Allele(kind=REFERENCE, sequence=base.upper(), length=1)


@dataclass(frozen=True)
class AlleleObservation:
    """One read's allele call at a position, with its quality metrics."""

    allele: Allele
    baseq: int
    mapq: int
    read_id: str = ""

    @property
    def base(self) -> str:
        return self.allele.base


@dataclass
class Sample:
    """Allele observations for one sample, grouped by observed allele."""

    name: str
    groups: Dict[str, List[AlleleObservation]] = field(default_factory=dict)

    @classmethod
    def from_observations(cls, name: str, observations: Iterable[AlleleObservation]) -> "Sample":
        s = cls(name=name)
        for obs in observations:
            s.add(obs)
        return s

    def add(self, obs: AlleleObservation) -> None:
        self.groups.setdefault(obs.base, []).append(obs)

    def observations(self) -> List[AlleleObservation]:
        out: List[AlleleObservation] = []
        for group in self.groups.values():
            out.extend(group)
        return out

    def observation_count(self) -> int:
        return sum(len(g) for g in self.groups.values())

    def support(self) -> Dict[str, int]:
        """Observation count per allele base."""
        return {b: len(g) for b, g in self.groups.items()}


@dataclass(frozen=True, eq=False)
class Genotype:
    """An unordered multiset of ``ploidy`` alleles.

    Equality and hashing ignore allele order.
    """

    alleles: Tuple[Allele, ...]

    def _key(self) -> Tuple[str, ...]:
        return tuple(sorted(a.base for a in self.alleles))

    @property
    def ploidy(self) -> int:
        return len(self.alleles)

    @property
    def is_homozygous(self) -> bool:
        return len(set(self.alleles)) <= 1

    def allele_counts(self) -> Dict[Allele, int]:
        counts: Dict[Allele, int] = {}
        for a in self.alleles:
            counts[a] = counts.get(a, 0) + 1
        return counts

    def is_homozygous_for(self, allele: Allele) -> bool:
        return bool(self.alleles) and all(a == allele for a in self.alleles)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Genotype):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return "/".join(a.base for a in self.alleles)


@dataclass(frozen=True)
class SampleLikelihoods:
    """One sample's genotypes ranked by data log-likelihood (best first).

    This table owns the genotype references for one position; combos point
    into it by ``genotype_index``.
    """

    name: str
    ploidy: int
    ranked: Tuple[Tuple[Genotype, float], ...]

    @property
    def best_log_likelihood(self) -> float:
        return self.ranked[0][1]

    def index_of(self, genotype: Genotype) -> Optional[int]:
        for i, (g, _) in enumerate(self.ranked):
            if g == genotype:
                return i
        return None


@dataclass(frozen=True)
class ComboEntry:
    """One sample's assignment within a genotype combination."""

    sample: str
    genotype_index: int  # index into SampleLikelihoods.ranked
    genotype: Genotype
    log_likelihood: float


@dataclass(frozen=True)
class GenotypeCombo:
    """One genotype per sample with evidence at the position."""

    entries: Tuple[ComboEntry, ...]

    @property
    def key(self) -> Tuple[Tuple[str, int], ...]:
        return tuple((e.sample, e.genotype_index) for e in self.entries)

    @property
    def data_log_likelihood(self) -> float:
        return float(sum(e.log_likelihood for e in self.entries))

    def is_homozygous(self) -> bool:
        """True if every sample is homozygous for the same single allele."""
        if not self.entries:
            return False
        first = self.entries[0].genotype.alleles[0]
        return all(e.genotype.is_homozygous_for(first) for e in self.entries)

    def allele_counts(self) -> Dict[Allele, int]:
        counts: Dict[Allele, int] = {}
        for e in self.entries:
            for a, c in e.genotype.allele_counts().items():
                counts[a] = counts.get(a, 0) + c
        return counts

    def __str__(self) -> str:
        return " ".join(f"{e.sample}:{e.genotype}" for e in self.entries)


@dataclass(frozen=True)
class GenotypeComboResult:
    """A scored genotype combination."""

    combo: GenotypeCombo
    data_log_likelihood: float
    prior_log_prob: float
    prior_log_prob_given_frequency: float
    prior_log_prob_frequency: float

    @property
    def score(self) -> float:
        return self.data_log_likelihood + self.prior_log_prob

    def is_homozygous(self) -> bool:
        return self.combo.is_homozygous()


@dataclass
class SiteEvidence:
    """Everything the engine receives for one genomic position.

    Coordinates are 0-based internally.
    """

    chrom: str
    pos0: int
    ref: str
    samples: Dict[str, Sample]
    ploidy: Dict[str, int] = field(default_factory=dict)

    @property
    def pos1(self) -> int:
        return self.pos0 + 1

    def coverage(self) -> int:
        return sum(s.observation_count() for s in self.samples.values())


@dataclass(frozen=True)
class SiteCall:
    """Per-position result handed to reporting."""

    chrom: str
    pos0: int
    ref: str
    alleles: Tuple[Allele, ...]
    coverage: int
    p_var: float
    is_variant: bool
    best_combo: GenotypeCombo
    best_combo_score: float
    alternates: Tuple[Tuple[Allele, int], ...]
    # sample -> genotype -> normalized log posterior
    marginals: Dict[str, Dict[Genotype, float]]
    posterior_normalizer: float
    combos_evaluated: int
    best_combo_ewens_ln: float
    numeric_faults: int = 0
    combo_results: Tuple[GenotypeComboResult, ...] = ()

    @property
    def pos1(self) -> int:
        return self.pos0 + 1

    def best_genotypes(self) -> Dict[str, Genotype]:
        return {e.sample: e.genotype for e in self.best_combo.entries}
