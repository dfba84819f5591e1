from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple

from .errors import InvalidPloidyError


@dataclass(frozen=True)
class CallerConfig:
    """Tunables for the per-position posterior engine.

    Attributes
    ----------
    theta:
        Population mutation-rate parameter of the Ewens allele-frequency prior.
    min_p_var:
        Probability-of-variation threshold (PVL) for reporting a site as variant.
    bandwidth:
        Number of top-ranked genotypes per sample eligible for banded search (W).
    band_threshold:
        Maximum natural-log likelihood distance from a sample's best genotype (TB).
    max_combo_step:
        Maximum number of samples moved off their best genotype at once.
    max_banded_combos:
        Cap on combos produced by banding (before homozygous anchors).
        ``None`` means ``1 + bandwidth * samples * max_combo_step``.
    posterior_integration_depth:
        Keep at most this many scored combos (plus homozygous anchors); 0 disables.
    pooled:
        Samples are pools of many individuals rather than single individuals.
    diffusion_prior_scalar:
        Weight of neighboring frequency configurations in the prior; 0 disables.
    read_dependence_factor:
        Scales each observation's log-likelihood contribution, in (0, 1].
    regions:
        Target intervals as (chrom, start, end), 0-based half-open like BED.
        Positions outside every interval are skipped; empty means no restriction.
    """

    theta: float = 0.001
    min_p_var: float = 0.5
    bandwidth: int = 3
    band_threshold: float = 20.0
    max_combo_step: int = 2
    max_banded_combos: Optional[int] = None
    posterior_integration_depth: int = 1000
    pooled: bool = False
    diffusion_prior_scalar: float = 0.0
    read_dependence_factor: float = 0.9

    default_ploidy: int = 2
    sample_ploidy: Dict[str, int] = field(default_factory=dict)

    min_alt_count: int = 2
    min_alt_fraction: float = 0.2
    allow_snps: bool = True
    allow_indels: bool = False
    allow_mnps: bool = False
    force_canonical_alleles: bool = False
    use_ref_allele: bool = False
    reference_sample_name: str = "reference"
    reference_quality: int = 60
    min_base_quality: int = 0
    min_mapping_quality: int = 0
    error_cap: float = 0.25
    trace: bool = False
    regions: Tuple[Tuple[str, int, int], ...] = ()

    def validate(self) -> "CallerConfig":
        """Raise on malformed options; return self for chaining."""
        if self.default_ploidy <= 0:
            raise InvalidPloidyError(self.default_ploidy)
        for name, p in self.sample_ploidy.items():
            if p <= 0:
                raise InvalidPloidyError(p, sample=name)
        if self.theta <= 0:
            raise ValueError("theta must be > 0")
        if not (0.0 <= self.min_p_var <= 1.0):
            raise ValueError("min_p_var must be in [0, 1]")
        if self.bandwidth < 1:
            raise ValueError("bandwidth must be >= 1")
        if self.band_threshold < 0:
            raise ValueError("band_threshold must be >= 0")
        if self.max_combo_step < 0:
            raise ValueError("max_combo_step must be >= 0")
        if self.max_banded_combos is not None and self.max_banded_combos < 1:
            raise ValueError("max_banded_combos must be >= 1")
        if self.posterior_integration_depth < 0:
            raise ValueError("posterior_integration_depth must be >= 0 (0 disables trimming)")
        if self.diffusion_prior_scalar < 0:
            raise ValueError("diffusion_prior_scalar must be >= 0")
        if not (0.0 < self.read_dependence_factor <= 1.0):
            raise ValueError("read_dependence_factor must be in (0, 1]")
        if self.min_alt_count < 0:
            raise ValueError("min_alt_count must be >= 0")
        if not (0.0 <= self.min_alt_fraction <= 1.0):
            raise ValueError("min_alt_fraction must be in [0, 1]")
        if not (0.0 < self.error_cap < 1.0):
            raise ValueError("error_cap must be in (0, 1)")
        for chrom, start, end in self.regions:
            if start < 0 or end <= start:
                raise ValueError(f"invalid region {chrom}:{start}-{end}: need 0 <= start < end")
        return self

    def ploidy_for(self, sample: str) -> int:
        return self.sample_ploidy.get(sample, self.default_ploidy)

    def in_regions(self, chrom: str, pos0: int) -> bool:
        if not self.regions:
            return True
        return any(c == chrom and start <= pos0 < end for c, start, end in self.regions)

    def to_jsonable(self) -> Dict[str, Any]:
        return asdict(self)
