from __future__ import annotations

from typing import Optional


class InvalidPloidyError(ValueError):
    """Raised when genotypes are requested for a ploidy <= 0."""

    def __init__(self, ploidy: int, *, sample: Optional[str] = None) -> None:
        msg = f"Invalid ploidy {ploidy}: ploidy must be >= 1"
        if sample is not None:
            msg += f" (sample '{sample}')"
        super().__init__(msg)
        self.ploidy = ploidy
        self.sample = sample


class EmptyCandidateSetError(RuntimeError):
    """Raised when the posterior aggregator is handed no genotype combinations."""


class InsufficientEvidence(Exception):
    """Normal no-call outcome for a position; ``reason`` names why it was skipped."""

    def __init__(self, reason: str, *, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail
