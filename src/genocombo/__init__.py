"""GenoCombo: Bayesian multi-sample genotype-combination posterior inference.

Public API is intentionally small; most users should use the CLI:

    genocombo call --observations obs.tsv.gz --outdir ...

or call :func:`genocombo.caller.call_site` once per genomic position.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
