from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def _save(fig: plt.Figure, out_png: str | Path) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_png, dpi=160)
    plt.close(fig)
    logger.debug("Wrote %s", out_png)


def plot_pvar_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    threshold: Optional[float] = None,
    title: str = "Probability of variation per site",
) -> None:
    """Step histogram of per-site P(variation), with the reporting threshold marked."""
    fig, ax = plt.subplots()
    ax.stairs(counts, bin_edges, fill=True, alpha=0.7)
    if threshold is not None:
        ax.axvline(threshold, color="black", linestyle="--", label=f"PVL = {threshold:g}")
        ax.legend(loc="upper center")
    ax.set_xlim(0.0, 1.0)
    ax.set_yscale("symlog")
    ax.set_xlabel("P(variation)")
    ax.set_ylabel("Site count")
    ax.set_title(title)
    _save(fig, out_png)


def plot_site_counts(
    *,
    counts: Mapping[str, int],
    out_png: str | Path,
    title: str = "Site outcomes",
) -> None:
    """Horizontal bars: processed, variant, then one bar per skip reason."""
    labels = ["processed", "variant"]
    values = [int(counts.get("sites_processed", 0)), int(counts.get("sites_variant", 0))]
    for key in sorted(counts):
        if key.startswith("sites_skipped_"):
            labels.append("skipped: " + key[len("sites_skipped_") :].replace("_", " "))
            values.append(int(counts[key]))

    fig, ax = plt.subplots(figsize=(6.4, 0.45 * len(labels) + 1.2))
    ax.barh(labels, values)
    ax.invert_yaxis()
    ax.set_xlabel("Site count")
    ax.set_title(title)
    _save(fig, out_png)


def combos_bins(combos_hist: Mapping[int, int]) -> Tuple[List[str], List[int]]:
    """Collapse per-site combination counts into power-of-two bins (1, 2-3, 4-7, ...)."""
    binned: Dict[int, int] = {}
    for k, v in combos_hist.items():
        b = int(k).bit_length()
        binned[b] = binned.get(b, 0) + int(v)
    if not binned:
        return [], []

    labels: List[str] = []
    values: List[int] = []
    for b in range(min(binned), max(binned) + 1):
        lo, hi = (0, 0) if b == 0 else (1 << (b - 1), (1 << b) - 1)
        labels.append(str(lo) if lo == hi else f"{lo}-{hi}")
        values.append(binned.get(b, 0))
    return labels, values


def plot_combos_hist(
    *,
    combos_hist: Mapping[int, int],
    out_png: str | Path,
    title: str = "Genotype combinations evaluated per site",
) -> None:
    labels, values = combos_bins(combos_hist)
    fig, ax = plt.subplots()
    ax.bar(range(len(values)), values)
    ax.set_xticks(range(len(values)))
    ax.set_xticklabels(labels, rotation=45, ha="right")
    ax.set_xlabel("Combinations evaluated")
    ax.set_ylabel("Site count")
    ax.set_title(title)
    _save(fig, out_png)
