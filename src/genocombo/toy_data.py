from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Tuple

from .observations import OBSERVATION_COLUMNS
from .utils import ensure_outdir, open_textmaybe_gzip, write_json

Row = Tuple[str, int, str, str, str, str, int, int, str]


def _rows_for(
    chrom: str,
    pos1: int,
    ref: str,
    sample: str,
    calls: List[Tuple[str, int]],
    rng: random.Random,
) -> List[Row]:
    rows: List[Row] = []
    i = 0
    for base, n in calls:
        kind = "reference" if base == ref else "snp"
        for _ in range(n):
            baseq = rng.randint(25, 40)
            rows.append((chrom, pos1, ref, sample, base, kind, baseq, 60, f"{sample}_{pos1}_{i}"))
            i += 1
    return rows


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Write a tiny two-sample observation table suitable for quick demos/tests.

    Positions (chr1, 1-based):

    - 100: sample S1 all T, sample S2 all A (reference A); a clear variant.
    - 200: both samples reference C with two G calls in S1.
    - 300: reference base N; skipped by the caller.

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    rows: List[Row] = []
    rows += _rows_for("chr1", 100, "A", "S1", [("T", 10)], rng)
    rows += _rows_for("chr1", 100, "A", "S2", [("A", 10)], rng)
    rows += _rows_for("chr1", 200, "C", "S1", [("C", 8), ("G", 2)], rng)
    rows += _rows_for("chr1", 200, "C", "S2", [("C", 10)], rng)
    rows += _rows_for("chr1", 300, "N", "S1", [("A", 5), ("G", 5)], rng)

    obs_path = outdir_p / "observations.tsv.gz"
    with open_textmaybe_gzip(obs_path, "wt") as fh:
        fh.write("\t".join(OBSERVATION_COLUMNS + ["read_id"]) + "\n")
        for row in rows:
            fh.write("\t".join(str(x) for x in row) + "\n")

    summary = {
        "observations": str(obs_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
