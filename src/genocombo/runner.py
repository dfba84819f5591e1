from __future__ import annotations

import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Dict, Optional, TextIO

import numpy as np

from .caller import call_sites
from .config import CallerConfig
from .genotypes import GenotypeCache
from .observations import (
    CALLS_COLUMNS,
    TRACE_COLUMNS,
    format_call_row,
    format_failed_bed,
    format_trace_rows,
    iter_sites,
)
from .utils import ensure_outdir, open_textmaybe_gzip, write_json

logger = logging.getLogger(__name__)


def call_observation_table(
    *,
    observations_path: str,
    config: CallerConfig,
    outdir: str | Path,
    calls_tsv_gz: Optional[str] = None,
    failed_bed: Optional[str] = None,
    trace_tsv_gz: Optional[str] = None,
    progress: bool = True,
) -> Dict[str, object]:
    """Main workhorse: stream positions, call them, write outputs, and return summary dict."""
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)
    config.validate()

    if calls_tsv_gz is None:
        calls_tsv_gz = str(outdir_path / "calls.tsv.gz")

    calls_fh = open_textmaybe_gzip(calls_tsv_gz, "wt")
    calls_fh.write("\t".join(CALLS_COLUMNS) + "\n")

    failed_fh: Optional[TextIO] = None
    if failed_bed is not None:
        failed_fh = open(failed_bed, "wt", encoding="utf-8")

    trace_fh: Optional[TextIO] = None
    if trace_tsv_gz is not None:
        trace_fh = open_textmaybe_gzip(trace_tsv_gz, "wt")
        trace_fh.write("\t".join(TRACE_COLUMNS) + "\n")

    # Streaming histograms
    pvar_bins = np.linspace(0.0, 1.0, 101)
    pvar_counts = np.zeros(len(pvar_bins) - 1, dtype=np.int64)
    combos_hist: Dict[int, int] = {}

    row_stats: Dict[str, int] = {}
    counts: Dict[str, int] = {}
    cache = GenotypeCache()

    sites = iter_sites(observations_path, stats=row_stats)
    run_config = replace(config, trace=True) if trace_fh is not None else config

    for call in call_sites(sites, run_config, cache=cache, counts=counts, progress=progress):
        calls_fh.write(format_call_row(call))
        pvar_counts += np.histogram([call.p_var], bins=pvar_bins)[0]
        combos_hist[call.combos_evaluated] = combos_hist.get(call.combos_evaluated, 0) + 1

        if failed_fh is not None and not call.is_variant:
            failed_fh.writelines(format_failed_bed(call))
        if trace_fh is not None:
            trace_fh.writelines(format_trace_rows(call))

    calls_fh.close()
    if failed_fh is not None:
        failed_fh.close()
    if trace_fh is not None:
        trace_fh.close()

    dt = time.time() - t0

    summary = {
        "observations_path": observations_path,
        "config": config.to_jsonable(),
        "calls_tsv_gz": str(calls_tsv_gz),
        "failed_bed": str(failed_bed) if failed_bed is not None else None,
        "trace_tsv_gz": str(trace_tsv_gz) if trace_tsv_gz is not None else None,
        "counts": counts,
        "rows": row_stats,
        "genotype_cache": {"entries": len(cache), "hits": cache.hits, "misses": cache.misses},
        "pvar_hist": {
            "bin_edges": pvar_bins.tolist(),
            "counts": pvar_counts.tolist(),
        },
        "combos_evaluated_hist": combos_hist,
        "runtime_seconds": float(dt),
    }

    write_json(outdir_path / "summary.json", summary)
    logger.info("Wrote %s and summary.json in %.1fs", calls_tsv_gz, dt)
    return summary
