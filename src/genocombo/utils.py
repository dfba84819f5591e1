from __future__ import annotations

import gzip
import json
import logging
import math
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, MutableMapping, Optional, Sequence, TextIO

import numpy as np

logger = logging.getLogger(__name__)

# Smallest log-probability a positive double can carry; substituted for
# empty or non-finite log-space terms.
MIN_LOG_PROB = math.log(sys.float_info.min)

NUMERIC_FAULTS = "numeric_faults"


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def phred_to_error_prob(q: int) -> float:
    # Guard against negative values (can occur if qualities are missing).
    if q <= 0:
        return 1.0
    return 10 ** (-q / 10)


def effective_error_prob(baseq: int, mapq: int, *, cap: float = 0.25) -> float:
    """Combine base quality and mapping quality into one observation error rate.

    A read is treated as wrong if either the base call or the placement is wrong.

    cap:
        Upper cap on error to avoid numerical pathologies on very low-quality reads.
    """
    e_seq = phred_to_error_prob(baseq)
    e_map = phred_to_error_prob(mapq)
    e = 1.0 - (1.0 - e_seq) * (1.0 - e_map)
    return clamp(e, 1e-6, cap)


def record_numeric_fault(stats: Optional[MutableMapping[str, int]], what: str) -> None:
    logger.warning("Numeric instability (%s); substituting log-probability %.1f", what, MIN_LOG_PROB)
    if stats is not None:
        stats[NUMERIC_FAULTS] = stats.get(NUMERIC_FAULTS, 0) + 1


def finite_or_floor(x: float, *, stats: Optional[MutableMapping[str, int]] = None, what: str = "value") -> float:
    if math.isfinite(x):
        return float(x)
    record_numeric_fault(stats, f"non-finite {what}")
    return MIN_LOG_PROB


def logsumexp(
    values: Iterable[float],
    *,
    stats: Optional[MutableMapping[str, int]] = None,
) -> float:
    """Numerically stable log(sum(exp(values))).

    An empty input is a numeric fault: it is counted in ``stats`` and
    ``MIN_LOG_PROB`` is returned.
    """
    arr = np.fromiter(values, dtype=np.float64)
    if arr.size == 0:
        record_numeric_fault(stats, "log-sum-exp of an empty set")
        return MIN_LOG_PROB
    m = float(np.max(arr))
    if not math.isfinite(m):
        if m == -math.inf:
            return MIN_LOG_PROB
        record_numeric_fault(stats, "non-finite log-sum-exp term")
        arr = np.where(np.isfinite(arr), arr, MIN_LOG_PROB)
        m = float(np.max(arr))
    return m + float(np.log(np.sum(np.exp(arr - m))))


def safe_exp(x: float) -> float:
    if x < MIN_LOG_PROB:
        return 0.0
    return math.exp(x)


def log_multinomial_coefficient(n: int, counts: Sequence[int]) -> float:
    """ln(n! / prod(c!))"""
    return math.lgamma(n + 1) - sum(math.lgamma(c + 1) for c in counts)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def merge_counts(into: Dict[str, int], other: MutableMapping[str, int]) -> None:
    for k, v in other.items():
        into[k] = into.get(k, 0) + int(v)
