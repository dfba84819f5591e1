import gzip
from pathlib import Path

import pytest

from genocombo.caller import infer_site
from genocombo.config import CallerConfig
from genocombo.models import SNP, Allele, reference_allele
from genocombo.observations import (
    CALLS_COLUMNS,
    OBSERVATION_COLUMNS,
    format_call_row,
    format_failed_bed,
    format_trace_rows,
    iter_sites,
    load_regions,
)

HEADER = "\t".join(OBSERVATION_COLUMNS + ["read_id"]) + "\n"


def _write_table(path: Path, rows, gz: bool = False) -> Path:
    text = HEADER + "".join("\t".join(str(x) for x in row) + "\n" for row in rows)
    if gz:
        with gzip.open(path, "wt") as fh:
            fh.write(text)
    else:
        path.write_text(text)
    return path


def _rows(chrom, pos, ref, sample, base, kind, n):
    return [(chrom, pos, ref, sample, base, kind, 30, 60, f"{sample}_{pos}_{i}") for i in range(n)]


def test_iter_sites_groups_by_position(tmp_path: Path) -> None:
    rows = _rows("chr1", 100, "A", "S1", "T", "snp", 3) + _rows("chr1", 100, "A", "S2", "A", "reference", 2)
    rows += _rows("chr1", 105, "C", "S1", "C", "reference", 4)
    path = _write_table(tmp_path / "obs.tsv.gz", rows, gz=True)

    stats = {}
    sites = list(iter_sites(path, ploidy={"S1": 4}, stats=stats))
    assert [(s.chrom, s.pos1) for s in sites] == [("chr1", 100), ("chr1", 105)]
    assert sites[0].pos0 == 99
    assert sites[0].samples["S1"].support() == {"T": 3}
    assert sites[0].samples["S2"].observation_count() == 2
    assert sites[0].ploidy == {"S1": 4}
    assert stats == {"rows_total": 9, "rows_malformed": 0}


def test_malformed_rows_are_skipped(tmp_path: Path) -> None:
    rows = _rows("chr1", 100, "A", "S1", "T", "snp", 2)
    rows.append(("chr1", "abc", "A", "S1", "T", "snp", 30, 60, "bad_pos"))
    rows.append(("chr1", 100, "A", "S1", "T", "weird", 30, 60, "bad_kind"))
    rows.append(("chr1", 100, "A", "S1"))
    path = _write_table(tmp_path / "obs.tsv", rows)

    stats = {}
    sites = list(iter_sites(path, stats=stats))
    assert len(sites) == 1
    assert sites[0].coverage() == 2
    assert stats["rows_malformed"] == 3


def test_non_contiguous_positions_raise(tmp_path: Path) -> None:
    rows = _rows("chr1", 100, "A", "S1", "T", "snp", 1)
    rows += _rows("chr1", 200, "C", "S1", "C", "reference", 1)
    rows += _rows("chr1", 100, "A", "S2", "A", "reference", 1)
    path = _write_table(tmp_path / "obs.tsv", rows)
    with pytest.raises(ValueError, match="not contiguous"):
        list(iter_sites(path))


def test_missing_columns_raise(tmp_path: Path) -> None:
    path = tmp_path / "obs.tsv"
    path.write_text("chrom\tpos\tref\n")
    with pytest.raises(ValueError, match="missing columns"):
        list(iter_sites(path))


def test_indel_alleles_parse(tmp_path: Path) -> None:
    rows = [
        ("chr1", 100, "A", "S1", "GT", "insertion", 30, 60, "r1"),
        ("chr1", 100, "A", "S1", "AC", "deletion", 30, 60, "r2"),
    ]
    (site,) = list(iter_sites(_write_table(tmp_path / "obs.tsv", rows)))
    assert set(site.samples["S1"].support()) == {"IGT", "D2"}


def test_call_row_and_bed_formatting(tmp_path: Path) -> None:
    rows = _rows("chr1", 100, "A", "S1", "T", "snp", 10) + _rows("chr1", 100, "A", "S2", "A", "reference", 10)
    (site,) = list(iter_sites(_write_table(tmp_path / "obs.tsv", rows)))
    A = reference_allele("A")
    T = Allele(kind=SNP, sequence="T")
    call = infer_site(site, [A, T], CallerConfig(trace=True))

    fields = format_call_row(call).rstrip("\n").split("\t")
    assert len(fields) == len(CALLS_COLUMNS)
    assert fields[:4] == ["chr1", "100", "A", "A,T"]
    assert fields[6] == "1"
    assert fields[7] == "S1:T/T S2:A/A"
    assert fields[8] == "T:2"
    assert fields[12].startswith("S1=T/T:")

    assert format_failed_bed(call) == ["chr1\t99\t100\tT\n"]
    assert len(format_trace_rows(call)) == call.combos_evaluated


def test_chromosome_seen_again_raises(tmp_path: Path) -> None:
    rows = _rows("chr1", 100, "A", "S1", "A", "reference", 1)
    rows += _rows("chr2", 10, "C", "S1", "C", "reference", 1)
    rows += _rows("chr1", 300, "G", "S1", "G", "reference", 1)
    path = _write_table(tmp_path / "obs.tsv", rows)
    with pytest.raises(ValueError, match="not contiguous"):
        list(iter_sites(path))


def test_new_chromosome_may_restart_positions(tmp_path: Path) -> None:
    rows = _rows("chr1", 500, "A", "S1", "A", "reference", 1)
    rows += _rows("chr2", 10, "C", "S1", "C", "reference", 1)
    sites = list(iter_sites(_write_table(tmp_path / "obs.tsv", rows)))
    assert [(s.chrom, s.pos1) for s in sites] == [("chr1", 500), ("chr2", 10)]


def test_streaming_state_does_not_grow_with_positions(tmp_path: Path) -> None:
    rows = []
    for chrom in ("chr1", "chr2"):
        for pos in range(1, 2001):
            rows += _rows(chrom, pos, "A", "S1", "A", "reference", 1)
    gen = iter_sites(_write_table(tmp_path / "obs.tsv", rows))

    for _ in range(3500):
        next(gen)
    frame = gen.gi_frame.f_locals
    assert frame["finished_chroms"] == {"chr1"}
    assert frame["last"][0] == "chr2"
    assert sum(1 for _ in gen) == 500


def test_load_regions(tmp_path: Path) -> None:
    bed = tmp_path / "targets.bed"
    bed.write_text("track name=targets\n# comment\nchr1\t90\t100\tgeneA\nchr2\t0\t50\n")
    assert load_regions(bed) == (("chr1", 90, 100), ("chr2", 0, 50))

    bad = tmp_path / "bad.bed"
    bad.write_text("chr1\tx\t100\n")
    with pytest.raises(ValueError, match="expected"):
        load_regions(bad)
