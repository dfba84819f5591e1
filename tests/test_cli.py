import gzip
import json
import subprocess
import sys
from pathlib import Path

from genocombo.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "genocombo"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "genocombo", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "GenoCombo" in cp.stdout or "genocombo" in cp.stdout.lower()


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "genocombo call" in cp.stdout
    assert "genocombo make-toy-data" in cp.stdout


def test_make_toy_data_dry_run(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy"), "--dry-run"])
    assert cp.returncode == 0
    assert "Would write toy data" in cp.stdout
    assert not (tmp_path / "toy").exists()


def test_call_on_toy_data(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "calls"
    failed = tmp_path / "failed.bed"
    trace = tmp_path / "trace.tsv.gz"
    cp = _run_cli(
        [
            "call",
            "--observations",
            toy["observations"],
            "--outdir",
            str(outdir),
            "--failed-bed",
            str(failed),
            "--trace",
            str(trace),
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "summary.json").exists()
    assert (outdir / "plots" / "pvar_hist.png").exists()
    assert failed.exists()

    summary = json.loads((outdir / "summary.json").read_text())
    counts = summary["counts"]
    assert counts["sites_total"] == 3
    assert counts["sites_processed"] == 2
    assert counts["sites_skipped_non_acgt_reference"] == 1
    assert summary["rows"]["rows_malformed"] == 0

    with gzip.open(outdir / "calls.tsv.gz", "rt") as fh:
        lines = fh.read().splitlines()
    assert lines[0].startswith("chrom\tpos\tref")
    first = lines[1].split("\t")
    assert first[:2] == ["chr1", "100"]
    assert first[6] == "1"
    assert first[7] == "S1:T/T S2:A/A"

    with gzip.open(trace, "rt") as fh:
        assert fh.readline().startswith("chrom\tpos\tcombo")
        assert fh.readline()

    cp = _run_cli(["call", "--observations", toy["observations"], "--outdir", str(outdir), "--resume"])
    assert cp.returncode == 0
    assert "summary.json" in cp.stdout


def test_call_dry_run(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(["call", "--observations", toy["observations"], "--outdir", str(tmp_path / "out"), "--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert not (tmp_path / "out" / "summary.json").exists()


def test_call_rejects_bad_options(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        ["call", "--observations", toy["observations"], "--outdir", str(tmp_path / "out"), "--ploidy", "0"]
    )
    assert cp.returncode == 2
    assert "InvalidPloidyError" in cp.stderr

    cp = _run_cli(["call", "--observations", str(tmp_path / "missing.tsv"), "--outdir", str(tmp_path / "out")])
    assert cp.returncode != 0
    assert "Path does not exist" in cp.stderr


def test_call_with_regions(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    bed = tmp_path / "targets.bed"
    bed.write_text("chr1\t99\t100\n")
    outdir = tmp_path / "calls"
    cp = _run_cli(
        ["call", "--observations", toy["observations"], "--outdir", str(outdir), "--regions", str(bed), "--no-plots"]
    )
    assert cp.returncode == 0, cp.stderr
    counts = json.loads((outdir / "summary.json").read_text())["counts"]
    assert counts["sites_processed"] == 1
    assert counts["sites_skipped_outside_regions"] == 2
