from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .config import CallerConfig
from .observations import load_regions
from .plotting import plot_combos_hist, plot_pvar_hist, plot_site_counts
from .runner import call_observation_table
from .toy_data import make_toy_data
from .utils import ensure_outdir


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _sample_ploidy(s: str) -> tuple[str, int]:
    name, sep, value = s.rpartition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Expected NAME=PLOIDY, got: {s}")
    try:
        return name, int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Ploidy must be an integer: {s}") from None


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="genocombo",
        description=(
            "GenoCombo: Bayesian multi-sample genotype-combination calling from "
            "pre-extracted per-sample allele observations."
        ),
    )
    p.add_argument("--version", action="version", version=f"genocombo {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny observation table for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Compute per-site probability of variation and best genotype combination.",
    )
    c.add_argument(
        "--observations",
        required=True,
        type=_path_exists,
        help="Observation table (.tsv/.tsv.gz): chrom pos ref sample allele kind baseq mapq [read_id].",
    )
    c.add_argument("--outdir", required=True, help="Output directory.")

    # Prior and posterior
    c.add_argument("--theta", type=float, default=0.001, help="Ewens prior mutation parameter.")
    c.add_argument("--pvl", type=float, default=0.5, help="Report sites with P(variation) >= this.")
    c.add_argument("--pooled", action="store_true", help="Samples are pools of many individuals.")
    c.add_argument(
        "--diffusion",
        type=float,
        default=0.0,
        help="Diffusion prior scalar blending neighboring allele-frequency spectra (0 disables).",
    )
    c.add_argument(
        "--posterior-depth",
        type=int,
        default=1000,
        help="Max genotype combinations integrated per site (homozygous ones always kept; 0 = all).",
    )

    # Banded search
    c.add_argument("--bandwidth", type=int, default=3, help="Top genotypes per sample in the band (W).")
    c.add_argument(
        "--band-threshold",
        type=float,
        default=20.0,
        help="Max log-likelihood distance from a sample's best genotype (TB).",
    )
    c.add_argument(
        "--max-combo-step",
        type=int,
        default=2,
        help="Max samples moved off their best genotype at once.",
    )
    c.add_argument(
        "--max-banded-combos",
        type=int,
        default=None,
        help="Cap on banded combinations per site (default: 1 + W * samples * step).",
    )

    # Data likelihood
    c.add_argument(
        "--rdf",
        type=float,
        default=0.9,
        help="Read dependence factor scaling each observation's log-likelihood, in (0, 1].",
    )
    c.add_argument("--min-baseq", type=int, default=0, help="Drop observations below this base quality.")
    c.add_argument("--min-mapq", type=int, default=0, help="Drop observations below this mapping quality.")

    # Samples and alleles
    c.add_argument("--ploidy", type=int, default=2, help="Default sample ploidy.")
    c.add_argument(
        "--sample-ploidy",
        action="append",
        type=_sample_ploidy,
        default=[],
        metavar="NAME=PLOIDY",
        help="Per-sample ploidy override (repeatable).",
    )
    c.add_argument("--min-alt-count", type=int, default=2, help="Min reads supporting an alternate in one sample.")
    c.add_argument(
        "--min-alt-fraction",
        type=float,
        default=0.2,
        help="Min fraction of a sample's reads supporting an alternate.",
    )
    c.add_argument("--no-snps", action="store_true", help="Ignore SNP observations.")
    c.add_argument("--indels", action="store_true", help="Evaluate insertion/deletion observations.")
    c.add_argument("--mnps", action="store_true", help="Evaluate multi-nucleotide observations.")
    c.add_argument(
        "--force-canonical-alleles",
        action="store_true",
        help="Evaluate all of A/C/G/T at every site instead of observed alternates.",
    )
    c.add_argument(
        "--use-ref-allele",
        action="store_true",
        help="Add the reference as a haploid pseudo-sample.",
    )

    c.add_argument(
        "--regions",
        type=_path_exists,
        default=None,
        help="BED file of target intervals; positions outside them are skipped.",
    )

    # Outputs
    c.add_argument(
        "--calls-tsv",
        default=None,
        help="Optional path for calls TSV.GZ (default: outdir/calls.tsv.gz).",
    )
    c.add_argument("--failed-bed", default=None, help="Write sites below --pvl to this BED file.")
    c.add_argument("--trace", default=None, help="Write every scored combination to this TSV.GZ.")
    c.add_argument("--no-plots", action="store_true", help="Skip diagnostic plots.")
    c.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")

    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


def config_from_args(args: argparse.Namespace) -> CallerConfig:
    sample_ploidy: Dict[str, int] = dict(args.sample_ploidy)
    return CallerConfig(
        theta=float(args.theta),
        min_p_var=float(args.pvl),
        bandwidth=int(args.bandwidth),
        band_threshold=float(args.band_threshold),
        max_combo_step=int(args.max_combo_step),
        max_banded_combos=args.max_banded_combos,
        posterior_integration_depth=int(args.posterior_depth),
        pooled=bool(args.pooled),
        diffusion_prior_scalar=float(args.diffusion),
        read_dependence_factor=float(args.rdf),
        default_ploidy=int(args.ploidy),
        sample_ploidy=sample_ploidy,
        min_alt_count=int(args.min_alt_count),
        min_alt_fraction=float(args.min_alt_fraction),
        allow_snps=not bool(args.no_snps),
        allow_indels=bool(args.indels),
        allow_mnps=bool(args.mnps),
        force_canonical_alleles=bool(args.force_canonical_alleles),
        use_ref_allele=bool(args.use_ref_allele),
        min_base_quality=int(args.min_baseq),
        min_mapping_quality=int(args.min_mapq),
        regions=load_regions(args.regions) if args.regions else (),
    ).validate()


def cmd_quickstart() -> int:
    lines = [
        "GenoCombo quickstart (copy/paste):",
        "",
        "1) Try it on toy data:",
        "   genocombo make-toy-data --outdir toy/",
        "   genocombo call --observations toy/observations.tsv.gz --outdir toy_calls/",
        "   Outputs: toy_calls/calls.tsv.gz, toy_calls/summary.json, toy_calls/plots/",
        "",
        "2) Diploid cohort with a tetraploid sample:",
        "   genocombo call \\",
        "     --observations cohort.tsv.gz \\",
        "     --sample-ploidy TETRA1=4 \\",
        "     --pvl 0.9 --failed-bed cohort_failed.bed \\",
        "     --outdir cohort_calls/",
        "",
        "3) Pooled samples with a smoothed prior:",
        "   genocombo call \\",
        "     --observations pools.tsv.gz \\",
        "     --ploidy 20 --pooled --diffusion 0.5 \\",
        "     --outdir pool_calls/",
        "",
        "Tip: use --dry-run to validate inputs and options without writing outputs.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_call(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "call.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("genocombo")
    logger.info("genocombo %s", __version__)

    try:
        config = config_from_args(args)

        if args.dry_run:
            print("Dry-run: inputs and options look OK.")
            print("Planned outputs:")
            print(f"  calls.tsv.gz -> {args.calls_tsv or outdir / 'calls.tsv.gz'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if args.failed_bed:
                print(f"  failed sites -> {args.failed_bed}")
            if args.trace:
                print(f"  trace -> {args.trace}")
            return 0

        outdir = ensure_outdir(outdir)

        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "summary.json"))
            return 0

        run = call_observation_table(
            observations_path=args.observations,
            config=config,
            outdir=outdir,
            calls_tsv_gz=args.calls_tsv,
            failed_bed=args.failed_bed,
            trace_tsv_gz=args.trace,
            progress=not bool(args.no_progress),
        )

        if not args.no_plots:
            plots_dir = outdir / "plots"
            plot_pvar_hist(
                bin_edges=run["pvar_hist"]["bin_edges"],
                counts=run["pvar_hist"]["counts"],
                out_png=plots_dir / "pvar_hist.png",
                threshold=config.min_p_var,
            )
            plot_site_counts(counts=run["counts"], out_png=plots_dir / "site_counts.png")
            plot_combos_hist(combos_hist=run["combos_evaluated_hist"], out_png=plots_dir / "combos_hist.png")

        counts = run["counts"]
        logger.info(
            "Processed %d of %d sites; %d variant (P(var) >= %.3g)",
            counts["sites_processed"],
            counts["sites_total"],
            counts["sites_variant"],
            config.min_p_var,
        )
        print(str(run["calls_tsv_gz"]))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "call":
        return cmd_call(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
