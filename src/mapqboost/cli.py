from __future__ import annotations

import argparse
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .config import ClipMode, FilterConfig, IndelPenaltyMode, SortOrder
from .pipeline import filter_pe_bam, filter_se_bam
from .plotting import plot_summary
from .report import render_report
from .toy_data import make_toy_data
from .utils import ensure_outdir, read_name_list
from .variants import VcfVariantSource


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


def _percent(p: str) -> float:
    v = float(p)
    if not (0.0 <= v <= 100.0):
        raise argparse.ArgumentTypeError(f"Expected a percentage between 0 and 100, got {p}")
    return v


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_filter_args(p: argparse.ArgumentParser, *, paired: bool) -> None:
    p.add_argument("--in", dest="in_path", required=True, type=_path_exists, help="Input SAM/BAM grouped by read name.")
    p.add_argument("--out", dest="out_path", required=True, help="Output SAM/BAM (.sam writes text).")
    p.add_argument(
        "--outdir",
        default=None,
        help="Directory for summary.json, plots, report.html and logs (default: next to --out).",
    )
    p.add_argument("--known-vcf", default=None, type=_path_exists, help="Known variants VCF/BCF (.vcf.gz with .tbi preferred).")
    p.add_argument(
        "--af-tag",
        default="AF",
        help="INFO tag with allele frequencies used to penalize known variants; 'none' uses fixed penalties.",
    )
    p.add_argument("--chrom-list", default=None, type=_path_exists, help="File with one contig name per line to keep.")

    # Record correction
    c = p.add_argument_group("record correction")
    c.add_argument("--seed-len", type=int, default=25, help="Seed length from the 5' end of the read.")
    c.add_argument("--match-score", type=int, default=1, help="1-D realignment match score.")
    c.add_argument("--mismatch-score", type=int, default=-2, help="1-D realignment mismatch score.")
    c.add_argument("--gap-open", type=int, default=4, help="Gap open penalty (log10 units) in the likelihood.")
    c.add_argument("--gap-ext", type=int, default=1, help="Gap extension penalty (log10 units) in the likelihood.")
    c.add_argument("--dp-gap-open", type=int, default=4, help="Gap open penalty of the 1-D realignment.")
    c.add_argument("--dp-gap-ext", type=int, default=1, help="Gap extension penalty of the 1-D realignment.")
    c.add_argument("--clip-penalty", type=int, default=0, help="Extra penalty per clipped base.")
    c.add_argument(
        "--clip-mode",
        choices=[m.value for m in ClipMode],
        default=ClipMode.END5.value,
        help="Which clipped bases count as mismatches.",
    )
    c.add_argument(
        "--indel-mode",
        choices=[m.value for m in IndelPenaltyMode],
        default=IndelPenaltyMode.ABSOLUTE.value,
        help="Fixed gap penalties or penalties scaled by the adjacent base quality.",
    )
    c.add_argument("--1dp", dest="do_1dp", action="store_true", help="Re-find the best local insert region (1-D DP).")
    c.add_argument("--fix-md", action="store_true", help="Repair malformed MD tags before use.")
    c.add_argument("--known-snp-penalty", type=int, default=0, help="Penalty for an alignment explained by a known SNP.")
    c.add_argument("--known-indel-penalty", type=int, default=2, help="Penalty for a known indel.")
    c.add_argument("--known-multisub-penalty", type=int, default=2, help="Penalty for a known multi-base substitution.")

    # Candidate filters
    f = p.add_argument_group("candidate filters")
    f.add_argument("--min-align-rate", type=float, default=0.9, help="Minimum fraction of the read in the insert region.")
    f.add_argument("--min-identity", type=_percent, default=0.0, help="Minimum identity, in percent.")
    f.add_argument("--max-seed-mis", type=_percent, default=4.0, help="Maximum %% mismatches in the seed.")
    f.add_argument("--max-seed-indel", type=_percent, default=0.0, help="Maximum %% indels in the seed.")
    f.add_argument("--max-all-mis", type=_percent, default=6.0, help="Maximum %% mismatches over the alignment.")
    f.add_argument("--max-all-indel", type=_percent, default=0.0, help="Maximum %% indels over the alignment.")
    f.add_argument(
        "--no-max-sensitivity",
        dest="max_sensitivity",
        action="store_false",
        help="Apply the seed/overall mismatch and indel filters.",
    )

    # Best stratum selection
    b = p.add_argument_group("reporting")
    b.add_argument("--max-hit", type=int, default=10, help="Hit ceiling the aligner was run with (0 = unlimited).")
    b.add_argument("--min-mapq", type=int, default=10, help="Minimum mapping quality to report.")
    b.add_argument("--max-best", type=int, default=1, help="Discard reads with more equally-best hits (0 = no limit).")
    b.add_argument("--max-report", type=int, default=1, help="Maximum alignments reported per read (0 = all).")
    preset = b.add_mutually_exclusive_group()
    preset.add_argument("--best-only", action="store_true", help="Shortcut for --max-best 1 --max-report 1.")
    preset.add_argument("--best", action="store_true", help="Shortcut for --max-best 0 --max-report 1.")
    b.add_argument(
        "--no-update-secondary",
        dest="update_secondary",
        action="store_false",
        help="Keep the aligner's secondary flags instead of flagging all but the best hit.",
    )
    b.add_argument(
        "--sort-order",
        choices=[s.value for s in SortOrder],
        default=SortOrder.NONE.value,
        help="Sort order recorded in the output header (records are not re-sorted).",
    )

    if paired:
        pe = p.add_argument_group("paired-end")
        pe.add_argument("--min-insert", type=int, default=15, help="Minimum insert length of each mate.")
        pe.add_argument("--no-mix", action="store_true", help="Drop candidates where only one mate aligned.")
        pe.add_argument("--fragment-mean", type=float, default=None, help="Fragment length mean (skips estimation).")
        pe.add_argument("--fragment-sd", type=float, default=None, help="Fragment length SD (with --fragment-mean).")
        pe.add_argument("--no-fragment-model", action="store_true", help="Do not weight pairs by fragment length.")
        pe.add_argument("--min-fragment-length", type=int, default=1, help="Shortest template used for estimation.")
        pe.add_argument("--max-fragment-length", type=int, default=1000, help="Longest template used for estimation.")
        pe.add_argument("--fragment-sample-cap", type=int, default=100_000, help="Most templates sampled for estimation.")
        pe.add_argument("--min-fragment-samples", type=int, default=30, help="Fewest templates needed to estimate a model.")

    p.add_argument("--no-report", action="store_true", help="Skip plots and report.html.")
    p.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mapqboost",
        description=(
            "mapqboost: re-score and filter multi-mapped alignments. Corrects alignment statistics, "
            "optionally accounts for known variants, and assigns Bayesian posterior mapping qualities."
        ),
    )
    p.add_argument("--version", action="version", version=f"mapqboost {__version__}")

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
        help="Generate a tiny reference, SE/PE BAMs, and a known-variant VCF for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # filter-se / filter-pe
    # -----------------
    se = sub.add_parser(
        "filter-se",
        help="Filter single-end alignments and assign posterior mapping qualities.",
    )
    _add_filter_args(se, paired=False)

    pe = sub.add_parser(
        "filter-pe",
        help="Filter paired-end alignments, weighting pairs by fragment length.",
    )
    _add_filter_args(pe, paired=True)

    return p


def config_from_args(args: argparse.Namespace, *, paired: bool) -> FilterConfig:
    max_best, max_report = int(args.max_best), int(args.max_report)
    if args.best_only:
        max_best, max_report = 1, 1
    elif args.best:
        max_best, max_report = 0, 1

    af_tag = None if str(args.af_tag).lower() == "none" else args.af_tag
    chrom_list = read_name_list(args.chrom_list) if args.chrom_list else None

    kw: Dict[str, Any] = dict(
        seed_len=int(args.seed_len),
        match_score=int(args.match_score),
        mismatch_score=int(args.mismatch_score),
        gap_open_penalty=int(args.gap_open),
        gap_ext_penalty=int(args.gap_ext),
        dp_gap_open_penalty=int(args.dp_gap_open),
        dp_gap_ext_penalty=int(args.dp_gap_ext),
        clip_penalty=int(args.clip_penalty),
        clip_mode=ClipMode(args.clip_mode),
        indel_mode=IndelPenaltyMode(args.indel_mode),
        do_1dp=bool(args.do_1dp),
        fix_md=bool(args.fix_md),
        chrom_list=chrom_list,
        known_snp_penalty=int(args.known_snp_penalty),
        known_indel_penalty=int(args.known_indel_penalty),
        known_multisub_penalty=int(args.known_multisub_penalty),
        af_tag=af_tag,
        min_align_rate=float(args.min_align_rate),
        min_identity=float(args.min_identity) / 100.0,
        max_seed_mis=float(args.max_seed_mis),
        max_seed_indel=float(args.max_seed_indel),
        max_all_mis=float(args.max_all_mis),
        max_all_indel=float(args.max_all_indel),
        max_sensitivity=bool(args.max_sensitivity),
        max_hit=int(args.max_hit),
        min_mapq=int(args.min_mapq),
        max_best=max_best,
        max_report=max_report,
        update_secondary=bool(args.update_secondary),
        sort_order=SortOrder(args.sort_order),
    )
    if paired:
        kw.update(
            min_insert=int(args.min_insert),
            no_mix=bool(args.no_mix),
            fragment_mean=args.fragment_mean,
            fragment_sd=args.fragment_sd,
            no_fragment_model=bool(args.no_fragment_model),
            min_fragment_length=int(args.min_fragment_length),
            max_fragment_length=int(args.max_fragment_length),
            fragment_sample_cap=int(args.fragment_sample_cap),
            min_fragment_samples=int(args.min_fragment_samples),
        )
    return FilterConfig(**kw)


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "mapqboost quickstart (copy/paste):",
        "",
        "1) Single-end reads aligned with multiple hits reported (name-grouped BAM):",
        "   mapqboost filter-se \\",
        "     --in aligned.bam \\",
        "     --out filtered.bam \\",
        "     --outdir results/",
        "   Outputs: filtered.bam, results/summary.json, results/report.html",
        "",
        "2) Paired-end reads, fragment length estimated from the input:",
        "   mapqboost filter-pe \\",
        "     --in aligned_pe.bam \\",
        "     --out filtered_pe.bam \\",
        "     --outdir results_pe/",
        "",
        "3) Known variants from a population VCF (INFO/AF used as penalty):",
        "   mapqboost filter-se \\",
        "     --in aligned.bam \\",
        "     --out filtered.bam \\",
        "     --known-vcf dbsnp.vcf.gz \\",
        "     --1dp",
        "",
        "Tip: run 'mapqboost make-toy-data --outdir toy/' to try these on a tiny dataset.",
        "Input must be grouped by read name (e.g. straight from the aligner or 'samtools sort -n').",
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


def cmd_filter(args: argparse.Namespace, *, paired: bool) -> int:
    out_path = Path(args.out_path).expanduser().resolve()
    outdir = Path(args.outdir).expanduser().resolve() if args.outdir else out_path.parent
    log_path = _log_path(outdir, "filter-pe.log" if paired else "filter-se.log")
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("mapqboost")
    logger.info("mapqboost %s", __version__)

    try:
        config = config_from_args(args, paired=paired)
        outdir = ensure_outdir(outdir)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        command_line = " ".join(shlex.quote(a) for a in ["mapqboost"] + sys.argv[1:])

        variants = VcfVariantSource(args.known_vcf, af_tag=config.af_tag) if args.known_vcf else None
        try:
            run = filter_pe_bam if paired else filter_se_bam
            summary = run(
                in_path=args.in_path,
                out_path=out_path,
                config=config,
                outdir=outdir,
                variants=variants,
                command_line=command_line,
                progress=not args.no_progress,
            )
        finally:
            if variants is not None:
                variants.close()

        if args.no_report:
            print(str(out_path))
            return 0

        plots_rel = plot_summary(summary, outdir)
        report_path = render_report(
            outdir=outdir,
            version=__version__,
            summary=summary,
            plots=plots_rel,
            known_vcf=args.known_vcf,
            unique_mapq=config.unique_mapq,
            invalid_mapq=config.invalid_mapq,
        )

        logger.info("Report written: %s", report_path)
        print(str(report_path))
        return 0
    except Exception as e:
        logger.exception("mapqboost failed")
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "filter-se":
        return cmd_filter(args, paired=False)
    if args.cmd == "filter-pe":
        return cmd_filter(args, paired=True)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
