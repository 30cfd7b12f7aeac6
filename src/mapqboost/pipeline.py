from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import numpy as np
import pysam
from tqdm import tqdm

from . import __version__
from .bam import from_segment, is_coordinate_sorted, open_input, open_output, output_header, to_segment
from .config import FilterConfig
from .errors import UnpairedReadError
from .fixer import fix_record, restore_read_from_previous
from .fraglen import resolve_fragment_model
from .grouping import group_by_read
from .models import AlignmentRecord
from .pairing import reconcile_pairs
from .scorer import GroupResult, score_pairs, score_reads
from .utils import ensure_outdir, write_json
from .variants import VariantSource

logger = logging.getLogger(__name__)

MAPQ_BINS = np.arange(0, 257, 5)


def _new_counts() -> Dict[str, int]:
    return {
        "records_total": 0,
        "records_unmapped": 0,
        "records_skipped_contig": 0,
        "records_skipped_degenerate": 0,
        "records_restored": 0,
        "read_groups": 0,
        "read_groups_reported": 0,
        "read_groups_ambiguous": 0,
        "read_groups_filtered": 0,
        "records_written": 0,
    }


class _RunStats:
    """Streaming counters and histograms for summary.json."""

    def __init__(self) -> None:
        self.counts = _new_counts()
        self.mapq_counts = np.zeros(len(MAPQ_BINS) - 1, dtype=np.int64)
        self.candidates_hist: Dict[int, int] = {}

    def add_group(self, result: GroupResult) -> None:
        self.counts["read_groups"] += 1
        self.candidates_hist[result.n_input] = self.candidates_hist.get(result.n_input, 0) + 1
        if result.ambiguous:
            self.counts["read_groups_ambiguous"] += 1
        elif result.reported:
            self.counts["read_groups_reported"] += 1
        else:
            self.counts["read_groups_filtered"] += 1

    def add_written(self, record: AlignmentRecord) -> None:
        self.counts["records_written"] += 1
        self.mapq_counts += np.histogram([record.mapping_quality], bins=MAPQ_BINS)[0]

    def to_dict(self) -> Dict[str, object]:
        return {
            "counts": self.counts,
            "mapq_hist": {"bin_edges": MAPQ_BINS.tolist(), "counts": self.mapq_counts.tolist()},
            "candidates_hist": {str(k): v for k, v in sorted(self.candidates_hist.items())},
        }


def _iter_records(bam: pysam.AlignmentFile, *, progress: bool, desc: str) -> Iterator[AlignmentRecord]:
    it: Iterable[pysam.AlignedSegment] = bam.fetch(until_eof=True)
    if progress:
        it = tqdm(it, unit="aln", desc=desc)
    for seg in it:
        yield from_segment(seg)


def _fixed_records(
    records: Iterable[AlignmentRecord],
    *,
    config: FilterConfig,
    variants: Optional[VariantSource],
    stats: _RunStats,
    paired: bool,
) -> Iterator[AlignmentRecord]:
    """Restore, filter by contig and correct each record, in input order."""
    # first record of each mate of the current read, keyed by is_read1
    current_qname: Optional[str] = None
    first_of_mate: Dict[bool, AlignmentRecord] = {}
    for record in records:
        stats.counts["records_total"] += 1
        if record.qname != current_qname:
            current_qname = record.qname
            first_of_mate = {}
        previous = first_of_mate.get(record.is_read1)
        if previous is None:
            first_of_mate[record.is_read1] = record
        else:
            restored = restore_read_from_previous(record, previous)
            if restored is not None:
                stats.counts["records_restored"] += 1
                record = restored

        if record.is_unmapped:
            stats.counts["records_unmapped"] += 1
            continue
        if config.chrom_list is not None and record.reference_name not in config.chrom_list:
            stats.counts["records_skipped_contig"] += 1
            continue

        fixed = fix_record(record, config, variants)
        if fixed is None:
            stats.counts["records_skipped_degenerate"] += 1
            continue
        if paired and not fixed.is_paired:
            raise UnpairedReadError(f"Alignment of read {fixed.qname} is not from a paired-end read")
        yield fixed


def _open_run(in_path: str | Path, out_path: str | Path, config: FilterConfig, command_line: str, subcommand: str):
    bam_in = open_input(in_path)
    if is_coordinate_sorted(bam_in.header):
        logger.warning(
            "Input %s looks coordinate-sorted; alignments of one read must be adjacent (sort by name first)",
            in_path,
        )
    header = output_header(
        bam_in.header,
        sort_order=config.sort_order,
        version=__version__,
        command_line=command_line,
        subcommand=subcommand,
    )
    return bam_in, open_output(out_path, header)


def _summary(
    *,
    mode: str,
    in_path: str | Path,
    out_path: str | Path,
    config: FilterConfig,
    stats: _RunStats,
    t0: float,
    extra: Optional[Dict[str, object]] = None,
) -> Dict[str, object]:
    summary: Dict[str, object] = {
        "mode": mode,
        "in_path": str(in_path),
        "out_path": str(out_path),
        "config": {
            "min_align_rate": config.min_align_rate,
            "min_identity": config.min_identity,
            "min_mapq": config.min_mapq,
            "max_best": config.max_best,
            "max_report": config.max_report,
            "max_hit": config.max_hit,
            "do_1dp": config.do_1dp,
            "max_sensitivity": config.max_sensitivity,
            "sort_order": config.sort_order.value,
        },
        **stats.to_dict(),
        "runtime_seconds": float(time.time() - t0),
    }
    if extra:
        summary.update(extra)
    return summary


def filter_se_bam(
    *,
    in_path: str | Path,
    out_path: str | Path,
    config: FilterConfig,
    outdir: Optional[str | Path] = None,
    variants: Optional[VariantSource] = None,
    command_line: str = "",
    progress: bool = True,
) -> Dict[str, object]:
    """Filter single-end alignments grouped by read name and write the reported ones.

    Returns the run summary; it is also written to ``outdir/summary.json``
    when ``outdir`` is given.
    """
    t0 = time.time()
    stats = _RunStats()
    bam_in, bam_out = _open_run(in_path, out_path, config, command_line, "filter-se")
    try:
        records = _fixed_records(
            _iter_records(bam_in, progress=progress, desc="Filtering alignments"),
            config=config,
            variants=variants,
            stats=stats,
            paired=False,
        )
        for qname, group in group_by_read(records, key=lambda r: r.qname):
            result = score_reads(group, config)
            stats.add_group(result)
            if result.ambiguous:
                logger.debug("Discarding %s: best stratum exceeds %d", qname, config.max_best)
            for rec in result.reported:
                bam_out.write(to_segment(rec, bam_out.header))
                stats.add_written(rec)
    finally:
        bam_in.close()
        bam_out.close()

    summary = _summary(mode="se", in_path=in_path, out_path=out_path, config=config, stats=stats, t0=t0)
    logger.info(
        "Wrote %d alignments for %d of %d reads (%d ambiguous)",
        stats.counts["records_written"],
        stats.counts["read_groups_reported"],
        stats.counts["read_groups"],
        stats.counts["read_groups_ambiguous"],
    )
    if outdir is not None:
        write_json(ensure_outdir(outdir) / "summary.json", summary)
    return summary


def filter_pe_bam(
    *,
    in_path: str | Path,
    out_path: str | Path,
    config: FilterConfig,
    outdir: Optional[str | Path] = None,
    variants: Optional[VariantSource] = None,
    command_line: str = "",
    progress: bool = True,
) -> Dict[str, object]:
    """Filter paired-end alignments grouped by read name.

    Unless a fragment model is given or disabled, the input is read twice:
    once to estimate the fragment-length distribution and once to filter.
    """
    t0 = time.time()
    stats = _RunStats()

    model = None
    if not config.no_fragment_model:
        if config.fragment_mean is not None:
            model = resolve_fragment_model(config)
        else:
            with open_input(in_path) as bam_est:
                model = resolve_fragment_model(
                    config, _iter_records(bam_est, progress=progress, desc="Estimating fragment length")
                )

    bam_in, bam_out = _open_run(in_path, out_path, config, command_line, "filter-pe")
    try:
        records = _fixed_records(
            _iter_records(bam_in, progress=progress, desc="Filtering alignments"),
            config=config,
            variants=variants,
            stats=stats,
            paired=True,
        )
        for qname, group in group_by_read(records, key=lambda r: r.qname):
            pairs = reconcile_pairs(group, no_mix=config.no_mix)
            result = score_pairs(pairs, config, model)
            stats.add_group(result)
            if result.ambiguous:
                logger.debug("Discarding %s: best stratum exceeds %d", qname, config.max_best)
            for pair in result.reported:
                for rec in pair.mates:
                    bam_out.write(to_segment(rec, bam_out.header))
                    stats.add_written(rec)
    finally:
        bam_in.close()
        bam_out.close()

    extra: Dict[str, object] = {}
    if model is not None:
        extra["fragment_model"] = {"mean": model.mean, "sd": model.sd, "n": model.n}
    summary = _summary(
        mode="pe", in_path=in_path, out_path=out_path, config=config, stats=stats, t0=t0, extra=extra
    )
    logger.info(
        "Wrote %d alignments for %d of %d read pairs (%d ambiguous)",
        stats.counts["records_written"],
        stats.counts["read_groups_reported"],
        stats.counts["read_groups"],
        stats.counts["read_groups_ambiguous"],
    )
    if outdir is not None:
        write_json(ensure_outdir(outdir) / "summary.json", summary)
    return summary
