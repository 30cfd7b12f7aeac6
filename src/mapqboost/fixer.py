"""Per-record correction: status track, optional 1-D realignment, likelihood and statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from .cigar import (
    alignment_length,
    check_cigar_read_length,
    fix_md,
    leading_hard_clip,
    reference_span,
    trailing_hard_clip,
)
from .config import FilterConfig
from .errors import AlignmentConsistencyError
from .likelihood import best_log10_likelihood
from .models import AlignmentRecord, Cigar, CigarOp, InsertRegion, Status
from .rewrite import rewrite_encodings
from .status import build_status_track, insert_region_from_track, realign_insert_region
from .variants import VariantSource

logger = logging.getLogger(__name__)

_COMPLEMENT = str.maketrans("ACGTNacgtn", "TGCANtgcan")


def reverse_complement(seq: str) -> str:
    return seq.translate(_COMPLEMENT)[::-1]


def restore_read_from_previous(
    record: AlignmentRecord, previous: Optional[AlignmentRecord]
) -> Optional[AlignmentRecord]:
    """Fill in SEQ/QUAL of a record stored without them (``SEQ *``).

    Some aligners store the read only once and leave it out of secondary hits.
    The read is taken from the previous record of the same read, trimmed by
    this record's hard clips. Returns None when nothing can be restored.
    """
    if record.read_length != 0:
        return None
    if (
        previous is None
        or previous.qname != record.qname
        or previous.read_length == 0
        or previous.query_qualities is None
    ):
        return None

    seq = previous.query_sequence or ""
    quals = tuple(previous.query_qualities)
    if previous.is_reverse != record.is_reverse:
        seq = reverse_complement(seq)
        quals = quals[::-1]

    for i, (op, _) in enumerate(record.cigar):
        if op == CigarOp.HARD_CLIP and 0 < i < len(record.cigar) - 1:
            raise AlignmentConsistencyError("hard clip inside CIGAR", qname=record.qname, cigar=record.cigar_string)
    start = leading_hard_clip(record.cigar)
    end = len(seq) - trailing_hard_clip(record.cigar)
    return replace(record, query_sequence=seq[start:end], query_qualities=quals[start:end])


@dataclass(frozen=True)
class MismatchCounts:
    seed_mis: int = 0
    seed_indel: int = 0
    all_mis: int = 0
    all_indel: int = 0


def count_mismatches(
    track: Sequence[Status],
    region: InsertRegion,
    cigar: Cigar,
    *,
    is_reverse: bool,
    config: FilterConfig,
) -> MismatchCounts:
    """Mismatches and indels in the seed and over the insert, clipped bases included per clip mode.

    The seed is the first ``seed_len`` cells of the read, i.e. the last ones on
    the reverse strand.
    """
    aln_len = len(track)
    seed_len = config.seed_len

    def in_seed(i: int) -> bool:
        return i >= aln_len - seed_len if is_reverse else i < seed_len

    seed_mis = seed_indel = all_mis = all_indel = 0
    for i in range(region.start, region.end):
        s = track[i]
        if s is Status.MISMATCH:
            seed_mis += in_seed(i)
            all_mis += 1
        elif s in (Status.INSERTION, Status.DELETION):
            seed_indel += in_seed(i)
            all_indel += 1

    mode = config.clip_mode
    if mode.counts_left(is_reverse):
        i = 0
        while i < aln_len and track[i] is Status.SOFT_CLIP:
            seed_mis += in_seed(i)
            all_mis += 1
            i += 1
        lead_h = leading_hard_clip(cigar)
        all_mis += lead_h
        seed_mis += min(lead_h, seed_len)
    if mode.counts_right(is_reverse):
        i = aln_len - 1
        while i >= 0 and track[i] is Status.SOFT_CLIP:
            seed_mis += in_seed(i)
            all_mis += 1
            i -= 1
        trail_h = trailing_hard_clip(cigar)
        all_mis += trail_h
        seed_mis += min(trail_h, seed_len)
    return MismatchCounts(seed_mis, seed_indel, all_mis, all_indel)


def fix_record(
    record: AlignmentRecord,
    config: FilterConfig,
    variants: Optional[VariantSource] = None,
) -> Optional[AlignmentRecord]:
    """Correct one alignment and compute its annotations.

    Returns the corrected record, or None for records that cannot be scored
    (unmapped, no reference, empty read, zero alignment or insert length).
    Inconsistent CIGAR/MD/read data raises :class:`AlignmentConsistencyError`.
    """
    if record.is_unmapped or record.reference_name is None or record.read_length == 0:
        logger.debug("Skipping unmapped or empty record %s", record.qname)
        return None
    aln_len = alignment_length(record.cigar)
    if aln_len == 0:
        logger.debug("Skipping record %s with zero alignment length", record.qname)
        return None
    check_cigar_read_length(record.cigar, record.read_length, qname=record.qname)

    md = record.md
    if config.fix_md and md is not None:
        md, fixed = fix_md(md)
        if fixed:
            logger.debug("Repaired MD of %s: %s -> %s", record.qname, record.md, md)

    track = build_status_track(record.cigar, md, qname=record.qname)
    old_region = insert_region_from_track(track)
    region = old_region
    fixed_record = replace(record, md=md)
    if config.do_1dp:
        new_region = realign_insert_region(track, config)
        if new_region != old_region:
            region = new_region
            if region.length > 0:
                rw = rewrite_encodings(track, record.cigar, md, old_region, new_region, qname=record.qname)
                fixed_record = replace(
                    fixed_record,
                    cigar=rw.cigar,
                    md=rw.md,
                    reference_start=record.reference_start + rw.start_shift,
                )

    if region.length <= 0:
        logger.debug("Skipping record %s with empty insert region", record.qname)
        return None

    # the variant walk uses the track and start the record was aligned with
    candidates = ()
    if variants is not None:
        end = record.reference_start + reference_span(record.cigar) - 1
        candidates = variants.fetch(record.reference_name, record.reference_start - 1, end)
    lik = best_log10_likelihood(track, replace(record, md=md), config, candidates)

    counts = count_mismatches(lik.track, region, record.cigar, is_reverse=record.is_reverse, config=config)
    identity = 1.0 - (counts.all_mis + counts.all_indel) / region.length
    return fixed_record.annotate(
        aln_len=aln_len,
        insert_len=region.length,
        insert_from=region.start,
        identity=identity,
        log10_lik=lik.log10_lik,
        known_variant=lik.variant.label if lik.variant is not None else None,
        seed_len=config.seed_len,
        seed_mis=counts.seed_mis,
        seed_indel=counts.seed_indel,
        all_mis=counts.all_mis,
        all_indel=counts.all_indel,
    )
