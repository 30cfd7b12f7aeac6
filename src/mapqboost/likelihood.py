"""Alignment log-likelihood with optional known-variant hypotheses.

Every status-track cell contributes a log10 probability term computed from the
base quality of the read base it consumes. A known variant that exactly
explains a run of mismatches or an indel replaces the ordinary mismatch/gap
cost of that run by a variant-specific penalty; the best-scoring hypothesis
is retained.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .cigar import leading_hard_clip, skipped_reference, trailing_hard_clip
from .config import HCLIP_SAMPLE_LEN, MIN_PHRED_QUAL, PHRED_SCALE, REF_QUAL, FilterConfig, IndelPenaltyMode
from .models import AlignmentRecord, Cigar, KnownVariant, Status
from .utils import phred_to_error_prob

logger = logging.getLogger(__name__)

_KNOWN = (Status.KNOWN_SNP, Status.KNOWN_INDEL, Status.KNOWN_MULTISUB)
_READ_CELLS = frozenset({Status.MATCH, Status.MISMATCH, Status.INSERTION, Status.SOFT_CLIP})


@dataclass(frozen=True)
class VariantOverlay:
    """A status track with some cells reclassified as known variation.

    ``penalties`` holds the per-cell penalty for reclassified cells and None
    elsewhere.
    """

    track: List[Status]
    penalties: List[Optional[int]]
    variant: KnownVariant
    n_updated: int


def base_qualities(record: AlignmentRecord) -> List[int]:
    """Phred qualities floored at 1, or the reference quality when the read has none."""
    if record.query_qualities is None:
        return [REF_QUAL] * record.read_length
    return [q if q >= MIN_PHRED_QUAL else MIN_PHRED_QUAL for q in record.query_qualities]


def _log10_correct(q: int) -> float:
    return math.log10(1.0 - phred_to_error_prob(q))


def _gap_cost(open_unit: bool, q: int, config: FilterConfig) -> float:
    cost = config.gap_open_penalty if open_unit else config.gap_ext_penalty
    if config.indel_mode is IndelPenaltyMode.RELATIVE:
        return cost * q / PHRED_SCALE
    return float(cost)


def _hard_clip_term(length: int, quals: Sequence[int], config: FilterConfig, *, leading: bool) -> float:
    sample = quals[:HCLIP_SAMPLE_LEN] if leading else quals[-HCLIP_SAMPLE_LEN:]
    mean_q = float(np.mean(sample)) if len(sample) else float(REF_QUAL)
    return length * (mean_q / -PHRED_SCALE - config.clip_penalty)


def log10_likelihood(
    track: Sequence[Status],
    quals: Sequence[int],
    cigar: Cigar,
    config: FilterConfig,
    *,
    penalties: Optional[Sequence[Optional[int]]] = None,
    baseline: Optional[Sequence[Status]] = None,
) -> float:
    """log10 likelihood of an alignment given its status track and base qualities.

    ``baseline`` is the track before any known-variant overlay; it tells
    whether a known cell consumed a read base.
    """
    lik = 0.0
    pos = 0
    prev: Optional[Status] = None
    for i, s in enumerate(track):
        if s is Status.MATCH:
            lik += _log10_correct(quals[pos])
            pos += 1
        elif s is Status.MISMATCH:
            lik += quals[pos] / -PHRED_SCALE
            pos += 1
        elif s is Status.SOFT_CLIP:
            lik += quals[pos] / -PHRED_SCALE - config.clip_penalty
            pos += 1
        elif s is Status.INSERTION:
            lik -= _gap_cost(prev is not Status.INSERTION, quals[pos], config)
            pos += 1
        elif s is Status.DELETION:
            q = quals[pos - 1] if pos > 0 else quals[0]
            lik -= _gap_cost(prev is not Status.DELETION, q, config)
        elif s in _KNOWN:
            penalty = penalties[i] if penalties is not None and penalties[i] is not None else None
            if penalty is None:
                penalty = config.known_penalty_default(s)
            consumes = baseline is None or baseline[i] in _READ_CELLS
            if consumes:
                lik += _log10_correct(quals[pos]) - penalty
                pos += 1
            else:
                lik -= penalty
        prev = s

    lead_h = leading_hard_clip(cigar)
    if lead_h:
        lik += _hard_clip_term(lead_h, quals, config, leading=True)
    trail_h = trailing_hard_clip(cigar)
    if trail_h:
        lik += _hard_clip_term(trail_h, quals, config, leading=False)
    return lik


def variant_penalty(variant: KnownVariant, allele: str, config: FilterConfig) -> Optional[int]:
    """Penalty ``round(-log10(AF))`` of the matched allele, None to use the class default."""
    if config.af_tag is None:
        return None
    af = variant.allele_freq(allele)
    if af is None or af <= 0:
        return None
    score = -math.log10(af)
    if math.isinf(score) or score < 0:
        return None
    return int(math.floor(score + 0.5))


def _runs(
    track: Sequence[Status], skips: Optional[Mapping[int, int]] = None
) -> Iterable[Tuple[Status, int, int, int, int]]:
    """Yield (status, first cell, last cell, reference start, read start) for each run.

    Reference positions are offsets from the alignment start; soft clips
    and insertions do not advance the reference. ``skips`` maps a cell to
    the intron (N) bases skipped before it; runs never cross an intron.
    """
    skips = skips or {}
    loc = 0
    pos = 0
    i = 0
    n = len(track)
    while i < n:
        loc += skips.get(i, 0)
        s = track[i]
        j = i
        while j + 1 < n and track[j + 1] is s and j + 1 not in skips:
            j += 1
        yield s, i, j, loc, pos
        length = j - i + 1
        if s in (Status.MATCH, Status.MISMATCH):
            loc += length
            pos += length
        elif s in (Status.INSERTION, Status.SOFT_CLIP):
            pos += length
        elif s is Status.DELETION:
            loc += length
        i = j + 1


def overlay_known_variant(
    track: Sequence[Status],
    record: AlignmentRecord,
    variant: KnownVariant,
    config: FilterConfig,
) -> Optional[VariantOverlay]:
    """Reclassify the cells explained by ``variant``; None if it explains nothing."""
    if variant.is_filtered or variant.chrom != record.reference_name:
        return None
    seq = (record.query_sequence or "").upper()
    start = record.reference_start

    new_track = list(track)
    penalties: List[Optional[int]] = [None] * len(track)
    n_updated = 0
    for s, first, last, loc, pos in _runs(track, skipped_reference(record.cigar)):
        length = last - first + 1
        ref_start = start + loc
        new_status = None
        allele = None
        if s is Status.MISMATCH:
            ref_end = ref_start + length - 1
            observed = seq[pos : pos + length]
            if variant.start == ref_start and variant.end == ref_end and len(variant.ref) == length:
                if observed in variant.alts:
                    allele = observed
                    new_status = Status.KNOWN_SNP if length == 1 else Status.KNOWN_MULTISUB
        elif s is Status.INSERTION:
            # VCF anchors an insertion on the reference base before it
            inserted = seq[pos : pos + length]
            if variant.start == ref_start - 1 and variant.ref:
                expected = variant.ref[:1] + inserted + variant.ref[1:]
                if expected in variant.alts:
                    allele = expected
                    new_status = Status.KNOWN_INDEL
        elif s is Status.DELETION:
            if variant.start == ref_start - 1 and len(variant.ref) == length + 1:
                if variant.ref[:1] in variant.alts:
                    allele = variant.ref[:1]
                    new_status = Status.KNOWN_INDEL
        if new_status is None:
            continue
        penalty = variant_penalty(variant, allele, config)
        for k in range(first, last + 1):
            new_track[k] = new_status
            penalties[k] = penalty
        n_updated += length

    if n_updated == 0:
        return None
    return VariantOverlay(track=new_track, penalties=penalties, variant=variant, n_updated=n_updated)


@dataclass(frozen=True)
class LikelihoodResult:
    log10_lik: float
    track: List[Status]
    variant: Optional[KnownVariant] = None


def best_log10_likelihood(
    track: Sequence[Status],
    record: AlignmentRecord,
    config: FilterConfig,
    variants: Iterable[KnownVariant] = (),
) -> LikelihoodResult:
    """Baseline likelihood, improved by the best known-variant hypothesis if any."""
    quals = base_qualities(record)
    best = LikelihoodResult(log10_likelihood(track, quals, record.cigar, config), list(track))
    for variant in variants:
        overlay = overlay_known_variant(track, record, variant, config)
        if overlay is None:
            continue
        lik = log10_likelihood(
            overlay.track, quals, record.cigar, config, penalties=overlay.penalties, baseline=track
        )
        if lik > best.log10_lik:
            logger.debug("%s explained by known variant %s (%.3f > %.3f)", record.qname, variant.label, lik, best.log10_lik)
            best = LikelihoodResult(lik, overlay.track, variant)
    return best
