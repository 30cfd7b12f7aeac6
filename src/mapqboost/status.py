"""Per-position alignment status track and the 1-D insert re-estimation.

The status track has one cell per M/=/X/I/D/S unit of the CIGAR, always in
reference orientation. The MD string then turns Match cells into Mismatch
cells. Both the CIGAR-derived insert region and the 1-D dynamic-programming
region are half-open ranges over track positions.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .cigar import check_cigar_md, parse_md
from .config import FilterConfig
from .errors import AlignmentConsistencyError
from .models import Cigar, CigarOp, InsertRegion, Status

logger = logging.getLogger(__name__)

StatusTrack = List[Status]

_CIGAR_STATUS = {
    CigarOp.MATCH: Status.MATCH,
    CigarOp.EQUAL: Status.MATCH,
    CigarOp.DIFF: Status.MISMATCH,
    CigarOp.INS: Status.INSERTION,
    CigarOp.DEL: Status.DELETION,
    CigarOp.SOFT_CLIP: Status.SOFT_CLIP,
}

_GAPS = (Status.INSERTION, Status.DELETION)


def track_to_string(track: Sequence[Status]) -> str:
    return "".join(s.value for s in track)


def advance_reference_pos(track: Sequence[Status], pos: int, step: int = 1) -> int:
    """Move ``pos`` forward by ``step`` reference cells, skipping insertions.

    The returned position is never an Insertion cell (unless the track ends).
    """
    shift = 0
    n = len(track)
    while pos < n:
        if shift == step and track[pos] is not Status.INSERTION:
            break
        if track[pos] is not Status.INSERTION:
            shift += 1
        pos += 1
    return pos


def build_status_track(
    cigar: Cigar,
    md: Optional[str] = None,
    *,
    qname: Optional[str] = None,
) -> StatusTrack:
    """Decode CIGAR (and MD, when present) into a status track."""
    track: StatusTrack = []
    for op, n in cigar:
        status = _CIGAR_STATUS.get(op)
        if status is not None:
            track.extend([status] * n)

    if md is None or not track:
        return track

    check_cigar_md(cigar, md, qname=qname)
    lead, pairs = parse_md(md)

    pos = 0
    while pos < len(track) and track[pos] is Status.SOFT_CLIP:
        pos += 1
    pos = advance_reference_pos(track, pos, lead)
    for token, follow in pairs:
        if token.startswith("^"):
            pos += len(token) - 1
        else:
            if pos >= len(track) or track[pos] not in (Status.MATCH, Status.MISMATCH):
                found = track[pos].name if pos < len(track) else "end of alignment"
                raise AlignmentConsistencyError(
                    f"MD mismatch {token} at alignment position {pos} lands on {found}",
                    qname=qname,
                    cigar="".join(f"{n}{op.char}" for op, n in cigar),
                    md=md,
                )
            track[pos] = Status.MISMATCH
            pos = advance_reference_pos(track, pos)
        pos = advance_reference_pos(track, pos, follow)
    return track


def insert_region_from_track(track: Sequence[Status]) -> InsertRegion:
    """Aligned region as given by the CIGAR: everything but the flanking soft clips."""
    n = len(track)
    start = 0
    while start < n and track[start] is Status.SOFT_CLIP:
        start += 1
    end = n
    while end > start and track[end - 1] is Status.SOFT_CLIP:
        end -= 1
    return InsertRegion(start, end)


def _dp_cell_score(track: Sequence[Status], i: int, config: FilterConfig) -> int:
    s = track[i]
    if s is Status.MATCH:
        return config.match_score
    if s is Status.MISMATCH:
        return config.mismatch_score
    if s in _GAPS:
        if i == 0 or track[i - 1] not in _GAPS:
            return -config.dp_gap_open_penalty
        return -config.dp_gap_ext_penalty
    return 0


def realign_insert_region(track: Sequence[Status], config: FilterConfig) -> InsertRegion:
    """Re-estimate the insert region with a one-sided local alignment along the track.

    The running score is floored at zero; the region ends at the first
    position reaching the maximum score and starts at the last zero before it.
    """
    n = len(track)
    if n == 0:
        return InsertRegion(0, 0)
    dp = [0] * (n + 1)
    best = None
    to = n
    for i in range(n):
        dp[i + 1] = max(0, dp[i] + _dp_cell_score(track, i, config))
        if best is None or dp[i + 1] > best:
            best = dp[i + 1]
            to = i + 1
    start = to
    while start > 0 and dp[start] > 0:
        start -= 1
    return InsertRegion(start, to)


def reference_offset(track: Sequence[Status], index: int) -> int:
    """Number of non-insertion cells before ``index``."""
    return index - sum(1 for s in track[:index] if s is Status.INSERTION)
