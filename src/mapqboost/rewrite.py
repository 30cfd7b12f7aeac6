"""Rewrite CIGAR and MD after the insert region has been re-estimated.

Read bases outside the new region become soft clips; the MD string loses the
spans and tokens that fall outside the region's reference projection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .cigar import (
    MdToken,
    alignment_length,
    check_cigar_md,
    join_md,
    leading_hard_clip,
    md_token_ref_length,
    query_length,
    tokenize_md,
    trailing_hard_clip,
)
from .errors import AlignmentConsistencyError
from .models import Cigar, CigarOp, InsertRegion, Status
from .status import reference_offset

logger = logging.getLogger(__name__)

_TRACK_OPS = frozenset({CigarOp.MATCH, CigarOp.EQUAL, CigarOp.DIFF, CigarOp.INS, CigarOp.DEL})
_REF_CELLS = frozenset({Status.MATCH, Status.MISMATCH, Status.DELETION})


def _read_cells(cells: Sequence[Status]) -> int:
    return sum(1 for s in cells if s is not Status.DELETION)


@dataclass(frozen=True)
class RewriteResult:
    """New encodings for a record whose insert region changed.

    Attributes
    ----------
    cigar:
        CIGAR with the cells outside the new region turned into soft clips.
    md:
        Matching MD string, or None when the record had none.
    start_shift:
        Reference bases to add to the 1-based alignment start.
    """

    cigar: Cigar
    md: Optional[str]
    start_shift: int


def _merge_ops(ops: Sequence[Tuple[CigarOp, int]]) -> Cigar:
    out: List[Tuple[CigarOp, int]] = []
    for op, n in ops:
        if n <= 0:
            continue
        if out and out[-1][0] == op:
            out[-1] = (op, out[-1][1] + n)
        else:
            out.append((op, n))
    return tuple(out)


def rewrite_cigar(cigar: Cigar, track: Sequence[Status], new: InsertRegion) -> Cigar:
    """CIGAR for ``new``: read bases outside it become soft clips, deletions there are dropped."""
    ops: List[Tuple[CigarOp, int]] = []
    lead_h = leading_hard_clip(cigar)
    trail_h = trailing_hard_clip(cigar)
    if lead_h:
        ops.append((CigarOp.HARD_CLIP, lead_h))
    ops.append((CigarOp.SOFT_CLIP, _read_cells(track[: new.start])))

    pos = 0
    for op, n in cigar:
        if op in _TRACK_OPS:
            lo = max(pos, new.start)
            hi = min(pos + n, new.end)
            if hi > lo:
                ops.append((op, hi - lo))
            pos += n
        elif op == CigarOp.SOFT_CLIP:
            pos += n
        elif op in (CigarOp.SKIP, CigarOp.PAD):
            # kept only strictly inside the region
            if new.start < pos < new.end:
                ops.append((op, n))

    ops.append((CigarOp.SOFT_CLIP, _read_cells(track[new.end :])))
    if trail_h:
        ops.append((CigarOp.HARD_CLIP, trail_h))
    return _merge_ops(ops)


def rewrite_md(md: str, track: Sequence[Status], old: InsertRegion, new: InsertRegion) -> str:
    ref_from = reference_offset(track, new.start)
    ref_to = reference_offset(track, new.end)
    ref_pos = reference_offset(track, old.start)

    tokens: List[MdToken] = []
    for tok in tokenize_md(md):
        if isinstance(tok, int):
            lo = max(ref_pos, ref_from)
            hi = min(ref_pos + tok, ref_to)
            if hi > lo:
                tokens.append(hi - lo)
            ref_pos += tok
        else:
            # mismatch and deletion tokens are atomic
            if ref_from <= ref_pos < ref_to:
                tokens.append(tok)
            ref_pos += md_token_ref_length(tok)
    return join_md(tokens)


def reference_start_shift(cigar: Cigar, track: Sequence[Status], old: InsertRegion, new: InsertRegion) -> int:
    """Reference bases between the old and the new region start."""
    lo, hi, sign = (old.start, new.start, 1) if new.start >= old.start else (new.start, old.start, -1)
    shift = sum(1 for s in track[lo:hi] if s in _REF_CELLS)

    pos = 0
    for op, n in cigar:
        if op in _TRACK_OPS or op == CigarOp.SOFT_CLIP:
            pos += n
        elif op == CigarOp.SKIP and lo < pos <= hi:
            shift += n
    return sign * shift


def rewrite_encodings(
    track: Sequence[Status],
    cigar: Cigar,
    md: Optional[str],
    old: InsertRegion,
    new: InsertRegion,
    *,
    qname: Optional[str] = None,
) -> RewriteResult:
    """Regenerate CIGAR and MD consistent with the region ``new``.

    Deletions left outside the region are dropped; every other cell stays
    accounted for. Raises :class:`AlignmentConsistencyError` if the rewritten
    pair is not self-consistent or no longer covers the whole read.
    """
    if not (0 <= new.start <= new.end <= len(track)):
        raise ValueError(f"insert region {new} outside alignment of length {len(track)}")

    new_cigar = rewrite_cigar(cigar, track, new)
    new_cigar_str = "".join(f"{n}{op.char}" for op, n in new_cigar)
    dropped = len(track) - _read_cells(track[: new.start]) - _read_cells(track[new.end :]) - new.length
    if (
        alignment_length(new_cigar) != alignment_length(cigar) - dropped
        or query_length(new_cigar) != query_length(cigar)
    ):
        raise AlignmentConsistencyError(
            "rewritten CIGAR does not preserve the alignment length", qname=qname, cigar=new_cigar_str
        )

    new_md = None
    if md is not None:
        new_md = rewrite_md(md, track, old, new)
        check_cigar_md(new_cigar, new_md, qname=qname)

    shift = reference_start_shift(cigar, track, old, new)
    logger.debug(
        "Rewrote %s: %s -> %s, MD %s -> %s, start shift %d",
        qname,
        "".join(f"{n}{op.char}" for op, n in cigar),
        new_cigar_str,
        md,
        new_md,
        shift,
    )
    return RewriteResult(cigar=new_cigar, md=new_md, start_shift=shift)
