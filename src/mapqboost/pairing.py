from __future__ import annotations

import logging
from typing import List, Sequence

from .models import AlignmentPair, AlignmentRecord

logger = logging.getLogger(__name__)


def is_mate_pair(a: AlignmentRecord, b: AlignmentRecord) -> bool:
    """Adjacent records form a pair when exactly one is read 1 and both report the same non-zero |TLEN|."""
    tlen = abs(a.template_length)
    return a.is_read1 != b.is_read1 and tlen > 0 and tlen == abs(b.template_length)


def reconcile_pairs(records: Sequence[AlignmentRecord], *, no_mix: bool = False) -> List[AlignmentPair]:
    """Group the records of one read pair into candidate pairs.

    Aligners emit the two mates of a placement next to each other, so only
    adjacent records are considered. A record without a mate becomes a
    half-pair unless ``no_mix`` is set, in which case it is dropped.
    """
    pairs: List[AlignmentPair] = []
    i = 0
    n = len(records)
    while i < n:
        cur = records[i]
        nxt = records[i + 1] if i + 1 < n else None
        if nxt is not None and is_mate_pair(cur, nxt):
            fwd, rev = (cur, nxt) if cur.is_read1 else (nxt, cur)
            pairs.append(AlignmentPair(forward=fwd, reverse=rev))
            i += 2
            continue
        if not no_mix:
            pairs.append(AlignmentPair(forward=cur, reverse=None) if cur.is_read1 else AlignmentPair(forward=None, reverse=cur))
        i += 1
    logger.debug("%d records reconciled into %d pairs", n, len(pairs))
    return pairs
