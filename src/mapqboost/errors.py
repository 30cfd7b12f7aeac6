"""Exceptions raised by the alignment correction engine.

Malformed input and internal consistency violations are fatal: they are raised
and propagate to the caller (the CLI turns them into a non-zero exit). Records
that simply cannot be scored (unmapped, empty) are skipped without raising.
"""

from __future__ import annotations

from typing import Optional


class MapqBoostError(Exception):
    """Base class for all mapqboost errors."""


class AlignmentConsistencyError(MapqBoostError, ValueError):
    """Raised when the CIGAR, the MD string and the read disagree."""

    def __init__(
        self,
        message: str,
        *,
        qname: Optional[str] = None,
        cigar: Optional[str] = None,
        md: Optional[str] = None,
    ) -> None:
        details = []
        if qname is not None:
            details.append(f"read={qname}")
        if cigar is not None:
            details.append(f"cigar={cigar}")
        if md is not None:
            details.append(f"MD={md}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)
        self.qname = qname
        self.cigar = cigar
        self.md = md


class FragmentLengthError(MapqBoostError):
    """Raised when the fragment-length model cannot be estimated from the input."""


class UnpairedReadError(MapqBoostError):
    """Raised when a single-end alignment is seen in paired-end mode."""
