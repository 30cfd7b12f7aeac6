from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class ClipMode(str, Enum):
    """How soft/hard-clipped bases count as mismatches."""

    USE = "USE"  # count all clipped bases
    IGNORE = "IGNORE"  # ignore clipped bases
    END5 = "END5"  # only count 5' clipped bases
    END3 = "END3"  # only count 3' clipped bases

    def counts_left(self, is_reverse: bool) -> bool:
        """Whether clips at the left (reference-orientation) end are counted."""
        if self is ClipMode.USE:
            return True
        if self is ClipMode.IGNORE:
            return False
        # the left end is the read's 5' end on the forward strand only
        return (self is ClipMode.END5) != is_reverse

    def counts_right(self, is_reverse: bool) -> bool:
        if self is ClipMode.USE:
            return True
        if self is ClipMode.IGNORE:
            return False
        return (self is ClipMode.END3) != is_reverse


class IndelPenaltyMode(str, Enum):
    """How gap penalties enter the alignment log-likelihood."""

    ABSOLUTE = "ABSOLUTE"  # fixed log10 units per gap position
    RELATIVE = "RELATIVE"  # scaled by the mismatch cost q/10 of the adjacent read base


class SortOrder(str, Enum):
    """Requested output order, written to the @HD header line only."""

    NONE = "none"
    NAME = "name"
    COORDINATE = "coordinate"

    @property
    def header_fields(self) -> Tuple[str, str]:
        """(SO, GO) values for the @HD line."""
        return {
            SortOrder.NONE: ("unsorted", "none"),
            SortOrder.NAME: ("queryname", "query"),
            SortOrder.COORDINATE: ("coordinate", "reference"),
        }[self]


PHRED_SCALE = 10.0
REF_QUAL = 40  # quality assumed for every base when a read has no qualities
MIN_PHRED_QUAL = 1  # floor for base qualities, avoids log10(0)
HCLIP_SAMPLE_LEN = 5  # bases sampled to estimate the quality of hard-clipped flanks


def _check_range(name: str, value: float, lo: float, hi: float) -> None:
    if not (lo <= value <= hi):
        raise ValueError(f"{name} must be between {lo:g} and {hi:g}, got {value}")


def _check_min(name: str, value: float, lo: float, *, strict: bool = False) -> None:
    if value < lo or (strict and value == lo):
        rel = "positive" if strict and lo == 0 else ("non-negative" if lo == 0 else f">= {lo}")
        raise ValueError(f"{name} must be {rel}, got {value}")


@dataclass(frozen=True)
class FilterConfig:
    """All tunables of the correction and scoring engine.

    Constructed once per run and passed explicitly to every component.
    Invalid values raise ``ValueError`` at construction time.
    """

    # record correction
    seed_len: int = 25
    match_score: int = 1
    mismatch_score: int = -2
    gap_open_penalty: int = 4
    gap_ext_penalty: int = 1
    dp_gap_open_penalty: int = 4
    dp_gap_ext_penalty: int = 1
    clip_penalty: int = 0
    clip_mode: ClipMode = ClipMode.END5
    indel_mode: IndelPenaltyMode = IndelPenaltyMode.ABSOLUTE
    do_1dp: bool = False
    fix_md: bool = False
    chrom_list: Optional[FrozenSet[str]] = None

    # known variants
    known_snp_penalty: int = 0
    known_indel_penalty: int = 2
    known_multisub_penalty: int = 2
    af_tag: Optional[str] = "AF"

    # candidate filters
    min_align_rate: float = 0.9
    min_identity: float = 0.0
    max_seed_mis: float = 4.0
    max_seed_indel: float = 0.0
    max_all_mis: float = 6.0
    max_all_indel: float = 0.0
    min_insert: int = 15
    max_sensitivity: bool = True

    # best stratum selection
    max_hit: int = 10
    min_mapq: int = 10
    max_best: int = 1
    max_report: int = 1
    update_secondary: bool = True
    max_mapq: int = 200
    unique_mapq: int = 250
    invalid_mapq: int = 255

    # paired-end
    no_mix: bool = False
    no_fragment_model: bool = False
    fragment_mean: Optional[float] = None
    fragment_sd: Optional[float] = None
    min_fragment_length: int = 1
    max_fragment_length: int = 1000
    fragment_sample_cap: int = 100_000
    min_fragment_samples: int = 30

    # output
    sort_order: SortOrder = SortOrder.NONE

    def __post_init__(self) -> None:
        _check_min("seed_len", self.seed_len, 0, strict=True)
        _check_min("match_score", self.match_score, 0, strict=True)
        if self.mismatch_score > 0:
            raise ValueError(f"mismatch_score must be non-positive, got {self.mismatch_score}")
        _check_min("gap_open_penalty", self.gap_open_penalty, 0)
        _check_min("gap_ext_penalty", self.gap_ext_penalty, 0, strict=True)
        _check_min("dp_gap_open_penalty", self.dp_gap_open_penalty, 0)
        _check_min("dp_gap_ext_penalty", self.dp_gap_ext_penalty, 0, strict=True)
        _check_min("clip_penalty", self.clip_penalty, 0)
        _check_min("known_snp_penalty", self.known_snp_penalty, 0)
        _check_min("known_indel_penalty", self.known_indel_penalty, 0)
        _check_min("known_multisub_penalty", self.known_multisub_penalty, 0)

        _check_range("min_align_rate", self.min_align_rate, 0.0, 1.0)
        _check_range("min_identity", self.min_identity, 0.0, 1.0)
        for name in ("max_seed_mis", "max_seed_indel", "max_all_mis", "max_all_indel"):
            _check_range(name, getattr(self, name), 0.0, 100.0)
        for name in ("min_insert", "max_hit", "min_mapq", "max_best", "max_report"):
            _check_min(name, getattr(self, name), 0)

        if self.min_fragment_length > self.max_fragment_length:
            raise ValueError("min_fragment_length must not exceed max_fragment_length")
        _check_min("fragment_sample_cap", self.fragment_sample_cap, 0, strict=True)
        if self.min_fragment_samples < 2:
            raise ValueError("min_fragment_samples must be at least 2")
        if (self.fragment_mean is None) != (self.fragment_sd is None):
            raise ValueError("fragment_mean and fragment_sd must be given together")
        if self.fragment_sd is not None and self.fragment_sd <= 0:
            raise ValueError("fragment_sd must be positive")

    def known_penalty_default(self, status: "Status") -> int:  # noqa: F821
        from .models import Status

        if status is Status.KNOWN_SNP:
            return self.known_snp_penalty
        if status is Status.KNOWN_INDEL:
            return self.known_indel_penalty
        if status is Status.KNOWN_MULTISUB:
            return self.known_multisub_penalty
        raise ValueError(f"not a known-variant status: {status}")
