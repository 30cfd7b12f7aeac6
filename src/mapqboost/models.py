from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, Optional, Tuple


class CigarOp(IntEnum):
    """CIGAR operations, numbered as in BAM records and pysam cigartuples."""

    MATCH = 0  # M
    INS = 1  # I
    DEL = 2  # D
    SKIP = 3  # N
    SOFT_CLIP = 4  # S
    HARD_CLIP = 5  # H
    PAD = 6  # P
    EQUAL = 7  # =
    DIFF = 8  # X

    @property
    def char(self) -> str:
        return "MIDNSHP=X"[self.value]


Cigar = Tuple[Tuple[CigarOp, int], ...]


class Status(str, Enum):
    """Per-position classification of an alignment, in reference orientation."""

    MATCH = "M"
    MISMATCH = "X"
    INSERTION = "I"
    DELETION = "D"
    SOFT_CLIP = "S"
    KNOWN_SNP = "V"
    KNOWN_INDEL = "-"
    KNOWN_MULTISUB = "B"


@dataclass(frozen=True)
class InsertRegion:
    """Half-open [start, end) range of status-track positions treated as truly aligned."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class Annotations:
    """Statistics derived while correcting and scoring one alignment.

    The SAM tag each field is written to is given in brackets.

    Attributes
    ----------
    aln_len:
        Alignment length: M/=/X/I/D/S cells, no H/P/N [XA].
    insert_len:
        Insert length: aligned cells without the flanking soft clips, from the
        CIGAR or from the 1-D realigner [XL].
    insert_from:
        0-based start of the insert region on the status track [XF].
    identity:
        ``1 - (all mismatches + all indels) / insert_len`` [XI].
    log10_lik:
        Best log10 likelihood of the alignment [XH].
    known_variant:
        Known variant that produced the best likelihood, if any [XV].
    seed_len, seed_mis, seed_indel:
        Seed length and mismatches/indels inside the seed [YL, YX, YG].
    all_mis, all_indel:
        Mismatches/indels over the whole insert [ZX, ZG].
    posterior:
        Posterior probability of this placement within its read group [XP].
    n_reported, n_candidates:
        Reported alignments and retained candidates of the read [NH, XN].
    """

    aln_len: int = 0
    insert_len: int = 0
    insert_from: int = 0
    identity: float = 0.0
    log10_lik: float = 0.0
    known_variant: Optional[str] = None
    seed_len: int = 0
    seed_mis: int = 0
    seed_indel: int = 0
    all_mis: int = 0
    all_indel: int = 0
    posterior: Optional[float] = None
    n_reported: Optional[int] = None
    n_candidates: Optional[int] = None


@dataclass(frozen=True)
class AlignmentRecord:
    """One alignment of a read, decoded from SAM/BAM.

    Coordinates are 1-based (``reference_start`` is the SAM POS of the first
    aligned base). Records are values: correction stages return new records
    via :func:`dataclasses.replace` instead of mutating them.
    """

    qname: str
    reference_name: Optional[str]
    reference_start: int
    cigar: Cigar
    md: Optional[str] = None
    query_sequence: Optional[str] = None
    query_qualities: Optional[Tuple[int, ...]] = None
    is_reverse: bool = False
    is_paired: bool = False
    is_read1: bool = False
    is_secondary: bool = False
    is_supplementary: bool = False
    is_unmapped: bool = False
    template_length: int = 0
    mapping_quality: int = 0
    annotations: Annotations = field(default_factory=Annotations)
    segment: Any = field(default=None, compare=False, repr=False)

    @property
    def read_length(self) -> int:
        return len(self.query_sequence) if self.query_sequence else 0

    @property
    def cigar_string(self) -> str:
        if not self.cigar:
            return "*"
        return "".join(f"{n}{op.char}" for op, n in self.cigar)

    @property
    def insert_rate(self) -> float:
        """Insert length relative to the read length."""
        if self.read_length == 0:
            return 0.0
        return self.annotations.insert_len / self.read_length

    def percent_seed_mis(self) -> float:
        return 100.0 * self.annotations.seed_mis / self.annotations.seed_len

    def percent_seed_indel(self) -> float:
        return 100.0 * self.annotations.seed_indel / self.annotations.seed_len

    def percent_all_mis(self) -> float:
        return 100.0 * self.annotations.all_mis / self.annotations.insert_len

    def percent_all_indel(self) -> float:
        return 100.0 * self.annotations.all_indel / self.annotations.insert_len

    def annotate(self, **changes: Any) -> "AlignmentRecord":
        """Return a copy with some annotation fields replaced."""
        return replace(self, annotations=replace(self.annotations, **changes))


@dataclass(frozen=True)
class KnownVariant:
    """A known polymorphism from a variant file.

    Attributes
    ----------
    chrom:
        Contig name as present in the VCF.
    start, end:
        1-based closed reference span of the REF allele.
    ref:
        Reference allele, uppercase.
    alts:
        Alternate alleles, uppercase.
    allele_freqs:
        Per-alternate allele frequency from the INFO field, if available.
    variant_id:
        VCF ID, or ``.`` when absent.
    is_filtered:
        True when FILTER is set to anything but PASS; such variants never
        explain an observed allele.
    """

    chrom: str
    start: int
    end: int
    ref: str
    alts: Tuple[str, ...]
    allele_freqs: Optional[Tuple[Optional[float], ...]] = None
    variant_id: str = "."
    is_filtered: bool = False

    def allele_freq(self, allele: str) -> Optional[float]:
        if self.allele_freqs is None or allele not in self.alts:
            return None
        idx = self.alts.index(allele)
        if idx >= len(self.allele_freqs):
            return None
        return self.allele_freqs[idx]

    @property
    def label(self) -> str:
        return f"{self.chrom}:{self.start}-{self.end}:{self.variant_id}"


@dataclass(frozen=True)
class AlignmentPair:
    """A candidate placement of a read pair; one mate may be missing."""

    forward: Optional[AlignmentRecord]
    reverse: Optional[AlignmentRecord]

    def __post_init__(self) -> None:
        if self.forward is None and self.reverse is None:
            raise ValueError("forward and reverse records cannot both be absent")

    @property
    def is_paired(self) -> bool:
        return self.forward is not None and self.reverse is not None

    @property
    def mates(self) -> Tuple[AlignmentRecord, ...]:
        return tuple(r for r in (self.forward, self.reverse) if r is not None)

    @property
    def insert_len(self) -> int:
        return sum(r.annotations.insert_len for r in self.mates)

    @property
    def template_length(self) -> int:
        return abs(self.mates[0].template_length)

    @property
    def mapping_quality(self) -> int:
        return self.mates[0].mapping_quality

    @property
    def posterior(self) -> Optional[float]:
        return self.mates[0].annotations.posterior

    def map_mates(self, fn) -> "AlignmentPair":
        """Apply ``fn`` to each present mate and return the new pair."""
        return AlignmentPair(
            forward=fn(self.forward) if self.forward is not None else None,
            reverse=fn(self.reverse) if self.reverse is not None else None,
        )


@dataclass(frozen=True)
class FragmentLengthModel:
    """Gaussian model of the absolute template length of properly paired reads."""

    mean: float
    sd: float
    n: int = 0

    def density(self, tlen: float) -> float:
        z = (abs(tlen) - self.mean) / self.sd
        return math.exp(-0.5 * z * z) / (self.sd * math.sqrt(2.0 * math.pi))
