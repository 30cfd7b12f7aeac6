from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

import pysam

from .models import KnownVariant

logger = logging.getLogger(__name__)


class VariantSource(Protocol):
    """Known variants queried by 1-based closed reference range."""

    def fetch(self, chrom: str, start: int, end: int) -> Iterator[KnownVariant]:
        ...


@dataclass
class _ContigIndex:
    starts: List[int] = field(default_factory=list)
    variants: List[KnownVariant] = field(default_factory=list)
    max_span: int = 1


class InMemoryVariantIndex:
    """Per-contig sorted variant lookup for VCFs without a tabix index (and for tests)."""

    def __init__(self, variants: Iterable[KnownVariant]) -> None:
        by_contig: Dict[str, List[KnownVariant]] = {}
        for v in variants:
            by_contig.setdefault(v.chrom, []).append(v)
        self._index: Dict[str, _ContigIndex] = {}
        for chrom, lst in by_contig.items():
            lst.sort(key=lambda v: (v.start, v.end))
            self._index[chrom] = _ContigIndex(
                starts=[v.start for v in lst],
                variants=lst,
                max_span=max(v.end - v.start + 1 for v in lst),
            )

    def __len__(self) -> int:
        return sum(len(idx.variants) for idx in self._index.values())

    def fetch(self, chrom: str, start: int, end: int) -> Iterator[KnownVariant]:
        idx = self._index.get(chrom)
        if idx is None:
            return
        left = bisect.bisect_left(idx.starts, start - idx.max_span + 1)
        right = bisect.bisect_right(idx.starts, end)
        for v in idx.variants[left:right]:
            if v.end >= start:
                yield v


def _is_filtered(rec: pysam.VariantRecord) -> bool:
    # pysam reports an empty filter set when FILTER is "."
    filt = list(rec.filter.keys())
    return len(filt) > 0 and not (len(filt) == 1 and filt[0] == "PASS")


def _allele_freqs(rec: pysam.VariantRecord, af_tag: Optional[str], n_alts: int) -> Optional[Tuple[Optional[float], ...]]:
    if af_tag is None or af_tag not in rec.info:
        return None
    raw = rec.info[af_tag]
    if not isinstance(raw, (list, tuple)):
        raw = (raw,)
    freqs: List[Optional[float]] = []
    for val in raw:
        try:
            freqs.append(float(val) if val is not None else None)
        except (TypeError, ValueError):
            freqs.append(None)
    if len(freqs) != n_alts:
        logger.debug("%s:%d has %d %s values for %d alleles", rec.contig, rec.pos, len(freqs), af_tag, n_alts)
    return tuple(freqs)


def to_known_variant(rec: pysam.VariantRecord, *, af_tag: Optional[str] = "AF") -> Optional[KnownVariant]:
    """Convert a pysam VCF record; None for records without usable sequence alleles."""
    alts = tuple(a.upper() for a in (rec.alts or ()) if a and not a.startswith("<") and a != "*")
    if not alts or not rec.ref:
        return None
    return KnownVariant(
        chrom=str(rec.contig),
        start=int(rec.pos),
        end=int(rec.stop),  # 0-based exclusive stop == 1-based closed end
        ref=rec.ref.upper(),
        alts=alts,
        allele_freqs=_allele_freqs(rec, af_tag, len(alts)),
        variant_id=rec.id if rec.id is not None else ".",
        is_filtered=_is_filtered(rec),
    )


class VcfVariantSource:
    """Known variants from a VCF/BCF file.

    Region queries go through the tabix/CSI index when there is one; otherwise
    the whole file is read once into an :class:`InMemoryVariantIndex`.
    """

    def __init__(self, path: str, *, af_tag: Optional[str] = "AF") -> None:
        self.path = path
        self.af_tag = af_tag
        self.stats: Dict[str, int] = {
            "records_total": 0,
            "records_filtered": 0,
            "records_skipped_symbolic": 0,
        }
        self._vcf = pysam.VariantFile(path)
        self._memory: Optional[InMemoryVariantIndex] = None

        if self._vcf.index is None:
            logger.info("VCF %s has no index; loading known variants into memory", path)
            self._memory = InMemoryVariantIndex(self._load_all())
            logger.info("Loaded %d known variants from %s", len(self._memory), path)

    def _convert(self, rec: pysam.VariantRecord) -> Optional[KnownVariant]:
        v = to_known_variant(rec, af_tag=self.af_tag)
        if v is None:
            self.stats["records_skipped_symbolic"] += 1
        return v

    def _load_all(self) -> List[KnownVariant]:
        out: List[KnownVariant] = []
        for rec in self._vcf:
            self.stats["records_total"] += 1
            v = self._convert(rec)
            if v is None:
                continue
            if v.is_filtered:
                self.stats["records_filtered"] += 1
            out.append(v)
        return out

    def fetch(self, chrom: str, start: int, end: int) -> Iterator[KnownVariant]:
        if self._memory is not None:
            yield from self._memory.fetch(chrom, start, end)
            return
        if chrom not in self._vcf.index:
            return
        for rec in self._vcf.fetch(chrom, start - 1, end):
            v = self._convert(rec)
            if v is not None:
                yield v

    def close(self) -> None:
        self._vcf.close()

    def __enter__(self) -> "VcfVariantSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
