"""Conversion between pysam segments and :class:`AlignmentRecord`, and output headers."""

from __future__ import annotations

import logging
from array import array
from pathlib import Path
from typing import Any, Dict, List, Optional

import pysam

from .cigar import cigar_from_tuples
from .config import SortOrder
from .models import AlignmentRecord, Annotations

logger = logging.getLogger(__name__)

PROGRAM_ID = "mapqboost"


def from_segment(seg: pysam.AlignedSegment) -> AlignmentRecord:
    mapped = not seg.is_unmapped and seg.reference_id >= 0
    quals = seg.query_qualities
    return AlignmentRecord(
        qname=str(seg.query_name),
        reference_name=seg.reference_name if mapped else None,
        reference_start=seg.reference_start + 1 if seg.reference_start >= 0 else 0,
        cigar=cigar_from_tuples(seg.cigartuples or ()),
        md=str(seg.get_tag("MD")) if seg.has_tag("MD") else None,
        query_sequence=seg.query_sequence or None,
        query_qualities=tuple(int(q) for q in quals) if quals is not None else None,
        is_reverse=bool(seg.is_reverse),
        is_paired=bool(seg.is_paired),
        is_read1=bool(seg.is_read1),
        is_secondary=bool(seg.is_secondary),
        is_supplementary=bool(seg.is_supplementary),
        is_unmapped=bool(seg.is_unmapped),
        template_length=int(seg.template_length),
        mapping_quality=int(seg.mapping_quality),
        segment=seg,
    )


def _set_annotation_tags(seg: pysam.AlignedSegment, ann: Annotations) -> None:
    seg.set_tag("XA", ann.aln_len, value_type="i")
    seg.set_tag("XL", ann.insert_len, value_type="i")
    seg.set_tag("XF", ann.insert_from, value_type="i")
    seg.set_tag("XI", float(ann.identity), value_type="f")
    # full precision, a float tag would round the likelihood
    seg.set_tag("XH", repr(float(ann.log10_lik)), value_type="Z")
    if ann.known_variant is not None:
        seg.set_tag("XV", ann.known_variant, value_type="Z")
    seg.set_tag("YL", ann.seed_len, value_type="i")
    seg.set_tag("YX", ann.seed_mis, value_type="i")
    seg.set_tag("YG", ann.seed_indel, value_type="i")
    seg.set_tag("ZX", ann.all_mis, value_type="i")
    seg.set_tag("ZG", ann.all_indel, value_type="i")
    if ann.posterior is not None:
        seg.set_tag("XP", repr(float(ann.posterior)), value_type="Z")
    if ann.n_reported is not None:
        seg.set_tag("NH", ann.n_reported, value_type="i")
    if ann.n_candidates is not None:
        seg.set_tag("XN", ann.n_candidates, value_type="i")


def to_segment(record: AlignmentRecord, header: Optional[pysam.AlignmentHeader] = None) -> pysam.AlignedSegment:
    """Write ``record`` back onto its source segment (or a new one bound to ``header``)."""
    seg = record.segment
    if seg is None:
        seg = pysam.AlignedSegment(header)
        seg.query_name = record.qname
        seg.reference_name = record.reference_name
        seg.is_paired = record.is_paired
        seg.is_read1 = record.is_read1
        seg.is_read2 = record.is_paired and not record.is_read1
        seg.is_reverse = record.is_reverse
        seg.is_supplementary = record.is_supplementary
        seg.template_length = record.template_length

    if record.query_sequence is not None and seg.query_sequence != record.query_sequence:
        # assigning SEQ clears QUAL, so qualities are set afterwards
        seg.query_sequence = record.query_sequence
    if record.query_qualities is not None:
        seg.query_qualities = array("B", record.query_qualities)

    seg.cigartuples = [(int(op), n) for op, n in record.cigar]
    seg.reference_start = record.reference_start - 1
    seg.mapping_quality = record.mapping_quality
    seg.is_secondary = record.is_secondary
    if record.md is not None:
        seg.set_tag("MD", record.md, value_type="Z")
    _set_annotation_tags(seg, record.annotations)
    return seg


def is_coordinate_sorted(header: pysam.AlignmentHeader) -> bool:
    hd = header.to_dict().get("HD", {})
    return hd.get("SO") == "coordinate" or hd.get("GO") == "reference"


def output_header(
    in_header: pysam.AlignmentHeader,
    *,
    sort_order: SortOrder,
    version: str,
    command_line: str,
    subcommand: str,
) -> Dict[str, Any]:
    """Copy of the input header with @HD SO/GO set and a @PG line appended."""
    hdr = in_header.to_dict()
    hd = dict(hdr.get("HD", {"VN": "1.6"}))
    hd["SO"], hd["GO"] = sort_order.header_fields
    hdr["HD"] = hd

    programs: List[Dict[str, str]] = [dict(pg) for pg in hdr.get("PG", [])]
    ids = {pg.get("ID") for pg in programs}
    pg_id = PROGRAM_ID
    k = 1
    while pg_id in ids:
        pg_id = f"{PROGRAM_ID}.{k}"
        k += 1
    pg = {"ID": pg_id, "PN": f"{PROGRAM_ID} {subcommand}", "VN": version, "CL": command_line}
    if programs:
        pg["PP"] = programs[-1]["ID"]
    programs.append(pg)
    hdr["PG"] = programs
    return hdr


def open_input(path: str | Path) -> pysam.AlignmentFile:
    return pysam.AlignmentFile(str(path), "r", check_sq=False)


def open_output(path: str | Path, header: Dict[str, Any]) -> pysam.AlignmentFile:
    mode = "w" if str(path).endswith(".sam") else "wb"
    return pysam.AlignmentFile(str(path), mode, header=header)
