from dataclasses import replace

import pysam

from mapqboost.bam import from_segment, output_header, to_segment
from mapqboost.cigar import parse_cigar
from mapqboost.config import SortOrder
from mapqboost.models import AlignmentRecord


def make_header(pg=None) -> pysam.AlignmentHeader:
    hdr = {"HD": {"VN": "1.6", "SO": "queryname"}, "SQ": [{"SN": "chr1", "LN": 2000}]}
    if pg:
        hdr["PG"] = pg
    return pysam.AlignmentHeader.from_dict(hdr)


def test_output_header_sets_sort_order_and_program():
    hdr = output_header(
        make_header(), sort_order=SortOrder.COORDINATE, version="0.3.0", command_line="mapqboost filter-se", subcommand="filter-se"
    )
    assert hdr["HD"]["SO"] == "coordinate"
    assert hdr["HD"]["GO"] == "reference"
    (pg,) = hdr["PG"]
    assert pg["ID"] == "mapqboost"
    assert pg["VN"] == "0.3.0"
    assert "PP" not in pg


def test_output_header_chains_existing_programs():
    in_hdr = make_header(pg=[{"ID": "bwa", "PN": "bwa"}, {"ID": "mapqboost", "PN": "mapqboost", "PP": "bwa"}])
    hdr = output_header(in_hdr, sort_order=SortOrder.NONE, version="0.3.0", command_line="x", subcommand="filter-pe")
    ids = [pg["ID"] for pg in hdr["PG"]]
    assert ids == ["bwa", "mapqboost", "mapqboost.1"]
    assert hdr["PG"][-1]["PP"] == "mapqboost"
    assert hdr["HD"]["SO"] == "unsorted"


def make_segment(header: pysam.AlignmentHeader) -> pysam.AlignedSegment:
    seg = pysam.AlignedSegment(header)
    seg.query_name = "r1"
    seg.query_sequence = "ACGTACGTAC"
    seg.flag = 16 | 256
    seg.reference_id = 0
    seg.reference_start = 99
    seg.mapping_quality = 7
    seg.cigarstring = "2S8M"
    seg.query_qualities = pysam.qualitystring_to_array("IIIIIIIIII")
    seg.set_tag("MD", "8")
    return seg


def test_from_segment_uses_one_based_start():
    rec = from_segment(make_segment(make_header()))
    assert rec.qname == "r1"
    assert rec.reference_name == "chr1"
    assert rec.reference_start == 100
    assert rec.cigar_string == "2S8M"
    assert rec.md == "8"
    assert rec.is_reverse and rec.is_secondary
    assert rec.query_qualities == (40,) * 10
    assert rec.mapping_quality == 7


def test_to_segment_writes_changes_and_tags():
    header = make_header()
    rec = from_segment(make_segment(header))
    rec = rec.annotate(aln_len=10, insert_len=8, insert_from=2, identity=1.0, log10_lik=-2.5, seed_len=25)
    rec = rec.annotate(posterior=0.75, n_reported=1, n_candidates=3, known_variant="chr1:101-101:rs1")
    rec = replace(rec, reference_start=102, cigar=parse_cigar("4S6M"), md="6", mapping_quality=6, is_secondary=False)
    seg = to_segment(rec)
    assert seg.reference_start == 101
    assert seg.cigarstring == "4S6M"
    assert seg.get_tag("MD") == "6"
    assert seg.mapping_quality == 6
    assert not seg.is_secondary
    assert seg.get_tag("XL") == 8
    assert seg.get_tag("XF") == 2
    assert float(seg.get_tag("XH")) == -2.5
    assert float(seg.get_tag("XP")) == 0.75
    assert seg.get_tag("NH") == 1
    assert seg.get_tag("XN") == 3
    assert seg.get_tag("XV") == "chr1:101-101:rs1"


def test_to_segment_builds_new_segment():
    header = make_header()
    rec = AlignmentRecord(
        qname="new",
        reference_name="chr1",
        reference_start=5,
        cigar=parse_cigar("4M"),
        md="4",
        query_sequence="ACGT",
        query_qualities=(30, 30, 30, 30),
        is_paired=True,
        is_read1=True,
        template_length=200,
    )
    seg = to_segment(rec, header)
    assert seg.query_name == "new"
    assert seg.reference_start == 4
    assert seg.is_read1 and not seg.is_read2
    assert seg.template_length == 200
    assert not seg.has_tag("XP")
