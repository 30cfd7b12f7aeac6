import pytest

from mapqboost.cigar import alignment_length, md_reference_length, parse_cigar
from mapqboost.config import FilterConfig
from mapqboost.errors import AlignmentConsistencyError
from mapqboost.models import InsertRegion, Status
from mapqboost.rewrite import rewrite_encodings
from mapqboost.status import (
    advance_reference_pos,
    build_status_track,
    insert_region_from_track,
    realign_insert_region,
    reference_offset,
    track_to_string,
)


def track_of(s: str):
    return [Status(c) for c in s]


def test_build_track_with_clips_indels_and_mismatch():
    cigar = parse_cigar("2S5M1I3M2D4M")
    track = build_status_track(cigar, "3A4^TT4")
    assert track_to_string(track) == "SSMMMXMIMMMDDMMMM"
    assert len(track) == alignment_length(cigar)
    ref_cells = sum(1 for s in track if s in (Status.MATCH, Status.MISMATCH, Status.DELETION))
    assert ref_cells == md_reference_length("3A4^TT4")


def test_build_track_without_md_uses_extended_cigar():
    track = build_status_track(parse_cigar("3=1X2="))
    assert track_to_string(track) == "MMMXMM"


def test_build_track_rejects_md_shorter_than_cigar():
    with pytest.raises(AlignmentConsistencyError):
        build_status_track(parse_cigar("50M"), "48", qname="r1")


def test_build_track_rejects_mismatch_on_deletion():
    with pytest.raises(AlignmentConsistencyError):
        build_status_track(parse_cigar("2M1D2M"), "2A2")


def test_advance_reference_pos_skips_insertions():
    track = track_of("MMIMM")
    assert advance_reference_pos(track, 0, 2) == 3
    assert advance_reference_pos(track, 0, 0) == 0
    assert advance_reference_pos(track, 3, 5) == 5


def test_insert_region_from_track():
    assert insert_region_from_track(track_of("SSMMMSS")) == InsertRegion(2, 5)
    assert insert_region_from_track(track_of("SSS")) == InsertRegion(3, 3)
    assert insert_region_from_track(track_of("MMXM")).length == 4


def test_realign_trims_trailing_mismatches():
    cfg = FilterConfig()
    track = track_of("MMMMMMMMXMX")
    assert realign_insert_region(track, cfg) == InsertRegion(0, 8)


def test_realign_trims_leading_mismatch():
    cfg = FilterConfig()
    track = track_of("XMMMMMMMMM")
    assert realign_insert_region(track, cfg) == InsertRegion(1, 10)


def test_realign_is_idempotent():
    cfg = FilterConfig()
    track = track_of("SMXMMMMMIIMMMMXXM")
    first = realign_insert_region(track, cfg)
    assert realign_insert_region(track, cfg) == first


def test_realign_is_stable_on_rewritten_track():
    cfg = FilterConfig()
    cigar = parse_cigar("8M2I2M")
    md = "10"
    track = build_status_track(cigar, md)
    old = insert_region_from_track(track)
    new = realign_insert_region(track, cfg)
    assert new == InsertRegion(0, 8)

    rw = rewrite_encodings(track, cigar, md, old, new)
    track2 = build_status_track(rw.cigar, rw.md)
    assert insert_region_from_track(track2) == new
    assert realign_insert_region(track2, cfg) == new


def test_reference_offset_ignores_insertions():
    track = track_of("MMIIMDM")
    assert reference_offset(track, 4) == 2
    assert reference_offset(track, 7) == 5
