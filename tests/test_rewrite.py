import pytest

from mapqboost.cigar import alignment_length, check_cigar_md, parse_cigar, query_length
from mapqboost.config import FilterConfig
from mapqboost.models import InsertRegion
from mapqboost.rewrite import rewrite_encodings
from mapqboost.status import build_status_track, insert_region_from_track, realign_insert_region


def _rewrite(cigar_string: str, md: str):
    cigar = parse_cigar(cigar_string)
    track = build_status_track(cigar, md)
    old = insert_region_from_track(track)
    new = realign_insert_region(track, FilterConfig())
    return cigar, rewrite_encodings(track, cigar, md, old, new)


def _cigar_str(cigar):
    return "".join(f"{n}{op.char}" for op, n in cigar)


def test_leading_mismatch_becomes_soft_clip():
    cigar, rw = _rewrite("10M", "0A9")
    assert _cigar_str(rw.cigar) == "1S9M"
    assert rw.md == "9"
    assert rw.start_shift == 1


def test_trailing_insertion_becomes_soft_clip():
    cigar, rw = _rewrite("8M2I2M", "10")
    assert _cigar_str(rw.cigar) == "8M4S"
    assert rw.md == "8"
    assert rw.start_shift == 0


def test_hard_clips_and_existing_soft_clips_are_kept():
    cigar, rw = _rewrite("2H3S10M3H", "8G0C0")
    assert _cigar_str(rw.cigar) == "2H3S8M2S3H"
    assert rw.md == "8"
    assert rw.start_shift == 0


@pytest.mark.parametrize(
    "cigar_string,md",
    [
        ("10M", "0A9"),
        ("8M2I2M", "10"),
        ("2H3S10M3H", "8G0C0"),
    ],
)
def test_rewrite_preserves_lengths_and_consistency(cigar_string, md):
    cigar, rw = _rewrite(cigar_string, md)
    assert alignment_length(rw.cigar) == alignment_length(cigar)
    assert query_length(rw.cigar) == query_length(cigar)
    check_cigar_md(rw.cigar, rw.md)


def test_rewrite_without_md():
    cigar = parse_cigar("2X8=")
    track = build_status_track(cigar)
    new = realign_insert_region(track, FilterConfig())
    rw = rewrite_encodings(track, cigar, None, insert_region_from_track(track), new)
    assert new == InsertRegion(2, 10)
    assert _cigar_str(rw.cigar) == "2S8="
    assert rw.md is None
    assert rw.start_shift == 2


def test_rewrite_rejects_region_outside_alignment():
    cigar = parse_cigar("10M")
    track = build_status_track(cigar, "10")
    with pytest.raises(ValueError):
        rewrite_encodings(track, cigar, "10", InsertRegion(0, 10), InsertRegion(0, 11))


def test_deletion_outside_new_region_is_dropped():
    cigar, rw = _rewrite("1S12M2D6M", "0T0G10^AA5C0")
    assert _cigar_str(rw.cigar) == "3S10M6S"
    assert rw.md == "10"
    assert rw.start_shift == 2
    assert query_length(rw.cigar) == query_length(cigar)
    assert alignment_length(rw.cigar) == alignment_length(cigar) - 2
    check_cigar_md(rw.cigar, rw.md)
