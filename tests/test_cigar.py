import pytest

from mapqboost.cigar import (
    alignment_length,
    check_cigar_md,
    check_cigar_read_length,
    fix_md,
    join_md,
    leading_hard_clip,
    md_reference_length,
    parse_cigar,
    query_length,
    reference_length,
    tokenize_md,
    trailing_hard_clip,
)
from mapqboost.errors import AlignmentConsistencyError
from mapqboost.models import CigarOp


def test_parse_cigar_ops_and_lengths():
    cigar = parse_cigar("3H5S20M2D10M1I4N3H")
    assert cigar[0] == (CigarOp.HARD_CLIP, 3)
    assert cigar[2] == (CigarOp.MATCH, 20)
    assert alignment_length(cigar) == 38
    assert reference_length(cigar) == 32
    assert query_length(cigar) == 36
    assert leading_hard_clip(cigar) == 3
    assert trailing_hard_clip(cigar) == 3


def test_parse_cigar_empty_and_invalid():
    assert parse_cigar("*") == ()
    with pytest.raises(ValueError):
        parse_cigar("5Q")


def test_single_hard_clip_is_leading_only():
    cigar = parse_cigar("5H")
    assert leading_hard_clip(cigar) == 5
    assert trailing_hard_clip(cigar) == 0


def test_md_reference_length_and_tokens():
    assert md_reference_length("10A5^AC6") == 24
    assert tokenize_md("10A0^AC5") == [10, "A", 0, "^AC", 5]
    with pytest.raises(ValueError):
        tokenize_md("10a5")


def test_cigar_md_length_mismatch_is_fatal():
    with pytest.raises(AlignmentConsistencyError) as exc:
        check_cigar_md(parse_cigar("50M"), "48", qname="bad")
    assert isinstance(exc.value, ValueError)
    assert "read=bad" in str(exc.value)
    assert "MD=48" in str(exc.value)


def test_cigar_read_length_mismatch_is_fatal():
    check_cigar_read_length(parse_cigar("5S45M"), 50)
    with pytest.raises(AlignmentConsistencyError):
        check_cigar_read_length(parse_cigar("5S45M"), 49)


def test_join_md_merges_runs_and_pads():
    assert join_md(["A", 5, 3, "^GT"]) == "0A8^GT0"
    assert join_md([4, "C", "G", 2]) == "4C0G2"
    assert join_md([]) == "0"


def test_fix_md_repairs_nonstandard_strings():
    assert fix_md("10AC5") == ("10A0C5", True)
    assert fix_md("A10") == ("0A10", True)
    assert fix_md("10A") == ("10A0", True)
    assert fix_md("10A5^GT3") == ("10A5^GT3", False)
