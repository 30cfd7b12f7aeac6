import pytest

from mapqboost.config import ClipMode, FilterConfig, SortOrder
from mapqboost.models import Status


def test_defaults_are_valid():
    cfg = FilterConfig()
    assert cfg.seed_len == 25
    assert cfg.min_mapq == 10
    assert cfg.unique_mapq == 250


@pytest.mark.parametrize(
    "kwargs",
    [
        {"seed_len": 0},
        {"mismatch_score": 1},
        {"gap_ext_penalty": 0},
        {"min_align_rate": 1.5},
        {"min_identity": -0.1},
        {"max_all_mis": 101},
        {"max_hit": -1},
        {"min_fragment_length": 500, "max_fragment_length": 100},
        {"fragment_mean": 300.0},
        {"fragment_mean": 300.0, "fragment_sd": 0.0},
        {"min_fragment_samples": 1},
    ],
)
def test_invalid_values_raise(kwargs):
    with pytest.raises(ValueError):
        FilterConfig(**kwargs)


def test_clip_mode_ends_follow_strand():
    assert ClipMode.USE.counts_left(False) and ClipMode.USE.counts_right(True)
    assert not ClipMode.IGNORE.counts_left(False) and not ClipMode.IGNORE.counts_right(True)
    assert ClipMode.END5.counts_left(False) and not ClipMode.END5.counts_right(False)
    assert not ClipMode.END5.counts_left(True) and ClipMode.END5.counts_right(True)
    assert ClipMode.END3.counts_right(False) and ClipMode.END3.counts_left(True)


def test_sort_order_header_fields():
    assert SortOrder.NONE.header_fields == ("unsorted", "none")
    assert SortOrder.NAME.header_fields == ("queryname", "query")
    assert SortOrder.COORDINATE.header_fields == ("coordinate", "reference")


def test_known_penalty_defaults():
    cfg = FilterConfig(known_snp_penalty=1)
    assert cfg.known_penalty_default(Status.KNOWN_SNP) == 1
    assert cfg.known_penalty_default(Status.KNOWN_INDEL) == 2
    with pytest.raises(ValueError):
        cfg.known_penalty_default(Status.MATCH)
