import random

import pytest

from mapqboost.cigar import parse_cigar
from mapqboost.config import FilterConfig
from mapqboost.errors import FragmentLengthError
from mapqboost.fraglen import estimate_fragment_length, is_fragment_sample, resolve_fragment_model
from mapqboost.models import AlignmentRecord


def mate(tlen: int, *, read1: bool = True, **kw) -> AlignmentRecord:
    return AlignmentRecord(
        qname="p",
        reference_name="chr1",
        reference_start=100,
        cigar=parse_cigar("50M"),
        query_sequence="A" * 50,
        is_paired=True,
        is_read1=read1,
        template_length=tlen,
        **kw,
    )


def test_estimate_converges_on_gaussian_lengths():
    rng = random.Random(11)
    records = []
    for _ in range(2000):
        tlen = int(round(rng.gauss(300, 30)))
        records.append(mate(tlen))
        records.append(mate(-tlen, read1=False))
    model = estimate_fragment_length(records, FilterConfig())
    assert model.n == 2000
    assert model.mean == pytest.approx(300, abs=3)
    assert model.sd == pytest.approx(30, abs=3)


def test_sample_filter():
    cfg = FilterConfig(max_fragment_length=500)
    assert is_fragment_sample(mate(300), cfg)
    assert not is_fragment_sample(mate(300, read1=False), cfg)
    assert not is_fragment_sample(mate(0), cfg)
    assert not is_fragment_sample(mate(800), cfg)
    assert not is_fragment_sample(mate(300, is_secondary=True), cfg)
    assert not is_fragment_sample(mate(300, is_unmapped=True), cfg)


def test_sample_cap_stops_early():
    cfg = FilterConfig(fragment_sample_cap=50)
    model = estimate_fragment_length((mate(200 + i % 7) for i in range(1000)), cfg)
    assert model.n == 50


def test_too_few_samples_raises():
    with pytest.raises(FragmentLengthError):
        estimate_fragment_length([mate(300 + i) for i in range(5)], FilterConfig())


def test_constant_lengths_raise():
    with pytest.raises(FragmentLengthError):
        estimate_fragment_length([mate(300)] * 100, FilterConfig())


def test_resolve_fragment_model():
    assert resolve_fragment_model(FilterConfig(no_fragment_model=True)) is None
    manual = resolve_fragment_model(FilterConfig(fragment_mean=250.0, fragment_sd=25.0))
    assert (manual.mean, manual.sd) == (250.0, 25.0)
    with pytest.raises(FragmentLengthError):
        resolve_fragment_model(FilterConfig())
