import json
from pathlib import Path

import pysam
import pytest

from mapqboost.cigar import parse_cigar
from mapqboost.config import FilterConfig, SortOrder
from mapqboost.errors import AlignmentConsistencyError, UnpairedReadError
from mapqboost.models import AlignmentRecord
from mapqboost.pipeline import _fixed_records, _RunStats, filter_pe_bam, filter_se_bam
from mapqboost.toy_data import make_toy_data
from mapqboost.variants import VcfVariantSource


@pytest.fixture(scope="module")
def toy(tmp_path_factory):
    return make_toy_data(outdir=tmp_path_factory.mktemp("toy"))


def read_out(path: Path):
    with pysam.AlignmentFile(str(path), "rb", check_sq=False) as bam:
        header = bam.header.to_dict()
        records = list(bam.fetch(until_eof=True))
    return header, records


def test_filter_se_toy(toy, tmp_path: Path):
    out = tmp_path / "se.filtered.bam"
    with VcfVariantSource(toy["known_vcf"]) as variants:
        summary = filter_se_bam(
            in_path=toy["se_bam"],
            out_path=out,
            config=FilterConfig(),
            outdir=tmp_path,
            variants=variants,
            command_line="mapqboost filter-se",
            progress=False,
        )

    counts = summary["counts"]
    assert counts["records_total"] == 20
    assert counts["records_unmapped"] == 1
    assert counts["records_restored"] == 1
    assert counts["read_groups"] == 17
    assert counts["read_groups_reported"] == 16
    assert counts["read_groups_filtered"] == 1
    assert counts["records_written"] == 16
    assert sum(summary["mapq_hist"]["counts"]) == 16
    assert summary["candidates_hist"] == {"1": 15, "2": 2}

    saved = json.loads((tmp_path / "summary.json").read_text())
    assert saved["counts"] == counts

    header, records = read_out(out)
    assert header["PG"][-1]["ID"] == "mapqboost"
    assert header["HD"]["SO"] == "unsorted"
    by_name = {r.query_name: r for r in records}
    assert len(by_name) == 16
    assert "repeat_1" not in by_name
    assert "unmapped_1" not in by_name

    multi = by_name["multi_1"]
    assert multi.reference_start == 310
    assert not multi.is_secondary
    assert 10 <= multi.mapping_quality < 200
    assert multi.get_tag("NH") == 1
    assert multi.get_tag("XN") == 2

    assert by_name["uniq_0"].mapping_quality == 250
    assert by_name["uniq_0"].get_tag("XP") == "1.0"
    assert by_name["snp_1"].get_tag("XV") == "chr1:1001-1001:rs_toy_snp"
    assert by_name["snp_1"].get_tag("ZX") == 0
    assert by_name["del_1"].get_tag("XV") == "chr1:1100-1102:rs_toy_del"
    assert by_name["clip_1"].get_tag("ZX") == 5
    for rec in records:
        assert rec.has_tag("XH") and rec.has_tag("XI") and rec.has_tag("YL")


def test_filter_se_without_variants_counts_snp_mismatch(toy, tmp_path: Path):
    out = tmp_path / "se.novcf.bam"
    filter_se_bam(in_path=toy["se_bam"], out_path=out, config=FilterConfig(), progress=False)
    _, records = read_out(out)
    snp = next(r for r in records if r.query_name == "snp_1")
    assert not snp.has_tag("XV")
    assert snp.get_tag("ZX") == 1
    assert not (tmp_path / "summary.json").exists()


def test_filter_se_with_unindexed_vcf(toy, tmp_path: Path):
    plain_vcf = Path(toy["known_vcf"]).with_suffix("")
    out = tmp_path / "se.plainvcf.bam"
    with VcfVariantSource(str(plain_vcf)) as variants:
        filter_se_bam(in_path=toy["se_bam"], out_path=out, config=FilterConfig(), variants=variants, progress=False)
    _, records = read_out(out)
    by_name = {r.query_name: r for r in records}
    assert by_name["snp_1"].get_tag("XV") == "chr1:1001-1001:rs_toy_snp"
    assert by_name["del_1"].get_tag("XV") == "chr1:1100-1102:rs_toy_del"


def test_filter_se_report_all_and_chrom_list(toy, tmp_path: Path):
    cfg = FilterConfig(min_mapq=0, max_best=0, max_report=0, sort_order=SortOrder.NAME)
    out = tmp_path / "se.all.bam"
    summary = filter_se_bam(in_path=toy["se_bam"], out_path=out, config=cfg, progress=False)
    assert summary["counts"]["records_written"] == 19
    header, records = read_out(out)
    assert header["HD"]["SO"] == "queryname"
    repeat = [r for r in records if r.query_name == "repeat_1"]
    assert [r.is_secondary for r in repeat] == [False, True]
    assert all(r.get_tag("NH") == 2 for r in repeat)

    empty = filter_se_bam(
        in_path=toy["se_bam"], out_path=tmp_path / "none.bam", config=FilterConfig(chrom_list=frozenset({"chr2"})), progress=False
    )
    assert empty["counts"]["records_skipped_contig"] == 19
    assert empty["counts"]["records_written"] == 0


def test_filter_pe_toy(toy, tmp_path: Path):
    out = tmp_path / "pe.filtered.bam"
    summary = filter_pe_bam(
        in_path=toy["pe_bam"], out_path=out, config=FilterConfig(), outdir=tmp_path, progress=False
    )
    model = summary["fragment_model"]
    assert model["n"] == 41
    assert model["mean"] == pytest.approx(250, abs=15)

    counts = summary["counts"]
    assert counts["read_groups"] == 42
    assert counts["read_groups_reported"] == 42
    assert counts["records_unmapped"] == 1
    assert counts["records_written"] == 83

    _, records = read_out(out)
    multi = [r for r in records if r.query_name == "pair_multi"]
    assert sorted(r.reference_start for r in multi) == [300, 500]
    assert all(not r.is_secondary for r in multi)
    assert len({r.mapping_quality for r in multi}) == 1
    half = [r for r in records if r.query_name == "pair_half"]
    assert len(half) == 1
    assert half[0].mapping_quality == 250


def test_filter_pe_no_mix_and_manual_model(toy, tmp_path: Path):
    cfg = FilterConfig(no_mix=True, fragment_mean=250.0, fragment_sd=20.0)
    summary = filter_pe_bam(in_path=toy["pe_bam"], out_path=tmp_path / "pe.nomix.bam", config=cfg, progress=False)
    assert summary["fragment_model"]["n"] == 0
    assert summary["counts"]["read_groups_filtered"] == 1
    assert summary["counts"]["records_written"] == 82


def test_filter_pe_rejects_single_end_input(toy, tmp_path: Path):
    with pytest.raises(UnpairedReadError):
        filter_pe_bam(
            in_path=toy["se_bam"], out_path=tmp_path / "x.bam", config=FilterConfig(no_fragment_model=True), progress=False
        )


def test_inconsistent_md_aborts_run(tmp_path: Path):
    bam_path = tmp_path / "bad.bam"
    header = {"HD": {"VN": "1.6", "SO": "queryname"}, "SQ": [{"SN": "chr1", "LN": 1000}]}
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        seg = pysam.AlignedSegment(bam.header)
        seg.query_name = "bad"
        seg.reference_id = 0
        seg.reference_start = 10
        seg.cigarstring = "50M"
        seg.query_sequence = "A" * 50
        seg.query_qualities = pysam.qualitystring_to_array("I" * 50)
        seg.set_tag("MD", "48")
        bam.write(seg)

    with pytest.raises(AlignmentConsistencyError):
        filter_se_bam(in_path=bam_path, out_path=tmp_path / "out.bam", config=FilterConfig(), progress=False)


def paired_record(start: int, seq, *, is_read1: bool, is_secondary: bool = False) -> AlignmentRecord:
    return AlignmentRecord(
        qname="frag",
        reference_name="chr1",
        reference_start=start,
        cigar=parse_cigar("10M"),
        md="10",
        query_sequence=seq,
        query_qualities=(30,) * 10 if seq is not None else None,
        is_secondary=is_secondary,
        is_paired=True,
        is_read1=is_read1,
    )


def test_missing_sequence_is_restored_from_same_mate():
    records = [
        paired_record(101, "AAAAAAAAAA", is_read1=True),
        paired_record(301, "CCCCCCCCCC", is_read1=False),
        paired_record(601, None, is_read1=False, is_secondary=True),
    ]
    stats = _RunStats()
    out = list(_fixed_records(records, config=FilterConfig(), variants=None, stats=stats, paired=True))
    assert [r.query_sequence for r in out] == ["AAAAAAAAAA", "CCCCCCCCCC", "CCCCCCCCCC"]
    assert out[2].query_qualities == (30,) * 10
    assert stats.counts["records_restored"] == 1
