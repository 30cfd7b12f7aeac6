from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pysam

from .utils import ensure_outdir, write_json

CONTIG = "chr1"
REF_LEN = 2000
READ_LEN = 50

# 0-based coordinates of the features planted in the toy reference
NEAR_REPEAT = (300, 1300, 300)  # source, copy, length; the copy differs at NEAR_REPEAT_MISMATCH
NEAR_REPEAT_MISMATCH = 1320
EXACT_REPEAT = (800, 1700, 100)
KNOWN_SNP_POS = 1000
KNOWN_DEL_POS = 1099  # VCF anchor base; the two following bases are deleted

_FLAG_PAIRED = 0x1
_FLAG_PROPER = 0x2
_FLAG_UNMAPPED = 0x4
_FLAG_MATE_UNMAPPED = 0x8
_FLAG_REVERSE = 0x10
_FLAG_MATE_REVERSE = 0x20
_FLAG_READ1 = 0x40
_FLAG_READ2 = 0x80
_FLAG_SECONDARY = 0x100


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _reference(rng: random.Random) -> str:
    seq = [rng.choice("ACGT") for _ in range(REF_LEN)]
    src, dst, n = NEAR_REPEAT
    seq[dst : dst + n] = seq[src : src + n]
    seq[NEAR_REPEAT_MISMATCH] = _mutate_base(seq[NEAR_REPEAT_MISMATCH])
    src, dst, n = EXACT_REPEAT
    seq[dst : dst + n] = seq[src : src + n]
    return "".join(seq)


def md_tag(ref: str, read: str) -> str:
    """MD string of an ungapped alignment of ``read`` against ``ref``."""
    parts: List[str] = []
    run = 0
    for r, q in zip(ref, read):
        if r == q:
            run += 1
        else:
            parts.append(f"{run}{r}")
            run = 0
    parts.append(str(run))
    return "".join(parts)


def _make_read(
    name: str,
    start0: int,
    seq: Optional[str],
    *,
    md: str,
    cigar: Optional[Sequence[Tuple[int, int]]] = None,
    flag: int = 0,
    mapq: int = 60,
    tlen: int = 0,
    mate_start0: int = -1,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.flag = flag
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = list(cigar) if cigar is not None else [(0, READ_LEN)]
    if seq is not None:
        a.query_sequence = seq
        a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    if flag & _FLAG_PAIRED:
        a.next_reference_id = 0 if mate_start0 >= 0 else -1
        a.next_reference_start = mate_start0
        a.template_length = tlen
    a.set_tag("MD", md, value_type="Z")
    return a


def _unmapped_read(name: str, seq: str, flag: int = _FLAG_UNMAPPED) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.flag = flag
    a.reference_id = -1
    a.reference_start = -1
    a.query_sequence = seq
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def _exact(ref: str, name: str, start0: int, **kw) -> pysam.AlignedSegment:
    seq = ref[start0 : start0 + READ_LEN]
    return _make_read(name, start0, seq, md=str(READ_LEN), **kw)


def _se_reads(ref: str) -> List[pysam.AlignedSegment]:
    reads: List[pysam.AlignedSegment] = []

    for i in range(10):
        start0 = 20 + 25 * i
        seq = list(ref[start0 : start0 + READ_LEN])
        if i == 3:
            seq[40] = _mutate_base(seq[40])
        seq_s = "".join(seq)
        flag = _FLAG_REVERSE if i % 2 else 0
        reads.append(_make_read(f"uniq_{i}", start0, seq_s, md=md_tag(ref[start0:], seq_s), flag=flag))

    # near repeat: the secondary hit is stored without SEQ/QUAL
    src, dst, _ = NEAR_REPEAT
    start0 = src + 10
    seq = ref[start0 : start0 + READ_LEN]
    reads.append(_make_read("multi_1", start0, seq, md=md_tag(ref[start0:], seq), mapq=3))
    copy0 = dst + 10
    reads.append(
        _make_read("multi_1", copy0, None, md=md_tag(ref[copy0:], seq), flag=_FLAG_SECONDARY, mapq=3)
    )

    src, dst, _ = EXACT_REPEAT
    reads.append(_exact(ref, "repeat_1", src + 20, mapq=0))
    reads.append(_exact(ref, "repeat_1", dst + 20, flag=_FLAG_SECONDARY, mapq=0))

    for i in range(3):
        start0 = KNOWN_SNP_POS - 20 + 5 * i
        seq = list(ref[start0 : start0 + READ_LEN])
        seq[KNOWN_SNP_POS - start0] = _mutate_base(ref[KNOWN_SNP_POS])
        seq_s = "".join(seq)
        reads.append(_make_read(f"snp_{i}", start0, seq_s, md=md_tag(ref[start0:], seq_s)))

    # 20M2D30M across the known deletion
    start0 = KNOWN_DEL_POS + 1 - 20
    del0 = KNOWN_DEL_POS + 1
    seq = ref[start0:del0] + ref[del0 + 2 : del0 + 32]
    reads.append(
        _make_read(
            "del_1",
            start0,
            seq,
            md=f"20^{ref[del0:del0 + 2]}30",
            cigar=[(0, 20), (2, 2), (0, 30)],
        )
    )

    # 5S45M with a clipped adapter-like prefix
    start0 = 1200
    clip = "".join(_mutate_base(b) for b in ref[start0 - 5 : start0])
    seq = clip + ref[start0 : start0 + READ_LEN - 5]
    reads.append(_make_read("clip_1", start0, seq, md=str(READ_LEN - 5), cigar=[(4, 5), (0, READ_LEN - 5)]))

    reads.append(_unmapped_read("unmapped_1", "ACGT" * 12 + "AC"))
    return reads


def _pair(
    ref: str,
    name: str,
    start1: int,
    frag: int,
    *,
    secondary: bool = False,
    origin: Optional[int] = None,
) -> List[pysam.AlignedSegment]:
    """Both mates of one placement; ``origin`` is where the fragment really came from."""
    start2 = start1 + frag - READ_LEN
    origin = start1 if origin is None else origin
    extra = _FLAG_SECONDARY if secondary else 0
    flag1 = _FLAG_PAIRED | _FLAG_PROPER | _FLAG_MATE_REVERSE | _FLAG_READ1 | extra
    flag2 = _FLAG_PAIRED | _FLAG_PROPER | _FLAG_REVERSE | _FLAG_READ2 | extra
    seq1 = ref[origin : origin + READ_LEN]
    origin2 = origin + frag - READ_LEN
    seq2 = ref[origin2 : origin2 + READ_LEN]
    return [
        _make_read(name, start1, seq1, md=md_tag(ref[start1:], seq1), flag=flag1, tlen=frag, mate_start0=start2),
        _make_read(name, start2, seq2, md=md_tag(ref[start2:], seq2), flag=flag2, tlen=-frag, mate_start0=start1),
    ]


def _pe_reads(ref: str, rng: random.Random) -> List[pysam.AlignedSegment]:
    reads: List[pysam.AlignedSegment] = []
    for i in range(40):
        frag = int(round(rng.gauss(250, 20)))
        reads.extend(_pair(ref, f"pair_{i:02d}", 30 * i, frag))

    # two placements; the copy carries a mismatch in mate 1
    src, dst, _ = NEAR_REPEAT
    reads.extend(_pair(ref, "pair_multi", src, 250))
    reads.extend(_pair(ref, "pair_multi", dst, 250, secondary=True, origin=src))

    # only mate 1 aligned
    start0 = 1500
    seq = ref[start0 : start0 + READ_LEN]
    reads.append(
        _make_read(
            "pair_half",
            start0,
            seq,
            md=str(READ_LEN),
            flag=_FLAG_PAIRED | _FLAG_MATE_UNMAPPED | _FLAG_READ1,
        )
    )
    reads.append(_unmapped_read("pair_half", "ACGT" * 12 + "AC", flag=_FLAG_PAIRED | _FLAG_UNMAPPED | _FLAG_READ2))
    return reads


def _write_bam(path: Path, reads: Sequence[pysam.AlignedSegment]) -> None:
    header = {
        "HD": {"VN": "1.6", "SO": "queryname"},
        "SQ": [{"SN": CONTIG, "LN": REF_LEN}],
    }
    with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)


def _write_known_vcf(path_gz: Path, ref: str) -> None:
    vcf_path = path_gz.with_suffix("")
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.contigs.add(CONTIG, length=REF_LEN)
    header.filters.add("LowQual", None, None, "Low quality call")
    header.info.add("AF", number="A", type="Float", description="Population allele frequency")

    snp_alt = _mutate_base(ref[KNOWN_SNP_POS])
    del_ref = ref[KNOWN_DEL_POS : KNOWN_DEL_POS + 3]
    low_pos = 1600
    records = [
        (KNOWN_SNP_POS, (ref[KNOWN_SNP_POS], snp_alt), "rs_toy_snp", 0.3, "PASS"),
        (KNOWN_DEL_POS, (del_ref, del_ref[0]), "rs_toy_del", 0.05, "PASS"),
        (low_pos, (ref[low_pos], _mutate_base(ref[low_pos])), "rs_toy_lowqual", 0.5, "LowQual"),
    ]

    with pysam.VariantFile(str(vcf_path), "w", header=header) as vcf:
        for pos0, alleles, vid, af, flt in records:
            rec = vcf.new_record(
                contig=CONTIG,
                start=pos0,
                stop=pos0 + len(alleles[0]),
                alleles=alleles,
                id=vid,
                qual=60,
                filter=flt,
            )
            rec.info["AF"] = (af,)
            vcf.write(rec)

    pysam.tabix_compress(str(vcf_path), str(path_gz), force=True)
    pysam.tabix_index(str(path_gz), preset="vcf", force=True)


def make_toy_data(*, outdir: str | Path, seed: int = 7) -> Dict[str, str]:
    """Create a tiny reference, name-grouped BAMs, and a known-variant VCF.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - se.bam: single-end reads with unique, near-repeat, exact-repeat,
      known-SNP, known-deletion, soft-clipped and unmapped records
    - pe.bam: 40 properly paired fragments (mean ~250), one pair with two
      placements and one pair with an unmapped mate
    - known.vcf.gz (+ .tbi) with INFO/AF

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    ref_seq = _reference(rng)
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, CONTIG, ref_seq)
    pysam.faidx(str(ref_fa))

    se_bam = outdir_p / "se.bam"
    _write_bam(se_bam, _se_reads(ref_seq))
    pe_bam = outdir_p / "pe.bam"
    _write_bam(pe_bam, _pe_reads(ref_seq, rng))

    vcf_gz = outdir_p / "known.vcf.gz"
    _write_known_vcf(vcf_gz, ref_seq)

    summary = {
        "ref_fa": str(ref_fa),
        "se_bam": str(se_bam),
        "pe_bam": str(pe_bam),
        "known_vcf": str(vcf_gz),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
