from __future__ import annotations

import re
from typing import Dict, List, Sequence, Tuple, Union

from .errors import AlignmentConsistencyError
from .models import Cigar, CigarOp

# M, =, X, I, D, S: cells of the status track
_ALN_OPS = frozenset({CigarOp.MATCH, CigarOp.EQUAL, CigarOp.DIFF, CigarOp.INS, CigarOp.DEL, CigarOp.SOFT_CLIP})
_REF_OPS = frozenset({CigarOp.MATCH, CigarOp.EQUAL, CigarOp.DIFF, CigarOp.DEL})
_QUERY_OPS = frozenset({CigarOp.MATCH, CigarOp.EQUAL, CigarOp.DIFF, CigarOp.INS, CigarOp.SOFT_CLIP})

_CIGAR_RE = re.compile(r"(\d+)([MIDNSHP=X])")
_MD_HEAD_RE = re.compile(r"^(\d+)(.*)$")
_MD_PAIR_RE = re.compile(r"([A-Z]|\^[A-Z]+)(\d+)")
_MD_TOKEN_RE = re.compile(r"\d+|[A-Z]|\^[A-Z]+")
_MD_LOOSE_TOKEN_RE = re.compile(r"\d+|[A-Z]+|\^[A-Z]+")

MdToken = Union[int, str]


def parse_cigar(cigar_string: str) -> Cigar:
    """Parse a CIGAR string such as ``"5S20M1I10M"``; ``"*"`` gives an empty CIGAR."""
    if cigar_string in ("", "*"):
        return ()
    ops = _CIGAR_RE.findall(cigar_string)
    if "".join(n + c for n, c in ops) != cigar_string:
        raise ValueError(f"Invalid CIGAR string: {cigar_string!r}")
    return tuple((CigarOp("MIDNSHP=X".index(c)), int(n)) for n, c in ops)


def cigar_from_tuples(tuples: Sequence[Tuple[int, int]]) -> Cigar:
    """Convert pysam-style ``cigartuples`` to a :data:`Cigar`."""
    return tuple((CigarOp(op), int(n)) for op, n in tuples)


def alignment_length(cigar: Cigar) -> int:
    """Alignment length: M, =, X, I, D and S units (no H, N or P)."""
    return sum(n for op, n in cigar if op in _ALN_OPS)


def reference_length(cigar: Cigar) -> int:
    """Reference bases spanned by the aligned part (M, =, X, D)."""
    return sum(n for op, n in cigar if op in _REF_OPS)


def reference_span(cigar: Cigar) -> int:
    """Reference bases from first to last aligned base, skipped introns (N) included."""
    return sum(n for op, n in cigar if op in _REF_OPS or op == CigarOp.SKIP)


def skipped_reference(cigar: Cigar) -> Dict[int, int]:
    """Map each status-track cell preceded by N ops to the reference bases skipped before it."""
    skips: Dict[int, int] = {}
    cell = 0
    for op, n in cigar:
        if op == CigarOp.SKIP:
            skips[cell] = skips.get(cell, 0) + n
        elif op in _ALN_OPS:
            cell += n
    return skips


def query_length(cigar: Cigar) -> int:
    """Read bases implied by the CIGAR (M, =, X, I, S)."""
    return sum(n for op, n in cigar if op in _QUERY_OPS)


def check_cigar_read_length(cigar: Cigar, read_length: int, *, qname: str | None = None) -> None:
    qlen = query_length(cigar)
    if qlen != read_length:
        raise AlignmentConsistencyError(
            f"CIGAR implies {qlen} read bases but the read has {read_length}",
            qname=qname,
            cigar="".join(f"{n}{op.char}" for op, n in cigar),
        )


def leading_hard_clip(cigar: Cigar) -> int:
    if cigar and cigar[0][0] == CigarOp.HARD_CLIP:
        return cigar[0][1]
    return 0


def trailing_hard_clip(cigar: Cigar) -> int:
    if len(cigar) > 1 and cigar[-1][0] == CigarOp.HARD_CLIP:
        return cigar[-1][1]
    return 0


def tokenize_md(md: str) -> List[MdToken]:
    """Split a mismatch span string into match runs (int) and mismatch/deletion tokens (str)."""
    tokens: List[MdToken] = []
    pos = 0
    for m in _MD_TOKEN_RE.finditer(md):
        if m.start() != pos:
            raise ValueError(f"Invalid MD string: {md!r}")
        tok = m.group()
        tokens.append(int(tok) if tok.isdigit() else tok)
        pos = m.end()
    if pos != len(md):
        raise ValueError(f"Invalid MD string: {md!r}")
    return tokens


def md_token_ref_length(token: MdToken) -> int:
    if isinstance(token, int):
        return token
    if token.startswith("^"):
        return len(token) - 1
    return 1


def parse_md(md: str) -> Tuple[int, List[Tuple[str, int]]]:
    """Parse a well-formed MD string into its leading run and (token, following run) pairs.

    Raises ``ValueError`` when the string does not start with a number or the
    tokens do not alternate.
    """
    head = _MD_HEAD_RE.match(md)
    if head is None:
        raise ValueError(f"MD string must start with a number: {md!r}")
    rest = head.group(2)
    pairs = []
    pos = 0
    for m in _MD_PAIR_RE.finditer(rest):
        if m.start() != pos:
            break
        pairs.append((m.group(1), int(m.group(2))))
        pos = m.end()
    if pos != len(rest):
        raise ValueError(f"Malformed MD string: {md!r}")
    return int(head.group(1)), pairs


def md_reference_length(md: str) -> int:
    """Reference bases spanned by a mismatch span string."""
    lead, pairs = parse_md(md)
    return lead + sum(md_token_ref_length(tok) + follow for tok, follow in pairs)


def check_cigar_md(cigar: Cigar, md: str, *, qname: str | None = None) -> None:
    """Raise :class:`AlignmentConsistencyError` unless CIGAR and MD span the same reference length."""
    cigar_str = "".join(f"{n}{op.char}" for op, n in cigar)
    try:
        md_len = md_reference_length(md)
    except ValueError as e:
        raise AlignmentConsistencyError(str(e), qname=qname, cigar=cigar_str, md=md) from e
    ref_len = reference_length(cigar)
    if md_len != ref_len:
        raise AlignmentConsistencyError(
            f"CIGAR spans {ref_len} reference bases but MD spans {md_len}",
            qname=qname,
            cigar=cigar_str,
            md=md,
        )


def join_md(tokens: Sequence[MdToken]) -> str:
    """Render MD tokens, merging adjacent runs and padding with zero-length runs where needed."""
    out: List[MdToken] = []
    for tok in tokens:
        if isinstance(tok, int) and out and isinstance(out[-1], int):
            out[-1] += tok
            continue
        if isinstance(tok, str) and (not out or isinstance(out[-1], str)):
            out.append(0)
        out.append(tok)
    if not out or isinstance(out[-1], str):
        out.append(0)
    return "".join(str(t) for t in out)


def fix_md(md: str) -> Tuple[str, bool]:
    """Repair MD strings some aligners emit in a non-standard form.

    Consecutive mismatch letters (``"10AC5"``) are separated by zero-length
    runs and a missing leading or trailing number is added. Returns the
    (possibly unchanged) string and whether anything was fixed.
    """
    if not md:
        return md, False
    parts: List[str] = []
    fixed = False
    for m in _MD_LOOSE_TOKEN_RE.finditer(md):
        word = m.group()
        if len(word) > 1 and word[0].isalpha():
            parts.append("0".join(word))
            fixed = True
        else:
            parts.append(word)
    new = "".join(parts)
    if new and new[0].isalpha():
        new = "0" + new
        fixed = True
    if new and new[-1].isalpha():
        new = new + "0"
        fixed = True
    return (new if fixed else md), fixed
