from __future__ import annotations

import gzip
import json
import logging
import math
from pathlib import Path
from typing import Any, FrozenSet, TextIO

logger = logging.getLogger(__name__)


def phred_to_error_prob(q: float) -> float:
    # zero or negative qualities mean the base carries no information
    if q <= 0:
        return 1.0
    return 10 ** (-q / 10)


def error_prob_to_phred(p: float) -> float:
    if p <= 0:
        return math.inf
    return -10.0 * math.log10(p)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def read_name_list(path: str | Path) -> FrozenSet[str]:
    """One name per line (blank lines and ``#`` comments ignored), e.g. a chromosome list."""
    names = set()
    with open_textmaybe_gzip(path, "rt") as fh:
        for line in fh:
            line = line.strip()
            if line and not line.startswith("#"):
                names.add(line.split()[0])
    return frozenset(names)
