"""mapqboost: re-score and filter short-read alignments with calibrated mapping qualities.

Public API is intentionally small; most users should use the CLI:

    mapqboost filter-se --in aln.bam --out filtered.bam --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
