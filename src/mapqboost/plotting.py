from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

logger = logging.getLogger(__name__)


def plot_mapq_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Mapping quality of reported alignments",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    plt.xlabel("MAPQ")
    plt.ylabel("Alignments")
    plt.yscale("symlog")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_group_outcomes(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Read group outcomes",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["Reported", "Ambiguous best", "Filtered"]
    values = [
        int(counts.get("read_groups_reported", 0)),
        int(counts.get("read_groups_ambiguous", 0)),
        int(counts.get("read_groups_filtered", 0)),
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Reads")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_candidates_hist(
    *,
    candidates_hist: Dict[str, int],
    out_png: str | Path,
    title: str = "Candidate alignments per read",
    max_bin: int = 20,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    # Collapse tail into max_bin+
    xs = list(range(1, max_bin + 1))
    ys = [0] * len(xs)
    tail = 0
    for k, v in candidates_hist.items():
        k = int(k)
        if 1 <= k <= max_bin:
            ys[k - 1] += int(v)
        elif k > max_bin:
            tail += int(v)

    xticklabels = [str(x) for x in xs]
    if tail > 0:
        ys.append(tail)
        xticklabels.append(f"{max_bin + 1}+")

    plt.figure()
    plt.bar(range(len(ys)), ys)
    plt.xlabel("Candidate alignments")
    plt.ylabel("Reads")
    plt.title(title)
    plt.xticks(range(len(ys)), xticklabels, rotation=0)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_summary(summary: Dict[str, object], outdir: str | Path) -> Dict[str, str]:
    """Render all summary plots into ``outdir/plots``; returns paths relative to ``outdir``."""
    plots_dir = Path(outdir) / "plots"
    mapq_hist = summary["mapq_hist"]
    plot_mapq_hist(
        bin_edges=list(mapq_hist["bin_edges"]),
        counts=list(mapq_hist["counts"]),
        out_png=plots_dir / "mapq_hist.png",
    )
    plot_group_outcomes(counts=summary["counts"], out_png=plots_dir / "group_outcomes.png")
    plot_candidates_hist(
        candidates_hist=summary["candidates_hist"], out_png=plots_dir / "candidates_hist.png"
    )
    return {
        "mapq_hist": "plots/mapq_hist.png",
        "group_outcomes": "plots/group_outcomes.png",
        "candidates_hist": "plots/candidates_hist.png",
    }
