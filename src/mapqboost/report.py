from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>mapqboost Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>mapqboost Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Mode</th><td>{{ "paired-end" if mode == "pe" else "single-end" }}</td></tr>
      <tr><th>Input</th><td><code>{{ in_path }}</code></td></tr>
      <tr><th>Output</th><td><code>{{ out_path }}</code></td></tr>
      <tr><th>Known variants</th><td><code>{{ known_vcf or "none" }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Filters</h3>
    <table>
      {% for key, value in config.items() %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

{% if fragment_model %}
<h2>Fragment length model</h2>
<table>
  <tr><th>Mean</th><td>{{ "%.1f"|format(fragment_model.mean) }}</td></tr>
  <tr><th>SD</th><td>{{ "%.1f"|format(fragment_model.sd) }}</td></tr>
  <tr><th>Pairs sampled</th><td>{{ fragment_model.n }}</td></tr>
</table>
{% endif %}

<h2>Alignments</h2>
<table>
  <tr><th>Records seen</th><td>{{ counts.records_total }}</td></tr>
  <tr><th>Unmapped skipped</th><td>{{ counts.records_unmapped }}</td></tr>
  <tr><th>Outside contig list</th><td>{{ counts.records_skipped_contig }}</td></tr>
  <tr><th>Degenerate skipped</th><td>{{ counts.records_skipped_degenerate }}</td></tr>
  <tr><th>SEQ/QUAL restored</th><td>{{ counts.records_restored }}</td></tr>
  <tr><th>Reads</th><td>{{ counts.read_groups }}</td></tr>
  <tr><th>Reads reported</th><td>{{ counts.read_groups_reported }}</td></tr>
  <tr><th>Reads with ambiguous best hit</th><td>{{ counts.read_groups_ambiguous }}</td></tr>
  <tr><th>Reads filtered</th><td>{{ counts.read_groups_filtered }}</td></tr>
  <tr><th>Alignments written</th><td>{{ counts.records_written }}</td></tr>
</table>

<h2>Plots</h2>

<div class="grid">
  <div class="card">
    <h3>Mapping quality</h3>
    <img src="{{ plots.mapq_hist }}" alt="mapq histogram">
  </div>
  <div class="card">
    <h3>Read outcomes</h3>
    <img src="{{ plots.group_outcomes }}" alt="read group outcomes">
  </div>
</div>

<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Candidates per read</h3>
    <img src="{{ plots.candidates_hist }}" alt="candidates histogram">
  </div>
</div>

<h2>Interpretation notes</h2>
<ul>
  <li>MAPQ {{ unique_mapq }} marks reads with a single candidate alignment; {{ invalid_mapq }} marks reads whose posterior could not be computed.</li>
  <li>Reads whose best stratum holds more alignments than <code>max_best</code> are discarded entirely.</li>
  <li>The input must be grouped by read name; coordinate-sorted input splits reads into several groups.</li>
</ul>

<hr>
<p class="small">mapqboost {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    plots: Dict[str, str],
    known_vcf: str | None = None,
    unique_mapq: int = 250,
    invalid_mapq: int = 255,
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        mode=summary.get("mode"),
        in_path=summary.get("in_path"),
        out_path=summary.get("out_path"),
        known_vcf=known_vcf,
        config=summary.get("config", {}),
        counts=summary.get("counts", {}),
        fragment_model=summary.get("fragment_model"),
        plots=plots,
        unique_mapq=unique_mapq,
        invalid_mapq=invalid_mapq,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info("Wrote report: %s", out_path)
    return out_path
