"""Bayesian posterior probabilities and mapping qualities for the candidates of one read.

Each candidate placement gets an unnormalized weight
``insert length * 10 ** log10_likelihood`` (pairs additionally multiply by the
fragment-length density). Weights are normalized over the retained
candidates; when the aligner's hit ceiling was reached, part of the mass is
assumed to sit in unexplored placements and every probability is divided by
``sqrt(max_hit)``. Probabilities become mapping qualities on the Phred scale,
after which the group is filtered, sorted and reported.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

import numpy as np

from .config import PHRED_SCALE, REF_QUAL, FilterConfig
from .models import AlignmentPair, AlignmentRecord, FragmentLengthModel
from .utils import error_prob_to_phred

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class GroupResult(Generic[T]):
    """Outcome of scoring one read group.

    Attributes
    ----------
    reported:
        Candidates to write, best first, with updated annotations and flags.
    n_input:
        Candidates before any filtering.
    n_retained:
        Candidates surviving all filters (the ``XN`` value).
    ambiguous:
        True when the group was discarded because too many candidates tie for best.
    scored:
        Every candidate that received a mapping quality, in sorted order.
    """

    reported: List[T] = field(default_factory=list)
    n_input: int = 0
    n_retained: int = 0
    ambiguous: bool = False
    scored: List[T] = field(default_factory=list)


def posterior_probabilities(log10_weights: Sequence[float], *, n_total: int, max_hit: int) -> np.ndarray:
    """Normalize log10 weights to posterior probabilities.

    ``n_total`` is the number of candidates before filtering; when it reaches
    ``max_hit`` (> 0) the probabilities are divided by ``sqrt(max_hit)``.
    Non-finite input yields NaN probabilities.
    """
    w = np.asarray(log10_weights, dtype=float)
    if w.size == 0:
        return w
    top = np.max(w)
    if not np.isfinite(top):
        return np.full(w.shape, np.nan)
    rel = np.power(10.0, w - top)
    post = rel / np.sum(rel)
    if max_hit > 0 and n_total >= max_hit:
        post = post / math.sqrt(max_hit)
    return post


def phred_mapq(p: float, config: FilterConfig) -> int:
    """Mapping quality ``round(-10 log10(1 - p))``, clamped; NaN gives the invalid sentinel."""
    if math.isnan(p):
        return config.invalid_mapq
    err = 1.0 - p
    if err <= 0:
        return config.max_mapq
    q = error_prob_to_phred(err)
    if q > config.max_mapq:
        return config.max_mapq
    return int(math.floor(q + 0.5))


def log10_weight_record(record: AlignmentRecord) -> float:
    ann = record.annotations
    return math.log10(ann.insert_len) + ann.log10_lik


def _missing_mate_lik(mate: AlignmentRecord, config: FilterConfig) -> float:
    # the absent mate is scored as if fully soft-clipped, with this mate's qualities
    if mate.query_qualities is None:
        quals = [REF_QUAL] * mate.read_length
    else:
        quals = list(mate.query_qualities)
    return sum(q / -PHRED_SCALE - config.clip_penalty for q in quals)


def log10_weight_pair(
    pair: AlignmentPair, config: FilterConfig, model: Optional[FragmentLengthModel] = None
) -> float:
    lik = sum(m.annotations.log10_lik for m in pair.mates)
    if not pair.is_paired:
        lik += _missing_mate_lik(pair.mates[0], config)
    weight = math.log10(pair.insert_len) + lik
    if model is not None:
        density = model.density(pair.template_length if pair.is_paired else model.mean)
        weight += math.log10(density) if density > 0 else -math.inf
    return weight


def _passes_prefilter(record: AlignmentRecord, config: FilterConfig) -> bool:
    return record.insert_rate >= config.min_align_rate and record.annotations.identity >= config.min_identity


def _passes_aux(record: AlignmentRecord, config: FilterConfig) -> bool:
    return (
        record.percent_seed_mis() <= config.max_seed_mis
        and record.percent_seed_indel() <= config.max_seed_indel
        and record.percent_all_mis() <= config.max_all_mis
        and record.percent_all_indel() <= config.max_all_indel
    )


@dataclass
class _Candidate(Generic[T]):
    item: T
    log10_weight: float
    posterior: float = math.nan
    mapq: int = 0


def _score(
    items: Sequence[T],
    *,
    config: FilterConfig,
    prefilter: Callable[[T], bool],
    weight: Callable[[T], float],
    aux: Callable[[T], bool],
    finish: Callable[[T, _Candidate, int, int, int], T],
) -> GroupResult[T]:
    result: GroupResult[T] = GroupResult(n_input=len(items))
    kept = [c for c in items if prefilter(c)]
    if not kept:
        return result
    cands = [_Candidate(item, weight(item)) for item in kept]

    if len(cands) == 1 and config.max_hit > 1:
        cands[0].posterior = 1.0
        cands[0].mapq = config.unique_mapq
    else:
        post = posterior_probabilities([c.log10_weight for c in cands], n_total=len(items), max_hit=config.max_hit)
        for c, p in zip(cands, post):
            c.posterior = float(p)
            c.mapq = phred_mapq(c.posterior, config)

    if config.min_mapq > 0:
        cands = [c for c in cands if c.mapq >= config.min_mapq]
    # stable: equal posteriors keep input order; NaN sorts last
    cands.sort(key=lambda c: -c.posterior if not math.isnan(c.posterior) else math.inf)
    result.scored = [c.item for c in cands]

    if config.max_best != 0 and len(cands) > config.max_best:
        top = cands[0].mapq
        n_best = 0
        for c in cands:
            if c.mapq != top:
                break
            n_best += 1
        if n_best > config.max_best:
            result.ambiguous = True
            return result

    if not config.max_sensitivity:
        cands = [c for c in cands if aux(c.item)]

    n = len(cands)
    result.n_retained = n
    shown = cands if config.max_report == 0 else cands[: config.max_report]
    result.reported = [finish(c.item, c, i, len(shown), n) for i, c in enumerate(shown)]
    return result


def _finish_record(
    record: AlignmentRecord,
    cand: _Candidate,
    rank: int,
    n_reported: int,
    n_retained: int,
    config: FilterConfig,
) -> AlignmentRecord:
    out = record.annotate(posterior=cand.posterior, n_reported=n_reported, n_candidates=n_retained)
    out = replace(out, mapping_quality=cand.mapq)
    if config.update_secondary:
        out = replace(out, is_secondary=rank != 0)
    return out


def score_reads(records: Sequence[AlignmentRecord], config: FilterConfig) -> GroupResult[AlignmentRecord]:
    """Score the single-end candidates of one read."""
    return _score(
        records,
        config=config,
        prefilter=lambda r: _passes_prefilter(r, config),
        weight=log10_weight_record,
        aux=lambda r: _passes_aux(r, config),
        finish=lambda r, c, i, k, n: _finish_record(r, c, i, k, n, config),
    )


def score_pairs(
    pairs: Sequence[AlignmentPair],
    config: FilterConfig,
    model: Optional[FragmentLengthModel] = None,
) -> GroupResult[AlignmentPair]:
    """Score the paired candidates of one read pair.

    ``model`` is None when density weighting is disabled.
    """

    def prefilter(pair: AlignmentPair) -> bool:
        return all(
            _passes_prefilter(m, config) and m.annotations.insert_len >= config.min_insert for m in pair.mates
        )

    def finish(pair: AlignmentPair, cand: _Candidate, rank: int, n_reported: int, n_retained: int) -> AlignmentPair:
        return pair.map_mates(lambda m: _finish_record(m, cand, rank, n_reported, n_retained, config))

    return _score(
        pairs,
        config=config,
        prefilter=prefilter,
        weight=lambda p: log10_weight_pair(p, config, model),
        aux=lambda p: all(_passes_aux(m, config) for m in p.mates),
        finish=finish,
    )
