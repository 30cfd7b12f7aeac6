"""Gaussian fragment-length model from the template lengths of properly spaced pairs."""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

from .config import FilterConfig
from .errors import FragmentLengthError
from .models import AlignmentRecord, FragmentLengthModel

logger = logging.getLogger(__name__)


def is_fragment_sample(record: AlignmentRecord, config: FilterConfig) -> bool:
    if record.is_unmapped or not record.is_paired or not record.is_read1:
        return False
    if record.is_secondary or record.is_supplementary:
        return False
    tlen = abs(record.template_length)
    return config.min_fragment_length <= tlen <= config.max_fragment_length


def estimate_fragment_length(records: Iterable[AlignmentRecord], config: FilterConfig) -> FragmentLengthModel:
    """One streaming pass; stops once ``fragment_sample_cap`` samples were taken.

    Raises :class:`FragmentLengthError` when fewer than ``min_fragment_samples``
    samples are found or they have no spread; pass ``fragment_mean`` and
    ``fragment_sd`` explicitly in that case.
    """
    n = 0
    total = 0.0
    total_sq = 0.0
    for record in records:
        if not is_fragment_sample(record, config):
            continue
        tlen = abs(record.template_length)
        n += 1
        total += tlen
        total_sq += tlen * tlen
        if n >= config.fragment_sample_cap:
            break

    if n < config.min_fragment_samples:
        raise FragmentLengthError(
            f"Only {n} properly spaced pairs found (need {config.min_fragment_samples}); "
            "provide the fragment length mean and SD explicitly"
        )
    mean = total / n
    var = max(0.0, (total_sq - n * mean * mean) / (n - 1))
    sd = math.sqrt(var)
    if sd == 0:
        raise FragmentLengthError(
            f"All {n} sampled fragments have length {mean:g}; provide the fragment length SD explicitly"
        )
    logger.info("Fragment length model: mean=%.1f sd=%.1f from %d pairs", mean, sd, n)
    return FragmentLengthModel(mean=mean, sd=sd, n=n)


def resolve_fragment_model(
    config: FilterConfig, records: Optional[Iterable[AlignmentRecord]] = None
) -> Optional[FragmentLengthModel]:
    """Model to weight pairs with: disabled, user supplied, or estimated from ``records``."""
    if config.no_fragment_model:
        return None
    if config.fragment_mean is not None and config.fragment_sd is not None:
        return FragmentLengthModel(mean=config.fragment_mean, sd=config.fragment_sd)
    if records is None:
        raise FragmentLengthError("no records to estimate the fragment length model from")
    return estimate_fragment_length(records, config)
