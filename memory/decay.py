"""Time-based relevance decay for remembered turns and facts."""

from __future__ import annotations

import math
import time

from memory.models import MemoryConfig

SECONDS_PER_DAY = 86400.0
NEUTRAL_IMPORTANCE = 1.0


def age_in_days(created_ts: int | float, now_ts: int | float | None = None) -> float:
    """Age of a stored item in days. Clock skew never yields a negative age."""
    if now_ts is None:
        now_ts = time.time()
    return max(0.0, (float(now_ts) - float(created_ts)) / SECONDS_PER_DAY)


def relevance(base_importance: float, age_days: float, decay_factor: float) -> float:
    """
    Exponential decay: base_importance * e^(-decay_factor * age_days).

    Negative ages are clamped to zero, so relevance never exceeds the base.
    """
    age = max(0.0, float(age_days))
    factor = max(0.0, float(decay_factor))
    if age == 0.0 or factor == 0.0:
        return float(base_importance)
    return float(base_importance) * math.exp(-factor * age)


def include_item(importance: float | None, age_days: float, config: MemoryConfig) -> bool:
    if not config.decay_enabled:
        return True
    if max(0.0, float(age_days)) > float(config.decay_max_days):
        return False
    base = NEUTRAL_IMPORTANCE if importance is None else float(importance)
    return relevance(base, age_days, config.decay_factor) >= float(config.decay_threshold)


def filter_by_decay(items: list, config: MemoryConfig, *, importance_of, now_ts: int | float | None = None) -> list:
    """Keep items that pass include_item. Order is preserved."""
    if not config.decay_enabled:
        return list(items)
    now = time.time() if now_ts is None else float(now_ts)
    return [
        item
        for item in items
        if include_item(importance_of(item), age_in_days(item.created_ts, now), config)
    ]
