"""
Post-processing for model estimates.

Each positive per-column value is first pulled down toward the hours that
comparable items took in the job's frozen reference assessments. The result is
then held inside the per-item bounds and rounded to the policy step.
"""

from __future__ import annotations

import logging
import math
import statistics
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import ConfigurationError
from .models import normalize_category

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EstimationPolicy:
    hard_min_per_item_hours: float = 1.0
    hard_max_per_item_hours: float = 80.0
    round_to_nearest_hours: float = 0.5
    reference_median_cap_multiplier: float = 1.10
    global_shrinkage_to_median: float = 0.9

    def __post_init__(self):
        if self.hard_min_per_item_hours < 0 or self.hard_min_per_item_hours > self.hard_max_per_item_hours:
            raise ConfigurationError(
                f"Invalid per-item hour bounds: {self.hard_min_per_item_hours} .. {self.hard_max_per_item_hours}"
            )
        if self.reference_median_cap_multiplier <= 0 or self.global_shrinkage_to_median <= 0:
            raise ConfigurationError("Reference multipliers must be positive")

    def shrink(self, value: float, baseline: Optional[float]) -> float:
        if baseline is None or baseline <= 0:
            return value
        capped = min(value, baseline * self.reference_median_cap_multiplier)
        return min(capped, baseline * self.global_shrinkage_to_median)

    def clamp(self, value: float) -> float:
        return max(self.hard_min_per_item_hours, min(self.hard_max_per_item_hours, value))

    def round_hours(self, value: float) -> float:
        # Half away from zero; values are never negative here.
        step = max(0.1, self.round_to_nearest_hours)
        return round(math.floor(value / step + 0.5) * step, 2)

    def apply(self, value: float, baseline: Optional[float] = None) -> float:
        """A zero estimate means the column has no work and stays zero."""
        if value <= 0:
            return 0.0
        return self.round_hours(self.clamp(self.shrink(value, baseline)))


def _column_value(estimates: Mapping[str, Any], column: str) -> Optional[float]:
    wanted = column.lower()
    for key, value in estimates.items():
        if str(key).lower() != wanted:
            continue
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if math.isfinite(number) else None
    return None


def reference_baseline(
    references: Optional[Iterable[Mapping[str, Any]]],
    item_id: str,
    category: str,
    column: str,
) -> Optional[float]:
    """
    Typical hours for `column` among the reference assessments: the same item
    id when any reference has it, otherwise every item of the same category.
    Returns the smaller of the median and the geometric mean, or None when no
    reference has a positive value.
    """
    same_item: List[float] = []
    same_category: List[float] = []
    for assessment in references or []:
        for section in assessment.get("sections") or []:
            for item in section.get("items") or []:
                value = _column_value(item.get("estimates") or {}, column)
                if value is None or value <= 0:
                    continue
                if str(item.get("item_id", "")).lower() == item_id.lower():
                    same_item.append(value)
                elif normalize_category(item.get("category")) == category:
                    same_category.append(value)

    values = same_item or same_category
    if not values:
        return None
    return min(statistics.median(values), statistics.geometric_mean(values))


def apply_policy(
    policy: EstimationPolicy,
    item_id: str,
    category: str,
    estimates: Dict[str, Optional[float]],
    references: Optional[Iterable[Mapping[str, Any]]] = None,
) -> Dict[str, Optional[float]]:
    references = list(references or [])
    adjusted: Dict[str, Optional[float]] = {}
    for column, value in estimates.items():
        if value is None:
            adjusted[column] = None
            continue
        baseline = reference_baseline(references, item_id, category, column)
        adjusted[column] = policy.apply(value, baseline)
    logger.debug("Item %s estimates %s adjusted to %s", item_id, estimates, adjusted)
    return adjusted
