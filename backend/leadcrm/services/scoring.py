"""
Lead scoring.

score = clamp(round(sum(weight(type, outcome) * 0.5 ** (age_days / half_life))), 0, 100)

Ages are measured against the most recent activity in the trail (or an
explicit ``as_of``), so the result depends only on the trail and the
configuration. Negative weights are treated as zero.
"""
from dataclasses import dataclass
from datetime import datetime
from math import floor
from typing import Iterable, Optional

from leadcrm.models.base import as_utc
from leadcrm.services.pipeline_config import PipelineConfig

MIN_SCORE = 0
MAX_SCORE = 100
SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class ScoredActivity:
    activity_type: str
    outcome: str
    activity_date: datetime
    id: str = ""


def decay_factor(age_days: float, half_life_days: float) -> float:
    """1.0 for a fresh activity, halving every ``half_life_days``. Never negative."""
    return 0.5 ** (max(0.0, age_days) / half_life_days)


def contribution(config: PipelineConfig, activity: ScoredActivity, reference: datetime) -> float:
    weight = max(0.0, float(config.weight_for(activity.activity_type, activity.outcome)))
    age_days = (reference - as_utc(activity.activity_date)).total_seconds() / SECONDS_PER_DAY
    return weight * decay_factor(age_days, config.half_life_days)


def compute_score(
    activities: Iterable[ScoredActivity],
    config: PipelineConfig,
    as_of: Optional[datetime] = None,
) -> int:
    trail = sorted(activities, key=lambda a: (as_utc(a.activity_date), a.id))
    if not trail:
        return MIN_SCORE

    reference = as_utc(as_of) if as_of is not None else as_utc(trail[-1].activity_date)
    total = sum(contribution(config, activity, reference) for activity in trail)
    return max(MIN_SCORE, min(MAX_SCORE, floor(total + 0.5)))
