"""
Lead pipeline configuration.

Stage order comes from the ``lead_statuses`` table; scoring weights, decay and
conversion rules come from the ``lead_pipeline`` app setting. Both fall back to
built-in defaults when nothing is configured. Read fresh on every engine call.
"""
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.errors import InternalError
from leadcrm.models.app_setting import AppSetting
from leadcrm.models.lead import LeadStatus

logger = logging.getLogger(__name__)

PIPELINE_SETTING_KEY = "lead_pipeline"


class StageDefinition(BaseModel):
    slug: str
    name: str
    color: Optional[str] = None
    sort_order: int = 0


DEFAULT_STAGES = [
    StageDefinition(slug="new", name="New", color="#6B7280", sort_order=1),
    StageDefinition(slug="contacted", name="Contacted", color="#3B82F6", sort_order=2),
    StageDefinition(slug="qualified", name="Qualified", color="#F59E0B", sort_order=3),
    StageDefinition(slug="proposal_sent", name="Proposal Sent", color="#8B5CF6", sort_order=4),
    StageDefinition(slug="negotiation", name="Negotiation", color="#EF4444", sort_order=5),
    StageDefinition(slug="converted", name="Converted", color="#10B981", sort_order=6),
    StageDefinition(slug="lost", name="Lost", color="#6B7280", sort_order=7),
]

# Points per (activity type, outcome) before recency decay
DEFAULT_SCORING_WEIGHTS: dict[str, dict[str, float]] = {
    "call": {"positive": 10, "neutral": 4, "negative": 0},
    "email": {"positive": 6, "neutral": 2, "negative": 0},
    "meeting": {"positive": 15, "neutral": 6, "negative": 0},
    "demo": {"positive": 25, "neutral": 10, "negative": 0},
    "proposal": {"positive": 20, "neutral": 8, "negative": 0},
    "task": {"positive": 3, "neutral": 1, "negative": 0},
    "note": {"positive": 0, "neutral": 0, "negative": 0},
    "stage_changed": {"positive": 5, "neutral": 0, "negative": 0},
    "converted": {"positive": 0, "neutral": 0, "negative": 0},
}

DEFAULT_ACTIVITY_TYPES = ["call", "email", "meeting", "demo", "proposal", "task", "note"]


class PipelineConfig(BaseModel):
    """Validated pipeline configuration."""
    stages: list[StageDefinition] = Field(default_factory=lambda: list(DEFAULT_STAGES))
    initial_stage: Optional[str] = None
    converted_stage: str = "converted"
    lost_stage: str = "lost"
    allow_convert_from_any_stage: bool = False

    activity_types: list[str] = Field(default_factory=lambda: list(DEFAULT_ACTIVITY_TYPES))
    # Activity types that do not count as contacting the lead
    non_contact_activity_types: list[str] = Field(
        default_factory=lambda: ["note", "task", "stage_changed", "converted"]
    )

    scoring_weights: dict[str, dict[str, float]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_SCORING_WEIGHTS.items()}
    )
    default_weight: float = 0.0
    half_life_days: float = Field(30.0, gt=0)

    @model_validator(mode="after")
    def _check_stages(self) -> "PipelineConfig":
        self.stages = sorted(self.stages, key=lambda s: s.sort_order)
        slugs = [s.slug for s in self.stages]
        if len(set(slugs)) != len(slugs):
            raise ValueError("stage slugs must be unique")
        for required in (self.converted_stage, self.lost_stage):
            if required not in slugs:
                raise ValueError(f"stage '{required}' is not configured")
        if self.converted_stage == self.lost_stage:
            raise ValueError("converted and lost stages must differ")
        if len(self.ordered_stages) < 2:
            raise ValueError("at least one non-terminal stage is required")
        if self.initial_stage is None:
            self.initial_stage = self.ordered_stages[0]
        elif self.initial_stage not in self.ordered_stages[:-1]:
            raise ValueError("initial stage must be a non-terminal stage")
        return self

    @property
    def stage_slugs(self) -> list[str]:
        return [s.slug for s in self.stages]

    @property
    def ordered_stages(self) -> list[str]:
        """Totally ordered pipeline: every stage except ``lost``, converted last."""
        ordered = [s for s in self.stage_slugs if s not in (self.lost_stage, self.converted_stage)]
        return ordered + [self.converted_stage]

    @property
    def terminal_stages(self) -> frozenset[str]:
        return frozenset({self.converted_stage, self.lost_stage})

    def is_terminal(self, stage: str) -> bool:
        return stage in self.terminal_stages

    def position(self, stage: str) -> int:
        return self.ordered_stages.index(stage)

    def weight_for(self, activity_type: str, outcome: str) -> float:
        by_outcome = self.scoring_weights.get(activity_type)
        if by_outcome is None:
            return self.default_weight
        return by_outcome.get(outcome, self.default_weight)


def build_pipeline_config(
    stage_rows: list[StageDefinition],
    overrides: Optional[dict[str, Any]] = None,
) -> PipelineConfig:
    """Merge configured stages and settings overrides over the defaults."""
    data: dict[str, Any] = {}
    if overrides:
        data.update(overrides)
        if "scoring_weights" in overrides:
            weights = {k: dict(v) for k, v in DEFAULT_SCORING_WEIGHTS.items()}
            for activity_type, by_outcome in overrides["scoring_weights"].items():
                weights.setdefault(activity_type, {}).update(by_outcome)
            data["scoring_weights"] = weights
    if stage_rows:
        data["stages"] = stage_rows
    return PipelineConfig(**data)


async def get_pipeline_config(db: AsyncSession) -> PipelineConfig:
    """
    Load the pipeline configuration from the store.

    Raises InternalError when the stored configuration is inconsistent
    (e.g. no ``converted`` stage).
    """
    result = await db.execute(
        select(LeadStatus)
        .where(LeadStatus.is_active.is_(True))
        .order_by(LeadStatus.sort_order.asc())
    )
    stage_rows = [
        StageDefinition(slug=row.slug, name=row.name, color=row.color, sort_order=row.sort_order)
        for row in result.scalars().all()
    ]

    setting_result = await db.execute(
        select(AppSetting).where(AppSetting.key == PIPELINE_SETTING_KEY)
    )
    setting = setting_result.scalar_one_or_none()
    overrides = setting.value if setting is not None and isinstance(setting.value, dict) else None

    try:
        return build_pipeline_config(stage_rows, overrides)
    except PydanticValidationError as e:
        logger.error("Invalid lead pipeline configuration: %s", e)
        raise InternalError("Lead pipeline is misconfigured")
