"""
Stage transition rules for the lead pipeline.

From a non-terminal stage a lead may:
- advance to the next stage,
- skip ahead to any later stage (allowed, flagged as a skip),
- drop to ``lost``,
- move to ``converted`` only from the stage right before it, unless
  ``allow_convert_from_any_stage`` is set.
Nothing leaves a terminal stage and nothing moves backward.
"""
from dataclasses import dataclass, field
from enum import Enum

from leadcrm.core.errors import InvalidTransitionError, ValidationError
from leadcrm.services.pipeline_config import PipelineConfig


class TransitionKind(str, Enum):
    ADVANCE = "advance"
    SKIP_ADVANCE = "skip_advance"
    LOST = "lost"
    CONVERT = "convert"


@dataclass(frozen=True)
class Transition:
    from_stage: str
    to_stage: str
    kind: TransitionKind
    skipped_stages: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_skip(self) -> bool:
        return bool(self.skipped_stages)


def check_transition(config: PipelineConfig, current: str, target: str) -> Transition:
    """
    Classify a requested move or raise InvalidTransitionError.

    Unknown target stages are a ValidationError (malformed request), not a
    rejected transition.
    """
    if target not in config.stage_slugs:
        raise ValidationError(f"Unknown stage: {target}")
    if current not in config.stage_slugs:
        raise InvalidTransitionError(current, target, "current stage is no longer configured")
    if config.is_terminal(current):
        raise InvalidTransitionError(current, target, "lead is in a terminal stage")
    if target == current:
        raise InvalidTransitionError(current, target, "lead is already in this stage")

    if target == config.lost_stage:
        return Transition(current, target, TransitionKind.LOST)

    current_pos = config.position(current)
    target_pos = config.position(target)
    if target_pos < current_pos:
        raise InvalidTransitionError(current, target, "stages cannot move backward")

    skipped = tuple(config.ordered_stages[current_pos + 1:target_pos])

    if target == config.converted_stage:
        if skipped and not config.allow_convert_from_any_stage:
            raise InvalidTransitionError(
                current, target,
                f"conversion is only allowed from '{config.ordered_stages[-2]}'"
            )
        return Transition(current, target, TransitionKind.CONVERT, skipped)

    if skipped:
        return Transition(current, target, TransitionKind.SKIP_ADVANCE, skipped)
    return Transition(current, target, TransitionKind.ADVANCE)


def allowed_targets(config: PipelineConfig, current: str) -> list[str]:
    """Stages reachable from ``current`` in one request."""
    targets = []
    for stage in config.stage_slugs:
        try:
            check_transition(config, current, stage)
        except (InvalidTransitionError, ValidationError):
            continue
        targets.append(stage)
    return targets
