from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Optional

from src.neuroevo.errors import MorphologyError

# (inputs, hidden, outputs) of every agent controller
CONTROLLER_SHAPE = (10, 25, 2)

# Collision filter categories, one per body part
BODY_CATEGORY = 0x0002
LEFT_LEG_CATEGORY = 0x0006
RIGHT_LEG_CATEGORY = 0x0004
COLLISION_MASK = 0x0001
COLLISION_GROUP = -1


def _require_positive(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise MorphologyError(f"{name} must be a finite positive number, got {value!r}")


@dataclass(frozen=True)
class BodyMaterial:
    friction: float = 1.0
    restitution: float = 0.1
    density: float = 0.05


@dataclass(frozen=True)
class CollisionFilter:
    category: int
    mask: int = COLLISION_MASK
    group: int = COLLISION_GROUP


@dataclass(frozen=True)
class MorphologyParams:
    """Geometry of one bipedal runner.

    spawn_x / spawn_y default to 10% / 80% of the canvas size.
    """
    left_leg_length: float = 60.0
    left_leg_width: float = 10.0
    right_leg_length: float = 60.0
    right_leg_width: float = 10.0
    body_length: float = 100.0
    body_width: float = 20.0
    canvas_width: float = 800.0
    canvas_height: float = 600.0
    spawn_x: Optional[float] = None
    spawn_y: Optional[float] = None
    material: BodyMaterial = field(default_factory=BodyMaterial)

    def __post_init__(self):
        for name in (
            "left_leg_length", "left_leg_width",
            "right_leg_length", "right_leg_width",
            "body_length", "body_width",
            "canvas_width", "canvas_height",
        ):
            _require_positive(name, getattr(self, name))

        for name in ("spawn_x", "spawn_y"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, (int, float)) or not math.isfinite(value)):
                raise MorphologyError(f"{name} must be a finite number, got {value!r}")

        if self.material.density <= 0:
            raise MorphologyError(f"density must be positive, got {self.material.density!r}")

    @property
    def start_x(self) -> float:
        return self.spawn_x if self.spawn_x is not None else self.canvas_width * 0.1

    @property
    def start_y(self) -> float:
        return self.spawn_y if self.spawn_y is not None else self.canvas_height * 0.8


@dataclass(frozen=True)
class EvolutionHyperParams:
    mutation_rate: float = 0.1
    mutation_sigma: float = 0.5

    # actuator command per tick
    actuator_step: float = 2.0
    actuator_min: float = 25.0
    actuator_max: float = 70.0
    decision_threshold: float = 0.5

    # fitness shaping
    balance_threshold: float = 0.2
    balanced_weight: float = 2.0
    unbalanced_weight: float = 0.5

    def __post_init__(self):
        if not 0.0 <= self.mutation_rate <= 1.0:
            raise MorphologyError(f"mutation_rate must be in [0, 1], got {self.mutation_rate}")
        if self.mutation_sigma < 0:
            raise MorphologyError(f"mutation_sigma must be >= 0, got {self.mutation_sigma}")
        if self.actuator_step <= 0:
            raise MorphologyError(f"actuator_step must be positive, got {self.actuator_step}")
        if self.actuator_min >= self.actuator_max:
            raise MorphologyError(
                f"actuator_min ({self.actuator_min}) must be below actuator_max ({self.actuator_max})"
            )
