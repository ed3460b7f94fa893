"""Interface to the physics engine that hosts the agents.

The engine itself lives outside this package. Anything that implements
``Simulation`` (a Box2D / pymunk / Matter.js bridge, or a test fake) can
host a population.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Hashable, Protocol, Sequence

from src.neuroevo.config import BodyMaterial, CollisionFilter

Handle = Hashable


@dataclass(frozen=True)
class BodyState:
    x: float
    y: float
    vx: float
    vy: float
    angle: float


@dataclass(frozen=True)
class AgentHandles:
    """Every simulation object owned by one agent."""
    body: Handle
    left_leg: Handle
    right_leg: Handle
    left_joint: Handle
    right_joint: Handle
    left_muscle: Handle
    right_muscle: Handle

    def as_group(self) -> list[Handle]:
        return [
            self.left_leg, self.right_leg, self.body,
            self.left_joint, self.left_muscle,
            self.right_joint, self.right_muscle,
        ]


class Simulation(Protocol):
    @property
    def ground_y(self) -> float:
        """Vertical position of the ground surface."""

    @property
    def width(self) -> float:
        """Horizontal world scale used to normalise heights."""

    def create_body(
        self,
        x: float,
        y: float,
        length: float,
        width: float,
        material: BodyMaterial,
        collision: CollisionFilter,
    ) -> Handle: ...

    def create_constraint(
        self,
        body_a: Handle,
        body_b: Handle,
        point_a: tuple[float, float],
        point_b: tuple[float, float],
        length: float,
        stiffness: float = 1.0,
    ) -> Handle: ...

    def add(self, handles: Sequence[Handle]) -> None:
        """Register a group of objects with the world in one call."""

    def remove(self, handles: Sequence[Handle]) -> None:
        """Unregister a group previously passed to ``add``."""

    def body_state(self, handle: Handle) -> BodyState: ...

    def constraint_length(self, handle: Handle) -> float: ...

    def set_constraint_length(self, handle: Handle, length: float) -> None: ...

    def step(self) -> Any:
        """Advance physics by one tick."""
