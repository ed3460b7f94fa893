from __future__ import annotations

import itertools

import numpy as np
import pytest

from src.neuroevo.simulation import BodyState


class FakeSimulation:
    """In-memory stand-in for the physics engine.

    Bodies keep whatever state the test assigns; step() moves each body by
    its velocity.
    """

    def __init__(self, ground_y: float = 500.0, width: float = 800.0):
        self._ground_y = ground_y
        self._width = width
        self._ids = itertools.count()
        self.bodies: dict[int, BodyState] = {}
        self.body_specs: dict[int, dict] = {}
        self.constraints: dict[int, dict] = {}
        self.world: set[int] = set()
        self.add_calls: list[list[int]] = []
        self.remove_calls: list[list[int]] = []
        self.ticks = 0

    @property
    def ground_y(self) -> float:
        return self._ground_y

    @property
    def width(self) -> float:
        return self._width

    def create_body(self, x, y, length, width, material, collision):
        h = next(self._ids)
        self.bodies[h] = BodyState(x=x, y=y, vx=0.0, vy=0.0, angle=0.0)
        self.body_specs[h] = dict(length=length, width=width, material=material, collision=collision)
        return h

    def create_constraint(self, body_a, body_b, point_a, point_b, length, stiffness=1.0):
        h = next(self._ids)
        self.constraints[h] = dict(body_a=body_a, body_b=body_b, point_a=point_a,
                                   point_b=point_b, length=length, stiffness=stiffness)
        return h

    def add(self, handles):
        handles = list(handles)
        assert not self.world.intersection(handles), "handle added twice"
        self.world.update(handles)
        self.add_calls.append(handles)

    def remove(self, handles):
        handles = list(handles)
        assert set(handles) <= self.world, "removing handles that are not in the world"
        self.world.difference_update(handles)
        self.remove_calls.append(handles)

    def body_state(self, handle):
        return self.bodies[handle]

    def set_body_state(self, handle, **kwargs):
        state = self.bodies[handle]
        self.bodies[handle] = BodyState(**{**state.__dict__, **kwargs})

    def constraint_length(self, handle):
        return self.constraints[handle]["length"]

    def set_constraint_length(self, handle, length):
        self.constraints[handle]["length"] = length

    def step(self):
        self.ticks += 1
        for h, s in list(self.bodies.items()):
            if h in self.world:
                self.bodies[h] = BodyState(x=s.x + s.vx, y=s.y + s.vy, vx=s.vx, vy=s.vy, angle=s.angle)


class FixedRng:
    """Wraps a Generator but forces integers() to a fixed value."""

    def __init__(self, value: int, seed: int = 0):
        self.value = value
        self._rng = np.random.default_rng(seed)

    def integers(self, low, high=None, size=None):
        return self.value

    def __getattr__(self, name):
        return getattr(self._rng, name)


@pytest.fixture
def sim():
    return FakeSimulation()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def fixed_rng():
    return FixedRng
