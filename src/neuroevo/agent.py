from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from src.neuroevo.config import (
    BODY_CATEGORY,
    CONTROLLER_SHAPE,
    LEFT_LEG_CATEGORY,
    RIGHT_LEG_CATEGORY,
    CollisionFilter,
    EvolutionHyperParams,
    MorphologyParams,
)
from src.neuroevo.network import NeuralController
from src.neuroevo.simulation import AgentHandles, Simulation

logger = logging.getLogger(__name__)

# joints sit at 80% of each half-length
ANCHOR_FRACTION = 0.8


class BipedalAgent:
    """A two-legged body driven by a NeuralController.

    Simulation objects exist only between attach_to_simulation() and
    detach_from_simulation(); the controller is released on detach.
    """

    def __init__(
        self,
        morphology: Optional[MorphologyParams] = None,
        hyp: Optional[EvolutionHyperParams] = None,
        rng: Optional[np.random.Generator] = None,
        id: int = 0,
    ):
        self.id = id
        self.morphology = morphology or MorphologyParams()
        self.hyp = hyp or EvolutionHyperParams()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.score = 0.0
        self.fitness = 0.0
        self.controller = NeuralController(*CONTROLLER_SHAPE, rng=self.rng)
        self.handles: Optional[AgentHandles] = None

    @property
    def attached(self) -> bool:
        return self.handles is not None

    # -----------------------
    # simulation lifecycle
    # -----------------------
    def _build_handles(self, sim: Simulation) -> AgentHandles:
        m = self.morphology
        x, y = m.start_x, m.start_y

        left_leg = sim.create_body(
            x - 75, y + 40, m.left_leg_length, m.left_leg_width,
            m.material, CollisionFilter(category=LEFT_LEG_CATEGORY),
        )
        right_leg = sim.create_body(
            x + 80, y + 40, m.right_leg_length, m.right_leg_width,
            m.material, CollisionFilter(category=RIGHT_LEG_CATEGORY),
        )
        body = sim.create_body(
            x, y, m.body_length, m.body_width,
            m.material, CollisionFilter(category=BODY_CATEGORY),
        )

        half_body = m.body_length / 2 * ANCHOR_FRACTION
        half_left = m.left_leg_length / 2 * ANCHOR_FRACTION
        half_right = m.right_leg_length / 2 * ANCHOR_FRACTION

        # hinges: leg tip pinned to the body edge
        left_joint = sim.create_constraint(left_leg, body, (half_left, 0.0), (-half_body, 0.0), 0.0)
        right_joint = sim.create_constraint(right_leg, body, (-half_right, 0.0), (half_body, 0.0), 0.0)

        # muscles: leg's far end to the body centre
        left_muscle = sim.create_constraint(
            left_leg, body, (-half_left, 0.0), (0.0, 0.0),
            ANCHOR_FRACTION * (m.left_leg_length / 2 + m.body_length / 2),
        )
        right_muscle = sim.create_constraint(
            right_leg, body, (half_right, 0.0), (0.0, 0.0),
            ANCHOR_FRACTION * (m.right_leg_length / 2 + m.body_length / 2),
        )

        return AgentHandles(
            body=body,
            left_leg=left_leg,
            right_leg=right_leg,
            left_joint=left_joint,
            right_joint=right_joint,
            left_muscle=left_muscle,
            right_muscle=right_muscle,
        )

    def attach_to_simulation(self, sim: Simulation) -> None:
        """Create all bodies and constraints and add them to the world as one group."""
        if self.handles is not None:
            raise RuntimeError(f"agent {self.id} is already attached")
        handles = self._build_handles(sim)
        sim.add(handles.as_group())
        self.handles = handles

    def detach_from_simulation(self, sim: Simulation) -> None:
        """Remove the agent's group from the world and release its controller.

        Calling it again is a no-op.
        """
        if self.handles is not None:
            sim.remove(self.handles.as_group())
            self.handles = None
        self.controller.release()

    def _require_handles(self) -> AgentHandles:
        if self.handles is None:
            raise RuntimeError(f"agent {self.id} is not attached to a simulation")
        return self.handles

    # -----------------------
    # per-tick behaviour
    # -----------------------
    def sense(self, sim: Simulation) -> np.ndarray:
        """Return the 10 controller inputs for the current tick."""
        h = self._require_handles()
        body = sim.body_state(h.body)
        left = sim.body_state(h.left_leg)
        right = sim.body_state(h.right_leg)
        scale = sim.width
        max_len = self.hyp.actuator_max

        return np.array([
            (sim.ground_y - body.y) / scale,
            (sim.ground_y - left.y) / scale,
            (sim.ground_y - right.y) / scale,
            body.vx,
            body.vy,
            sim.constraint_length(h.left_muscle) / max_len,
            sim.constraint_length(h.right_muscle) / max_len,
            body.angle,
            left.angle,
            right.angle,
        ], dtype=np.float32)

    def act(self, sim: Simulation) -> np.ndarray:
        """Run the controller and move both muscles one step.

        Returns the new (left, right) muscle lengths.
        """
        h = self._require_handles()
        hyp = self.hyp
        result = self.controller.predict(self.sense(sim))

        lengths = []
        for muscle, out in ((h.left_muscle, result[0]), (h.right_muscle, result[1])):
            shift = hyp.actuator_step if out > hyp.decision_threshold else -hyp.actuator_step
            length = float(np.clip(sim.constraint_length(muscle) + shift,
                                   hyp.actuator_min, hyp.actuator_max))
            sim.set_constraint_length(muscle, length)
            lengths.append(length)
        return np.array(lengths, dtype=np.float32)

    def update_fitness_score(self, sim: Simulation) -> float:
        """Reward balanced forward motion: displacement * balance weight * vx."""
        h = self._require_handles()
        body = sim.body_state(h.body)
        hyp = self.hyp

        balanced = abs(body.angle) < hyp.balance_threshold
        walking_score = body.x - self.morphology.start_x
        weight = hyp.balanced_weight if balanced else hyp.unbalanced_weight
        delta = walking_score * weight * body.vx
        self.score += delta
        return delta

    def think(self, sim: Simulation) -> None:
        self.act(sim)
        self.update_fitness_score(sim)

    # -----------------------
    # genetic operators
    # -----------------------
    def clone(self) -> BipedalAgent:
        """Detached copy: same id, morphology, score and weights."""
        other = BipedalAgent.__new__(BipedalAgent)
        other.id = self.id
        other.morphology = self.morphology
        other.hyp = self.hyp
        other.rng = self.rng
        other.score = self.score
        other.fitness = self.fitness
        other.controller = self.controller.clone()
        other.handles = None
        return other

    def crossover(self, partner: BipedalAgent) -> BipedalAgent:
        """Single-point crossover of the flattened weights.

        The child keeps this agent's morphology; genes before the cut come
        from self, the rest from partner. The output-weight cut sits at the
        same proportion of its length as the input-weight cut.
        """
        a_in, a_out = self.controller.flat_weights()
        b_in, b_out = partner.controller.flat_weights()

        mid = int(self.rng.integers(0, a_in.size))
        out_mid = mid * a_out.size // a_in.size

        child_in = np.concatenate([a_in[:mid], b_in[mid:]])
        child_out = np.concatenate([a_out[:out_mid], b_out[out_mid:]])

        child = BipedalAgent.__new__(BipedalAgent)
        child.id = self.id
        child.morphology = self.morphology
        child.hyp = self.hyp
        child.rng = self.rng
        child.score = 0.0
        child.fitness = 0.0
        child.controller = self.controller.clone()
        child.controller.set_weights(child_in, child_out)
        child.handles = None
        return child

    def mutate(self) -> None:
        """Perturb each weight with N(0, sigma) noise with probability mutation_rate."""
        hyp = self.hyp
        w_in, w_out = self.controller.flat_weights()

        def fn(w: np.ndarray) -> np.ndarray:
            mask = self.rng.random(w.shape) < hyp.mutation_rate
            noise = self.rng.normal(0.0, 1.0, size=w.shape) * hyp.mutation_sigma
            return np.where(mask, w + noise, w)

        self.controller.set_weights(fn(w_in), fn(w_out))

    def __repr__(self) -> str:
        return f"BipedalAgent(id={self.id}, score={self.score:.3f}, fitness={self.fitness:.3f})"
