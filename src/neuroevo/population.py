from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

import numpy as np

from src.neuroevo.agent import BipedalAgent
from src.neuroevo.config import EvolutionHyperParams, MorphologyParams
from src.neuroevo.simulation import Simulation

logger = logging.getLogger(__name__)


@dataclass
class GenerationStats:
    generation: int
    best_score: float
    total_score: float
    avg_score: float
    degenerate: bool = False


def normalize_fitness(scores: np.ndarray) -> tuple[np.ndarray, bool]:
    """Turn raw scores into selection probabilities.

    Negative scores count as zero. If nothing is left (every score <= 0)
    the probabilities are uniform and the second value is True.
    """
    scores = np.asarray(scores, dtype=np.float64)
    clamped = np.maximum(scores, 0.0)
    total = clamped.sum()
    if not np.isfinite(total) or total <= 0.0:
        return np.full(scores.shape, 1.0 / len(scores)), True
    return clamped / total, False


class Population:
    """Fixed-size generation of agents, bred by fitness-proportionate selection."""

    def __init__(
        self,
        size: int,
        morphology: Optional[MorphologyParams] = None,
        hyp: Optional[EvolutionHyperParams] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        if size <= 0:
            raise ValueError(f"population size must be positive, got {size}")
        self.size = size
        self.morphology = morphology or MorphologyParams()
        self.hyp = hyp or EvolutionHyperParams()
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        self.generation = 1
        self.high_score = float("-inf")
        self.total_score = 0.0
        self.avg_score = 0.0
        self.history: list[GenerationStats] = []
        self.agents: list[BipedalAgent] = []

    def initialize(self, sim: Optional[Simulation] = None) -> None:
        """Create `size` agents with ids 0..size-1, attaching them if a simulation is given."""
        if self.agents:
            raise RuntimeError("population is already initialized")
        for i in range(self.size):
            agent = BipedalAgent(self.morphology, self.hyp, rng=self.rng, id=i)
            self.agents.append(agent)
        if sim is not None:
            for agent in self.agents:
                agent.attach_to_simulation(sim)

    # -----------------------
    # evaluation
    # -----------------------
    def step(self, sim: Simulation) -> None:
        """One tick for every live agent, in id order."""
        for agent in self.agents:
            agent.think(sim)

    def get_best(self) -> BipedalAgent:
        """Live agent with the highest score; ties go to the first one."""
        return max(self.agents, key=lambda agent: agent.score)

    # -----------------------
    # selection / breeding
    # -----------------------
    def assign_fitness(self) -> bool:
        """Set every agent's fitness from its score. Returns True on the uniform fallback."""
        scores = np.array([agent.score for agent in self.agents], dtype=np.float64)
        fitness, degenerate = normalize_fitness(scores)
        for agent, fit in zip(self.agents, fitness):
            agent.fitness = float(fit)
        return degenerate

    def select_one(self) -> BipedalAgent:
        """Roulette-wheel pick; returns a clone of the chosen agent."""
        # r in (0, 1] so a zero-fitness agent is never picked by a zero draw
        r = 1.0 - self.rng.random()
        index = None
        last_positive = len(self.agents) - 1
        for i, agent in enumerate(self.agents):
            if agent.fitness > 0:
                last_positive = i
            r -= agent.fitness
            if r <= 0:
                index = i
                break
        if index is None:
            # rounding left r slightly above zero
            index = last_positive
        return self.agents[index].clone()

    def _breed(self) -> list[BipedalAgent]:
        new_generation: list[BipedalAgent] = []
        try:
            for i in range(self.size):
                parent_a = parent_b = None
                try:
                    parent_a = self.select_one()
                    parent_b = self.select_one()
                    child = parent_a.crossover(parent_b)
                finally:
                    for parent in (parent_a, parent_b):
                        if parent is not None:
                            parent.controller.release()
                new_generation.append(child)
                child.mutate()
                child.id = i
                logger.debug("[%d(%.2f), %d(%.2f)] => %d",
                             parent_a.id, parent_a.fitness, parent_b.id, parent_b.fitness, i)
        except Exception:
            for child in new_generation:
                child.controller.release()
            raise
        return new_generation

    def evolve(self, sim: Optional[Simulation] = None) -> GenerationStats:
        """Breed the next generation and swap it in.

        Old agents are detached from `sim` (and their controllers released)
        before the new ones are attached. `sim` may be omitted only when no
        agent is attached. If breeding fails the current generation is left
        as it was.
        """
        if not self.agents:
            raise RuntimeError("population is not initialized")
        if sim is None and any(agent.attached for agent in self.agents):
            raise RuntimeError("agents are attached to a simulation; pass it to evolve()")

        scores = np.array([agent.score for agent in self.agents], dtype=np.float64)
        best_score = float(scores.max())
        total_score = float(scores.sum())

        degenerate = self.assign_fitness()
        if degenerate:
            logger.warning(
                "generation %d: no agent scored above zero (total=%.3f), selecting uniformly",
                self.generation, total_score,
            )

        new_generation = self._breed()

        # retire the current generation
        for agent in self.agents:
            if sim is not None:
                agent.detach_from_simulation(sim)
            else:
                agent.controller.release()

        self.agents = new_generation
        if sim is not None:
            for agent in self.agents:
                agent.attach_to_simulation(sim)

        stats = GenerationStats(
            generation=self.generation,
            best_score=best_score,
            total_score=total_score,
            avg_score=total_score / self.size,
            degenerate=degenerate,
        )
        self.generation += 1
        self.total_score = stats.total_score
        self.avg_score = stats.avg_score
        self.high_score = max(self.high_score, best_score)
        self.history.append(stats)
        logger.info("generation %d: best=%.3f total=%.3f avg=%.3f",
                    stats.generation, stats.best_score, stats.total_score, stats.avg_score)
        return stats
