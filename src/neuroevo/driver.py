from __future__ import annotations

import logging
from typing import Callable, Optional

from src.neuroevo.population import GenerationStats, Population
from src.neuroevo.simulation import Simulation

logger = logging.getLogger(__name__)


def run_episode(
    population: Population,
    sim: Simulation,
    ticks: int,
    on_tick: Optional[Callable[[int, Population], None]] = None,
) -> None:
    """Step physics `ticks` times, letting every agent think after each step."""
    for tick in range(ticks):
        sim.step()
        population.step(sim)
        if on_tick is not None:
            on_tick(tick, population)


def run_generations(
    population: Population,
    sim: Simulation,
    generations: int,
    ticks_per_episode: int,
    on_generation: Optional[Callable[[GenerationStats, Population], None]] = None,
) -> list[GenerationStats]:
    """Evaluate and breed `generations` times.

    on_generation is called after the episode ends and before evolve(), while
    the evaluated agents are still live.
    """
    if not population.agents:
        population.initialize(sim)

    history: list[GenerationStats] = []
    for _ in range(generations):
        run_episode(population, sim, ticks_per_episode)
        best = population.get_best()
        logger.debug("generation %d best agent %d score=%.3f",
                     population.generation, best.id, best.score)
        if on_generation is not None:
            preview = GenerationStats(
                generation=population.generation,
                best_score=best.score,
                total_score=sum(a.score for a in population.agents),
                avg_score=sum(a.score for a in population.agents) / population.size,
            )
            on_generation(preview, population)
        history.append(population.evolve(sim))
    return history
