import dataclasses

import numpy as np
import pytest

from src.neuroevo.agent import BipedalAgent
from src.neuroevo.config import (
    BODY_CATEGORY,
    LEFT_LEG_CATEGORY,
    RIGHT_LEG_CATEGORY,
    EvolutionHyperParams,
    MorphologyParams,
)
from src.neuroevo.errors import MorphologyError
from src.neuroevo.network import NeuralController


class ConstantController:
    """Controller stub returning a fixed output."""

    def __init__(self, output):
        self.output = np.asarray(output, dtype=np.float32)
        self.inputs = []
        self.release_count = 0

    def predict(self, x):
        self.inputs.append(np.asarray(x))
        return self.output

    def release(self):
        self.release_count += 1


def test_default_construction(rng):
    agent = BipedalAgent(rng=rng)
    assert agent.score == 0.0
    c = agent.controller
    assert (c.input_nodes, c.hidden_nodes, c.output_nodes) == (10, 25, 2)
    assert agent.morphology.start_x == pytest.approx(80.0)
    assert agent.morphology.start_y == pytest.approx(480.0)


def test_invalid_morphology():
    with pytest.raises(MorphologyError):
        MorphologyParams(body_length=-1)
    with pytest.raises(MorphologyError):
        MorphologyParams(left_leg_width=float("nan"))
    with pytest.raises(MorphologyError):
        EvolutionHyperParams(actuator_min=80.0, actuator_max=70.0)


def test_attach_creates_one_group(sim, rng):
    agent = BipedalAgent(rng=rng)
    agent.attach_to_simulation(sim)

    assert len(sim.add_calls) == 1
    assert len(sim.add_calls[0]) == 7
    assert len(sim.bodies) == 3 and len(sim.constraints) == 4

    h = agent.handles
    categories = {sim.body_specs[x]["collision"].category for x in (h.body, h.left_leg, h.right_leg)}
    assert categories == {BODY_CATEGORY, LEFT_LEG_CATEGORY, RIGHT_LEG_CATEGORY}
    # muscle rest length 0.8 * (30 + 50)
    assert sim.constraint_length(h.left_muscle) == pytest.approx(64.0)
    assert sim.constraint_length(h.right_muscle) == pytest.approx(64.0)
    assert sim.constraints[h.left_joint]["length"] == 0.0

    with pytest.raises(RuntimeError):
        agent.attach_to_simulation(sim)


def test_detach_is_idempotent(sim, rng):
    agent = BipedalAgent(rng=rng)
    agent.attach_to_simulation(sim)
    group = agent.handles.as_group()

    agent.detach_from_simulation(sim)
    agent.detach_from_simulation(sim)

    assert sim.remove_calls == [group]
    assert not sim.world
    assert agent.controller.released
    assert not agent.attached


def test_sense_order(sim, rng):
    agent = BipedalAgent(rng=rng)
    agent.attach_to_simulation(sim)
    h = agent.handles
    sim.set_body_state(h.body, y=420.0, vx=1.5, vy=-0.5, angle=0.1)
    sim.set_body_state(h.left_leg, y=500.0, angle=-0.3)
    sim.set_body_state(h.right_leg, y=460.0, angle=0.4)
    sim.set_constraint_length(h.left_muscle, 35.0)
    sim.set_constraint_length(h.right_muscle, 70.0)

    x = agent.sense(sim)
    expected = [80 / 800, 0.0, 40 / 800, 1.5, -0.5, 0.5, 1.0, 0.1, -0.3, 0.4]
    np.testing.assert_allclose(x, expected, rtol=1e-6, atol=1e-7)


def test_act_moves_muscles_and_clamps(sim, rng):
    agent = BipedalAgent(rng=rng)
    agent.attach_to_simulation(sim)
    agent.controller = ConstantController([0.9, 0.1])
    h = agent.handles

    lengths = agent.act(sim)
    np.testing.assert_allclose(lengths, [66.0, 62.0])
    assert sim.constraint_length(h.left_muscle) == 66.0
    assert len(agent.controller.inputs[0]) == 10

    sim.set_constraint_length(h.left_muscle, 69.0)
    sim.set_constraint_length(h.right_muscle, 26.0)
    agent.act(sim)
    assert sim.constraint_length(h.left_muscle) == 70.0
    assert sim.constraint_length(h.right_muscle) == 25.0


def test_act_threshold_is_strict(sim, rng):
    agent = BipedalAgent(rng=rng)
    agent.attach_to_simulation(sim)
    agent.controller = ConstantController([0.5, 0.5])
    np.testing.assert_allclose(agent.act(sim), [62.0, 62.0])


def test_fitness_balanced_and_unbalanced(sim, rng):
    agent = BipedalAgent(rng=rng)
    agent.attach_to_simulation(sim)
    h = agent.handles

    sim.set_body_state(h.body, x=90.0, vx=3.0, angle=0.1)
    assert agent.update_fitness_score(sim) == pytest.approx(10.0 * 2.0 * 3.0)

    sim.set_body_state(h.body, x=90.0, vx=3.0, angle=0.5)
    assert agent.update_fitness_score(sim) == pytest.approx(10.0 * 0.5 * 3.0)
    assert agent.score == pytest.approx(75.0)

    # moving backward from behind the spawn point still scores positively
    sim.set_body_state(h.body, x=70.0, vx=-1.0, angle=0.0)
    agent.update_fitness_score(sim)
    assert agent.score == pytest.approx(95.0)

    # falling back from ahead of the spawn point is penalised
    sim.set_body_state(h.body, x=100.0, vx=-1.0, angle=1.0)
    agent.update_fitness_score(sim)
    assert agent.score == pytest.approx(85.0)


def test_sense_requires_attachment(sim, rng):
    agent = BipedalAgent(rng=rng)
    with pytest.raises(RuntimeError):
        agent.sense(sim)


def test_crossover_exact_splice(fixed_rng):
    rng = fixed_rng(3)
    a = BipedalAgent(rng=rng, id=1)
    b = BipedalAgent(rng=rng, id=2)
    a.controller = NeuralController(2, 3, 2, rng=np.random.default_rng(0))
    b.controller = NeuralController(2, 3, 2, rng=np.random.default_rng(1))
    a.controller.set_weights(np.arange(6), np.arange(6) + 10)
    b.controller.set_weights(np.arange(6) + 100, np.arange(6) + 110)

    child = a.crossover(b)
    c_in, c_out = child.controller.flat_weights()
    np.testing.assert_array_equal(c_in, [0, 1, 2, 103, 104, 105])
    np.testing.assert_array_equal(c_out, [10, 11, 12, 113, 114, 115])
    assert child.controller.input_weights.shape == (2, 3)
    assert child.score == 0.0
    assert child.morphology is a.morphology

    # parents untouched
    np.testing.assert_array_equal(a.controller.flat_weights()[0], np.arange(6))
    np.testing.assert_array_equal(b.controller.flat_weights()[0], np.arange(6) + 100)


def test_crossover_output_cut_is_proportional(fixed_rng):
    rng = fixed_rng(125)
    a = BipedalAgent(rng=rng)
    b = BipedalAgent(rng=rng)
    a.controller.set_weights(np.zeros(250), np.zeros(50))
    b.controller.set_weights(np.ones(250), np.ones(50))

    c_in, c_out = a.crossover(b).controller.flat_weights()
    assert c_in[:125].sum() == 0 and c_in[125:].sum() == 125
    assert c_out[:25].sum() == 0 and c_out[25:].sum() == 25


def test_mutate_changes_about_ten_percent(rng):
    agent = BipedalAgent(rng=rng)
    before_in, before_out = agent.controller.flat_weights()
    agent.mutate()
    after_in, after_out = agent.controller.flat_weights()

    changed = np.concatenate([before_in != after_in, before_out != after_out])
    assert changed.size == 300
    assert 10 <= changed.sum() <= 60
    assert agent.controller.input_weights.shape == (10, 25)


def test_mutate_rate_zero_keeps_weights(rng):
    agent = BipedalAgent(hyp=EvolutionHyperParams(mutation_rate=0.0), rng=rng)
    before = agent.controller.to_dict()
    agent.mutate()
    assert agent.controller.to_dict() == before


def test_clone_is_detached_copy(sim, rng):
    agent = BipedalAgent(rng=rng, id=7)
    agent.attach_to_simulation(sim)
    agent.score = 12.0
    twin = agent.clone()
    assert twin.id == 7 and twin.score == 12.0
    assert twin.handles is None
    assert twin.controller is not agent.controller
    assert twin.controller.to_dict() == agent.controller.to_dict()


def test_hyper_params_are_frozen():
    hyp = EvolutionHyperParams()
    with pytest.raises(dataclasses.FrozenInstanceError):
        hyp.mutation_rate = 0.5
    assert dataclasses.replace(hyp, mutation_rate=0.5).mutation_rate == 0.5
    with pytest.raises(MorphologyError):
        dataclasses.replace(hyp, mutation_rate=1.5)
