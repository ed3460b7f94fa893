import os
from pathlib import Path
from typing import Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import imageio.v2 as imageio
import networkx as nx
import numpy as np

from src.neuroevo.network import NeuralController
from src.neuroevo.population import GenerationStats

LAYER_COLORS = {
    "input": "#8dd3c7",
    "hidden": "#bebada",
    "output": "#fb8072",
}


def _spread_vertical(ids: list, yspan: tuple[float, float]) -> dict:
    if not ids:
        return {}
    y0, y1 = yspan
    ys = np.linspace(y0, y1, len(ids)) if len(ids) > 1 else np.array([(y0 + y1) / 2])
    return {nid: float(y) for nid, y in zip(ids, ys)}


def controller_graph(controller: NeuralController) -> nx.DiGraph:
    """Layered DiGraph with nodes ('input', i), ('hidden', j), ('output', k)."""
    w_in, w_out = controller.flat_weights()
    w_in = w_in.reshape(controller.input_shape)
    w_out = w_out.reshape(controller.output_shape)

    G = nx.DiGraph()
    for layer, n in (("input", controller.input_nodes),
                     ("hidden", controller.hidden_nodes),
                     ("output", controller.output_nodes)):
        for i in range(n):
            G.add_node((layer, i), layer=layer)

    for i in range(controller.input_nodes):
        for j in range(controller.hidden_nodes):
            G.add_edge(("input", i), ("hidden", j), weight=float(w_in[i, j]))
    for j in range(controller.hidden_nodes):
        for k in range(controller.output_nodes):
            G.add_edge(("hidden", j), ("output", k), weight=float(w_out[j, k]))
    return G


def draw_controller(controller: NeuralController, ax: plt.Axes | None = None, min_abs_weight: float = 0.0) -> plt.Axes:
    """Draw the three layers left to right; blue edges are positive, red negative."""
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 6))

    G = controller_graph(controller)
    pos = {}
    for x, layer in ((-1.0, "input"), (0.0, "hidden"), (1.0, "output")):
        ids = [n for n, d in G.nodes(data=True) if d["layer"] == layer]
        for nid, y in _spread_vertical(ids, (1.0, -1.0)).items():
            pos[nid] = np.array([x, y])

    for layer, color in LAYER_COLORS.items():
        nx.draw_networkx_nodes(
            G, pos,
            nodelist=[n for n, d in G.nodes(data=True) if d["layer"] == layer],
            node_color=color,
            edgecolors="black",
            linewidths=1.0,
            node_size=220,
            ax=ax,
        )

    # one call per sign keeps drawing fast for dense layers
    for sign, color in ((1, "tab:blue"), (-1, "tab:red")):
        edges = [(u, v) for u, v, d in G.edges(data=True)
                 if np.sign(d["weight"]) == sign and abs(d["weight"]) >= min_abs_weight]
        if not edges:
            continue
        widths = [0.2 + 1.2 * min(abs(G[u][v]["weight"]), 3.0) for u, v in edges]
        nx.draw_networkx_edges(
            G, pos,
            edgelist=edges,
            width=widths,
            edge_color=color,
            arrows=False,
            alpha=0.5,
            ax=ax,
        )

    ax.set_title(f"controller {controller.input_nodes}-{controller.hidden_nodes}-{controller.output_nodes}")
    ax.set_axis_off()
    return ax


def plot_score_history(history: Sequence[GenerationStats], path: str | os.PathLike | None = None) -> plt.Figure:
    """Best and average score per generation."""
    gens = [s.generation for s in history]
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(gens, [s.best_score for s in history], label="best", marker="o", markersize=3)
    ax.plot(gens, [s.avg_score for s in history], label="average", linestyle="--")
    degenerate = [s.generation for s in history if s.degenerate]
    if degenerate:
        ax.scatter(degenerate, [0.0] * len(degenerate), marker="x", color="tab:red",
                   label="uniform selection")
    ax.set_xlabel("generation")
    ax.set_ylabel("score")
    ax.legend()
    ax.grid(alpha=0.3)

    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=120)
    return fig


class ControllerEvolutionRecorder:
    """
    Saves one controller drawing per generation and stitches them into a GIF.

    Usage:
        rec = ControllerEvolutionRecorder("viz_runs/run1")

        for gen in range(num_generations):
            run_episode(...)
            best = population.get_best()
            rec.save_controller_frame(best.controller, label=f"gen {gen}")
            population.evolve(sim)

        rec.make_gif("evolution.gif")
    """

    def __init__(self, out_dir: str | os.PathLike, prefix: str = "frame"):
        self.out_dir = Path(out_dir)
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.frame_idx = 0
        self.frames: list[Path] = []

    def save_controller_frame(self, controller: NeuralController, label: str | None = None) -> Path:
        fig, ax = plt.subplots(figsize=(8, 6))
        draw_controller(controller, ax=ax)
        if label is not None:
            ax.set_title(f"{ax.get_title()}  |  {label}", fontsize=10)

        fpath = self.out_dir / f"{self.prefix}_{self.frame_idx:05d}.png"
        fig.savefig(fpath, dpi=80)
        plt.close(fig)

        self.frames.append(fpath)
        self.frame_idx += 1
        return fpath

    def make_gif(self, gif_path: str | os.PathLike, duration_ms: int = 1000) -> Path:
        gif_path = Path(gif_path)
        frame_files = sorted(self.frames, key=lambda p: p.name)
        if not frame_files:
            raise RuntimeError("No frames to make GIF from. Did you call save_controller_frame()?")

        images = [imageio.imread(str(p)) for p in frame_files]
        imageio.mimsave(str(gif_path), images, duration=duration_ms)
        return gif_path
