from __future__ import annotations

from datetime import datetime
import json
import os
from pathlib import Path
from typing import Any, Optional

from src.neuroevo.errors import FormatError
from src.neuroevo.network import NeuralController
from src.neuroevo.population import Population


def save_controller(controller: NeuralController, path: str | os.PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(controller.to_json())
    return path


def load_controller(path: str | os.PathLike) -> NeuralController:
    """Read a controller record; accepts plain records and save_best_controller files."""
    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise FormatError(f"{path}: invalid JSON: {e}") from e
    if isinstance(data, dict) and "controller" in data:
        data = data["controller"]
    return NeuralController.from_dict(data)


def save_best_controller(
    population: Population,
    out_dir: str | os.PathLike,
    experiment_name: str = "biped",
    extra: Optional[dict[str, Any]] = None,
) -> Path:
    """Save the current best agent's controller plus run metadata in out_dir."""
    best = population.get_best()
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    filepath = out_dir / f"best_controller_{experiment_name}_gen{population.generation}_{timestamp}.json"

    payload = {
        "experiment_name": experiment_name,
        "generation": population.generation,
        "agent_id": best.id,
        "score": best.score,
        "timestamp": timestamp,
        "controller": best.controller.to_dict(),
    }
    if extra:
        payload.update(extra)

    filepath.write_text(json.dumps(payload))
    return filepath
