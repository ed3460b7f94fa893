from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from src.neuroevo.errors import ControllerReleasedError, FormatError, InvalidInputError

RECORD_VERSION = 1


@jax.jit
def _forward(input_weights: jnp.ndarray, output_weights: jnp.ndarray, x: jnp.ndarray) -> jnp.ndarray:
    hidden = jax.nn.sigmoid(x @ input_weights)
    return jax.nn.sigmoid(hidden @ output_weights)


def _to_device(values: Any, shape: tuple[int, int]) -> jnp.ndarray:
    # jnp.array always copies, so no storage is shared with the source
    return jnp.array(np.asarray(values, dtype=np.float32).reshape(shape))


class NeuralController:
    """Feed-forward network with exactly one hidden layer.

    input -> hidden -> output, sigmoid on both layers. Weights live in
    JAX device arrays and are only ever replaced wholesale.
    """

    def __init__(
        self,
        input_nodes: int,
        hidden_nodes: int,
        output_nodes: int,
        rng: Optional[np.random.Generator] = None,
    ):
        for name, n in (("input_nodes", input_nodes), ("hidden_nodes", hidden_nodes),
                        ("output_nodes", output_nodes)):
            if not isinstance(n, (int, np.integer)) or n <= 0:
                raise ValueError(f"{name} must be a positive integer, got {n!r}")

        self.input_nodes = int(input_nodes)
        self.hidden_nodes = int(hidden_nodes)
        self.output_nodes = int(output_nodes)
        self._released = False

        rng = rng if rng is not None else np.random.default_rng()
        self.input_weights = _to_device(rng.standard_normal(self.input_shape), self.input_shape)
        self.output_weights = _to_device(rng.standard_normal(self.output_shape), self.output_shape)

    @property
    def input_shape(self) -> tuple[int, int]:
        return (self.input_nodes, self.hidden_nodes)

    @property
    def output_shape(self) -> tuple[int, int]:
        return (self.hidden_nodes, self.output_nodes)

    @property
    def released(self) -> bool:
        return self._released

    def _check_alive(self) -> None:
        if self._released:
            raise ControllerReleasedError("controller weights were already released")

    def predict(self, user_input: Sequence[float]) -> np.ndarray:
        """Feed one observation through the network.

        user_input: shape (input_nodes,)
        returns: shape (output_nodes,), every value in (0, 1)
        """
        self._check_alive()
        x = np.asarray(user_input, dtype=np.float32)
        if x.ndim != 1:
            raise InvalidInputError(f"Expected a 1-D input vector, got shape {x.shape}")
        if x.shape[0] != self.input_nodes:
            raise InvalidInputError(f"Expected {self.input_nodes} inputs, got {x.shape[0]}")

        out = _forward(self.input_weights, self.output_weights, x.reshape(1, self.input_nodes))
        return np.asarray(out, dtype=np.float32)[0]

    def flat_weights(self) -> tuple[np.ndarray, np.ndarray]:
        """Row-major host copies of (input_weights, output_weights)."""
        self._check_alive()
        return (
            np.array(self.input_weights, dtype=np.float32).reshape(-1),
            np.array(self.output_weights, dtype=np.float32).reshape(-1),
        )

    def set_weights(self, input_weights: Any, output_weights: Any) -> None:
        """Replace both weight matrices, releasing the previous ones.

        Accepts flat or 2-D arrays; the element count must match the
        shapes implied by the node counts.
        """
        self._check_alive()
        w_in = np.asarray(input_weights, dtype=np.float32)
        w_out = np.asarray(output_weights, dtype=np.float32)
        if w_in.size != self.input_nodes * self.hidden_nodes:
            raise FormatError(
                f"input_weights has {w_in.size} values, expected {self.input_nodes * self.hidden_nodes}"
            )
        if w_out.size != self.hidden_nodes * self.output_nodes:
            raise FormatError(
                f"output_weights has {w_out.size} values, expected {self.hidden_nodes * self.output_nodes}"
            )

        new_in = _to_device(w_in, self.input_shape)
        new_out = _to_device(w_out, self.output_shape)
        self._delete_arrays()
        self.input_weights = new_in
        self.output_weights = new_out

    def clone(self) -> NeuralController:
        """Return a controller with the same node counts and a deep copy of the weights."""
        self._check_alive()
        clonie = NeuralController.__new__(NeuralController)
        clonie.input_nodes = self.input_nodes
        clonie.hidden_nodes = self.hidden_nodes
        clonie.output_nodes = self.output_nodes
        clonie._released = False
        clonie.input_weights = jnp.array(self.input_weights, copy=True)
        clonie.output_weights = jnp.array(self.output_weights, copy=True)
        return clonie

    def _delete_arrays(self) -> None:
        for arr in (self.input_weights, self.output_weights):
            if isinstance(arr, jax.Array) and not arr.is_deleted():
                arr.delete()

    def release(self) -> None:
        """Free the device buffers. Safe to call more than once."""
        if self._released:
            return
        self._delete_arrays()
        self._released = True

    # -----------------------
    # serialization
    # -----------------------
    def to_dict(self) -> dict[str, Any]:
        w_in, w_out = self.flat_weights()
        return {
            "version": RECORD_VERSION,
            "input_nodes": self.input_nodes,
            "hidden_nodes": self.hidden_nodes,
            "output_nodes": self.output_nodes,
            "input_weights": w_in.tolist(),
            "output_weights": w_out.tolist(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @staticmethod
    def _parse_record(record: dict[str, Any]) -> tuple[int, int, int, np.ndarray, np.ndarray]:
        if not isinstance(record, dict):
            raise FormatError(f"Expected a mapping, got {type(record).__name__}")

        version = record.get("version", RECORD_VERSION)
        if version != RECORD_VERSION:
            raise FormatError(f"Unsupported record version {version!r}")

        try:
            counts = [record[k] for k in ("input_nodes", "hidden_nodes", "output_nodes")]
            w_in = np.asarray(record["input_weights"], dtype=np.float32).reshape(-1)
            w_out = np.asarray(record["output_weights"], dtype=np.float32).reshape(-1)
        except KeyError as e:
            raise FormatError(f"Missing field {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise FormatError(f"Weights are not numeric: {e}") from e

        for n in counts:
            if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n <= 0:
                raise FormatError(f"Node counts must be positive integers, got {counts}")
        n_in, n_hidden, n_out = (int(n) for n in counts)

        if w_in.size != n_in * n_hidden:
            raise FormatError(f"input_weights has {w_in.size} values, expected {n_in * n_hidden}")
        if w_out.size != n_hidden * n_out:
            raise FormatError(f"output_weights has {w_out.size} values, expected {n_hidden * n_out}")
        return n_in, n_hidden, n_out, w_in, w_out

    def load_dict(self, record: dict[str, Any]) -> None:
        """Load weights from a record with this controller's node counts.

        Nothing changes on error.
        """
        self._check_alive()
        n_in, n_hidden, n_out, w_in, w_out = self._parse_record(record)
        if (n_in, n_hidden, n_out) != (self.input_nodes, self.hidden_nodes, self.output_nodes):
            raise FormatError(
                f"Record shape ({n_in}, {n_hidden}, {n_out}) does not match controller "
                f"({self.input_nodes}, {self.hidden_nodes}, {self.output_nodes})"
            )
        self.set_weights(w_in, w_out)

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> NeuralController:
        n_in, n_hidden, n_out, _, _ = cls._parse_record(record)
        net = cls(n_in, n_hidden, n_out, rng=np.random.default_rng(0))
        net.load_dict(record)
        return net

    @classmethod
    def from_json(cls, data: str) -> NeuralController:
        try:
            record = json.loads(data)
        except json.JSONDecodeError as e:
            raise FormatError(f"Invalid JSON: {e}") from e
        return cls.from_dict(record)

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return (f"NeuralController({self.input_nodes}, {self.hidden_nodes}, "
                f"{self.output_nodes}, {state})")
