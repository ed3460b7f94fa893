from __future__ import annotations


class NeuroEvoError(Exception):
    """Base class for every error raised by the neuroevo package."""


class InvalidInputError(NeuroEvoError, ValueError):
    """A controller was fed a vector of the wrong length."""


class FormatError(NeuroEvoError, ValueError):
    """A serialized controller record does not match its declared shape."""


class ControllerReleasedError(NeuroEvoError, RuntimeError):
    """The controller's weights were already released."""


class MorphologyError(NeuroEvoError, ValueError):
    """Invalid body geometry or evolution hyper-parameters."""
