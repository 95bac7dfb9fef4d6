"""
Exceptions raised by tensor and view operations.

Every failure is raised synchronously by the offending call, so no partially
built tensor is ever returned. The hierarchy also derives from the matching
builtin exception (``ValueError``, ``IndexError``, ...) so callers can catch
either.
"""


class TensorError(Exception):
    """Base class of every error raised by this package."""


class ShapeError(TensorError, ValueError):
    """
    Raised when shapes are incompatible with the requested operation.

    Covers rank mismatches, reshape size mismatches, uneven nested literals and
    gradients whose shape does not match the tensor they are seeded into.
    """


class BroadcastError(ShapeError):
    """Raised when two shapes cannot be broadcast (or expanded) to each other."""

    def __init__(self, shape_a, shape_b) -> None:
        super().__init__(f"Can't broadcast shapes {tuple(shape_a)} and {tuple(shape_b)}")
        self.shape_a = tuple(shape_a)
        self.shape_b = tuple(shape_b)


class AxisError(ShapeError, IndexError):
    """Raised when an axis, dimension or element index is out of range."""


class UnsupportedOperationError(TensorError, NotImplementedError):
    """
    Raised for operations this engine deliberately does not implement.

    For example sub-tensor (partial-rank) indexing, reshaping a non-contiguous
    view, or reducing a gradient over more than one expanded axis at once.
    """


class GradientStateError(TensorError, RuntimeError):
    """Raised when ``backward()`` is called on a tensor that does not track gradients."""
