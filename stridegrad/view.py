"""
Shape and stride bookkeeping for tensors.

A `View` maps logical N-dimensional coordinates onto offsets of a flat buffer.
It never owns any data, so movement operations (permute, reshape, expand) only
build a new `View` and share the buffer of the tensor they came from.
"""

from typing import Iterator, Optional, Sequence, Tuple

import numpy as np

from stridegrad.errors import (
    AxisError,
    BroadcastError,
    ShapeError,
    UnsupportedOperationError,
)
from stridegrad.utils import prod


def canonicalize_strides(
    shape: Sequence[int], strides: Sequence[int]
) -> Tuple[int, ...]:
    """
    Force a zero stride on every size-1 axis.

    A size-1 axis never advances through the buffer, so its stride carries no
    information. Zeroing it keeps the contiguity check and `expand` simple.
    """
    return tuple(0 if s == 1 else st for s, st in zip(shape, strides))


def strides_for_shape(shape: Sequence[int]) -> Tuple[int, ...]:
    """
    Default row-major strides for a shape.

    The last axis has stride 1 and every axis to the left has
    ``shape[i + 1] * strides[i + 1]``.

    Examples:
        >>> strides_for_shape((2, 3, 4))
        (12, 4, 1)
        >>> strides_for_shape((2, 1, 4))
        (4, 0, 1)
    """
    strides = [0] * len(shape)
    step = 1
    for i in range(len(shape) - 1, -1, -1):
        strides[i] = step
        step *= shape[i]
    return canonicalize_strides(shape, strides)


def _check_shape(shape: Sequence[int]) -> Tuple[int, ...]:
    shape = tuple(int(s) for s in shape)
    if any(s <= 0 for s in shape):
        raise ShapeError(f"Shape entries must be positive, got {shape}")
    return shape


class View:
    """
    Shape/stride mapping from logical coordinates to buffer offsets.

    Attributes:
        shape (Tuple[int, ...]): Size of every axis.
        strides (Tuple[int, ...]): Buffer step per unit move along every axis.
            Size-1 axes always have stride 0.
        contiguous (bool): Whether ``strides`` equals the row-major default.
    """

    def __init__(
        self, shape: Sequence[int], strides: Optional[Sequence[int]] = None
    ) -> None:
        self.shape = _check_shape(shape)
        default_strides = strides_for_shape(self.shape)
        if strides is None:
            self.strides = default_strides
        else:
            if len(strides) != len(self.shape):
                raise ShapeError(
                    f"strides {tuple(strides)} don't match rank of shape {self.shape}"
                )
            self.strides = canonicalize_strides(self.shape, strides)
        self.contiguous = self.strides == default_strides

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def numel(self) -> int:
        return prod(self.shape)

    def offset(self, index: Sequence[int]) -> int:
        """Buffer offset of one full-rank coordinate."""
        return sum(i * st for i, st in zip(index, self.strides))

    def offsets(self) -> np.ndarray:
        """
        Buffer offsets of every element, in `indices` (row-major) order.

        Returns:
            np.ndarray: 1-D int64 array of length `numel`.
        """
        offsets = np.zeros((), dtype=np.int64)
        for size, stride in zip(self.shape, self.strides):
            offsets = offsets[..., None] + np.arange(size, dtype=np.int64) * stride
        return offsets.reshape(-1)

    def permute(self, order: Sequence[int]) -> "View":
        """
        Reorder the axes.

        Args:
            order (Sequence[int]): A permutation of ``range(ndim)``; axis ``i``
                of the result is axis ``order[i]`` of this view.

        Returns:
            View: This same instance for the identity order, else a new view.

        Raises:
            ShapeError: If ``order`` has the wrong length.
            AxisError: If ``order`` is not a permutation of ``range(ndim)``.
        """
        order = tuple(int(o) for o in order)
        if len(order) != self.ndim:
            raise ShapeError(
                f"permute order {order} has length {len(order)}, expected {self.ndim}"
            )
        if sorted(order) != list(range(self.ndim)):
            raise AxisError(f"permute order {order} is not a permutation of range({self.ndim})")
        if order == tuple(range(self.ndim)):
            return self

        shape = tuple(self.shape[o] for o in order)
        strides = tuple(self.strides[o] for o in order)
        return View(shape, strides)

    def reshape(self, new_shape: Sequence[int]) -> "View":
        """
        Reinterpret the elements under a new shape.

        At most one entry may be ``-1``; its size is inferred from the others.

        Returns:
            View: This same instance if the shape is unchanged, else a new
            contiguous view.

        Raises:
            ShapeError: If the element counts differ.
            UnsupportedOperationError: If this view is not contiguous. Such a
                reshape would need a copy, which is never made implicitly.
        """
        new_shape = tuple(int(s) for s in new_shape)
        if new_shape.count(-1) > 1:
            raise ShapeError("Only one -1 dimension is allowed in shape")
        if -1 in new_shape:
            known = prod(s for s in new_shape if s != -1)
            if known <= 0 or self.numel % known != 0:
                raise ShapeError(f"Can't reshape {self.shape} -> {new_shape}")
            new_shape = tuple(self.numel // known if s == -1 else s for s in new_shape)
        new_shape = _check_shape(new_shape)

        if new_shape == self.shape:
            return self
        if prod(new_shape) != self.numel:
            raise ShapeError(
                f"Size mismatch, can't reshape {self.shape} -> {new_shape}"
            )
        if not self.contiguous:
            raise UnsupportedOperationError(
                f"Reshape of a non-contiguous view is not supported ({self.shape}, strides={self.strides})"
            )
        return View(new_shape)

    def expand(self, new_shape: Sequence[int]) -> "View":
        """
        Broadcast size-1 axes to a larger size without allocating.

        The strides are kept, so every expanded axis has stride 0 and reads the
        same buffer cell repeatedly.

        Raises:
            ShapeError: If the ranks differ.
            BroadcastError: If an axis is neither equal nor of size 1.
        """
        new_shape = _check_shape(new_shape)
        if new_shape == self.shape:
            return self
        if len(new_shape) != self.ndim:
            raise ShapeError(
                f"Rank mismatch, can't expand {self.shape} -> {new_shape}"
            )
        if not all(s == n or s == 1 for s, n in zip(self.shape, new_shape)):
            raise BroadcastError(self.shape, new_shape)
        return View(new_shape, self.strides)

    def indices(self) -> Iterator[Tuple[int, ...]]:
        """
        Enumerate every coordinate in row-major (last axis fastest) order.

        The coordinates are produced lazily by an odometer: the last axis is
        incremented and carries into the axis to its left when it wraps.
        Each call starts a fresh enumeration.

        Yields:
            Tuple[int, ...]: One coordinate per element, ``()`` once for a 0-d view.
        """
        index = [0] * self.ndim
        for _ in range(self.numel):
            yield tuple(index)

            axis = self.ndim - 1
            while axis >= 0 and index[axis] + 1 >= self.shape[axis]:
                index[axis] = 0
                axis -= 1
            if axis >= 0:
                index[axis] += 1

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, View):
            return NotImplemented
        return self.shape == other.shape and self.strides == other.strides

    def __hash__(self) -> int:
        return hash((self.shape, self.strides))

    def __repr__(self) -> str:
        return f"View(shape={self.shape}, strides={self.strides}, contiguous={self.contiguous})"
