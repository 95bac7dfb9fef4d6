import numbers
from typing import Any, List, Sequence, Tuple

import numpy as np

from stridegrad.errors import AxisError, ShapeError


def prod(values: Sequence[int]) -> int:
    """Product of a sequence of ints, 1 for an empty sequence."""
    result = 1
    for v in values:
        result *= v
    return result


def argsort(values: Sequence[int]) -> Tuple[int, ...]:
    """
    Indices that would sort ``values``, same as ``numpy.argsort``.

    Applied to a permutation it returns the inverse permutation.

    Examples:
        >>> argsort([2, 0, 1])
        (1, 2, 0)
    """
    return tuple(int(i) for i in np.argsort(np.asarray(values), kind="stable"))


def normalize_axis(axis: int, ndim: int) -> int:
    """
    Map a possibly negative axis onto ``[0, ndim)``.

    Raises:
        AxisError: If the axis is out of range for ``ndim`` dimensions.
    """
    if not -ndim <= axis < ndim:
        raise AxisError(f"axis={axis} is out of range for tensor with ndim={ndim}")
    return axis + ndim if axis < 0 else axis


def _is_scalar(data: Any) -> bool:
    return isinstance(data, numbers.Number) or (
        isinstance(data, np.ndarray) and data.ndim == 0
    )


def infer_shape(data: Any, strict: bool = False) -> Tuple[int, ...]:
    """
    Infer the shape of nested sequences by recursively measuring lengths.

    Only the first element at each level is followed, unless ``strict`` is set,
    in which case every level must be made only of numbers or only of
    sequences of the same length.

    Args:
        data (Any): A number or (nested) sequence of numbers.
        strict (bool, optional): Validate that the nesting is even. Defaults to False.

    Returns:
        Tuple[int, ...]: The inferred shape, ``()`` for a plain number.

    Raises:
        ShapeError: If a sequence is empty, or the nesting is uneven while ``strict``.

    Examples:
        >>> infer_shape([[1, 2, 3], [4, 5, 6]])
        (2, 3)
    """
    if _is_scalar(data):
        return ()
    if isinstance(data, np.ndarray):
        if data.size == 0:
            raise ShapeError("Can't create a tensor from an empty array")
        return tuple(int(s) for s in data.shape)
    if len(data) == 0:
        raise ShapeError("Can't create a tensor from an empty sequence")

    if strict:
        leaf = all(_is_scalar(item) for item in data)
        nested = all(not _is_scalar(item) for item in data)
        if not leaf and not nested:
            raise ShapeError(f"Uneven nested sequence: {data!r}")
        if nested:
            shapes = {infer_shape(item, strict=True) for item in data}
            if len(shapes) > 1:
                raise ShapeError(f"Uneven nested sequence: {data!r}")

    if _is_scalar(data[0]):
        return (len(data),)
    return (len(data),) + infer_shape(data[0], strict)


def flatten(data: Any) -> List[float]:
    """Flatten nested sequences of numbers in row-major order."""
    if _is_scalar(data):
        return [float(data)]
    if isinstance(data, np.ndarray):
        return [float(v) for v in data.ravel()]
    out: List[float] = []
    for item in data:
        out.extend(flatten(item))
    return out
