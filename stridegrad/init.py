"""
Random initialization of tensors (e.g. the weights of a model)
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np

from stridegrad.errors import ShapeError
from stridegrad.tensor import Tensor
from stridegrad.utils import prod
from stridegrad.view import View


def _from_samples(samples: np.ndarray, requires_grad: bool) -> Tensor:
    samples = np.asarray(samples, dtype=np.float32)
    return Tensor.from_buffer(
        samples.reshape(-1), View(samples.shape), requires_grad=requires_grad
    )


def uniform(
    shape: Sequence[int],
    low: float = -1.0,
    high: float = 1.0,
    requires_grad: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> Tensor:
    """
    Create a tensor with samples drawn uniformly from ``[low, high)``.

    Args:
        shape (Sequence[int]): The shape of the tensor.
        low (float, optional): Lower bound. Defaults to -1.
        high (float, optional): Upper bound. Defaults to 1.
        requires_grad (bool, optional): Whether the tensor requires gradients. Defaults to True.
        rng (Optional[np.random.Generator], optional): Source of randomness. Defaults to
            the global ``np.random`` state, so ``np.random.seed`` makes it reproducible.

    Returns:
        Tensor: The sampled tensor.
    """
    shape = tuple(shape)
    source = rng if rng is not None else np.random
    return _from_samples(source.uniform(low, high, size=shape), requires_grad)


def normal(
    shape: Sequence[int],
    mean: float = 0.0,
    std: float = 1.0,
    requires_grad: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> Tensor:
    """Create a tensor with samples drawn from a normal distribution, see `uniform`."""
    shape = tuple(shape)
    source = rng if rng is not None else np.random
    return _from_samples(source.normal(mean, std, size=shape), requires_grad)


def compute_fans(shape: Sequence[int]) -> Tuple[int, int]:
    r"""
    Computes the fan-in and fan-out of a weight of the given shape.

    The weight is assumed to have the shape ``(fan_in, fan_out, additional_dimensions...)``,
    which is how weights are laid out for ``x.dot(w)``. Additional dimensions form
    the receptive field, which multiplies both counts:
    $$
    \begin{align}
    \text{fan\_in} &= \text{shape}[0] \times \prod_{i=2}^{n} \text{shape}[i] \\
    \text{fan\_out} &= \text{shape}[1] \times \prod_{i=2}^{n} \text{shape}[i]
    \end{align}
    $$

    Args:
        shape (Sequence[int]): The weight shape, of at least 2 dimensions.

    Returns:
        Tuple[int, int]: ``(fan_in, fan_out)``.

    Raises:
        ShapeError: If the shape has fewer than 2 dimensions.

    Examples:
        >>> compute_fans((784, 10))
        (784, 10)
        >>> compute_fans((16, 3, 3, 3))
        (144, 27)
    """
    shape = tuple(shape)
    if len(shape) < 2:
        raise ShapeError(f"Fans need at least 2 dimensions, got shape {shape}")

    receptive_field_size = prod(shape[2:])
    return shape[0] * receptive_field_size, shape[1] * receptive_field_size


def kaiming_uniform(
    shape: Sequence[int],
    requires_grad: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> Tensor:
    r"""
    Kaiming (He) uniform initialization for layers followed by ReLU.

    Samples are drawn from $U(-\text{bound}, \text{bound})$ with
    $$
    \text{bound} = \sqrt{\frac{6}{\text{fan\_in}}}
    $$
    as described in https://arxiv.org/abs/1502.01852

    Raises:
        ShapeError: If the shape has fewer than 2 dimensions.
    """
    fan_in, _ = compute_fans(shape)
    bound = math.sqrt(6.0 / fan_in)
    return uniform(shape, -bound, bound, requires_grad=requires_grad, rng=rng)


def kaiming_normal(
    shape: Sequence[int],
    requires_grad: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> Tensor:
    r"""
    Kaiming (He) normal initialization, with std $\sqrt{2 / \text{fan\_in}}$.

    Raises:
        ShapeError: If the shape has fewer than 2 dimensions.
    """
    fan_in, _ = compute_fans(shape)
    std = math.sqrt(2.0 / fan_in)
    return normal(shape, 0.0, std, requires_grad=requires_grad, rng=rng)
