import logging
import math
from abc import abstractmethod
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import numpy as np

from stridegrad.errors import (
    AxisError,
    BroadcastError,
    GradientStateError,
    ShapeError,
    UnsupportedOperationError,
)
from stridegrad.logger import timed
from stridegrad.utils import argsort, flatten, infer_shape, normalize_axis, prod
from stridegrad.view import View

logger = logging.getLogger(__name__)

# Flat float32 storage. Movement ops share it between tensors, so it's treated as
# immutable once published; only `Tensor.set` writes into it.
Buffer = np.ndarray

TensorLike = Union["Tensor", np.ndarray, float, int, Sequence[Any]]


class Function:
    """
    Base class for differentiable operations.

    A `Function` instance is the graph node attached to the tensor it produced
    (``tensor.creator``). It records the input tensors and knows how to turn the
    gradient of its output into one gradient per input. The set of operations
    is fixed and lives at the bottom of this module.
    """

    def __init__(self, *tensors: "Tensor"):
        """
        Initialize a `Function` with a set of input tensors.

        Args:
            *tensors (Tensor): The input tensors for this operation.
        """
        self.tensors = tensors

    @abstractmethod
    def forward(self, *tensors: "Tensor", **kwargs: Any) -> "Tensor":
        """
        Perform the forward pass of this operation.

        Receives the input tensors and eagerly computes a result tensor (a fresh
        buffer for math ops, a new view over the same buffer for movement ops).

        Args:
            *tensors (Tensor): The input tensors.
            **kwargs (Any): Additional keyword arguments.

        Returns:
            Tensor: The result. Its graph metadata is filled in by `apply`.

        Raises:
            NotImplementedError: If this method is not implemented in a subclass.
        """
        raise NotImplementedError("Forward pass not implemented for this function")

    @abstractmethod
    def backward(self, grad: "Tensor") -> Tuple[Optional["Tensor"], ...]:
        """
        Perform the backward pass of this operation.

        - "grad" is the gradient of the loss with respect to the *output* of this operation (dL/d[out]).
        - The return value holds the gradient of the loss with respect to each *input*,
          positionally aligned with ``self.tensors``. ``None`` marks an input that
          doesn't need one.

        Only detached values may be used here, so the computation never records
        new graph nodes.

        Args:
            grad (Tensor): The gradient with respect to the **output** of this operation.

        Returns:
            Tuple[Optional[Tensor], ...]: The gradients with respect to the **input(s)**.

        Raises:
            NotImplementedError: If this method is not implemented in a subclass.
        """
        raise NotImplementedError("Backward pass not implemented for this function")

    @classmethod
    def apply(cls, *tensors: "Tensor", **kwargs: Any) -> "Tensor":
        """
        Construct and apply this function to the given tensors.

        This method:
        1) Creates an instance of the function.
        2) Runs its `forward` on the input tensors.
        3) Marks the result as requiring gradients if any input does, and only then
           links it to this function for backprop.

        Args:
            *tensors (Tensor): Input tensors to the operation.
            **kwargs (Any): Additional keyword arguments passed to the forward method.

        Returns:
            Tensor: The resulting tensor after the forward operation.
        """
        func = cls(*tensors)
        out = func.forward(*tensors, **kwargs)

        out.requires_grad = any(inp.requires_grad for inp in tensors)
        if out.requires_grad:
            out.creator = func
        return out


def _as_tensor(value: TensorLike) -> "Tensor":
    if isinstance(value, Tensor):
        return value
    return Tensor(value, requires_grad=False)


def _shape_args(shape: Sequence[Any]) -> Tuple[int, ...]:
    # Accept both t.reshape(2, 3) and t.reshape((2, 3))
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = shape[0]
    return tuple(int(s) for s in shape)


def _map(fn: Callable[..., np.ndarray], *tensors: "Tensor") -> "Tensor":
    """
    Apply a numpy function elementwise over tensors of identical shape.

    The inputs are read in logical order through their views, and the results
    are written into a freshly allocated, zero-filled, contiguous tensor.
    Float semantics follow IEEE 754 (``log(0) == -inf``, ``1 / 0 == inf``).
    """
    out = Tensor.zeros(tensors[0].shape, requires_grad=False)
    with np.errstate(all="ignore"):
        out.buffer[:] = fn(*(t._values() for t in tensors))
    return out


def _format_value(value: float) -> str:
    return np.format_float_positional(np.float32(value), trim="-")


class Tensor:
    """
    A `Tensor` is the core data structure of this autograd engine.

    It pairs a flat float32 `buffer` (possibly shared with other tensors) with a
    `view` describing how logical coordinates map into that buffer, plus the
    gradient bookkeeping: `requires_grad`, the lazily created `grad`, and the
    `creator` function that produced it.
    """

    def __init__(
        self,
        data: TensorLike,
        requires_grad: bool = True,
        strict: bool = False,
    ):
        """
        Initialize a `Tensor` from literal data.

        Args:
            data (Union[Tensor, np.ndarray, float, int, Sequence]): A number, nested
                sequences of numbers, or a numpy array. The values are copied into a
                new float32 buffer and the shape is inferred from the nesting.
            requires_grad (bool, optional): Whether this tensor requires gradients. Defaults to True.
            strict (bool, optional): Reject unevenly nested sequences. Defaults to False.

        Raises:
            ShapeError: If the data is empty, or unevenly nested.

        Examples:
            >>> t = Tensor([[1, 2, 3], [4, 5, 6]])
            >>> t.shape
            (2, 3)
        """
        if isinstance(data, Tensor):
            data = data.numpy()

        shape = infer_shape(data, strict=strict)
        if isinstance(data, np.ndarray):
            values = np.array(data, dtype=np.float32).reshape(-1)
        else:
            values = np.array(flatten(data), dtype=np.float32)

        if values.size != prod(shape):
            raise ShapeError(
                f"Uneven nested sequence: inferred shape {shape} but got {values.size} values"
            )

        self.buffer: Buffer = values
        self.view = View(shape)
        self._grad: Optional["Tensor"] = None  # Lazily initialized
        self.creator: Optional[Function] = None
        self.requires_grad = requires_grad

    @classmethod
    def from_buffer(
        cls, buffer: Buffer, view: View, requires_grad: bool = False
    ) -> "Tensor":
        """
        Wrap an existing buffer without copying it.

        The new tensor aliases ``buffer``: writes through `set` on any tensor
        sharing it are visible to all of them.

        Args:
            buffer (np.ndarray): A 1-D float32 array.
            view (View): How the tensor's coordinates map into ``buffer``.
            requires_grad (bool, optional): Whether this tensor requires gradients.
                Defaults to False.

        Returns:
            Tensor: The new tensor.

        Raises:
            ShapeError: If the buffer is not 1-D float32, or is too short for the view.
        """
        if not isinstance(buffer, np.ndarray) or buffer.ndim != 1:
            raise ShapeError("Tensor buffers must be 1-D numpy arrays")
        if buffer.dtype != np.float32:
            raise ShapeError(f"Tensor buffers must be float32, got {buffer.dtype}")
        last = sum((s - 1) * st for s, st in zip(view.shape, view.strides))
        if last >= buffer.size:
            raise ShapeError(
                f"Buffer of size {buffer.size} is too small for {view}"
            )

        tensor = cls.__new__(cls)
        tensor.buffer = buffer
        tensor.view = view
        tensor._grad = None
        tensor.creator = None
        tensor.requires_grad = requires_grad
        return tensor

    @staticmethod
    def full(
        shape: Sequence[int], fill_value: float, requires_grad: bool = True
    ) -> "Tensor":
        """
        Create a tensor filled with one value.

        Args:
            shape (Sequence[int]): The shape of the tensor.
            fill_value (float): The value of every element.
            requires_grad (bool, optional): Whether this tensor requires gradients. Defaults to True.

        Returns:
            Tensor: The filled tensor.
        """
        view = View(shape)
        buffer = np.full(view.numel, fill_value, dtype=np.float32)
        return Tensor.from_buffer(buffer, view, requires_grad=requires_grad)

    @staticmethod
    def zeros(shape: Sequence[int], requires_grad: bool = True) -> "Tensor":
        """Create a tensor of zeros."""
        view = View(shape)
        return Tensor.from_buffer(
            np.zeros(view.numel, dtype=np.float32), view, requires_grad=requires_grad
        )

    @staticmethod
    def ones(shape: Sequence[int], requires_grad: bool = True) -> "Tensor":
        """Create a tensor of ones."""
        return Tensor.full(shape, 1.0, requires_grad=requires_grad)

    def zeros_like(self, requires_grad: bool = True) -> "Tensor":
        return Tensor.zeros(self.shape, requires_grad=requires_grad)

    def ones_like(self, requires_grad: bool = True) -> "Tensor":
        return Tensor.ones(self.shape, requires_grad=requires_grad)

    ########### Metadata and element access ###########
    @property
    def shape(self) -> Tuple[int, ...]:
        return self.view.shape

    @property
    def ndim(self) -> int:
        return self.view.ndim

    @property
    def numel(self) -> int:
        return self.view.numel

    @property
    def grad(self) -> Optional["Tensor"]:
        """
        The gradient accumulated by `backward`, or None before the first call.

        Assign None to clear it between optimization steps.
        """
        return self._grad

    @grad.setter
    def grad(self, value: Optional[TensorLike]) -> None:
        if value is None:
            self._grad = None
            return
        value = _as_tensor(value)
        if value.shape != self.shape:
            raise ShapeError(
                f"Gradient shape {value.shape} doesn't match tensor shape {self.shape}"
            )
        self._grad = value.detach()

    @property
    def data(self) -> np.ndarray:
        """
        The logical contents as a read-only numpy array.

        Built with ``as_strided`` over the shared buffer, so no data is copied and
        broadcast (zero-stride) axes repeat the same cells.

        Returns:
            np.ndarray: Array of shape `shape` aliasing `buffer`.
        """
        step = self.buffer.strides[0]
        return np.lib.stride_tricks.as_strided(
            self.buffer,
            shape=self.shape,
            strides=tuple(st * step for st in self.view.strides),
            writeable=False,
        )

    def numpy(self) -> np.ndarray:
        """Return a writable copy of the logical contents."""
        return np.array(self.data)

    def _values(self) -> np.ndarray:
        # Logical-order copy of the elements, read through the view's odometer
        if self.view.contiguous and self.buffer.size == self.numel:
            return self.buffer.copy()
        return self.buffer[self.view.offsets()]

    def _materialize(self) -> "Tensor":
        # Contiguous, untracked copy. Only used on gradients inside backward.
        if self.view.contiguous and self.buffer.size == self.numel:
            return self
        return Tensor.from_buffer(self._values(), View(self.shape))

    def indices(self) -> Iterator[Tuple[int, ...]]:
        """Enumerate every coordinate of this tensor in row-major order."""
        return self.view.indices()

    def item(self) -> float:
        """
        Extract the value of a single-element tensor.

        Raises:
            ShapeError: If the tensor holds more than one element.
        """
        if self.numel != 1:
            raise ShapeError(
                f"item() requires a single-element tensor, got shape {self.shape}"
            )
        return float(self.buffer[self.view.offset((0,) * self.ndim)])

    def _offset_of(self, indices: Union[int, Sequence[int]], method: str) -> int:
        if isinstance(indices, (int, np.integer)):
            indices = (indices,)
        indices = tuple(int(i) for i in indices)
        if len(indices) != self.ndim:
            raise UnsupportedOperationError(
                f"[Tensor.{method}] sub-tensor indexing is not supported, "
                f"expected {self.ndim} indices but got {len(indices)}"
            )

        normalized = []
        for axis, (index, size) in enumerate(zip(indices, self.shape)):
            if not -size <= index < size:
                raise AxisError(
                    f"[Tensor.{method}] index {index} is out of range for axis {axis} with size {size}"
                )
            normalized.append(index + size if index < 0 else index)
        return self.view.offset(normalized)

    def get(self, indices: Union[int, Sequence[int]]) -> float:
        """
        Read one element.

        Args:
            indices (Union[int, Sequence[int]]): One index per axis.

        Returns:
            float: The element value.

        Raises:
            UnsupportedOperationError: If fewer or more indices than axes are given.
            AxisError: If an index is out of range.
        """
        return float(self.buffer[self._offset_of(indices, "get")])

    def set(self, indices: Union[int, Sequence[int]], value: float) -> None:
        """
        Write one element into the underlying buffer.

        The buffer may be shared with other tensors (e.g. results of reshape,
        permute or expand), and the write is visible through all of them.

        Args:
            indices (Union[int, Sequence[int]]): One index per axis.
            value (float): The new value.

        Raises:
            UnsupportedOperationError: If fewer or more indices than axes are given.
            AxisError: If an index is out of range.
        """
        self.buffer[self._offset_of(indices, "set")] = value

    ########### Movement ops ###########
    def reshape(self, *shape: Union[int, Sequence[int]]) -> "Tensor":
        """
        Return a tensor with the same buffer but a different shape.

        Args:
            *shape (int): The desired new shape, as ints or one tuple. One entry may be -1.

        Returns:
            Tensor: ``self`` if the shape is unchanged, else a new tensor sharing the buffer.

        Raises:
            ShapeError: If the element count differs.
            UnsupportedOperationError: If this tensor's view is not contiguous.
        """
        view = self.view.reshape(_shape_args(shape))
        if view is self.view:
            return self
        return Reshape.apply(self, view=view)

    def permute(self, *order: Union[int, Sequence[int]]) -> "Tensor":
        """
        Reorder (permute) the dimensions of this tensor.

        Args:
            *order (int): A permutation of ``range(ndim)``, as ints or one tuple.

        Returns:
            Tensor: ``self`` for the identity order, else a new tensor sharing the buffer.

        Example:
            >>> tensor = Tensor([[1, 2], [3, 4]])
            >>> print(tensor.permute(1, 0).render())
            [[1, 3],
             [2, 4]]
        """
        order = _shape_args(order)
        view = self.view.permute(order)
        if view is self.view:
            return self
        return Permute.apply(self, view=view, order=order)

    def expand(self, *shape: Union[int, Sequence[int]]) -> "Tensor":
        """
        Broadcast size-1 axes to a new shape without copying data.

        Args:
            *shape (int): The target shape, of the same rank as this tensor.

        Returns:
            Tensor: ``self`` if the shape is unchanged, else a new tensor sharing the buffer.

        Raises:
            ShapeError: If the ranks differ.
            BroadcastError: If a non-1 axis would have to change size.

        Example:
            >>> tensor = Tensor([[1, 2, 3]])
            >>> print(tensor.expand(2, 3).render())
            [[1, 2, 3],
             [1, 2, 3]]
        """
        view = self.view.expand(_shape_args(shape))
        if view is self.view:
            return self
        return Expand.apply(self, view=view)

    def transpose(self, dim0: int = 1, dim1: int = 0) -> "Tensor":
        """
        Swap two dimensions of this tensor.

        Args:
            dim0 (int, optional): First dimension to swap, may be negative. Defaults to 1.
            dim1 (int, optional): Second dimension to swap, may be negative. Defaults to 0.

        Returns:
            Tensor: A tensor sharing the buffer with the two axes swapped.

        Raises:
            AxisError: If a dimension is out of range.
        """
        dim0 = normalize_axis(dim0, self.ndim)
        dim1 = normalize_axis(dim1, self.ndim)
        order = list(range(self.ndim))
        order[dim0], order[dim1] = order[dim1], order[dim0]
        return self.permute(order)

    @property
    def T(self) -> "Tensor":
        """Swap the first two axes, see `transpose`."""
        return self.transpose()

    @staticmethod
    def _broadcasted(a: "Tensor", b: "Tensor") -> Tuple["Tensor", "Tensor"]:
        """
        Bring two tensors to a common shape without copying.

        Shapes are right-aligned, the shorter one is left-padded with size-1 axes,
        and each axis takes the larger of the two sizes. Both tensors are then
        reshaped to the aligned rank and expanded to the common shape.

        Raises:
            BroadcastError: If some axis sizes differ and neither is 1.
        """
        ndim = max(a.ndim, b.ndim)
        a_shape = (1,) * (ndim - a.ndim) + a.shape
        b_shape = (1,) * (ndim - b.ndim) + b.shape

        if not all(x == y or x == 1 or y == 1 for x, y in zip(a_shape, b_shape)):
            raise BroadcastError(a.shape, b.shape)

        shape = tuple(max(x, y) for x, y in zip(a_shape, b_shape))
        return a.reshape(a_shape).expand(shape), b.reshape(b_shape).expand(shape)

    ########### Binary ops ###########
    @timed()
    def add(self, other: TensorLike) -> "Tensor":
        """
        Element-wise addition with broadcasting.

        Args:
            other (Union[Tensor, float, int]): The tensor or scalar to add.

        Returns:
            Tensor: The result of addition.
        """
        a, b = Tensor._broadcasted(self, _as_tensor(other))
        return Add.apply(a, b)

    @timed()
    def sub(self, other: TensorLike) -> "Tensor":
        """Element-wise subtraction with broadcasting."""
        a, b = Tensor._broadcasted(self, _as_tensor(other))
        return Sub.apply(a, b)

    @timed()
    def mul(self, other: TensorLike) -> "Tensor":
        r"""
        Element-wise multiplication with broadcasting.
        $$
        z = x \cdot y
        $$

        Args:
            other (Union[Tensor, float, int]): The tensor or scalar to multiply with.

        Returns:
            Tensor: The result of multiplication.
        """
        a, b = Tensor._broadcasted(self, _as_tensor(other))
        return Mul.apply(a, b)

    @timed()
    def div(self, other: TensorLike) -> "Tensor":
        """Element-wise division, computed as multiplication by the reciprocal."""
        return self.mul(_as_tensor(other).reciprocal())

    @timed()
    def dot(self, other: TensorLike) -> "Tensor":
        """
        Contract the last axis of this tensor with the second-to-last axis of ``other``
        (its only axis if it is 1-D).

        This is not a primitive: a singleton axis is inserted when both operands
        have rank >= 2, the contraction axis of ``other`` is transposed to the end,
        and the broadcast product is summed over the last axis. The graph therefore
        records reshape, permute, expand, mul and sum nodes.

        Args:
            other (Union[Tensor, Sequence]): The right operand.

        Returns:
            Tensor: The product, e.g. shape (2, 4) for (2, 3) and (3, 4) operands.

        Raises:
            ShapeError: If an operand is 0-d or the contraction sizes differ.
            UnsupportedOperationError: If an operand has to be reshaped but is a
                non-contiguous view, such as a transposed matrix.
        """
        a, b = self, _as_tensor(other)
        if a.ndim == 0 or b.ndim == 0:
            raise ShapeError("dot is not defined for 0-d tensors")

        a_axis = -1
        b_axis = -min(b.ndim, 2)
        if a.shape[a_axis] != b.shape[b_axis]:
            raise ShapeError(f"Invalid shapes for dot: {a.shape} and {b.shape}")

        filler = () if a.ndim < 2 or b.ndim < 2 else (1,)
        a_shape = a.shape[:a_axis] + filler + a.shape[a_axis:]
        b_shape = b.shape[:b_axis] + filler + b.shape[b_axis:]
        # Pad both to a common rank before the transpose, which leaves `b` non-contiguous
        ndim = max(len(a_shape), len(b_shape))
        a = a.reshape((1,) * (ndim - len(a_shape)) + a_shape)
        b = b.reshape((1,) * (ndim - len(b_shape)) + b_shape).transpose(-1, b_axis)
        return a.mul(b).sum(-1)

    ########### Unary ops ###########
    def neg(self) -> "Tensor":
        return Neg.apply(self)

    def reciprocal(self) -> "Tensor":
        return Reciprocal.apply(self)

    def log(self) -> "Tensor":
        """Element-wise natural logarithm."""
        return Log.apply(self)

    def exp(self) -> "Tensor":
        """Element-wise exponential."""
        return Exp.apply(self)

    def sqrt(self) -> "Tensor":
        """Element-wise square root."""
        return Sqrt.apply(self)

    def sin(self) -> "Tensor":
        return Sin.apply(self)

    def cos(self) -> "Tensor":
        """Element-wise cosine, computed as ``sin(pi / 2 - x)``."""
        return Tensor(math.pi / 2, requires_grad=False).sub(self).sin()

    def sign(self) -> "Tensor":
        """Element-wise sign: -1, 0 or 1. Its gradient is always zero."""
        return Sign.apply(self)

    def relu(self) -> "Tensor":
        """Element-wise ``x if x > 0 else 0``."""
        return ReLU.apply(self)

    def sigmoid(self) -> "Tensor":
        r"""
        Element-wise logistic function, computed as
        $$
        \sigma(x) = \frac{1}{1 + e^{-x}}
        $$
        """
        return self.neg().exp().add(1.0).reciprocal()

    ########### Reduction ops ###########
    @timed()
    def sum(self, axis: int, keepdims: bool = False) -> "Tensor":
        """
        Sum over exactly one axis.

        Args:
            axis (int): The axis to reduce; negative values count from the end.
            keepdims (bool, optional): Keep the reduced axis with size 1. Defaults to False.

        Returns:
            Tensor: The reduced tensor.

        Raises:
            AxisError: If ``axis`` is out of range.

        Examples:
            - shape (2, 4, 3), axis -1, keepdims False → result shape (2, 4)
            - shape (2, 4, 3), axis -1, keepdims True  → result shape (2, 4, 1)
        """
        axis = normalize_axis(axis, self.ndim)
        return Sum.apply(self, axis=axis, keepdims=keepdims)

    def _softmax_parts(self) -> Tuple["Tensor", "Tensor", "Tensor"]:
        # Shifting by the row max doesn't change softmax, and the shift is a
        # constant so it doesn't change the gradient either.
        row_max = Tensor(self.data.max(axis=-1, keepdims=True), requires_grad=False)
        shifted = self.sub(row_max)
        e = shifted.exp()
        return shifted, e, e.sum(-1, keepdims=True)

    @timed()
    def softmax(self) -> "Tensor":
        """
        Softmax over the last axis, composed from exp, sum and div.

        Returns:
            Tensor: Probabilities that sum to 1 along the last axis.
        """
        _, e, total = self._softmax_parts()
        return e.div(total)

    @timed()
    def log_softmax(self) -> "Tensor":
        """Log of the softmax over the last axis, composed from exp, sum, log and sub."""
        shifted, _, total = self._softmax_parts()
        return shifted.sub(total.log())

    ########### Autograd ###########
    def detach(self) -> "Tensor":
        """
        Detach this tensor from the computational graph.

        Returns:
            Tensor: A tensor sharing this tensor's buffer and view that does not track gradients.
        """
        return Tensor.from_buffer(self.buffer, self.view, requires_grad=False)

    def _topological_sort(self) -> List["Tensor"]:
        """
        Post-order of the graph reachable from this tensor.

        Every tensor appears after all of its inputs and exactly once. Visited
        tensors are tracked by identity: two tensors with equal data are still
        different graph nodes.
        """
        topological_sorted_tensors: List[Tensor] = []
        visited = set()
        stack = [(self, False)]  # node, has_visited_children flag

        while stack:
            node, has_visited_children = stack.pop()
            if id(node) in visited:
                continue
            if has_visited_children:
                visited.add(id(node))
                topological_sorted_tensors.append(node)
                continue

            stack.append((node, True))
            if node.creator is not None:
                for parent in node.creator.tensors:
                    if parent.requires_grad and id(parent) not in visited:
                        stack.append((parent, False))

        return topological_sorted_tensors

    @timed()
    def backward(self, grad: Optional[TensorLike] = None) -> None:
        """
        Compute gradients for all upstream tensors in the graph via backpropagation.

        1. If `grad` is None, the gradient is a tensor of ones (d(self)/d(self) = 1).
        2. The graph is collected in post-order, so walking it backwards visits
           every tensor before the tensors it was computed from.
        3. Gradients flow through an accumulation map keyed by tensor identity,
           seeded with `grad`. Each tensor's function turns its accumulated
           gradient into gradients for its inputs, which are summed into the map.
        4. Finally every collected tensor adds its map entry into `.grad`, so
           calling `backward()` again keeps accumulating.

        Tensors with ``requires_grad=False`` never receive a gradient. The graph is
        left intact.

        Args:
            grad (Optional[Union[Tensor, np.ndarray, float, int, Sequence]]): The gradient
                with respect to this tensor. Must have exactly this tensor's shape.

        Raises:
            GradientStateError: If this tensor does not require gradients.
            ShapeError: If ``grad`` doesn't match this tensor's shape.
        """
        if not self.requires_grad:
            raise GradientStateError(
                "backward() called on a tensor that does not require grad"
            )

        if grad is None:
            grad = self.ones_like(requires_grad=False)
        else:
            grad = _as_tensor(grad).detach()
            if grad.shape != self.shape:
                raise ShapeError(
                    f"Gradient shape {grad.shape} doesn't match tensor shape {self.shape}"
                )

        topological_sorted_tensors = self._topological_sort()
        grads: Dict[int, Tensor] = {id(self): grad}

        for tensor in reversed(topological_sorted_tensors):
            if tensor.creator is None:
                continue
            input_grads = tensor.creator.backward(grads[id(tensor)])
            for input_tensor, g in zip(tensor.creator.tensors, input_grads):
                if g is None or not input_tensor.requires_grad:
                    continue
                key = id(input_tensor)
                grads[key] = g if key not in grads else grads[key].add(g)

        for tensor in topological_sorted_tensors:
            tensor._accumulate_grad(grads[id(tensor)])

        logger.debug(
            f"backward: propagated through {len(topological_sorted_tensors)} tensors"
        )

    def _accumulate_grad(self, grad: "Tensor") -> None:
        """
        Lazily initialize and accumulate gradients.

        The first contribution is copied into a buffer owned by this gradient,
        later ones are summed into a new tensor.
        """
        if self._grad is None:
            self._grad = Tensor.from_buffer(grad._values(), View(self.shape))
        else:
            self._grad = self._grad.add(grad)

    ########### Rendering ###########
    def render(self) -> str:
        """
        Nested-bracket rendering of the elements in row-major order.

        Returns:
            str: E.g. ``[[1, 2],\\n [3, 4]]`` for a 2x2 tensor.
        """
        if self.ndim == 0:
            return _format_value(self.item())

        def render_chunk(offset: int, axis: int, pos: int) -> str:
            step = self.view.strides[axis]
            size = self.shape[axis]
            if axis == self.ndim - 1:
                joined = ", ".join(
                    _format_value(self.buffer[offset + i * step]) for i in range(size)
                )
            else:
                joined = ",\n".join(
                    render_chunk(offset + i * step, axis + 1, i) for i in range(size)
                )
            indent = " " * axis if pos > 0 else ""
            return f"{indent}[{joined}]"

        return render_chunk(0, 0, 0)

    def __repr__(self) -> str:
        return f"Tensor({self.render()}, shape={self.shape}, requires_grad={self.requires_grad})"

    # Operator wrappers
    __array_ufunc__ = None  # make numpy defer to the reflected operators below

    def __add__(self, other: TensorLike) -> "Tensor":
        return self.add(other)

    def __radd__(self, other: TensorLike) -> "Tensor":
        return _as_tensor(other).add(self)

    def __sub__(self, other: TensorLike) -> "Tensor":
        return self.sub(other)

    def __rsub__(self, other: TensorLike) -> "Tensor":
        return _as_tensor(other).sub(self)

    def __mul__(self, other: TensorLike) -> "Tensor":
        return self.mul(other)

    def __rmul__(self, other: TensorLike) -> "Tensor":
        return _as_tensor(other).mul(self)

    def __truediv__(self, other: TensorLike) -> "Tensor":
        return self.div(other)

    def __rtruediv__(self, other: TensorLike) -> "Tensor":
        return _as_tensor(other).div(self)

    def __matmul__(self, other: TensorLike) -> "Tensor":
        return self.dot(other)

    def __neg__(self) -> "Tensor":
        return self.neg()


"""
Binary Ops
"""


class Add(Function):
    """Element-wise addition of two tensors of the same (broadcast) shape.
    See :func:`stridegrad.tensor.Tensor.add` function
    """

    def forward(self, x: Tensor, y: Tensor) -> Tensor:
        return _map(np.add, x, y)

    def backward(self, grad: Tensor) -> Tuple[Optional[Tensor], Optional[Tensor]]:
        """Addition is linear, so both inputs receive the incoming gradient."""
        grad_x = grad if self.tensors[0].requires_grad else None
        grad_y = grad if self.tensors[1].requires_grad else None
        return grad_x, grad_y


class Sub(Function):
    """Element-wise subtraction.
    See :func:`stridegrad.tensor.Tensor.sub` function
    """

    def forward(self, x: Tensor, y: Tensor) -> Tensor:
        return _map(np.subtract, x, y)

    def backward(self, grad: Tensor) -> Tuple[Optional[Tensor], Optional[Tensor]]:
        grad_x = grad if self.tensors[0].requires_grad else None
        grad_y = grad.neg() if self.tensors[1].requires_grad else None
        return grad_x, grad_y


class Mul(Function):
    """Element-wise multiplication.
    See :func:`stridegrad.tensor.Tensor.mul` function
    """

    def forward(self, x: Tensor, y: Tensor) -> Tensor:
        return _map(np.multiply, x, y)

    def backward(self, grad: Tensor) -> Tuple[Optional[Tensor], Optional[Tensor]]:
        r"""Compute the gradient for the multiplication operation.

        $$
        \frac{\partial z}{\partial x} = y, \quad \frac{\partial z}{\partial y} = x
        $$

        The operands are detached so this doesn't re-enter the graph.
        """
        x, y = self.tensors
        grad_x = y.detach().mul(grad) if x.requires_grad else None
        grad_y = x.detach().mul(grad) if y.requires_grad else None
        return grad_x, grad_y


"""
Unary Ops
"""


class Neg(Function):
    def forward(self, x: Tensor) -> Tensor:
        return _map(np.negative, x)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        return (grad.neg(),)


class Reciprocal(Function):
    """Element-wise ``1 / x``. Keeps its result for the backward pass."""

    def forward(self, x: Tensor) -> Tensor:
        out = _map(np.reciprocal, x)
        self.result = out.detach()
        return out

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        r"""
        $$
        \frac{d}{dx}\frac{1}{x} = -\frac{1}{x^2} = -r \cdot r
        $$
        """
        return (grad.neg().mul(self.result).mul(self.result),)


class Log(Function):
    def forward(self, x: Tensor) -> Tensor:
        return _map(np.log, x)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        return (self.tensors[0].detach().reciprocal().mul(grad),)


class Exp(Function):
    """Element-wise exponential. Keeps its result, which is also its derivative."""

    def forward(self, x: Tensor) -> Tensor:
        out = _map(np.exp, x)
        self.result = out.detach()
        return out

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        return (self.result.mul(grad),)


class Sqrt(Function):
    """Element-wise square root. Keeps its result for the backward pass."""

    def forward(self, x: Tensor) -> Tensor:
        out = _map(np.sqrt, x)
        self.result = out.detach()
        return out

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        r"""
        $$
        \frac{d}{dx}\sqrt{x} = \frac{1}{2\sqrt{x}}
        $$
        """
        return (self.result.mul(2.0).reciprocal().mul(grad),)


class Sin(Function):
    def forward(self, x: Tensor) -> Tensor:
        return _map(np.sin, x)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        return (self.tensors[0].detach().cos().mul(grad),)


class Sign(Function):
    """Element-wise sign with ``sign(0) == 0``. Not differentiable, so its gradient is zero."""

    def forward(self, x: Tensor) -> Tensor:
        return _map(np.sign, x)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        return (grad.zeros_like(requires_grad=False),)


class ReLU(Function):
    """Rectified linear unit, ``x if x > 0 else 0``.
    See :func:`stridegrad.tensor.Tensor.relu` function
    """

    def forward(self, x: Tensor) -> Tensor:
        return _map(lambda v: np.where(v > 0, v, np.float32(0.0)), x)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        # relu(sign(x)) is 1 where x > 0 and 0 elsewhere
        return (self.tensors[0].detach().sign().relu().mul(grad),)


"""
Reduction Ops
"""


class Sum(Function):
    """Sum over one axis.
    See :func:`stridegrad.tensor.Tensor.sum` function
    """

    def forward(self, x: Tensor, axis: int, keepdims: bool = False) -> Tensor:
        self.axis = axis
        self.keepdims = keepdims
        values = x._values().reshape(x.shape)
        # Accumulate in float64 and round once, like a scalar loop over doubles would
        out = values.sum(axis=axis, keepdims=keepdims, dtype=np.float64)
        out = np.asarray(out, dtype=np.float32)
        return Tensor.from_buffer(out.reshape(-1), View(out.shape))

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        """
        Every input element contributed once, so the gradient is the incoming one
        with the reduced axis put back (as size 1) and expanded to the input shape.
        """
        shape = list(grad.shape)
        if not self.keepdims:
            shape.insert(self.axis, 1)
        return (grad._materialize().reshape(shape).expand(self.tensors[0].shape),)


"""
Movement Ops
"""


class Reshape(Function):
    """Reinterpret the buffer under a new contiguous shape.
    See :func:`stridegrad.tensor.Tensor.reshape` function
    """

    def forward(self, x: Tensor, view: View) -> Tensor:
        return Tensor.from_buffer(x.buffer, view)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        return (grad._materialize().reshape(self.tensors[0].shape),)


class Permute(Function):
    """Reorder the dimensions of a tensor.
    See :func:`stridegrad.tensor.Tensor.permute` function
    """

    def forward(self, x: Tensor, view: View, order: Sequence[int]) -> Tensor:
        self.order = tuple(order)
        return Tensor.from_buffer(x.buffer, view)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        """The gradient is permuted back with the inverse permutation."""
        return (grad.permute(argsort(self.order)),)


class Expand(Function):
    """Broadcast size-1 axes without copying.
    See :func:`stridegrad.tensor.Tensor.expand` function
    """

    def forward(self, x: Tensor, view: View) -> Tensor:
        return Tensor.from_buffer(x.buffer, view)

    def backward(self, grad: Tensor) -> Tuple[Tensor]:
        """
        Every source element was read once per position of the expanded axis, so
        the gradient is summed back over that axis.

        Raises:
            UnsupportedOperationError: If more than one axis was expanded at once,
                since `sum` reduces a single axis per call.
        """
        x_shape = self.tensors[0].shape
        axes = [
            i
            for i, (s, g) in enumerate(zip(x_shape, grad.shape))
            if s == 1 and g != 1
        ]
        if len(axes) > 1:
            raise UnsupportedOperationError(
                f"Can't backprop through an expand of more than one axis at a time, "
                f"expanding {x_shape} -> {grad.shape}"
            )
        if not axes:
            return (grad,)
        return (grad.sum(axes[0], keepdims=True),)
