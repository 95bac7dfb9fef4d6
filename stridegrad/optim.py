import logging
from typing import Any, Callable, Dict

from stridegrad.errors import UnsupportedOperationError
from stridegrad.tensor import Tensor

logger = logging.getLogger(__name__)


class Optimizer:
    """
    Base Optimizer Class.

    Usage Example:

    .. code-block:: python

        optimizer = SGD({"w1": w1, "b1": b1}, lr=0.1)
        for x, target in dataset:
            optimizer.zero_grad()
            loss = nll_loss(x.dot(w1).add(b1).log_softmax(), target)
            loss.backward()
            optimizer.step()
    """

    def __init__(
        self, model_parameters: Dict[str, Tensor], lr: float, **kwargs: Any
    ) -> None:
        """
        Args:
            model_parameters (Dict[str, Tensor]): Named parameters (leaf tensors).
            lr (float): The learning rate.
            **kwargs: Additional hyperparameters.
        """
        self.model_parameters = model_parameters
        self._hyperparams: Dict[str, Any] = {"lr": lr, **kwargs}
        self.timestep = 0

    @property
    def lr(self) -> float:
        return self._hyperparams["lr"]

    @lr.setter
    def lr(self, value: float) -> None:
        self._hyperparams["lr"] = value

    def _recursive_param_op(
        self, params: Any, update_fn: Callable[[Tensor], None]
    ) -> None:
        """
        Recursively apply an update function to parameters.

        Traverses nested dictionaries, lists, or tuples of parameters and applies
        the update function to each `Tensor`.
        """
        if isinstance(params, dict):
            for _, v in params.items():
                self._recursive_param_op(v, update_fn)
        elif isinstance(params, (list, tuple)):
            for p in params:
                self._recursive_param_op(p, update_fn)
        elif isinstance(params, Tensor):
            update_fn(params)

    def zero_grad(self) -> None:
        """
        Clear the gradients of all optimized tensors.
        """

        def update_fn(x: Tensor) -> None:
            x.grad = None

        self._recursive_param_op(self.model_parameters, update_fn)

    def step(self) -> None:
        self.timestep += 1


class SGD(Optimizer):
    """
    Stochastic Gradient Descent (SGD) Optimizer.

    Parameters are updated in place, ``p <- p - lr * p.grad``, so they keep their
    identity (and ``requires_grad``) across steps.
    """

    def step(self) -> None:
        """
        Perform a single optimization step.

        Parameters without a gradient (not reached by the last ``backward()``) are skipped.

        Raises:
            UnsupportedOperationError: If a parameter is a non-contiguous view, since
                writing it in place would also change the tensor it is a view of.
        """
        super().step()

        def update_fn(param: Tensor) -> None:
            if param.grad is None:
                return
            if not param.view.contiguous or param.buffer.size != param.numel:
                raise UnsupportedOperationError(
                    f"SGD can only update contiguous parameters, got {param.view}"
                )
            param.buffer[:] = (param.data - self.lr * param.grad.data).reshape(-1)

        self._recursive_param_op(self.model_parameters, update_fn)
        logger.debug(f"SGD step {self.timestep} with lr={self.lr}")
