import logging
from typing import Union

import numpy as np

from stridegrad.tensor import Tensor

logger = logging.getLogger(__name__)

_REDUCTIONS = ("none", "sum", "mean")


########### Activation Functions ###############
def relu(x: Tensor) -> Tensor:
    """
    Applies the Rectified Linear Unit (ReLU) activation function.

    Args:
        x (Tensor): The input tensor.

    Returns:
        Tensor: The tensor after applying the ReLU function.
    """
    return x.relu()


def sigmoid(x: Tensor) -> Tensor:
    """
    Applies the sigmoid activation function.

    Args:
        x (Tensor): The input tensor.

    Returns:
        Tensor: The tensor after applying the sigmoid function.
    """
    return x.sigmoid()


def softmax(x: Tensor) -> Tensor:
    """
    Applies the softmax activation function over the last axis.

    Args:
        x (Tensor): The input tensor containing logits.

    Returns:
        Tensor: The tensor with softmax probabilities.
    """
    return x.softmax()


def log_softmax(x: Tensor) -> Tensor:
    """Log-probabilities over the last axis, see :func:`stridegrad.tensor.Tensor.log_softmax`."""
    return x.log_softmax()


###################### Loss Functions #####################
def _reduce(loss: Tensor, reduction: str) -> Tensor:
    if reduction not in _REDUCTIONS:
        raise ValueError(
            f"Unknown reduction '{reduction}', expected one of {_REDUCTIONS}"
        )
    if reduction == "none" or loss.ndim == 0:
        return loss

    count = loss.numel
    # Sum collapses a single axis per call
    while loss.ndim > 0:
        loss = loss.sum(0)
    if reduction == "mean":
        loss = loss.div(float(count))
    return loss


def nll_loss(
    log_probs: Tensor,
    y_true: Union[Tensor, np.ndarray],
    reduction: str = "mean",
) -> Tensor:
    r"""
    Negative log-likelihood of one-hot targets.

    $$
    L = -\sum_{c} y_c \log p_c
    $$

    The sum runs over the last (class) axis; any leading (batch) axes are
    reduced according to ``reduction``.

    Args:
        log_probs (Tensor): Log-probabilities, e.g. the output of ``log_softmax``.
        y_true (Union[Tensor, np.ndarray]): One-hot targets with the same shape.
        reduction (str, optional): "none", "sum" or "mean" over the batch. Defaults to "mean".

    Returns:
        Tensor: The computed loss.

    Raises:
        ValueError: If ``reduction`` is unknown.
    """
    if not isinstance(y_true, Tensor):
        y_true = Tensor(y_true, requires_grad=False)
    loss = y_true.mul(log_probs).sum(-1).neg()
    return _reduce(loss, reduction)


def cross_entropy(
    y_pred: Tensor,
    y_true: Union[Tensor, np.ndarray],
    reduction: str = "mean",
) -> Tensor:
    """
    Computes the cross-entropy loss for multi-class classification with logits.

    This function expects $y_{pred}$ to be raw logits and $y_{true}$ to be class
    indices (not one-hot vectors). It is composed from ``log_softmax`` and
    ``nll_loss``, so the graph only holds primitive operations.

    Args:
        y_pred (Tensor): Raw logits of shape (..., num_classes).
        y_true (Union[Tensor, np.ndarray]): True class indices of shape (...).
        reduction (str, optional): "none", "sum" or "mean" over the batch. Defaults to "mean".

    Returns:
        Tensor: The computed cross-entropy loss.
    """
    if isinstance(y_true, Tensor):
        y_true = y_true.data
    indices = np.asarray(y_true).astype(np.int64)
    num_classes = y_pred.shape[-1]
    if indices.shape != y_pred.shape[:-1]:
        raise ValueError(
            f"Targets of shape {indices.shape} don't match logits of shape {y_pred.shape}"
        )
    if np.any(indices < 0) or np.any(indices >= num_classes):
        raise ValueError(f"Class indices must be in [0, {num_classes})")

    one_hot = np.eye(num_classes, dtype=np.float32)[indices]
    return nll_loss(log_softmax(y_pred), one_hot, reduction=reduction)
