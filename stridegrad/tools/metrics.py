"""
Metrics for evaluating model predictions.
"""

import numpy as np


def accuracy(y_pred, y_true):
    """Computes the accuracy of predictions.

    This function calculates the proportion of correctly predicted labels.

    Args:
        y_pred (array-like): Predicted labels.
        y_true (array-like): Ground-truth labels.

    Returns:
        float: The accuracy, defined as the fraction of predictions that match the labels.

    Raises:
        ValueError: If the lengths of y_pred and y_true differ, or are zero.

    Example:
        >>> y_pred = np.array([1, 0, 1, 1])
        >>> y_true = np.array([1, 1, 1, 0])
        >>> accuracy(y_pred, y_true)
        0.5
    """
    y_pred = np.asarray(y_pred)
    y_true = np.asarray(y_true)
    if len(y_true) != len(y_pred) or len(y_true) == 0:
        raise ValueError(
            f"Expected equal, non-zero lengths, got {len(y_pred)} and {len(y_true)}"
        )
    return float(np.sum(y_pred == y_true) / len(y_true))


def argmax_predictions(scores):
    """Predicted class per row of a (N, num_classes) score array, or of a single score vector."""
    return np.argmax(np.asarray(scores), axis=-1)
