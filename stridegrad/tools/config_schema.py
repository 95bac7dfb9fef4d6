"""
This module contains the schema for the configs of the example training scripts.
It's optional to use, but keeps the knobs of a run in one place.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class TrainingConfig:
    """
    Configuration for training a classifier with plain SGD.
    """

    total_epochs: int = 10
    learning_rate: float = 0.1
    # Number of samples taken from the start of each split
    train_size: Optional[int] = 2000
    test_size: Optional[int] = 200
    # 1 reproduces per-sample updates
    batch_size: int = 1
    shuffle: bool = False
    dataset_dir: str = "datasets/mnist"
    seed: Optional[int] = 1337

    def __post_init__(self) -> None:
        if self.total_epochs <= 0:
            raise ValueError("total_epochs must be positive")
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
