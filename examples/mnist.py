import os
from typing import Dict, Tuple

import numpy as np
from tqdm import tqdm

from stridegrad import functional
from stridegrad.logger import setup_logger
from stridegrad.optim import SGD
from stridegrad.tensor import Tensor
from stridegrad.tools.config_schema import TrainingConfig
from stridegrad.tools.data import SimpleDataLoader, download_mnist, load_mnist, one_hot
from stridegrad.tools.metrics import accuracy, argmax_predictions

logger = setup_logger(__name__)

NUM_CLASSES = 10
IMAGE_SIZE = 28 * 28


def build_model() -> Dict[str, Tensor]:
    """Single-layer soft-max classifier, starting from all-zero weights."""
    return {
        "w1": Tensor.zeros((IMAGE_SIZE, NUM_CLASSES)),
        "b1": Tensor.zeros((NUM_CLASSES,)),
    }


def forward(params: Dict[str, Tensor], x: Tensor) -> Tensor:
    # log-probabilities of shape (batch_size, NUM_CLASSES)
    return x.dot(params["w1"]).add(params["b1"]).log_softmax()


def evaluate(params: Dict[str, Tensor], X: np.ndarray, y: np.ndarray) -> float:
    x = Tensor(X, requires_grad=False)
    return accuracy(argmax_predictions(forward(params, x).data), y)


def load_splits(config: TrainingConfig) -> Tuple[np.ndarray, ...]:
    paths = download_mnist(config.dataset_dir)
    X_train, y_train = load_mnist(
        paths["train_images"], paths["train_labels"], max_rows=config.train_size
    )
    X_test, y_test = load_mnist(
        paths["test_images"], paths["test_labels"], max_rows=config.test_size
    )
    return X_train, y_train, X_test, y_test


def train_mnist(config: TrainingConfig) -> Dict[str, Tensor]:
    if config.seed is not None:
        np.random.seed(config.seed)

    X_train, y_train, X_test, y_test = load_splits(config)
    logger.info(f"X_train shape: {X_train.shape}, X_test shape: {X_test.shape}")

    params = build_model()
    optimizer = SGD(params, lr=config.learning_rate)
    train_data_loader = SimpleDataLoader(
        X_train, y_train, batch_size=config.batch_size, shuffle=config.shuffle
    )

    for epoch in tqdm(range(config.total_epochs), desc="Training", leave=False):
        train_data_loader.on_epoch_start()
        total_loss = 0.0
        for batch_X, batch_y in tqdm(
            train_data_loader, desc="Training Batches", leave=False
        ):
            optimizer.zero_grad()
            x = Tensor(batch_X, requires_grad=False)
            loss = functional.nll_loss(
                forward(params, x), one_hot(batch_y, NUM_CLASSES)
            )
            loss.backward()
            optimizer.step()
            total_loss += loss.item()

        logger.info(
            f"Epoch {epoch + 1}/{config.total_epochs} | "
            f"loss: {total_loss / len(train_data_loader):.4f} | "
            f"train acc: {evaluate(params, X_train, y_train):.3f} | "
            f"test acc: {evaluate(params, X_test, y_test):.3f}"
        )
    return params


if __name__ == "__main__":
    train_mnist(
        TrainingConfig(
            total_epochs=int(os.getenv("EPOCHS", 10)),
            learning_rate=0.1,
            train_size=2000,
            test_size=200,
        )
    )
