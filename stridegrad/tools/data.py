import gzip
import logging
import os
from typing import Iterator, Optional, Tuple

import numpy as np
import requests

logger = logging.getLogger(__name__)

MNIST_URL = "https://storage.googleapis.com/cvdf-datasets/mnist/"
MNIST_FILES = {
    "train_images": "train-images-idx3-ubyte.gz",
    "train_labels": "train-labels-idx1-ubyte.gz",
    "test_images": "t10k-images-idx3-ubyte.gz",
    "test_labels": "t10k-labels-idx1-ubyte.gz",
}

# IDX type codes (third byte of the magic number) -> big-endian numpy dtypes
IDX_DTYPES = {
    0x08: np.dtype(np.uint8),
    0x09: np.dtype(np.int8),
    0x0B: np.dtype(">i2"),
    0x0C: np.dtype(">i4"),
    0x0D: np.dtype(">f4"),
    0x0E: np.dtype(">f8"),
}


def download(url: str, filename: str, timeout: float = 60.0) -> str:
    """
    Download (GET request) a file, unless it already exists locally.

    Args:
        url (str): URL to download the file from.
        filename (str): Local path to save the file to.
        timeout (float, optional): Request timeout in seconds. Defaults to 60.

    Returns:
        str: ``filename``.

    Raises:
        requests.HTTPError: If the server responds with an error status.
    """
    if os.path.exists(filename):
        return filename

    logger.info(f"Downloading {url} -> {filename}")
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()

    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(filename, "wb") as f:
        f.write(response.content)
    return filename


def _read_bytes(filename: str) -> bytes:
    opener = gzip.open if filename.endswith(".gz") else open
    with opener(filename, "rb") as f:
        return f.read()


def parse_idx(raw: bytes) -> np.ndarray:
    """
    Decode the IDX binary format.

    The header is a 4-byte magic number (two zero bytes, a type code, the number
    of dimensions), followed by one big-endian uint32 per dimension, followed by
    the payload in row-major order.

    Args:
        raw (bytes): The file contents.

    Returns:
        np.ndarray: The payload with its declared shape, in native byte order.

    Raises:
        ValueError: If the magic number is malformed, the type code is unknown,
            or the payload is truncated.

    Examples:
        >>> parse_idx(bytes([0, 0, 0x08, 1, 0, 0, 0, 2, 7, 9]))
        array([7, 9], dtype=uint8)
    """
    if len(raw) < 4 or raw[0] != 0 or raw[1] != 0:
        raise ValueError("Not an IDX file: bad magic number")

    type_code, ndim = raw[2], raw[3]
    if type_code not in IDX_DTYPES:
        raise ValueError(f"Unknown IDX type code 0x{type_code:02X}")

    header_size = 4 + 4 * ndim
    if len(raw) < header_size:
        raise ValueError("Truncated IDX header")
    dims = np.frombuffer(raw, dtype=">u4", count=ndim, offset=4) if ndim else ()
    shape = tuple(int(d) for d in dims)

    dtype = IDX_DTYPES[type_code]
    count = int(np.prod(shape)) if shape else 1
    if len(raw) - header_size < count * dtype.itemsize:
        raise ValueError(
            f"Truncated IDX payload: expected {count} items of shape {shape}"
        )

    data = np.frombuffer(raw, dtype=dtype, count=count, offset=header_size)
    return data.astype(dtype.newbyteorder("=")).reshape(shape)


def load_idx(filename: str) -> np.ndarray:
    """Read an IDX file (optionally gzip-compressed, by ``.gz`` extension), see `parse_idx`."""
    return parse_idx(_read_bytes(filename))


def load_mnist(
    images_path: str, labels_path: str, max_rows: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Load MNIST images and labels from IDX files.

    Args:
        images_path (str): Path to an ``idx3-ubyte`` images file.
        labels_path (str): Path to an ``idx1-ubyte`` labels file.
        max_rows (Optional[int]): Only keep the first ``max_rows`` samples.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Images as float32 of shape (N, 784) scaled
        to [0, 1], and labels as int64 of shape (N,).

    Raises:
        ValueError: If the image and label counts differ.
    """
    images = load_idx(images_path)
    labels = load_idx(labels_path)
    if len(images) != len(labels):
        raise ValueError(
            f"{len(images)} images but {len(labels)} labels in {images_path}, {labels_path}"
        )

    X = images.reshape(len(images), -1).astype(np.float32) / 255.0
    y = labels.astype(np.int64)
    if max_rows is not None:
        X, y = X[:max_rows], y[:max_rows]
    return X, y


def download_mnist(directory: str) -> dict:
    """
    Make sure all four MNIST files are present in ``directory``.

    Returns:
        dict: Local paths keyed like `MNIST_FILES`.
    """
    return {
        key: download(MNIST_URL + name, os.path.join(directory, name))
        for key, name in MNIST_FILES.items()
    }


def one_hot(labels: np.ndarray, num_classes: int) -> np.ndarray:
    """
    Encode class indices as one-hot float32 rows.

    Examples:
        >>> one_hot(np.array([2, 0]), 3)
        array([[0., 0., 1.],
               [1., 0., 0.]], dtype=float32)
    """
    labels = np.asarray(labels, dtype=np.int64)
    if np.any(labels < 0) or np.any(labels >= num_classes):
        raise ValueError(f"Labels must be in [0, {num_classes})")
    return np.eye(num_classes, dtype=np.float32)[labels]


class SimpleDataLoader:
    """
    A basic DataLoader for supervised tasks (e.g., classification).
    It handles:
      - In-memory storage of X and y.
      - Optional shuffling at the start of each epoch.
      - Batching data into (batch_X, batch_y) pairs.

    Examples:
        >>> X = np.random.rand(100, 10)
        >>> y = np.random.randint(0, 2, size=(100,))
        >>> loader = SimpleDataLoader(X, y, batch_size=32, shuffle=True)
        >>> for batch_X, batch_y in loader:
        ...     print(batch_X.shape, batch_y.shape)
        (32, 10) (32,)
    """

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        batch_size: int = 32,
        shuffle: bool = True,
    ) -> None:
        if len(X) != len(y):
            raise ValueError(f"X has {len(X)} samples but y has {len(y)}")
        self.X = X
        self.y = y
        self.batch_size = batch_size
        self.shuffle = shuffle
        self.num_samples = len(X)
        self.indices = np.arange(self.num_samples)

    def on_epoch_start(self) -> None:
        # Shuffle the index array if needed.
        if self.shuffle:
            np.random.shuffle(self.indices)

    def __iter__(self) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        for start in range(0, self.num_samples, self.batch_size):
            batch_indices = self.indices[start : start + self.batch_size]
            yield self.X[batch_indices], self.y[batch_indices]

    def __len__(self) -> int:
        return (self.num_samples + self.batch_size - 1) // self.batch_size
