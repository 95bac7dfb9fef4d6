import gzip
import os
import struct
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

from stridegrad.tools.data import (
    SimpleDataLoader,
    download,
    load_idx,
    load_mnist,
    one_hot,
    parse_idx,
)


def idx_bytes(array: np.ndarray, type_code: int = 0x08) -> bytes:
    header = struct.pack(">BBBB", 0, 0, type_code, array.ndim)
    header += struct.pack(f">{array.ndim}I", *array.shape)
    return header + array.tobytes()


class TestIdx(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.images = np.arange(3 * 4 * 4, dtype=np.uint8).reshape(3, 4, 4)
        self.labels = np.array([7, 2, 1], dtype=np.uint8)

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, name: str, raw: bytes, compress: bool = False) -> str:
        path = os.path.join(self.tmp.name, name)
        opener = gzip.open if compress else open
        with opener(path, "wb") as f:
            f.write(raw)
        return path

    def test_parse_uint8(self):
        parsed = parse_idx(idx_bytes(self.images))
        assert parsed.shape == (3, 4, 4)
        assert np.array_equal(parsed, self.images)

    def test_parse_big_endian_types(self):
        values = np.array([[1, -2], [300, 4]], dtype=">i4")
        parsed = parse_idx(idx_bytes(values, type_code=0x0C))
        assert parsed.dtype == np.int32
        assert np.array_equal(parsed, [[1, -2], [300, 4]])

        floats = np.array([0.5, -1.25], dtype=">f4")
        assert np.array_equal(parse_idx(idx_bytes(floats, type_code=0x0D)), [0.5, -1.25])

    def test_parse_errors(self):
        with self.assertRaises(ValueError):
            parse_idx(b"\x01\x00\x08\x01")
        with self.assertRaises(ValueError):
            parse_idx(idx_bytes(self.labels, type_code=0x07))
        with self.assertRaises(ValueError):
            parse_idx(idx_bytes(self.labels)[:-1])
        with self.assertRaises(ValueError):
            parse_idx(b"\x00\x00\x08\x02\x00\x00")

    def test_load_idx_gzip(self):
        path = self.write("labels-idx1-ubyte.gz", idx_bytes(self.labels), compress=True)
        assert np.array_equal(load_idx(path), self.labels)

    def test_load_mnist(self):
        images_path = self.write("images-idx3-ubyte", idx_bytes(self.images))
        labels_path = self.write("labels-idx1-ubyte", idx_bytes(self.labels))
        X, y = load_mnist(images_path, labels_path)
        assert X.shape == (3, 16)
        assert X.dtype == np.float32
        assert np.allclose(X, self.images.reshape(3, 16) / 255.0)
        assert y.tolist() == [7, 2, 1]

        X, y = load_mnist(images_path, labels_path, max_rows=2)
        assert X.shape == (2, 16)
        assert y.tolist() == [7, 2]

    def test_load_mnist_count_mismatch(self):
        images_path = self.write("images-idx3-ubyte", idx_bytes(self.images))
        labels_path = self.write("labels-idx1-ubyte", idx_bytes(self.labels[:2]))
        with self.assertRaises(ValueError):
            load_mnist(images_path, labels_path)


class TestDownload(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    @patch("stridegrad.tools.data.requests.get")
    def test_download_writes_file(self, mock_get):
        mock_get.return_value = MagicMock(content=b"payload")
        path = os.path.join(self.tmp.name, "nested", "file.bin")

        assert download("http://example.com/file.bin", path) == path
        mock_get.assert_called_once()
        with open(path, "rb") as f:
            assert f.read() == b"payload"

    @patch("stridegrad.tools.data.requests.get")
    def test_download_skips_existing_file(self, mock_get):
        path = os.path.join(self.tmp.name, "file.bin")
        with open(path, "wb") as f:
            f.write(b"cached")

        download("http://example.com/file.bin", path)
        mock_get.assert_not_called()


class TestOneHot(unittest.TestCase):
    def test_one_hot(self):
        encoded = one_hot(np.array([2, 0]), 3)
        assert encoded.dtype == np.float32
        assert np.array_equal(encoded, [[0, 0, 1], [1, 0, 0]])
        assert np.array_equal(one_hot(1, 3), [0, 1, 0])

    def test_one_hot_out_of_range(self):
        with self.assertRaises(ValueError):
            one_hot(np.array([3]), 3)


class TestDataLoaders(unittest.TestCase):
    def setUp(self):
        self.X = np.arange(20).reshape(10, 2)
        self.y = np.arange(10)

    def test_simple_dataloader_no_shuffle(self):
        loader = SimpleDataLoader(self.X, self.y, batch_size=3, shuffle=False)
        loader.on_epoch_start()
        batches = list(loader)
        assert len(loader) == 4
        assert len(batches) == 4
        assert np.array_equal(batches[0][0], self.X[:3])
        assert np.array_equal(batches[-1][1], self.y[9:])

    def test_simple_dataloader_shuffle(self):
        loader = SimpleDataLoader(self.X, self.y, batch_size=3, shuffle=True)
        loader.on_epoch_start()
        seen = np.concatenate([batch_y for _, batch_y in loader])
        assert sorted(seen.tolist()) == list(range(10))
        for batch_X, batch_y in loader:
            assert np.array_equal(batch_X, self.X[batch_y])

    def test_length_mismatch(self):
        with self.assertRaises(ValueError):
            SimpleDataLoader(self.X, self.y[:5])


if __name__ == "__main__":
    unittest.main()
