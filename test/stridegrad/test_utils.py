from unittest import TestCase

import numpy as np

from stridegrad.errors import AxisError, ShapeError
from stridegrad.utils import argsort, flatten, infer_shape, normalize_axis, prod


class TestUtils(TestCase):
    def test_prod(self):
        assert prod((2, 3, 4)) == 24
        assert prod(()) == 1

    def test_argsort(self):
        assert argsort([2, 0, 1]) == (1, 2, 0)
        order = (2, 0, 3, 1)
        inverse = argsort(order)
        assert tuple(order[i] for i in inverse) == (0, 1, 2, 3)

    def test_normalize_axis(self):
        assert normalize_axis(-1, 3) == 2
        assert normalize_axis(0, 3) == 0
        with self.assertRaises(AxisError):
            normalize_axis(3, 3)
        with self.assertRaises(AxisError):
            normalize_axis(-4, 3)

    def test_infer_shape(self):
        assert infer_shape(5.0) == ()
        assert infer_shape([1, 2, 3]) == (3,)
        assert infer_shape([[1, 2, 3], [4, 5, 6]]) == (2, 3)
        assert infer_shape(np.zeros((4, 1))) == (4, 1)
        assert infer_shape(np.float32(1.0)) == ()

    def test_infer_shape_strict(self):
        assert infer_shape([[1, 2], [3, 4]], strict=True) == (2, 2)
        # only the first element of each level is followed
        assert infer_shape([[1, 2], [3]]) == (2, 2)
        with self.assertRaises(ShapeError):
            infer_shape([[1, 2], [3]], strict=True)
        with self.assertRaises(ShapeError):
            infer_shape([[[1]], [[1, 2]]], strict=True)

    def test_infer_shape_empty(self):
        with self.assertRaises(ShapeError):
            infer_shape([])
        with self.assertRaises(ShapeError):
            infer_shape(np.zeros((0, 3)))

    def test_flatten(self):
        assert flatten([[1, 2], [3, 4]]) == [1.0, 2.0, 3.0, 4.0]
        assert flatten(7) == [7.0]
        assert flatten([np.array([1, 2]), np.array([3, 4])]) == [1.0, 2.0, 3.0, 4.0]
