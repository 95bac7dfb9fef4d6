from unittest import TestCase

import numpy as np

from stridegrad.errors import (
    AxisError,
    BroadcastError,
    ShapeError,
    UnsupportedOperationError,
)
from stridegrad.view import View, canonicalize_strides, strides_for_shape


class TestStrides(TestCase):
    def test_default_strides(self):
        assert strides_for_shape((2, 3, 4)) == (12, 4, 1)
        assert strides_for_shape((5,)) == (1,)
        assert strides_for_shape(()) == ()

    def test_size_one_axes_have_zero_stride(self):
        assert strides_for_shape((2, 1, 4)) == (4, 0, 1)
        assert strides_for_shape((1, 1)) == (0, 0)
        assert canonicalize_strides((3, 1), (7, 9)) == (7, 0)

    def test_matches_numpy_for_non_unit_axes(self):
        shape = (3, 5, 2)
        expected = tuple(s // 4 for s in np.zeros(shape, dtype=np.float32).strides)
        assert strides_for_shape(shape) == expected


class TestView(TestCase):
    def setUp(self) -> None:
        self.view = View((2, 3, 4))

    def test_construction(self):
        assert self.view.shape == (2, 3, 4)
        assert self.view.strides == (12, 4, 1)
        assert self.view.contiguous
        assert self.view.ndim == 3
        assert self.view.numel == 24

    def test_scalar_view(self):
        view = View(())
        assert view.ndim == 0
        assert view.numel == 1
        assert list(view.indices()) == [()]
        assert view.offset(()) == 0

    def test_invalid_shape(self):
        with self.assertRaises(ShapeError):
            View((2, 0))
        with self.assertRaises(ShapeError):
            View((2, -3))
        with self.assertRaises(ShapeError):
            View((2, 3), strides=(1,))

    def test_explicit_strides_are_canonicalized(self):
        view = View((3, 1), strides=(1, 5))
        assert view.strides == (1, 0)
        assert view.contiguous

        transposed = View((2, 3, 1), strides=(1, 2, 7))
        assert transposed.strides == (1, 2, 0)
        assert not transposed.contiguous

    def test_offset(self):
        assert self.view.offset((0, 0, 0)) == 0
        assert self.view.offset((1, 2, 3)) == 12 + 8 + 3

    def test_indices_are_row_major(self):
        view = View((2, 3))
        assert list(view.indices()) == [
            (0, 0),
            (0, 1),
            (0, 2),
            (1, 0),
            (1, 1),
            (1, 2),
        ]

    def test_indices_restart(self):
        view = View((2, 2))
        assert list(view.indices()) == list(view.indices())

    def test_offsets(self):
        view = View((2, 3)).permute((1, 0))
        assert view.offsets().tolist() == [0, 3, 1, 4, 2, 5]
        assert View((4,)).offsets().tolist() == [0, 1, 2, 3]
        assert View(()).offsets().tolist() == [0]

    def test_offsets_match_indices(self):
        for view in [
            View((2, 3, 4)).permute((2, 0, 1)),
            View((2, 1, 3)).expand((2, 4, 3)),
            View((3, 2), strides=(1, 3)),
        ]:
            expected = [view.offset(index) for index in view.indices()]
            assert view.offsets().tolist() == expected

    def test_equality(self):
        assert View((2, 3)) == View((2, 3))
        assert View((2, 3)) != View((3, 2))
        assert hash(View((2, 3))) == hash(View((2, 3), strides=(3, 1)))


class TestViewPermute(TestCase):
    def test_permute(self):
        view = View((2, 3, 4)).permute((2, 0, 1))
        assert view.shape == (4, 2, 3)
        assert view.strides == (1, 12, 4)
        assert not view.contiguous

    def test_identity_permute_returns_same_instance(self):
        view = View((2, 3))
        assert view.permute((0, 1)) is view

    def test_permute_matches_numpy(self):
        arr = np.arange(24).reshape(2, 3, 4)
        view = View((2, 3, 4)).permute((1, 2, 0))
        flat = arr.ravel()
        gathered = [flat[view.offset(i)] for i in view.indices()]
        assert gathered == arr.transpose(1, 2, 0).ravel().tolist()

    def test_permute_errors(self):
        view = View((2, 3))
        with self.assertRaises(ShapeError):
            view.permute((0,))
        with self.assertRaises(AxisError):
            view.permute((0, 2))
        with self.assertRaises(AxisError):
            view.permute((1, 1))


class TestViewReshape(TestCase):
    def test_reshape(self):
        view = View((2, 6)).reshape((3, 4))
        assert view.shape == (3, 4)
        assert view.strides == (4, 1)

    def test_reshape_infers_minus_one(self):
        assert View((2, 6)).reshape((-1, 3)).shape == (4, 3)
        assert View((2, 6)).reshape((-1,)).shape == (12,)

    def test_same_shape_returns_same_instance(self):
        view = View((2, 6))
        assert view.reshape((2, 6)) is view

    def test_size_mismatch(self):
        with self.assertRaises(ShapeError):
            View((2, 6)).reshape((5, 2))
        with self.assertRaises(ShapeError):
            View((2, 6)).reshape((-1, 5))
        with self.assertRaises(ShapeError):
            View((2, 6)).reshape((-1, -1))

    def test_non_contiguous_reshape_is_unsupported(self):
        view = View((2, 3)).permute((1, 0))
        with self.assertRaises(UnsupportedOperationError):
            view.reshape((6,))
        with self.assertRaises(UnsupportedOperationError):
            view.reshape((2, 3))
        with self.assertRaises(UnsupportedOperationError):
            view.reshape((3, 1, 2))


class TestViewExpand(TestCase):
    def test_expand(self):
        view = View((2, 1, 4)).expand((2, 3, 4))
        assert view.shape == (2, 3, 4)
        assert view.strides == (4, 0, 1)
        assert not view.contiguous
        assert sorted(set(view.offsets().tolist())) == list(range(8))

    def test_same_shape_returns_same_instance(self):
        view = View((2, 1))
        assert view.expand((2, 1)) is view

    def test_expand_errors(self):
        with self.assertRaises(ShapeError):
            View((1, 4)).expand((2, 1, 4))
        with self.assertRaises(BroadcastError):
            View((2, 4)).expand((3, 4))

    def test_every_view_keeps_zero_stride_on_unit_axes(self):
        views = [
            View((1, 3, 1)),
            View((2, 3)).permute((1, 0)).expand((3, 2)),
            View((4, 1)).expand((4, 1)),
            View((6,)).reshape((1, 6, 1)),
            View((2, 1, 3)).permute((1, 2, 0)),
        ]
        for view in views:
            for size, stride in zip(view.shape, view.strides):
                if size == 1:
                    assert stride == 0, view
