from unittest import TestCase

import numpy as np
import torch  # for test comparisons

from stridegrad import functional
from stridegrad.tensor import Tensor


class TestActivationFunctions(TestCase):
    def setUp(self) -> None:
        self.X = Tensor(data=np.array([[1, -1, 0.5], [2, 2, -3]]), requires_grad=True)
        self.X_torch = torch.tensor(self.X.numpy(), requires_grad=True)

    def test_sigmoid(self):
        assert np.allclose(
            functional.sigmoid(self.X).data,
            torch.nn.functional.sigmoid(self.X_torch).numpy(),
        )

    def test_relu(self):
        assert np.allclose(
            functional.relu(self.X).data,
            torch.nn.functional.relu(self.X_torch).numpy(),
        )

    def test_softmax(self):
        assert np.allclose(
            functional.softmax(self.X).data,
            torch.nn.functional.softmax(self.X_torch, dim=1).numpy(),
            atol=1e-6,
        )

    def test_log_softmax(self):
        assert np.allclose(
            functional.log_softmax(self.X).data,
            torch.nn.functional.log_softmax(self.X_torch, dim=1).numpy(),
            atol=1e-6,
        )

    def test_sigmoid_backward(self):
        functional.sigmoid(self.X).backward()
        torch.nn.functional.sigmoid(self.X_torch).sum().backward()
        assert np.allclose(self.X.grad.data, self.X_torch.grad.numpy(), atol=1e-6)


class TestLosses(TestCase):
    def setUp(self) -> None:
        self.logits = Tensor(np.random.randn(4, 5), requires_grad=True)
        self.logits_torch = torch.tensor(self.logits.numpy(), requires_grad=True)
        self.y_true = np.array([0, 3, 4, 1])

    def test_cross_entropy(self):
        loss = functional.cross_entropy(self.logits, self.y_true)
        torch_loss = torch.nn.functional.cross_entropy(
            self.logits_torch, torch.tensor(self.y_true)
        )
        assert loss.shape == ()
        assert np.allclose(loss.item(), torch_loss.item(), atol=1e-5)

        loss.backward()
        torch_loss.backward()
        assert np.allclose(
            self.logits.grad.data, self.logits_torch.grad.numpy(), atol=1e-6
        )

    def test_cross_entropy_reductions(self):
        none = functional.cross_entropy(self.logits, self.y_true, reduction="none")
        total = functional.cross_entropy(self.logits, self.y_true, reduction="sum")
        torch_none = torch.nn.functional.cross_entropy(
            self.logits_torch, torch.tensor(self.y_true), reduction="none"
        )
        assert none.shape == (4,)
        assert np.allclose(none.data, torch_none.numpy(), atol=1e-5)
        assert np.allclose(total.item(), torch_none.sum().item(), atol=1e-5)

    def test_nll_loss_single_sample(self):
        log_probs = Tensor([0.1, 0.7, 0.2]).log()
        loss = functional.nll_loss(log_probs, np.array([0.0, 1.0, 0.0]))
        assert loss.shape == ()
        assert np.isclose(loss.item(), -np.log(0.7))

    def test_nll_loss_backward(self):
        log_probs = self.logits.log_softmax()
        one_hot = np.eye(5, dtype=np.float32)[self.y_true]
        functional.nll_loss(log_probs, one_hot, reduction="sum").backward()

        torch.nn.functional.nll_loss(
            torch.log_softmax(self.logits_torch, dim=-1),
            torch.tensor(self.y_true),
            reduction="sum",
        ).backward()
        assert np.allclose(
            self.logits.grad.data, self.logits_torch.grad.numpy(), atol=1e-5
        )

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            functional.cross_entropy(self.logits, self.y_true, reduction="max")
        with self.assertRaises(ValueError):
            functional.cross_entropy(self.logits, np.array([0, 1, 2, 5]))
        with self.assertRaises(ValueError):
            functional.cross_entropy(self.logits, np.array([0, 1]))
