import numpy as np
import pytest
import torch


@pytest.fixture(scope="session", autouse=True)
def patch_torch_numpy():
    """
    Monkey-patch torch.Tensor.numpy() so it can be called directly on
    tensors that require grad (the oracle tensors in these tests).
    """
    old_numpy = torch.Tensor.numpy  # Keep a reference to the original

    def new_numpy(t):
        return old_numpy(t.detach())

    torch.Tensor.numpy = new_numpy

    yield  # Run the tests with this patch in place

    # revert back after tests
    torch.Tensor.numpy = old_numpy


@pytest.fixture(autouse=True)
def seed_everything():
    np.random.seed(1337)
    torch.manual_seed(1337)
