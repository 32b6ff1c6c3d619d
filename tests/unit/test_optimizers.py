import numpy as np
import pytest

from chainnet.core.optimizers import (
    Adagrad,
    Adam,
    GradientDescent,
    LevenbergMarquardt,
    Momentum,
    build_optimizer,
)


def test_gradient_descent_applies_weight_decay_in_place():
    W = np.array([1.0, -2.0])
    ref = W
    GradientDescent(alpha=0.1, weight_decay=0.5).update(np.array([1.0, 1.0]), None, W, "w")
    assert W is ref
    assert np.allclose(W, [1.0 - 0.1 * 1.5, -2.0 - 0.1 * 0.0])


def test_levenberg_marquardt_scales_by_curvature():
    opt = LevenbergMarquardt(alpha=0.1, mu=0.0)
    assert opt.requires_hessian
    W = np.zeros(2)
    opt.update(np.array([1.0, 1.0]), np.array([1.0, 4.0]), W, "w")
    assert np.allclose(W, [-0.1, -0.025])


@pytest.mark.parametrize("cls", [Momentum, Adagrad, Adam])
def test_stateful_optimizers_reset(cls):
    opt = cls()
    assert not opt.requires_hessian
    W1 = np.zeros(3)
    opt.update(np.ones(3), None, W1, ("layer", 1))
    first_step = W1.copy()
    opt.update(np.ones(3), None, W1, ("layer", 1))

    opt.reset()
    W2 = np.zeros(3)
    opt.update(np.ones(3), None, W2, ("layer", 1))
    assert np.allclose(W2, first_step)


def test_state_is_keyed_per_vector():
    opt = Adagrad(alpha=1.0)
    a, b = np.zeros(1), np.zeros(1)
    opt.update(np.ones(1), None, a, "a")
    opt.update(np.ones(1), None, a, "a")
    opt.update(np.ones(1), None, b, "b")
    assert not np.isclose(a[0], 2 * b[0])
    assert np.isclose(b[0], -1.0, atol=1e-6)


def test_build_optimizer_by_name():
    opt = build_optimizer("adam", alpha=0.05)
    assert isinstance(opt, Adam) and opt.alpha == 0.05
    assert isinstance(build_optimizer("lm"), LevenbergMarquardt)
    with pytest.raises(KeyError):
        build_optimizer("lbfgs")
