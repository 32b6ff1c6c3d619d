import numpy as np
import pytest

from chainnet.core.activations import ActivationKind, Softmax, get_activation
from chainnet.core.losses import REGISTRY as LOSS_REGISTRY
from chainnet.core.losses import LossKind


@pytest.mark.parametrize("name", ["identity", "sigmoid", "tanh", "relu", "leaky_relu"])
def test_elementwise_jacobian_is_diagonal(name):
    h = get_activation(name)
    y = h.f(np.array([-0.7, 0.2, 1.3]))
    jac = h.jacobian(y)
    assert np.allclose(jac, np.diag(np.diag(jac)))
    for i in range(3):
        assert np.allclose(h.df_row(y, i), jac[i])


def test_softmax_jacobian_rows_sum_to_zero():
    h = Softmax()
    y = h.f(np.array([0.5, -1.0, 2.0, 0.0]))
    assert np.isclose(y.sum(), 1.0)
    jac = h.jacobian(y)
    assert np.allclose(jac.sum(axis=1), 0.0)
    for i in range(4):
        assert np.allclose(h.df_row(y, i), jac[i])


@pytest.mark.parametrize("name", ["sigmoid", "tanh"])
def test_df_matches_numeric_derivative(name):
    h = get_activation(name)
    a = np.array([-1.5, -0.2, 0.4, 2.0])
    step = 1e-6
    numeric = (h.f(a + step) - h.f(a - step)) / (2 * step)
    assert np.allclose(h.df(h.f(a)), numeric, atol=1e-6)


def test_activation_scales():
    assert get_activation("tanh").scale() == (-0.8, 0.8)
    assert get_activation("softmax").scale() == (0.0, 1.0)
    assert get_activation(ActivationKind.SIGMOID).scale() == (0.1, 0.9)


@pytest.mark.parametrize(
    "kind", [LossKind.MSE, LossKind.CROSS_ENTROPY, LossKind.CROSS_ENTROPY_MULTICLASS]
)
def test_loss_df_matches_numeric_derivative(kind):
    loss = LOSS_REGISTRY.get(kind)
    y = np.array([0.2, 0.55, 0.8])
    t = np.array([0.1, 0.9, 0.1])
    step = 1e-7
    for i in range(3):
        up, down = y.copy(), y.copy()
        up[i] += step
        down[i] -= step
        numeric = (loss.value(up, t) - loss.value(down, t)) / (2 * step)
        assert np.isclose(loss.df(y, t)[i], numeric, atol=1e-5)


def test_unknown_names_raise_key_error():
    with pytest.raises(KeyError):
        get_activation("swish")
    with pytest.raises(KeyError):
        LOSS_REGISTRY.get("hinge")


def test_loss_value_rejects_shape_mismatch():
    with pytest.raises(ValueError):
        LOSS_REGISTRY.get("mse").value(np.zeros(2), np.zeros(3))
