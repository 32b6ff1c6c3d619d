import io

import numpy as np
import pytest

from chainnet.core.errors import DimensionMismatchError
from chainnet.core.layers import FullyConnectedLayer, InputLayer, LayerChain
from chainnet.core.optimizers import GradientDescent
from chainnet.core.types import Shape3D


def _chain(*dims, activation="tanh"):
    chain = LayerChain()
    for d_in, d_out in zip(dims[:-1], dims[1:]):
        chain.add(FullyConnectedLayer(d_in, d_out, activation=activation))
    chain.init_weight(np.random.default_rng(0))
    return chain


def test_chain_head_adopts_first_layer_shape():
    chain = _chain(3, 4, 2)
    assert isinstance(chain.head, InputLayer)
    assert chain.in_dim == 3
    assert chain.out_dim == 2
    assert chain.depth == 2
    assert chain.in_shape == Shape3D(3)
    assert chain.next_of(1) is chain.tail
    assert chain.prev_of(0) is None


def test_add_rejects_dimension_mismatch():
    chain = _chain(3, 4)
    with pytest.raises(DimensionMismatchError, match="dimension mismatch"):
        chain.add(FullyConnectedLayer(5, 2))


def test_forward_matches_dense_formula():
    chain = _chain(3, 2)
    layer = chain.tail
    x = np.array([0.5, -1.0, 2.0])
    expected = np.tanh(x @ layer.weight.reshape(3, 2) + layer.bias)
    assert np.allclose(chain.forward(x), expected)


def test_task_slots_are_isolated():
    chain = _chain(2, 3, 2)
    chain.ensure_tasks(2)
    out0 = chain.forward(np.array([1.0, 0.0]), task_id=0).copy()
    chain.forward(np.array([0.0, 1.0]), task_id=1)
    assert np.allclose(chain.tail.output(0), out0)

    chain.backward(np.array([1.0, -1.0]), task_id=1)
    assert np.all(chain.tail.weight_gradient(0) == 0.0)
    assert np.any(chain.tail.weight_gradient(1) != 0.0)


def test_update_weights_merges_slots_and_clears():
    chain = _chain(2, 1, activation="identity")
    layer = chain.tail
    chain.ensure_tasks(2)
    layer.weight_gradient(0)[:] = [1.0, 2.0]
    layer.weight_gradient(1)[:] = [3.0, 4.0]
    layer.bias_gradient(0)[:] = [1.0]
    layer.bias_gradient(1)[:] = [1.0]
    before_w = layer.weight.copy()
    before_b = layer.bias.copy()

    chain.update_weights(GradientDescent(alpha=0.5), task_count=2, batch_size=4)

    assert np.allclose(layer.weight, before_w - 0.5 * np.array([1.0, 1.5]))
    assert np.allclose(layer.bias, before_b - 0.5 * np.array([0.5]))
    assert np.all(layer.weight_gradient(0) == 0.0)
    assert np.all(layer.weight_gradient(1) == 0.0)


def test_is_exploded_detects_non_finite_values():
    chain = _chain(2, 2)
    assert not chain.is_exploded()
    chain.tail.bias[0] = np.inf
    assert chain.is_exploded()


def test_backward_2nd_accumulates_non_negative_curvature():
    chain = _chain(3, 4, 2)
    chain.forward(np.array([0.3, -0.2, 0.9]))
    chain.backward_2nd(np.array([0.5, 0.25]))
    for layer in list(chain)[1:]:
        assert np.all(layer.weight_hessian >= 0.0)
        assert np.any(layer.weight_hessian > 0.0)
    chain.divide_hessian(2)
    chain.clear_hessian()
    assert np.all(chain.tail.weight_hessian == 0.0)


def test_layer_save_load_round_trip():
    source = _chain(2, 3)
    target = _chain(2, 3)
    stream = io.StringIO()
    for layer in source:
        layer.save(stream)
    tokens = iter(stream.getvalue().split())
    for layer in target:
        layer.load(tokens)
    assert np.array_equal(source.tail.weight, target.tail.weight)
    assert np.array_equal(source.tail.bias, target.tail.bias)
