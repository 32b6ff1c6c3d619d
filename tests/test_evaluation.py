import io

import numpy as np
import pytest

from chainnet import FullyConnectedLayer, Network, NNError, Result


def _identity_net() -> Network:
    net = Network(loss="mse")
    net.add(FullyConnectedLayer(2, 2, activation="identity"))
    net[0].weight[:] = np.eye(2).ravel()
    net[0].bias[:] = 0.0
    return net


def _mlp(seed: int) -> Network:
    net = Network(loss="mse", seed=seed)
    net.add(FullyConnectedLayer(3, 4, activation="tanh"))
    net.add(FullyConnectedLayer(4, 2, activation="sigmoid"))
    net.init_weight()
    return net


def test_confusion_matrix_counts_predicted_by_actual() -> None:
    net = _identity_net()
    e0, e1 = [1.0, 0.0], [0.0, 1.0]
    result = net.test([e0, e1, e1, e0], [0, 1, 0, 0])

    assert isinstance(result, Result)
    assert result.num_success == 3
    assert result.num_total == 4
    assert result.accuracy() == pytest.approx(75.0)
    assert result.confusion_matrix[1][0] == 1
    assert result.count(0, 0) == 2
    assert result.count(0, 1) == 0
    assert result.summary() == "accuracy:75% (3/4)"


def test_result_report_formats() -> None:
    result = Result()
    assert result.accuracy() == 0.0
    result.record(2, 2)
    result.record(0, 2)
    assert result.labels() == [0, 2]
    lines = result.detail().splitlines()
    assert lines[0] == "accuracy:50% (1/2)"
    assert lines[1].split() == ["*", "0", "2"]
    assert lines[2].split() == ["0", "0", "1"]
    assert result.to_dict()["confusion_matrix"] == {"0": {"2": 1}, "2": {"2": 1}}

    stream = io.StringIO()
    result.print_summary(stream)
    assert stream.getvalue() == "accuracy:50% (1/2)\n"


def test_unlabelled_test_returns_predictions_in_order() -> None:
    net = _mlp(seed=2)
    rng = np.random.default_rng(0)
    inputs = [rng.uniform(-1, 1, size=3) for _ in range(11)]

    predictions = net.test(inputs, thread_count=3)

    assert len(predictions) == len(inputs)
    for x, y in zip(inputs, predictions):
        assert np.allclose(y, net.predict(x))
    assert net.test([], thread_count=4) == []


def test_get_loss_sums_over_dataset() -> None:
    net = _identity_net()
    inputs = [[1.0, 0.0], [0.0, 2.0]]
    targets = [np.array([0.0, 0.0]), np.array([0.0, 1.0])]
    assert net.get_loss(inputs, targets) == pytest.approx(0.5 * 1.0 + 0.5 * 1.0)
    # labels are expanded to (0.1, 0.9) targets for an identity output
    expected = 0.5 * (0.9**2 + 0.1**2)
    assert net.get_loss([[0.0, 0.0]], [1]) == pytest.approx(expected)


def test_save_load_round_trip(tmp_path) -> None:
    source = _mlp(seed=1)
    target = _mlp(seed=9)
    assert not source.has_same_weights(target, 1e-12)

    path = source.save_weights(tmp_path / "nested" / "weights.txt")
    target.load_weights(path)

    assert source.has_same_weights(target, 0.0)
    x = np.array([0.2, -0.4, 0.7])
    assert np.array_equal(source.predict(x), target.predict(x))
    # one line per weighted layer; the input layer holds nothing
    assert len(path.read_text().splitlines()) == 2


def test_load_rejects_truncated_stream() -> None:
    net = _mlp(seed=0)
    with pytest.raises(NNError, match="ended early"):
        net.load(io.StringIO("0.5 0.25"))


def test_has_same_weights_rejects_different_architectures() -> None:
    small = Network()
    small.add(FullyConnectedLayer(3, 2))
    assert not _mlp(seed=0).has_same_weights(small, 1.0)


@pytest.mark.parametrize("out_dim", [2, 3])
def test_get_loss_scores_pair_on_named_unit_only(out_dim) -> None:
    net = Network(loss="mse")
    net.add(FullyConnectedLayer(2, out_dim, activation="identity"))
    net[0].bias[:] = np.arange(out_dim, dtype=float)
    x = [0.0, 0.0]

    assert net.get_loss([x], [(1, 0.5)]) == pytest.approx(0.5 * (1.0 - 0.5) ** 2)
    # a float tuple stays a dense target
    dense = tuple(0.0 for _ in range(out_dim))
    expected = 0.5 * sum(float(v) ** 2 for v in range(out_dim))
    assert net.get_loss([x], [dense]) == pytest.approx(expected)
