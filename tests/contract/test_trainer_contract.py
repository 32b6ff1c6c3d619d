import json
from pathlib import Path

import pytest

from chainnet.training import pipelines


def _sine_config(run_dir: Path) -> dict:
    return {
        "data": {"name": "sine", "options": {"freq": 1.0, "n_points": 32, "seed": 0}},
        "model": {
            "name": "sine-small",
            "layers": [
                {"type": "fully_connected", "in": 1, "out": 6, "activation": "tanh"},
                {"type": "fully_connected", "in": 6, "out": 1, "activation": "identity"},
            ],
            "loss": "mse",
            "optimizer": {"name": "gradient_descent", "params": {"alpha": 0.05}},
        },
        "train": {
            "epochs": 3,
            "batch_size": 4,
            "threads": 2,
            "seed": 11,
            "run_dir": str(run_dir),
            "enable_plots": False,
        },
    }


def test_trainer_pipeline_produces_artifacts(tmp_path):
    result = pipelines.run_pipeline(_sine_config(tmp_path / "run"))

    assert result.completed
    assert result.epochs == 3
    run_dir = tmp_path / "run"
    for name in ("metrics.jsonl", "metrics.csv", "weights.txt", "metrics_test.json", "config.json"):
        assert (run_dir / name).exists(), name
    assert not (run_dir / "training_curve.png").exists()

    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["config"]["train"]["seed"] == 11
    assert manifest["dataset"]["generator"] == "sine"
    assert manifest["completed"] is True
    assert [layer["activation"] for layer in manifest["architecture"]] == ["tanh", "identity"]
    assert manifest["weights"]["path"] == "weights.txt"
    assert len(manifest["weights"]["sha256"]) == 64

    metrics = [
        json.loads(line)
        for line in Path(result.metrics_path).read_text().splitlines()
        if line
    ]
    assert [m["epoch"] for m in metrics] == [1, 2, 3]
    assert all(m["split"] == "train" and m["seed"] == 11 for m in metrics)
    assert all("loss" in m for m in metrics)

    test_metrics = json.loads((run_dir / "metrics_test.json").read_text())
    assert "loss" in test_metrics and "accuracy" not in test_metrics


def test_multiclass_pipeline_reports_accuracy(tmp_path):
    config = pipelines.load_preset("xor-softmax")
    config["train"].update({"epochs": 5, "run_dir": str(tmp_path / "xor")})

    result = pipelines.run_pipeline(config)

    first = json.loads(Path(result.metrics_path).read_text().splitlines()[0])
    assert 0.0 <= first["accuracy"] <= 100.0
    test_metrics = json.loads((tmp_path / "xor" / "metrics_test.json").read_text())
    assert test_metrics["num_total"] == 4
    assert set(test_metrics["confusion_matrix"]) <= {"0", "1"}


def test_pipeline_rejects_mismatched_model(tmp_path):
    config = _sine_config(tmp_path / "bad")
    config["model"]["layers"][0]["in"] = 2
    with pytest.raises(ValueError, match="input dim"):
        pipelines.run_pipeline(config)


def test_file_presets_are_discovered():
    assert {"xor-softmax", "sine-regression", "blobs-sigmoid"} <= set(pipelines.presets())
    config = pipelines.load_preset("xor-levenberg-marquardt")
    assert config["model"]["optimizer"]["name"] == "levenberg_marquardt"
    net = pipelines.build_network(config["model"], seed=3)
    assert net.optimizer.requires_hessian
    assert net.describe()[0] == {"type": "FullyConnectedLayer", "in": 2, "out": 6, "activation": "tanh"}
    with pytest.raises(KeyError, match="Available presets"):
        pipelines.load_preset("does-not-exist")


def test_load_config_reads_yaml(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("data: {name: xor}\nmodel: {layers: []}\ntrain: {epochs: 1}\n")
    config = pipelines.load_config(path)
    assert config["data"]["name"] == "xor"
    with pytest.raises(ValueError, match="at least one layer"):
        pipelines.build_network(config["model"])
