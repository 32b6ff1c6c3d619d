"""Config-driven assembly of a network, a dataset and a training run."""

from __future__ import annotations

import json
import time
from copy import deepcopy
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

from ..core.layers import FullyConnectedLayer
from ..core.optimizers import build_optimizer
from ..core.types import RunResult
from ..data import DatasetSpec, get_dataset
from ..network import Network
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.plots import PlotAdapter
from ..reporting.summary import write_summary
from .trainer import DEFAULT_TASK_SIZE, DIVERGENCE_CHECK_INTERVAL, HESSIAN_SAMPLE_CAP, Trainer

_PRESETS: Dict[str, Mapping[str, object]] = {
    "xor-softmax": {
        "data": {"name": "xor", "options": {}},
        "model": {
            "name": "xor-softmax",
            "layers": [
                {"type": "fully_connected", "in": 2, "out": 8, "activation": "tanh"},
                {"type": "fully_connected", "in": 8, "out": 2, "activation": "softmax"},
            ],
            "loss": "cross_entropy_multiclass",
            "optimizer": {"name": "gradient_descent", "params": {"alpha": 0.5}},
        },
        "train": {
            "epochs": 300,
            "batch_size": 4,
            "threads": 2,
            "seed": 7,
            "run_dir": "runs/xor-softmax",
            "enable_plots": False,
        },
    },
    "sine-regression": {
        "data": {"name": "sine", "options": {"freq": 1.0, "n_points": 64, "seed": 0}},
        "model": {
            "name": "sine-regression",
            "layers": [
                {"type": "fully_connected", "in": 1, "out": 16, "activation": "tanh"},
                {"type": "fully_connected", "in": 16, "out": 1, "activation": "identity"},
            ],
            "loss": "mse",
            "optimizer": {"name": "adam", "params": {"alpha": 0.01}},
        },
        "train": {
            "epochs": 100,
            "batch_size": 8,
            "threads": 4,
            "seed": 0,
            "run_dir": "runs/sine-regression",
            "enable_plots": False,
        },
    },
    "blobs-sigmoid": {
        "data": {"name": "blobs", "options": {"num_classes": 3, "n_per_class": 40, "seed": 1}},
        "model": {
            "name": "blobs-sigmoid",
            "layers": [
                {"type": "fully_connected", "in": 2, "out": 12, "activation": "tanh"},
                {"type": "fully_connected", "in": 12, "out": 3, "activation": "sigmoid"},
            ],
            "loss": "cross_entropy",
            "optimizer": {"name": "adagrad", "params": {"alpha": 0.1}},
        },
        "train": {
            "epochs": 40,
            "batch_size": 16,
            "threads": 4,
            "seed": 1,
            "run_dir": "runs/blobs-sigmoid",
            "enable_plots": False,
        },
    },
}

_PRESET_DIR = Path(__file__).resolve().parents[2] / "configs" / "presets"
_FILE_PRESETS_CACHE: Dict[str, Mapping[str, object]] | None = None

_LAYER_TYPES = {"fully_connected": FullyConnectedLayer, "fc": FullyConnectedLayer}


def _read_preset_file(path: Path) -> Mapping[str, object]:
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        import yaml

        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported preset file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise TypeError(f"Preset {path.name} must decode to a mapping")
    return data


def _file_presets() -> Dict[str, Mapping[str, object]]:
    global _FILE_PRESETS_CACHE
    if _FILE_PRESETS_CACHE is None:
        found: Dict[str, Mapping[str, object]] = {}
        if _PRESET_DIR.exists():
            for file in sorted(_PRESET_DIR.iterdir()):
                if file.suffix.lower() not in {".yaml", ".yml", ".json"}:
                    continue
                data = _read_preset_file(file)
                missing = {"data", "model", "train"} - set(data)
                if missing:
                    raise KeyError(
                        f"Preset {file.name} is missing required sections: {', '.join(sorted(missing))}"
                    )
                found[file.stem] = json.loads(json.dumps(data))
        _FILE_PRESETS_CACHE = found
    return {name: deepcopy(cfg) for name, cfg in _FILE_PRESETS_CACHE.items()}


def presets() -> Mapping[str, Mapping[str, object]]:
    combined: Dict[str, Mapping[str, object]] = {}
    combined.update({name: deepcopy(cfg) for name, cfg in _PRESETS.items()})
    combined.update(_file_presets())
    return combined


def load_preset(name: str) -> Mapping[str, object]:
    file_presets = _file_presets()
    if name in file_presets:
        return file_presets[name]
    try:
        return deepcopy(_PRESETS[name])
    except KeyError as exc:
        available = ", ".join(sorted(presets()))
        raise KeyError(f"Unknown preset {name!r}. Available presets: {available}") from exc


def load_config(path: str | Path) -> Mapping[str, object]:
    """Read a run config from a YAML or JSON file."""

    return _read_preset_file(Path(path))


def build_network(model_cfg: Mapping[str, object], seed: int = 0) -> Network:
    optimizer_cfg = model_cfg.get("optimizer", "gradient_descent")
    if isinstance(optimizer_cfg, Mapping):
        optimizer = build_optimizer(
            str(optimizer_cfg.get("name", "gradient_descent")),
            **dict(optimizer_cfg.get("params", {})),
        )
    else:
        optimizer = build_optimizer(str(optimizer_cfg))

    net = Network(
        loss=str(model_cfg.get("loss", "mse")),
        optimizer=optimizer,
        name=str(model_cfg.get("name", "")),
        seed=seed,
    )
    for spec in model_cfg.get("layers", []):
        layer_type = str(spec.get("type", "fully_connected"))
        if layer_type not in _LAYER_TYPES:
            raise KeyError(f"Unknown layer type {layer_type!r}")
        net.add(
            _LAYER_TYPES[layer_type](
                int(spec["in"]),
                int(spec["out"]),
                activation=str(spec.get("activation", "sigmoid")),
                has_bias=bool(spec.get("bias", True)),
            )
        )
    if net.depth == 0:
        raise ValueError("model config must define at least one layer")
    if "weight_init" in model_cfg:
        net.weight_init(**_init_args(model_cfg["weight_init"]))
    if "bias_init" in model_cfg:
        net.bias_init(**_init_args(model_cfg["bias_init"]))
    return net


def _init_args(spec: object) -> Dict[str, object]:
    if isinstance(spec, Mapping):
        return {"initializer": spec["name"], **dict(spec.get("params", {}))}
    return {"initializer": str(spec)}


class _EpochEvaluator:
    """Compute loss (and accuracy) after each epoch and fan out to sinks."""

    def __init__(self, network: Network, dataset: DatasetSpec, sinks: Sequence[object]) -> None:
        self.network = network
        self.dataset = dataset
        self.sinks = list(sinks)
        self.history: List[Mapping[str, float]] = []

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        ds = self.dataset
        payload = dict(metrics)
        payload["loss"] = self.network.get_loss(ds.train_inputs, ds.train_targets) / max(
            1, len(ds.train_inputs)
        )
        if ds.task_type == "multiclass":
            payload["accuracy"] = self.network.test(ds.train_inputs, ds.train_targets).accuracy()
        self.history.append(payload)
        for sink in self.sinks:
            sink.on_epoch(epoch, payload)


def run_pipeline(config: Mapping[str, object]) -> RunResult:
    data_cfg = dict(config["data"])
    model_cfg = dict(config["model"])
    train_cfg = dict(config["train"])

    seed = int(train_cfg.get("seed", 0))
    dataset = get_dataset(str(data_cfg["name"]), **dict(data_cfg.get("options", {})))
    net = build_network(model_cfg, seed=seed)
    if net.in_dim != dataset.d_in:
        raise ValueError(f"Network input dim {net.in_dim} != dataset input dim {dataset.d_in}")
    if net.out_dim != dataset.d_out:
        raise ValueError(f"Network output dim {net.out_dim} != dataset output dim {dataset.d_out}")

    run_dir = _resolve_run_dir(train_cfg, dataset.name, net.name)
    run_dir.mkdir(parents=True, exist_ok=True)

    epochs = int(train_cfg.get("epochs", 1))
    batch_size = int(train_cfg.get("batch_size", 1))
    threads = int(train_cfg.get("threads", DEFAULT_TASK_SIZE))

    _print_startup_summary(
        dataset_name=dataset.name,
        network=net,
        batch_size=batch_size,
        threads=threads,
        epochs=epochs,
    )

    jsonl = JsonlSink(run_dir / "metrics.jsonl", split="train", seed=seed, network=net.name)
    csv_sink = CsvSink(run_dir / "metrics.csv", split="train")
    plots = PlotAdapter(
        run_dir,
        enable_plots=bool(train_cfg.get("enable_plots", False)),
        metrics=("loss", "accuracy") if dataset.task_type == "multiclass" else ("loss",),
    )
    evaluator = _EpochEvaluator(net, dataset, [jsonl, csv_sink, plots])

    trainer = Trainer(
        net,
        callbacks=[evaluator],
        divergence_check_interval=int(
            train_cfg.get("divergence_check_interval", DIVERGENCE_CHECK_INTERVAL)
        ),
        hessian_samples=int(train_cfg.get("hessian_samples", HESSIAN_SAMPLE_CAP)),
    )
    net.check_training_data(dataset.train_inputs, dataset.train_targets)
    completed = trainer.train(
        len(dataset.train_inputs),
        lambda i: dataset.train_inputs[i],
        lambda i, task_id: dataset.train_targets[i],
        batch_size=batch_size,
        epochs=epochs,
        reset_weights=bool(train_cfg.get("reset_weights", True)),
        thread_count=threads,
    )
    plots.close()

    weights_path = net.save_weights(run_dir / "weights.txt")

    test_metrics: Dict[str, object] = {}
    if dataset.test_inputs:
        if dataset.task_type == "multiclass":
            test_metrics.update(net.test(dataset.test_inputs, dataset.test_targets).to_dict())
        test_metrics["loss"] = net.get_loss(dataset.test_inputs, dataset.test_targets) / len(
            dataset.test_inputs
        )
    (run_dir / "metrics_test.json").write_text(json.dumps(test_metrics, indent=2))

    safe_config = json.loads(json.dumps(config))
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        dataset_provenance=dataset.provenance,
        architecture=net.describe(),
        weights_path=weights_path,
        completed=completed,
    )
    summary_path = write_summary(
        jsonl.path,
        run_dir / "summary.json",
        tail=int(train_cfg.get("summary_tail", 10)),
        extra={"completed": completed},
    )

    return RunResult(
        completed=completed,
        epochs=len(evaluator.history),
        metrics_path=str(jsonl.path),
        manifest_path=manifest,
        weights_path=str(weights_path),
        summary_path=summary_path,
    )


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str, name: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset / (name or "network")


def _print_startup_summary(
    *,
    dataset_name: str,
    network: Network,
    batch_size: int,
    threads: int,
    epochs: int,
) -> None:
    params = sum(layer.weight.size + layer.bias.size for layer in network.layers)
    print("=== chainnet run ===")
    print(f"Dataset       : {dataset_name}")
    print(f"Layers        : {[(l['in'], l['out'], l['activation']) for l in network.describe()]}")
    print(f"Loss          : {network.loss.kind.value}")
    print(f"Optimizer     : {type(network.optimizer).__name__}")
    print(f"Batch/threads : {batch_size}/{threads}")
    print(f"Epochs        : {epochs}")
    print(f"Parameters    : {params}")
    print("====================")


__all__ = ["build_network", "load_config", "load_preset", "presets", "run_pipeline"]
