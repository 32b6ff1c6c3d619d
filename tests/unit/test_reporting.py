import csv
import json

import pytest

from chainnet.data import available_datasets, get_dataset
from chainnet.reporting import CsvSink, JsonlSink, PlotAdapter, write_manifest, write_summary
from chainnet.reporting.artifacts import file_checksum
from chainnet.reporting.summary import summarise


def test_jsonl_and_csv_sinks_write_one_row_per_epoch(tmp_path):
    jsonl = JsonlSink(tmp_path / "m.jsonl", split="train", seed=4, network="net")
    csv_sink = CsvSink(tmp_path / "m.csv", split="train")
    for epoch, loss in enumerate([0.5, 0.25], start=1):
        payload = {"loss": loss, "steps": epoch * 2, "note": "ignored"}
        jsonl.on_epoch(epoch, payload)
        csv_sink(epoch, payload)

    records = [json.loads(line) for line in (tmp_path / "m.jsonl").read_text().splitlines()]
    assert records[1] == {
        "epoch": 2,
        "split": "train",
        "seed": 4,
        "network": "net",
        "loss": 0.25,
        "steps": 4.0,
    }
    with (tmp_path / "m.csv").open(newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["loss"] for row in rows] == ["0.5", "0.25"]
    assert rows[0]["split"] == "train"


def test_summarise_reports_tail_statistics(tmp_path):
    records = [{"epoch": i, "loss": float(v)} for i, v in enumerate([4, 3, 2, 1], start=1)]
    summary = summarise(records, tail=2)
    assert summary["records"] == 4
    assert summary["metrics"]["loss"] == {
        "min": 1.0,
        "max": 4.0,
        "first": 4.0,
        "last": 1.0,
        "tail_mean": 1.5,
    }
    assert "epoch" not in summary["metrics"]

    jsonl = tmp_path / "m.jsonl"
    jsonl.write_text("\n".join(json.dumps(r) for r in records) + "\n")
    out = write_summary(jsonl, tmp_path / "summary.json", tail=2, extra={"completed": True})
    data = json.loads(open(out).read())
    assert data["completed"] is True
    assert data["tail_window"] == 2


def test_plot_adapter_is_noop_when_disabled(tmp_path):
    adapter = PlotAdapter(tmp_path / "plots", enable_plots=False)
    adapter.on_epoch(1, {"loss": 1.0})
    assert adapter.close() is None
    assert not (tmp_path / "plots").exists()


def test_plot_adapter_writes_headless_figure(tmp_path):
    pytest.importorskip("matplotlib")
    adapter = PlotAdapter(tmp_path, enable_plots=True, metrics=("loss", "accuracy"))
    for epoch in range(1, 4):
        adapter(epoch, {"loss": 1.0 / epoch, "accuracy": 30.0 * epoch})
    path = adapter.close()
    assert path == tmp_path / "training_curve.png"
    assert path.stat().st_size > 0


def test_manifest_records_weights_checksum(tmp_path):
    weights = tmp_path / "weights.txt"
    weights.write_text("0.5 0.25\n")
    path = write_manifest(
        tmp_path / "manifest.json",
        config={"train": {"seed": 1}},
        dataset_provenance={"generator": "xor"},
        architecture=[{"type": "FullyConnectedLayer", "in": 2, "out": 2, "activation": "tanh"}],
        weights_path=weights,
        completed=False,
    )
    manifest = json.loads(open(path).read())
    assert manifest["completed"] is False
    assert manifest["weights"]["sha256"] == file_checksum(weights)
    assert manifest["architecture"][0]["in"] == 2
    assert "git_sha" in manifest and "numpy" in manifest["environment"]


def test_synthetic_datasets_are_registered_and_seeded():
    assert {"blobs", "sine", "xor"} <= set(available_datasets())
    xor = get_dataset("xor", low=0.0)
    assert xor.train_targets == [0, 1, 1, 0]
    assert xor.train_inputs[0].tolist() == [0.0, 0.0]

    a = get_dataset("blobs", num_classes=4, n_per_class=10, seed=2)
    b = get_dataset("blobs", num_classes=4, n_per_class=10, seed=2)
    assert a.splits == {"train": 30, "test": 10}
    assert a.d_out == 4 and set(a.train_targets) <= {0, 1, 2, 3}
    assert all((x == y).all() for x, y in zip(a.train_inputs, b.train_inputs))

    sine = get_dataset("sine", n_points=20, test_split=0.5)
    assert sine.splits == {"train": 10, "test": 10}
    assert sine.train_targets[0].shape == (1,)
    with pytest.raises(KeyError, match="Available datasets"):
        get_dataset("mnist")
