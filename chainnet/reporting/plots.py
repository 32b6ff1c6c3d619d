"""Headless-safe plotting of training curves."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Tuple


class PlotAdapter:
    """Collect per-epoch metrics and optionally emit one matplotlib figure."""

    def __init__(self, run_dir: str | Path, enable_plots: bool = False, metrics=("loss",)):
        self.enable_plots = enable_plots
        self.run_dir = Path(run_dir)
        self.metrics = tuple(metrics)
        self._history: Dict[str, List[Tuple[int, float]]] = {name: [] for name in self.metrics}
        if self.enable_plots:
            self.run_dir.mkdir(parents=True, exist_ok=True)

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        if not self.enable_plots:
            return
        for name in self.metrics:
            if name in metrics:
                self._history[name].append((int(epoch), float(metrics[name])))

    def close(self) -> Path | None:
        series = {name: points for name, points in self._history.items() if points}
        if not self.enable_plots or not series:
            return None
        import matplotlib

        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # imported lazily for headless safety

        fig, axes = plt.subplots(len(series), 1, squeeze=False, sharex=True)
        for ax, (name, points) in zip(axes[:, 0], series.items()):
            epochs, values = zip(*points)
            ax.plot(epochs, values)
            ax.set_ylabel(name)
        axes[-1, 0].set_xlabel("Epoch")
        axes[0, 0].set_title("Training Curve")
        plot_path = self.run_dir / "training_curve.png"
        fig.savefig(plot_path)
        plt.close(fig)
        return plot_path

    __call__ = on_epoch


__all__ = ["PlotAdapter"]
