"""Run artifact helpers."""

from __future__ import annotations

import hashlib
import json
import platform
import subprocess
import time
from pathlib import Path
from typing import Mapping, Sequence

import numpy as np


def _git_sha() -> str:
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL)
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def file_checksum(path: str | Path) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_manifest(
    path: str | Path,
    *,
    config: Mapping[str, object],
    dataset_provenance: Mapping[str, object],
    architecture: Sequence[Mapping[str, object]],
    weights_path: str | Path | None = None,
    completed: bool = True,
) -> str:
    """Write a manifest JSON file capturing what produced a set of weights."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {
        "git_sha": _git_sha(),
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "completed": bool(completed),
        "config": config,
        "dataset": dict(dataset_provenance),
        "architecture": [dict(layer) for layer in architecture],
        "environment": {
            "python": platform.python_version(),
            "numpy": np.__version__,
        },
    }
    if weights_path is not None:
        manifest["weights"] = {
            "path": Path(weights_path).name,
            "sha256": file_checksum(weights_path),
        }
    path.write_text(json.dumps(manifest, indent=2))
    return str(path)


__all__ = ["file_checksum", "write_manifest"]
