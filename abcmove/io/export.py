from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Hashable

from abcmove.inference.aggregate import ABCEstimate


def _safe_name(key: Hashable) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", str(key))


def write_estimate(estimate: ABCEstimate, out_dir: str | Path) -> Dict[str, Path]:
    """Write summary, per-target samples and failures as CSV files."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = {}

    summary_path = out_dir / "estimate_summary.csv"
    estimate.summary_frame().to_csv(summary_path, index=False)
    written["summary"] = summary_path

    for key, target in estimate.targets.items():
        name = _safe_name(key)
        path = out_dir / f"filtered_{name}.csv"
        frame = target.filtered.copy()
        frame.insert(0, "draw", target.indices)
        frame.to_csv(path, index=False)
        written[f"filtered_{name}"] = path
        if target.adjusted is not None:
            path = out_dir / f"filtered_{name}_adjusted.csv"
            frame = target.adjusted.copy()
            frame.insert(0, "draw", target.indices)
            frame.to_csv(path, index=False)
            written[f"filtered_{name}_adjusted"] = path

    failures = estimate.failure_frame()
    if not failures.empty:
        path = out_dir / "failures.csv"
        failures.to_csv(path, index=False)
        written["failures"] = path
        logging.warning("%d target(s) had failures, see %s", failures["target"].nunique(), path)

    return written
