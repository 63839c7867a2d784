"""
MAP Batch Coordinator
=====================
Runs independent MAP fits for many inference targets, one after another
or on a worker pool scoped to the batch.

Execution mode is one of ``Sequential()``, ``Parallel(workers)`` or
``ParallelAuto()``. Workers get every input as arguments and return
plain outcomes; results are reassembled in input order.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Literal, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from abcmove.inference.errors import ABCError, InvalidWorkerCount
from abcmove.inference.tmvn import MapOptions, estimate_map

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class Sequential:
    pass


@dataclass(frozen=True)
class Parallel:
    workers: int


@dataclass(frozen=True)
class ParallelAuto:
    pass


ExecutionMode = Union[Sequential, Parallel, ParallelAuto]


def parse_execution_mode(value: Union[bool, int, str, ExecutionMode, None]) -> ExecutionMode:
    """
    Translate a configuration value into an execution mode.

    False/None/"sequential" run sequentially, True/"auto" use all but one
    core, a positive integer fixes the worker count.
    """
    if isinstance(value, (Sequential, Parallel, ParallelAuto)):
        return value
    if value is None or value is False:
        return Sequential()
    if value is True:
        return ParallelAuto()
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "sequential":
            return Sequential()
        if lowered == "auto":
            return ParallelAuto()
        if lowered.isdigit():
            return Parallel(int(lowered))
        raise InvalidWorkerCount(f"unrecognised parallel setting {value!r}")
    if isinstance(value, (int, np.integer)):
        return Parallel(int(value))
    raise InvalidWorkerCount(f"unrecognised parallel setting {value!r}")


def available_cpus() -> int:
    """CPUs this process may run on (affinity aware where the platform reports it)."""
    if hasattr(os, "sched_getaffinity"):
        return max(1, len(os.sched_getaffinity(0)))
    return os.cpu_count() or 1


def resolve_workers(mode: ExecutionMode) -> int:
    """Concrete worker count for a mode; 1 means run in-process."""
    if isinstance(mode, Sequential):
        return 1
    if isinstance(mode, ParallelAuto):
        return max(1, available_cpus() - 1)
    if isinstance(mode, Parallel):
        workers = mode.workers
        if isinstance(workers, bool) or not isinstance(workers, (int, np.integer)) or workers < 1:
            raise InvalidWorkerCount(f"worker count must be a positive integer, got {workers!r}")
        return int(workers)
    raise InvalidWorkerCount(f"unknown execution mode {mode!r}")


@dataclass(frozen=True)
class MapOutcome:
    """MAP result for a single target: an estimate or a failure reason."""

    estimate: Optional[pd.Series] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> str:
        return "ok" if self.ok else "failed"


class LogProgress:
    """Progress callback that logs every ``every`` completed targets."""

    def __init__(self, label: str = "MAP", every: int = 1) -> None:
        self.label = label
        self.every = max(1, every)

    def __call__(self, done: int, total: int) -> None:
        if done % self.every == 0 or done == total:
            logging.info("%s: %d/%d targets done", self.label, done, total)


def _map_worker(
    key: Hashable,
    position: int,
    values: np.ndarray,
    columns: Tuple[str, ...],
    lower: np.ndarray,
    upper: np.ndarray,
    options: MapOptions,
) -> Tuple[Hashable, MapOutcome]:
    # top-level so the process pool can pickle it
    sample = pd.DataFrame(values, columns=list(columns))
    try:
        estimate = estimate_map(sample, lower, upper, options, position=position)
    except ABCError as exc:
        return key, MapOutcome(error=f"{type(exc).__name__}: {exc}")
    return key, MapOutcome(estimate=estimate)


def _ordered_bounds(bounds, columns: Tuple[str, ...]) -> np.ndarray:
    if isinstance(bounds, pd.Series):
        return bounds.loc[list(columns)].to_numpy(dtype=float)
    return np.asarray(bounds, dtype=float)


def run_map_batch(
    targets: Mapping[Hashable, pd.DataFrame],
    mode: ExecutionMode,
    lower,
    upper,
    options: Optional[MapOptions] = None,
    progress: Optional[ProgressCallback] = None,
    executor: Literal["process", "thread"] = "process",
) -> Dict[Hashable, MapOutcome]:
    """
    MAP estimate for every target sample.

    Args:
        targets: Accepted (or adjusted) sample per target id
        mode: Sequential, Parallel(n) or ParallelAuto
        lower, upper: Prior bounds, shared by every target
        options: Optimiser settings
        progress: Called as progress(done, total) after each target
        executor: Worker pool kind for parallel modes

    Returns:
        Outcome per target id, in the input order
    """
    workers = resolve_workers(mode)
    options = options or MapOptions()
    total = len(targets)
    outcomes: Dict[Hashable, MapOutcome] = {}
    if total == 0:
        return outcomes

    tasks = []
    for position, (key, sample) in enumerate(targets.items()):
        columns = tuple(str(c) for c in sample.columns)
        tasks.append(
            (
                key,
                position,
                sample.to_numpy(dtype=float),
                columns,
                _ordered_bounds(lower, columns),
                _ordered_bounds(upper, columns),
                options,
            )
        )

    if workers <= 1:
        for done, task in enumerate(tasks, start=1):
            key, outcome = _map_worker(*task)
            outcomes[key] = outcome
            if progress is not None:
                progress(done, total)
    else:
        pool_cls = ThreadPoolExecutor if executor == "thread" else ProcessPoolExecutor
        logging.info("MAP batch: %d targets on %d %s workers", total, min(workers, total), executor)
        with pool_cls(max_workers=min(workers, total)) as pool:
            futures = [pool.submit(_map_worker, *task) for task in tasks]
            for done, fut in enumerate(as_completed(futures), start=1):
                key, outcome = fut.result()
                outcomes[key] = outcome
                if progress is not None:
                    progress(done, total)

    ordered = {task[0]: outcomes[task[0]] for task in tasks}
    for key, outcome in ordered.items():
        if not outcome.ok:
            logging.warning("MAP estimate failed for target %s: %s", key, outcome.error)
    return ordered
