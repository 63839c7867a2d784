from __future__ import annotations

import argparse
import logging
from pathlib import Path

import numpy as np
import pandas as pd

from abcmove.config import EngineConfig, dump_config, load_config
from abcmove.engine import get_estimate
from abcmove.inference.priors import default_movement_priors, sample_parameter_table
from abcmove.interfaces import build_selection
from abcmove.io.export import write_estimate
from abcmove.io.logging import setup_logging


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="abcmove", description="ABC rejection inference for movement models")
    sub = parser.add_subparsers(dest="command", required=True)

    est = sub.add_parser("estimate", help="Estimate parameters for observed summaries")
    est.add_argument("--config", required=False, help="Path to config YAML")
    est.add_argument("--parameters", required=True, help="CSV of prior parameter draws")
    est.add_argument("--simulated", required=True, help="CSV of simulated summaries, row-aligned with --parameters")
    est.add_argument("--observed", required=True, help="CSV of observed summaries, one row per target")
    est.add_argument("--targets", nargs="+", required=True, help="Parameter columns to infer")
    est.add_argument("--proportion", type=float, default=None)
    est.add_argument("--parallel", default=None, help="'auto', 'sequential' or a worker count")
    est.add_argument("--no-regression", action="store_true")
    est.add_argument("--no-map", action="store_true")
    est.add_argument("--out", required=True, help="Output directory")

    prior = sub.add_parser("sample-prior", help="Draw a parameter table from the default movement priors")
    prior.add_argument("--n", type=int, required=True)
    prior.add_argument("--seed", type=int, default=42)
    prior.add_argument("--out", required=True, help="Output CSV path")

    return parser.parse_args(argv)


def override_config(cfg: EngineConfig, args: argparse.Namespace) -> EngineConfig:
    updates = {}
    if args.proportion is not None:
        updates["proportion"] = args.proportion
    if args.parallel is not None:
        updates["parallel"] = int(args.parallel) if args.parallel.isdigit() else args.parallel
    if args.no_regression:
        updates["regression_adjust"] = False
    if args.no_map:
        updates["compute_map"] = False
    if not updates:
        return cfg
    return EngineConfig.model_validate({**cfg.model_dump(), **updates})


def read_observed(path: str | Path) -> pd.DataFrame:
    observed = pd.read_csv(path)
    if "target" in observed.columns:
        observed = observed.set_index("target")
    return observed


def run_estimate(args: argparse.Namespace) -> None:
    cfg = load_config(args.config) if args.config else EngineConfig()
    cfg = override_config(cfg, args)
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    dump_config(cfg, out_dir / "config_resolved.yaml")

    parameters = pd.read_csv(args.parameters)
    simulated = pd.read_csv(args.simulated)
    observed = read_observed(args.observed)
    logging.info(
        "Loaded %d draws, %d summary statistics, %d target(s)",
        len(parameters), simulated.shape[1], len(observed),
    )

    selection = build_selection(observed, simulated, args.targets)
    estimate = get_estimate(parameters, selection, cfg)
    write_estimate(estimate, out_dir)


def run_sample_prior(args: argparse.Namespace) -> None:
    rng = np.random.default_rng(args.seed)
    table = sample_parameter_table(default_movement_priors(), args.n, rng)
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out_path, index=False)
    logging.info("Wrote %d prior draws to %s", len(table), out_path)


def main(argv=None) -> None:
    setup_logging()
    args = parse_args(argv)
    if args.command == "estimate":
        run_estimate(args)
    elif args.command == "sample-prior":
        run_sample_prior(args)


if __name__ == "__main__":
    main()
