from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Tuple, Union

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from abcmove.inference.batch import ExecutionMode, parse_execution_mode
from abcmove.inference.tmvn import MapOptions


class MapConfig(BaseModel):
    restarts: int = 2
    maxiter: int = 500
    ftol: float = 1e-9
    cdf_maxpts: int = 20000

    @field_validator("restarts")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("restarts must be >= 0")
        return value

    @field_validator("maxiter", "cdf_maxpts")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value


class EngineConfig(BaseModel):
    proportion: float = 1 / 1000
    regression_adjust: bool = True
    compute_map: bool = True
    ci_levels: Tuple[float, ...] = (0.025, 0.975)
    # False / "sequential", True / "auto", or a worker count
    parallel: Union[bool, int, Literal["auto", "sequential"]] = False
    executor: Literal["process", "thread"] = "process"
    degenerate_scale: Literal["exclude", "raise"] = "exclude"
    backend: Literal["numpy", "torch"] = "numpy"
    device: Literal["auto", "cpu", "cuda"] = "auto"
    seed: int = 42
    map: MapConfig = MapConfig()

    @field_validator("proportion")
    @classmethod
    def _check_proportion(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("proportion must lie in (0, 1]")
        return value

    @field_validator("ci_levels")
    @classmethod
    def _check_levels(cls, value: Tuple[float, ...]) -> Tuple[float, ...]:
        if len(value) == 0:
            raise ValueError("ci_levels must not be empty")
        if any(not 0.0 <= level <= 1.0 for level in value):
            raise ValueError("ci_levels must lie in [0, 1]")
        if list(value) != sorted(value):
            raise ValueError("ci_levels must be increasing")
        return value

    def execution_mode(self) -> ExecutionMode:
        return parse_execution_mode(self.parallel)

    def map_options(self) -> MapOptions:
        return MapOptions(
            restarts=self.map.restarts,
            maxiter=self.map.maxiter,
            ftol=self.map.ftol,
            cdf_maxpts=self.map.cdf_maxpts,
            seed=self.seed,
        )


class ConfigError(Exception):
    pass


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path) -> EngineConfig:
    path = Path(path)
    data = yaml.safe_load(path.read_text()) or {}
    base_path = data.get("base")
    if base_path:
        base_data = yaml.safe_load((path.parent / base_path).read_text()) or {}
        data = deep_merge(base_data, data)
        data.pop("base", None)
    try:
        return EngineConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def dump_config(cfg: EngineConfig, path: str | Path) -> None:
    path = Path(path)
    path.write_text(yaml.safe_dump(cfg.model_dump(mode="json"), sort_keys=False))
