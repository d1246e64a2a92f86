"""Run configuration files.

Plain whitespace-separated ``KEY value [value ...]`` lines, one setting per
line; blank lines and ``#`` comments are skipped. Recognised keys:

  TASKS      task counts to sweep            e.g. ``TASKS 100 200 300``
  EDGES      edge counts to sweep            e.g. ``EDGES 10 20 30``
  SEED       generator seed
  RESOURCES  resource pool size
  SWARM ITERS WMAX WMIN C1 C2 W1 W2 W3 WORKERS   PSO settings
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, List
import logging

from .pso import PSOConfig

logger = logging.getLogger("config")

_PSO_KEYS = {
    'SWARM': ('swarm_size', int),
    'ITERS': ('iterations', int),
    'WMAX': ('w_max', float),
    'WMIN': ('w_min', float),
    'C1': ('c1', float),
    'C2': ('c2', float),
    'W1': ('w_makespan', float),
    'W2': ('w_energy', float),
    'W3': ('w_balance', float),
    'WORKERS': ('workers', int),
}


@dataclass
class RunConfig:
    task_counts: List[int] = field(default_factory=lambda: [100, 200, 300, 400, 500])
    edge_counts: List[int] = field(default_factory=lambda: [10, 20, 30])
    seed: int = 42
    resources: int = 10
    pso: PSOConfig = field(default_factory=PSOConfig)


def read_config(path) -> Dict[str, List[str]]:
    out = {}
    with open(path, "r") as f:
        for lineno, line in enumerate(f, 1):
            line = line.split('#', 1)[0].strip()
            if not line:
                continue
            parts = line.split()
            if len(parts) < 2:
                raise ValueError(f"{path}:{lineno}: missing value for {parts[0]}")
            out[parts[0].upper()] = parts[1:]
    return out


def load_run_config(path, base: RunConfig = None) -> RunConfig:
    cfg = RunConfig() if base is None else replace(base, task_counts=list(base.task_counts),
                                                   edge_counts=list(base.edge_counts))
    raw = read_config(path)
    try:
        if 'TASKS' in raw:
            cfg.task_counts = [int(x) for x in raw['TASKS']]
        if 'EDGES' in raw:
            cfg.edge_counts = [int(x) for x in raw['EDGES']]
        if 'SEED' in raw:
            cfg.seed = int(raw['SEED'][0])
        if 'RESOURCES' in raw:
            cfg.resources = int(raw['RESOURCES'][0])
        pso_values = {name: conv(raw[key][0]) for key, (name, conv) in _PSO_KEYS.items() if key in raw}
    except ValueError as e:
        raise ValueError(f"{path}: {e}") from e
    unknown = sorted(set(raw) - set(_PSO_KEYS) - {'TASKS', 'EDGES', 'SEED', 'RESOURCES'})
    if unknown:
        logger.warning("%s: ignoring unknown keys %s", path, unknown)
    if pso_values:
        cfg.pso = replace(cfg.pso, **pso_values)
    cfg.pso.validate()
    return cfg
