"""Benchmark CPOP against PSO on generated DAGs.

Sweeps every (task count, edge count) pair, generates one DAG per pair with the
same seed, schedules it with each requested algorithm on a fresh copy of the
same resource pool and prints one JSON line per run:

  {"algorithm": "CPOP", "tasks": 100, "edges": 10, "edges_placed": 10,
   "makespan": ..., "schedule_time_s": ...}

Usage:
  python compare_schedulers.py --tasks 100,200 --edges 10,20 --algos CPOP,PSO
  python compare_schedulers.py --config run.config --iters 50
"""
from __future__ import annotations
import argparse, json, logging, time
from dataclasses import dataclass, replace
from typing import Callable

from edgesched import cpop, pso, generate_dag, generate_resources
from edgesched.config import RunConfig, load_run_config

logger = logging.getLogger("compare")


@dataclass
class AlgoSpec:
    name: str
    schedule: Callable


def _build_registry(pso_config):
    return {
        'CPOP': AlgoSpec('CPOP', lambda g, r: cpop.schedule_dag(g, r)),
        'PSO': AlgoSpec('PSO', lambda g, r: pso.schedule_dag(g, r, config=pso_config)),
    }


def run_algo(spec: AlgoSpec, graph, resources):
    t0 = time.perf_counter()
    sched, info = spec.schedule(graph, list(resources))
    elapsed = time.perf_counter() - t0
    result = dict(algorithm=spec.name, makespan=sched.makespan(), schedule_time_s=elapsed)
    if 'best_fitness' in info:
        result['best_fitness'] = info['best_fitness']
    if 'critical_path' in info:
        result['critical_path_len'] = len(info['critical_path'])
    return result


def _int_list(text):
    return [int(x) for x in text.split(',') if x.strip()]


def main(argv=None):
    ap = argparse.ArgumentParser(description="CPOP vs PSO on generated DAGs")
    ap.add_argument('--config', help='Run config file (KEY value lines)')
    ap.add_argument('--tasks', type=_int_list, help='Comma separated task counts')
    ap.add_argument('--edges', type=_int_list, help='Comma separated edge counts')
    ap.add_argument('--resources', type=int)
    ap.add_argument('--seed', type=int)
    ap.add_argument('--swarm', type=int)
    ap.add_argument('--iters', type=int)
    ap.add_argument('--workers', type=int)
    ap.add_argument('--algos', default='CPOP,PSO', help='Comma separated list (subset of CPOP,PSO)')
    ap.add_argument('--log-level', default='WARNING')
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format='%(levelname)s %(name)s: %(message)s')

    try:
        cfg = load_run_config(args.config) if args.config else RunConfig()
    except (OSError, ValueError) as e:
        raise SystemExit(f"Bad config: {e}")
    if args.tasks is not None: cfg.task_counts = args.tasks
    if args.edges is not None: cfg.edge_counts = args.edges
    if args.resources is not None: cfg.resources = args.resources
    if args.seed is not None: cfg.seed = args.seed
    overrides = {k: v for k, v in (('swarm_size', args.swarm), ('iterations', args.iters),
                                   ('workers', args.workers)) if v is not None}
    pso_config = replace(cfg.pso, seed=cfg.seed, **overrides)
    try:
        pso_config.validate()
    except ValueError as e:
        raise SystemExit(str(e))

    registry = _build_registry(pso_config)
    requested = [a.strip().upper() for a in args.algos.split(',') if a.strip()]
    unknown = [a for a in requested if a not in registry]
    if unknown:
        raise SystemExit(f"Unsupported algorithms: {unknown}. Available: {sorted(registry)}")

    try:
        resources = generate_resources(cfg.resources, cfg.seed)
    except ValueError as e:
        raise SystemExit(str(e))
    for edges in cfg.edge_counts:
        for tasks in cfg.task_counts:
            try:
                graph = generate_dag(tasks, edges, cfg.seed)
            except ValueError as e:
                raise SystemExit(str(e))
            logger.info("generated %r", graph)
            for name in requested:
                result = run_algo(registry[name], graph, resources)
                result.update(tasks=tasks, edges=edges, edges_placed=graph.number_of_edges())
                print(json.dumps(result))


if __name__ == '__main__':
    main()
