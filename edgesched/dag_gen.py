"""Seeded synthetic workloads for the CPOP / PSO comparison.

generate_dag(task_count, edge_count, seed)
  Tasks are created in index order with
    length      = 100 + U{0..999}   work units
    input_size  = 100 + U{0..999}   bytes
    output_size =  50 + U{0..499}   bytes
    priority    =   1 + U{0..9}
  Edges are drawn as random (source, target) index pairs and kept only when
  source < target and the pair is new, so the graph is acyclic by
  construction. Sampling stops after edge_count acceptances or
  10 * edge_count attempts; a dense request simply yields fewer edges.

generate_resources(count, seed)
  Heterogeneous pool (speed 1000-3000, 2-4 cores, idle 10-20 W, max 50-100 W,
  link 50-100 MB/s).

Usage:
  python -m edgesched.dag_gen --tasks 50 --edges 80 --seed 42 --prefix graphs/g50
"""
from __future__ import annotations
import argparse, json, logging, random
from typing import List

from .taskgraph import Task, TaskGraph, Resource, write_graph_csv

logger = logging.getLogger("dag_gen")


def generate_dag(task_count: int, edge_count: int, seed: int = 42) -> TaskGraph:
    if task_count < 0 or edge_count < 0:
        raise ValueError(f"task_count and edge_count must be >= 0 (got {task_count}, {edge_count})")
    rng = random.Random(seed)
    graph = TaskGraph()
    for i in range(task_count):
        length = 100 + rng.randrange(1000)
        input_size = 100 + rng.randrange(1000)
        output_size = 50 + rng.randrange(500)
        priority = 1 + rng.randrange(10)
        graph.add_task(Task(i, length, input_size, output_size, priority))
    if task_count == 0:
        return graph
    added = 0
    attempts = 0
    max_attempts = edge_count * 10
    while added < edge_count and attempts < max_attempts:
        src = rng.randrange(task_count)
        dst = rng.randrange(task_count)
        if src < dst and not graph.has_edge(src, dst):
            graph.add_edge(src, dst)
            added += 1
        attempts += 1
    if added < edge_count:
        logger.debug("requested %d edges, placed %d after %d attempts", edge_count, added, attempts)
    return graph


def generate_resources(count: int, seed: int = 42) -> List[Resource]:
    if count < 1:
        raise ValueError(f"resource count must be >= 1 (got {count})")
    rng = random.Random(seed)
    pool = []
    for i in range(count):
        speed = 1000 + rng.random() * 2000
        cores = 2 + rng.randrange(3)
        power_idle = 10 + rng.random() * 10
        power_max = 50 + rng.random() * 50
        bandwidth = 50 + rng.random() * 50
        pool.append(Resource(i, speed, cores, power_idle, power_max, bandwidth))
    return pool


def main(argv=None):
    ap = argparse.ArgumentParser(description='Generate a random DAG for CPOP/PSO and write it as CSV')
    ap.add_argument('--tasks', type=int, required=True)
    ap.add_argument('--edges', type=int, required=True)
    ap.add_argument('--seed', type=int, default=42)
    ap.add_argument('--prefix', type=str, required=True)
    args = ap.parse_args(argv)
    try:
        graph = generate_dag(args.tasks, args.edges, args.seed)
    except ValueError as e:
        raise SystemExit(str(e))
    conn, attrs = write_graph_csv(graph, args.prefix)
    print(json.dumps({'prefix': args.prefix, 'tasks': len(graph), 'edges': graph.number_of_edges(),
                      'connectivity': str(conn), 'attributes': str(attrs)}))


if __name__ == '__main__':
    main()
