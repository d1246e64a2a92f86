"""Critical-Path-on-a-Processor (CPOP) scheduling (Topcuoglu et al., 2002).

 1. Ranks with average costs over the pool:
      rank_u(t) = avg_exec(t) + max_{s in succ(t)} ( avg_comm(t) + rank_u(s) ),  rank_u(exit)  = avg_exec(exit)
      rank_d(t) = avg_exec(t) + max_{p in pred(t)} ( avg_comm(p) + rank_d(p) ),  rank_d(entry) = avg_exec(entry)
    avg_comm(t) = output_size(t) / bandwidth (the processor pair is not known yet).
 2. priority = rank_u + rank_d. The critical path is a greedy forward walk from
    the highest-priority task, always stepping to the unvisited successor with
    the highest priority (first seen wins ties). This is a heuristic walk and
    not a longest-path search.
 3. Critical processor = resource with the smallest summed execution time of
    the critical path.
 4./5. Tasks are placed in decreasing rank_u order. A task never ranks below
    its successors and the sort is stable over a topological order, so every
    predecessor is placed first.
    Critical-path tasks go to the critical processor at max(clock, data ready);
    every other task goes to the resource with the earliest finish time
    (no insertion into idle gaps, pool order breaks ties).

Resources are read only; per-resource clocks live in this call.
"""
from __future__ import annotations
from typing import Dict, List, Sequence
import logging
import numpy as np

from .taskgraph import (TaskGraph, Resource, Schedule, DEFAULT_BANDWIDTH,
                        comm_time, speeds_of, check_pool)

logger = logging.getLogger("cpop")


def _avg_exec(graph: TaskGraph, speeds: np.ndarray) -> Dict[int, float]:
    return {t.id: float(np.mean(t.length / speeds)) for t in graph.tasks}


def compute_upward_ranks(graph: TaskGraph, resources: Sequence[Resource], bandwidth: float = DEFAULT_BANDWIDTH,
                         order: List[int] = None) -> Dict[int, float]:
    avg = _avg_exec(graph, speeds_of(resources))
    order = graph.topological_order() if order is None else order
    rank: Dict[int, float] = {}
    for n in reversed(order):
        c = comm_time(graph.task(n), bandwidth)
        rank[n] = avg[n] + max((c + rank[s] for s in graph.successors(n)), default=0.0)
    return rank


def compute_downward_ranks(graph: TaskGraph, resources: Sequence[Resource], bandwidth: float = DEFAULT_BANDWIDTH,
                           order: List[int] = None) -> Dict[int, float]:
    avg = _avg_exec(graph, speeds_of(resources))
    order = graph.topological_order() if order is None else order
    rank: Dict[int, float] = {}
    for n in order:
        rank[n] = avg[n] + max((comm_time(graph.task(p), bandwidth) + rank[p] for p in graph.predecessors(n)),
                               default=0.0)
    return rank


def find_critical_path(graph: TaskGraph, priority: Dict[int, float], order: List[int] = None) -> List[int]:
    order = graph.topological_order() if order is None else order
    if not order:
        return []
    # sorted() is stable: equal priorities keep topological order
    current = sorted(order, key=lambda n: priority[n], reverse=True)[0]
    path = []
    visited = set()
    while current is not None:
        visited.add(current)
        path.append(current)
        nxt = None
        best = -np.inf
        for s in graph.successors(current):
            if s not in visited and priority[s] > best:
                best = priority[s]
                nxt = s
        current = nxt
    return path


def select_critical_processor(graph: TaskGraph, path: List[int], resources: Sequence[Resource]) -> int:
    best, best_total = 0, None
    for p, r in enumerate(resources):
        total = sum(r.exec_time(graph.task(t)) for t in path)
        if best_total is None or total < best_total:
            best, best_total = p, total
    return best


def _data_ready(task: int, proc: int, graph: TaskGraph, sched: Schedule, bandwidth: float) -> float:
    ready = 0.0
    for pred in graph.predecessors(task):
        ev = sched.events.get(pred)
        if ev is None:
            raise RuntimeError(f"predecessor {pred} of task {task} not scheduled before it (DAG invalid)")
        arrival = ev.end if ev.proc == proc else ev.end + comm_time(graph.task(pred), bandwidth)
        if arrival > ready:
            ready = arrival
    return ready


def schedule_dag(graph: TaskGraph, resources: Sequence[Resource], bandwidth: float = DEFAULT_BANDWIDTH):
    """Run CPOP. Returns (Schedule, info) where info carries the rank tables,
    priorities, the critical path and the critical processor index."""
    sched = Schedule(resources)
    if len(graph) == 0:
        return sched, {}
    check_pool(graph, resources)

    order = graph.topological_order()
    up = compute_upward_ranks(graph, resources, bandwidth, order)
    down = compute_downward_ranks(graph, resources, bandwidth, order)
    priority = {n: up[n] + down[n] for n in order}
    path = find_critical_path(graph, priority, order)
    cp_proc = select_critical_processor(graph, path, resources)
    on_path = set(path)
    logger.debug("critical path of %d tasks pinned to resource %d", len(path), resources[cp_proc].id)

    clock = [0.0] * len(resources)
    for t in sorted(order, key=lambda n: up[n], reverse=True):
        task = graph.task(t)
        if t in on_path:
            start = max(clock[cp_proc], _data_ready(t, cp_proc, graph, sched, bandwidth))
            best = (cp_proc, start, start + resources[cp_proc].exec_time(task))
        else:
            best = None
            for p, r in enumerate(resources):
                start = max(clock[p], _data_ready(t, p, graph, sched, bandwidth))
                end = start + r.exec_time(task)
                if best is None or end < best[2]:
                    best = (p, start, end)
        p, start, end = best
        sched.place(t, p, start, end)
        clock[p] = end

    logger.info("CPOP scheduled %d tasks on %d resources, makespan %.4f", len(sched), len(resources), sched.makespan())
    info = dict(upward_rank=up, downward_rank=down, priority=priority,
                critical_path=path, critical_processor=cp_proc)
    return sched, info
