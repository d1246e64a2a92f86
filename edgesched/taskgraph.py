"""Task graph and resource model shared by the CPOP and PSO schedulers.

The DAG is an arena of immutable Task values keyed by integer id. Precedence is
held in a networkx.DiGraph whose nodes are the ids, so tasks never point at each
other and a graph can be handed to several schedulers at once.

Conventions:
  - execution time of task t on resource r  = t.length / r.speed
  - communication time of edge (a -> b)      = a.output_size / bandwidth,
    zero when a and b run on the same resource.
  - a resource pool is an ordered sequence; the index of a resource in the
    pool ("proc") is what schedules record, and pool order breaks every tie.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence
from pathlib import Path
import csv, logging
import numpy as np, networkx as nx

logger = logging.getLogger("taskgraph")

DEFAULT_BANDWIDTH = 1_000_000.0


@dataclass(frozen=True)
class Task:
    id: int
    length: float
    input_size: float = 0.0
    output_size: float = 0.0
    priority: Optional[int] = None


@dataclass(frozen=True)
class Resource:
    """A compute resource. Only id and speed matter to the schedulers."""
    id: int
    speed: float
    cores: int = 1
    power_idle: float = 0.0
    power_max: float = 0.0
    bandwidth: float = 0.0

    def exec_time(self, task: Task) -> float:
        return task.length / self.speed


@dataclass
class ScheduleEvent:
    task: int
    start: float
    end: float
    proc: int


class TaskGraph:
    """Read-only-after-construction DAG of tasks."""

    def __init__(self, tasks: Iterable[Task] = (), edges: Iterable[tuple] = ()):
        self._tasks: Dict[int, Task] = {}
        self._g = nx.DiGraph()
        for t in tasks:
            self.add_task(t)
        for u, v in edges:
            self.add_edge(u, v)

    def add_task(self, task: Task):
        if task.id in self._tasks:
            raise ValueError(f"duplicate task id {task.id}")
        self._tasks[task.id] = task
        self._g.add_node(task.id)

    def add_edge(self, src: int, dst: int):
        if src not in self._tasks or dst not in self._tasks:
            raise ValueError(f"edge ({src}, {dst}) references an unknown task")
        if src == dst:
            raise ValueError(f"self-loop on task {src}")
        if self._g.has_edge(src, dst):
            return
        # Any path dst ~> src would close a cycle.
        if nx.has_path(self._g, dst, src):
            raise ValueError(f"edge ({src}, {dst}) would create a cycle")
        self._g.add_edge(src, dst)

    def __len__(self):
        return len(self._tasks)

    def __contains__(self, task_id):
        return task_id in self._tasks

    @property
    def tasks(self) -> List[Task]:
        return [self._tasks[i] for i in sorted(self._tasks)]

    def task(self, task_id: int) -> Task:
        return self._tasks[task_id]

    def successors(self, task_id: int) -> List[int]:
        return list(self._g.successors(task_id))

    def predecessors(self, task_id: int) -> List[int]:
        return list(self._g.predecessors(task_id))

    def edges(self) -> List[tuple]:
        return list(self._g.edges())

    def has_edge(self, src: int, dst: int) -> bool:
        return self._g.has_edge(src, dst)

    def number_of_edges(self) -> int:
        return self._g.number_of_edges()

    def topological_order(self) -> List[int]:
        return list(nx.topological_sort(self._g))

    def entry_tasks(self) -> List[int]:
        return [n for n in sorted(self._g.nodes()) if self._g.in_degree(n) == 0]

    def exit_tasks(self) -> List[int]:
        return [n for n in sorted(self._g.nodes()) if self._g.out_degree(n) == 0]

    def to_networkx(self) -> nx.DiGraph:
        """Copy of the precedence graph with task attributes on the nodes and
        the communicated byte count as edge weight."""
        g = nx.DiGraph()
        for t in self.tasks:
            g.add_node(t.id, length=t.length, input_size=t.input_size,
                       output_size=t.output_size, priority=t.priority)
        for u, v in self._g.edges():
            g.add_edge(u, v, weight=float(self._tasks[u].output_size))
        return g

    def __repr__(self):
        return f"TaskGraph(tasks={len(self)}, edges={self.number_of_edges()})"


def comm_time(task: Task, bandwidth: float = DEFAULT_BANDWIDTH) -> float:
    return task.output_size / bandwidth


def speeds_of(resources: Sequence[Resource]) -> np.ndarray:
    return np.array([r.speed for r in resources], dtype=float)


def check_pool(graph: TaskGraph, resources: Sequence[Resource]):
    if len(graph) and not resources:
        raise ValueError("resource pool is empty")
    for r in resources:
        if r.speed <= 0:
            raise ValueError(f"resource {r.id} has non-positive speed {r.speed}")


class Schedule:
    """Result of one scheduler run: one ScheduleEvent per task."""

    def __init__(self, resources: Sequence[Resource], events: Optional[Dict[int, ScheduleEvent]] = None):
        self.resources = list(resources)
        self.events: Dict[int, ScheduleEvent] = dict(events or {})

    def __len__(self):
        return len(self.events)

    def __contains__(self, task_id):
        return task_id in self.events

    def place(self, task: int, proc: int, start: float, end: float) -> ScheduleEvent:
        ev = ScheduleEvent(task, start, end, proc)
        self.events[task] = ev
        return ev

    @property
    def assignment(self) -> Dict[int, Resource]:
        return {t: self.resources[ev.proc] for t, ev in self.events.items()}

    @property
    def start_times(self) -> Dict[int, float]:
        return {t: ev.start for t, ev in self.events.items()}

    @property
    def finish_times(self) -> Dict[int, float]:
        return {t: ev.end for t, ev in self.events.items()}

    def proc_schedules(self) -> Dict[int, List[ScheduleEvent]]:
        out = {p: [] for p in range(len(self.resources))}
        for ev in self.events.values():
            out[ev.proc].append(ev)
        for jobs in out.values():
            jobs.sort(key=lambda j: j.start)
        return out

    def makespan(self) -> float:
        return max((ev.end for ev in self.events.values()), default=0.0)

    def busy_times(self) -> Dict[int, float]:
        busy = {p: 0.0 for p in range(len(self.resources))}
        for ev in self.events.values():
            busy[ev.proc] += ev.end - ev.start
        return busy

    def precedence_violations(self, graph: TaskGraph, bandwidth: float = DEFAULT_BANDWIDTH, tol: float = 1e-9):
        """Edges (p, c) whose data would arrive after c starts."""
        bad = []
        for u, v in graph.edges():
            eu, ev = self.events[u], self.events[v]
            arrival = eu.end if eu.proc == ev.proc else eu.end + comm_time(graph.task(u), bandwidth)
            if arrival > ev.start + tol:
                bad.append((u, v))
        return bad

    def __repr__(self):
        return f"Schedule(tasks={len(self)}, makespan={self.makespan():.4f})"


def readCsvToNumpyMatrix(csv_file: str) -> np.ndarray:
    with open(csv_file) as fd:
        rows = [r.strip().split(',') for r in fd.read().strip().splitlines() if r.strip()]
    arr = np.array(rows)[1:, 1:]
    return arr.astype(float)


def _graph_paths(prefix) -> tuple:
    pref = Path(prefix)
    return (pref.parent / f"{pref.name}_task_connectivity.csv",
            pref.parent / f"{pref.name}_task_attrs.csv")


def write_graph_csv(graph: TaskGraph, prefix) -> tuple:
    """Write the connectivity matrix (cell = data volume of the edge, i.e. the
    source task's output_size; 0 means no edge) and the per-task attribute
    table. Returns both paths."""
    conn_path, attr_path = _graph_paths(prefix)
    conn_path.parent.mkdir(parents=True, exist_ok=True)
    tasks = graph.tasks
    index = {t.id: i for i, t in enumerate(tasks)}
    n = len(tasks)
    m = np.zeros((n, n))
    for u, v in graph.edges():
        m[index[u], index[v]] = float(graph.task(u).output_size)
    with open(conn_path, 'w', newline='') as f:
        w = csv.writer(f)
        w.writerow(['T'] + [f"T_{t.id}" for t in tasks])
        for i, t in enumerate(tasks):
            w.writerow([f"T_{t.id}"] + [repr(float(m[i, j])) for j in range(n)])
    with open(attr_path, 'w', newline='') as f:
        w = csv.writer(f)
        w.writerow(['T', 'length', 'input_size', 'output_size', 'priority'])
        for t in tasks:
            w.writerow([t.id, t.length, t.input_size, t.output_size, '' if t.priority is None else t.priority])
    logger.debug("wrote %s and %s", conn_path, attr_path)
    return conn_path, attr_path


def read_graph_csv(prefix) -> TaskGraph:
    conn_path, attr_path = _graph_paths(prefix)
    graph = TaskGraph()
    with open(attr_path, newline='') as f:
        for row in csv.DictReader(f):
            prio = row['priority']
            graph.add_task(Task(int(row['T']), float(row['length']), float(row['input_size']),
                                float(row['output_size']), int(prio) if prio else None))
    ids = [t.id for t in graph.tasks]
    if not ids:
        return graph
    m = readCsvToNumpyMatrix(str(conn_path))
    if m.shape != (len(ids), len(ids)):
        raise ValueError(f"{conn_path}: expected {len(ids)}x{len(ids)} matrix, got {m.shape}")
    for i in range(len(ids)):
        for j in range(len(ids)):
            if m[i, j] > 0.0:
                graph.add_edge(ids[i], ids[j])
    return graph
