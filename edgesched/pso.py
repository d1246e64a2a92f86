"""Particle Swarm Optimisation scheduler for heterogeneous resources.

Encoding: one real per task (tasks taken in topological order), value in
[0, R) for R resources; floor(value) clamped to [0, R-1] picks the resource.

Decoding: a single pass in topological order, each task starting at
max(resource clock, data ready), communication delay only between different
resources. No insertion into idle gaps.

Fitness (lower is better):
    w_makespan * makespan / max_makespan
  + w_energy   * energy   / max_energy
  + w_balance  * balance  / max_balance
  makespan     = max finish time
  energy       = sum over tasks of (speed * 1e-4 + 10 W) * exec time
  balance      = RMS deviation of each resource's busy time (sum of its
                 execution times, idle gaps left out) from makespan / R
  max_makespan = total length / slowest speed
  max_energy   = total length at the fastest resource's power draw
  max_balance  = max_makespan

The swarm is seeded one third by an earliest-finish greedy, one third by a
least-loaded greedy and one third uniformly at random. Inertia falls linearly
from w_max to w_min; stagnation of the global best for more than
stagnation_limit iterations re-seeds one dimension of the worst fifth of the
swarm. Positions bounce elastically off 0 and R.
"""
from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields
from typing import List, Optional, Sequence
import logging
import numpy as np

from .taskgraph import (TaskGraph, Resource, Schedule, DEFAULT_BANDWIDTH,
                        speeds_of, check_pool)

logger = logging.getLogger("pso")


def power_draw(speed):
    """Watts drawn by a resource of the given speed while busy."""
    return speed * 0.0001 + 10.0


@dataclass
class PSOConfig:
    swarm_size: int = 100
    iterations: int = 300
    w_max: float = 0.9
    w_min: float = 0.4
    c1: float = 2.0
    c2: float = 2.0
    w_makespan: float = 0.7
    w_energy: float = 0.2
    w_balance: float = 0.1
    stagnation_limit: int = 30
    stagnation_tol: float = 1e-6
    mutation_fraction: float = 0.2
    seed_jitter: float = 0.05
    velocity_scale: float = 0.2
    # fitness evaluation threads; decode holds the GIL, so expect little speedup
    workers: int = 1
    seed: Optional[int] = None

    def validate(self):
        if self.swarm_size < 1:
            raise ValueError(f"swarm_size must be >= 1 (got {self.swarm_size})")
        if self.iterations < 1:
            raise ValueError(f"iterations must be >= 1 (got {self.iterations})")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1 (got {self.workers})")
        if self.w_min > self.w_max:
            raise ValueError(f"w_min ({self.w_min}) exceeds w_max ({self.w_max})")
        for name in ('c1', 'c2', 'w_makespan', 'w_energy', 'w_balance', 'seed_jitter', 'velocity_scale'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0 (got {getattr(self, name)})")
        if not 0.0 <= self.mutation_fraction <= 1.0:
            raise ValueError(f"mutation_fraction must be in [0, 1] (got {self.mutation_fraction})")
        return self

    @classmethod
    def from_mapping(cls, values: dict) -> "PSOConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class Particle:
    position: np.ndarray
    velocity: np.ndarray
    best_position: np.ndarray = None
    fitness: float = np.inf
    best_fitness: float = np.inf

    def __post_init__(self):
        if self.best_position is None:
            self.best_position = self.position.copy()


@dataclass
class Objectives:
    makespan: float
    energy: float
    load_balance: float


class FitnessModel:
    """Task graph flattened into arrays for fast repeated decoding.

    Position index i corresponds to order[i]; preds[i] lists position indices.
    Holds no mutable state, so one instance can be shared by worker threads.
    """

    def __init__(self, graph: TaskGraph, resources: Sequence[Resource], config: PSOConfig,
                 bandwidth: float = DEFAULT_BANDWIDTH):
        self.order = graph.topological_order()
        index = {t: i for i, t in enumerate(self.order)}
        self.preds = [[index[p] for p in graph.predecessors(t)] for t in self.order]
        self.lengths = np.array([graph.task(t).length for t in self.order], dtype=float)
        self.comm = np.array([graph.task(t).output_size / bandwidth for t in self.order], dtype=float)
        self.speeds = speeds_of(resources)
        self.power = power_draw(self.speeds)
        self.config = config

        total = float(self.lengths.sum())
        self.max_makespan = total / float(self.speeds.min())
        fastest = float(self.speeds.max())
        self.max_energy = (total / fastest) * power_draw(fastest)
        self.max_balance = self.max_makespan

    @property
    def dims(self) -> int:
        return len(self.order)

    @property
    def n_resources(self) -> int:
        return len(self.speeds)

    def decode(self, position: np.ndarray):
        """Return (proc, start, finish) arrays indexed like position."""
        R = self.n_resources
        proc = np.clip(np.floor(position), 0, R - 1).astype(int)
        start = np.zeros(self.dims)
        finish = np.zeros(self.dims)
        clock = np.zeros(R)
        for i in range(self.dims):
            p = proc[i]
            ready = clock[p]
            for j in self.preds[i]:
                arrival = finish[j] if proc[j] == p else finish[j] + self.comm[j]
                if arrival > ready:
                    ready = arrival
            start[i] = ready
            finish[i] = ready + self.lengths[i] / self.speeds[p]
            clock[p] = finish[i]
        return proc, start, finish

    def objectives(self, proc: np.ndarray, finish: np.ndarray) -> Objectives:
        R = self.n_resources
        exec_t = self.lengths / self.speeds[proc]
        makespan = float(finish.max()) if self.dims else 0.0
        energy = float(np.sum(self.power[proc] * exec_t))
        busy = np.bincount(proc, weights=exec_t, minlength=R)
        balance = float(np.sqrt(np.mean((busy - makespan / R) ** 2)))
        return Objectives(makespan, energy, balance)

    def combine(self, obj: Objectives) -> float:
        cfg = self.config
        return (cfg.w_makespan * _ratio(obj.makespan, self.max_makespan)
                + cfg.w_energy * _ratio(obj.energy, self.max_energy)
                + cfg.w_balance * _ratio(obj.load_balance, self.max_balance))

    def fitness(self, position: np.ndarray) -> float:
        proc, _, finish = self.decode(position)
        return self.combine(self.objectives(proc, finish))

    def to_schedule(self, position: np.ndarray, resources: Sequence[Resource]) -> Schedule:
        proc, start, finish = self.decode(position)
        sched = Schedule(resources)
        for i, t in enumerate(self.order):
            sched.place(t, int(proc[i]), float(start[i]), float(finish[i]))
        return sched


def _ratio(value: float, bound: float) -> float:
    # all-zero workloads give zero bounds
    return value / bound if bound > 0 else value


def _earliest_finish_seed(model: FitnessModel) -> np.ndarray:
    clock = np.zeros(model.n_resources)
    pos = np.zeros(model.dims)
    for i in range(model.dims):
        fin = clock + model.lengths[i] / model.speeds
        p = int(np.argmin(fin))
        pos[i] = p
        clock[p] = fin[p]
    return pos


def _least_loaded_seed(model: FitnessModel) -> np.ndarray:
    load = np.zeros(model.n_resources)
    pos = np.zeros(model.dims)
    for i in range(model.dims):
        p = int(np.argmin(load))
        pos[i] = p
        load[p] += model.lengths[i] / model.speeds[p]
    return pos


def init_swarm(model: FitnessModel, config: PSOConfig, rng: np.random.Generator) -> List[Particle]:
    n, D, R = config.swarm_size, model.dims, model.n_resources
    eft = _earliest_finish_seed(model)
    balanced = _least_loaded_seed(model)
    swarm = []
    for i in range(n):
        if i < n // 3:
            position = eft + rng.random(D) * config.seed_jitter
        elif i < 2 * n // 3:
            position = balanced + rng.random(D) * config.seed_jitter
        else:
            position = rng.random(D) * R
        velocity = (rng.random(D) - 0.5) * R * config.velocity_scale
        swarm.append(Particle(position, velocity))
    return swarm


def inertia_weight(config: PSOConfig, it: int) -> float:
    """Linear decay from w_max at iteration 0 to w_min at the last iteration."""
    return config.w_max - (config.w_max - config.w_min) * it / max(config.iterations - 1, 1)


def _mutate_worst(swarm: List[Particle], config: PSOConfig, R: int, rng: np.random.Generator):
    count = int(len(swarm) * config.mutation_fraction)
    worst = sorted(range(len(swarm)), key=lambda k: swarm[k].fitness, reverse=True)[:count]
    for k in worst:
        p = swarm[k]
        d = int(rng.integers(len(p.position)))
        p.position[d] = rng.random() * R
    return worst


def _move(swarm: List[Particle], gbest: np.ndarray, inertia: float, config: PSOConfig, R: int,
          rng: np.random.Generator):
    upper = np.nextafter(float(R), 0.0)
    for p in swarm:
        D = len(p.position)
        r1 = rng.random(D)
        r2 = rng.random(D)
        v = (inertia * p.velocity
             + config.c1 * r1 * (p.best_position - p.position)
             + config.c2 * r2 * (gbest - p.position))
        v = np.clip(v, -R, R)
        x = p.position + v
        low = x < 0
        x[low] = -x[low]
        v[low] = -v[low]
        high = x >= R
        x[high] = 2 * R - x[high]
        v[high] = -v[high]
        # a reflection landing exactly on R stays inside [0, R)
        p.position = np.minimum(x, upper)
        p.velocity = v


def schedule_dag(graph: TaskGraph, resources: Sequence[Resource], config: PSOConfig = None,
                 rng: np.random.Generator = None, bandwidth: float = DEFAULT_BANDWIDTH):
    """Run PSO. Returns (Schedule, info); info has the convergence history
    (global-best fitness per iteration), best_fitness and the objectives of
    the returned plan."""
    config = (config or PSOConfig()).validate()
    if len(graph) == 0:
        return Schedule(resources), {}
    check_pool(graph, resources)
    if rng is None:
        rng = np.random.default_rng(config.seed)

    model = FitnessModel(graph, resources, config, bandwidth)
    R = model.n_resources
    swarm = init_swarm(model, config, rng)
    gbest = swarm[0].position.copy()
    gbest_fit = model.fitness(gbest)

    history: List[float] = []
    previous = np.inf
    stagnation = 0
    pool = ThreadPoolExecutor(max_workers=config.workers) if config.workers > 1 else None
    try:
        for it in range(config.iterations):
            positions = [p.position for p in swarm]
            if pool is not None:
                fits = list(pool.map(model.fitness, positions))
            else:
                fits = [model.fitness(x) for x in positions]
            for p, f in zip(swarm, fits):
                p.fitness = f
                if f < p.best_fitness:
                    p.best_fitness = f
                    p.best_position = p.position.copy()
            leader = min(swarm, key=lambda q: q.best_fitness)
            if leader.best_fitness < gbest_fit:
                gbest_fit = leader.best_fitness
                gbest = leader.best_position.copy()
            history.append(gbest_fit)

            if abs(previous - gbest_fit) < config.stagnation_tol:
                stagnation += 1
            else:
                stagnation = 0
            previous = gbest_fit
            if stagnation > config.stagnation_limit:
                mutated = _mutate_worst(swarm, config, R, rng)
                logger.debug("iteration %d: stagnated, re-seeded %d particles", it, len(mutated))
                stagnation = 0

            inertia = inertia_weight(config, it)
            _move(swarm, gbest, inertia, config, R, rng)
    finally:
        if pool is not None:
            pool.shutdown()

    sched = model.to_schedule(gbest, resources)
    proc, _, finish = model.decode(gbest)
    obj = model.objectives(proc, finish)
    logger.info("PSO scheduled %d tasks on %d resources, best fitness %.6f, makespan %.4f",
                len(sched), R, gbest_fit, obj.makespan)
    info = dict(convergence=history, best_fitness=gbest_fit,
                objectives=dict(makespan=obj.makespan, energy=obj.energy, load_balance=obj.load_balance))
    return sched, info
