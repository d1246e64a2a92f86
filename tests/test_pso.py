import logging

import numpy as np
import pytest

from edgesched import pso
from edgesched.pso import PSOConfig, Particle, FitnessModel
from edgesched.taskgraph import Task, Resource, TaskGraph
from edgesched.dag_gen import generate_dag, generate_resources

SMALL = dict(swarm_size=12, iterations=15)


def _chain(n=3):
    return TaskGraph([Task(i, 1000, 0, 100) for i in range(n)], [(i, i + 1) for i in range(n - 1)])


def test_config_defaults_and_validation():
    cfg = PSOConfig()
    assert (cfg.swarm_size, cfg.iterations) == (100, 300)
    assert (cfg.w_max, cfg.w_min, cfg.c1, cfg.c2) == (0.9, 0.4, 2.0, 2.0)
    assert (cfg.w_makespan, cfg.w_energy, cfg.w_balance) == (0.7, 0.2, 0.1)
    for bad in (dict(swarm_size=0), dict(iterations=0), dict(workers=0),
                dict(w_min=0.95), dict(c1=-1.0), dict(mutation_fraction=1.5)):
        with pytest.raises(ValueError):
            PSOConfig(**bad).validate()


def test_config_from_mapping_ignores_unknown_keys():
    cfg = PSOConfig.from_mapping({'swarm_size': 7, 'colour': 'blue'})
    assert cfg.swarm_size == 7 and cfg.iterations == 300


def test_fitness_of_known_assignment():
    graph = TaskGraph([Task(0, 1000)])
    model = FitnessModel(graph, [Resource(0, 1000.0), Resource(1, 2000.0)], PSOConfig())
    proc, start, finish = model.decode(np.array([1.5]))
    obj = model.objectives(proc, finish)
    assert obj.makespan == pytest.approx(0.5)
    assert obj.energy == pytest.approx(10.2 * 0.5)
    assert obj.load_balance == pytest.approx(0.25)
    assert model.max_makespan == pytest.approx(1.0)
    assert model.max_energy == pytest.approx(5.1)
    assert model.fitness(np.array([1.5])) == pytest.approx(0.7 * 0.5 + 0.2 * 1.0 + 0.1 * 0.25)


def test_decode_clamps_and_adds_comm_across_resources():
    model = FitnessModel(_chain(3), [Resource(i, 1000.0) for i in range(3)], PSOConfig())
    proc, start, finish = model.decode(np.array([2.999, 0.0, 5.0]))
    assert list(proc) == [2, 0, 2]
    comm = 100 / 1_000_000
    assert start[1] == pytest.approx(1.0 + comm)
    assert start[2] == pytest.approx(finish[1] + comm)


def test_init_swarm_thirds():
    graph = generate_dag(20, 30, seed=3)
    pool = generate_resources(4, seed=3)
    model = FitnessModel(graph, pool, PSOConfig())
    cfg = PSOConfig(swarm_size=9)
    swarm = pso.init_swarm(model, cfg, np.random.default_rng(0))
    eft = np.floor(swarm[0].position)
    balanced = np.floor(swarm[3].position)
    assert all(np.array_equal(np.floor(p.position), eft) for p in swarm[:3])
    assert all(np.array_equal(np.floor(p.position), balanced) for p in swarm[3:6])
    for p in swarm:
        assert np.all((p.position >= 0) & (p.position < len(pool)))
        assert np.all(np.abs(p.velocity) <= len(pool) * cfg.velocity_scale / 2)
        assert np.array_equal(p.best_position, p.position)
        assert p.best_fitness == np.inf


def test_move_reflects_and_clamps():
    cfg = PSOConfig(c1=0.0, c2=0.0)
    ps = [Particle(np.array([2.5]), np.array([1.0])),
          Particle(np.array([0.2]), np.array([-0.5])),
          Particle(np.array([1.0]), np.array([10.0]))]
    pso._move(ps, np.zeros(1), 1.0, cfg, 3, np.random.default_rng(0))
    assert ps[0].position[0] == pytest.approx(2.5) and ps[0].velocity[0] == pytest.approx(-1.0)
    assert ps[1].position[0] == pytest.approx(0.3) and ps[1].velocity[0] == pytest.approx(0.5)
    assert ps[2].position[0] == pytest.approx(2.0) and ps[2].velocity[0] == pytest.approx(-3.0)


def test_mutate_worst_touches_one_dimension_of_worst_fifth():
    rng = np.random.default_rng(1)
    swarm = [Particle(np.full(6, 0.5), np.zeros(6), fitness=float(k)) for k in range(10)]
    worst = pso._mutate_worst(swarm, PSOConfig(), 3, rng)
    assert sorted(worst) == [8, 9]
    for k, p in enumerate(swarm):
        changed = int(np.sum(p.position != 0.5))
        assert changed == (1 if k in worst else 0)


def test_single_task_goes_to_fastest_resource():
    graph = TaskGraph([Task(0, 100)])
    pool = [Resource(0, 1000.0), Resource(1, 3000.0), Resource(2, 2000.0)]
    sched, _ = pso.schedule_dag(graph, pool, PSOConfig(seed=0, **SMALL))
    assert sched.events[0].proc == 1
    assert sched.events[0].start == 0.0


def test_empty_graph_and_empty_pool():
    sched, info = pso.schedule_dag(TaskGraph(), [], PSOConfig(**SMALL))
    assert len(sched) == 0 and info == {}
    with pytest.raises(ValueError):
        pso.schedule_dag(TaskGraph([Task(0, 1)]), [], PSOConfig(**SMALL))


@pytest.mark.parametrize("tasks,edges", [(15, 20), (40, 80)])
def test_complete_and_precedence_respected(tasks, edges):
    graph = generate_dag(tasks, edges, seed=5)
    pool = generate_resources(5, seed=5)
    sched, info = pso.schedule_dag(graph, pool, PSOConfig(seed=5, **SMALL))
    assert sorted(sched.events) == [t.id for t in graph.tasks]
    assert sched.precedence_violations(graph) == []
    assert info['objectives']['makespan'] == pytest.approx(sched.makespan())


def test_convergence_is_non_increasing():
    graph = generate_dag(30, 50, seed=2)
    pool = generate_resources(4, seed=2)
    _, info = pso.schedule_dag(graph, pool, PSOConfig(seed=2, swarm_size=10, iterations=40))
    hist = info['convergence']
    assert len(hist) == 40
    assert all(b <= a for a, b in zip(hist, hist[1:]))
    assert info['best_fitness'] == hist[-1]


def test_stagnation_does_not_break_single_resource_runs():
    graph = _chain(5)
    _, info = pso.schedule_dag(graph, [Resource(0, 1000.0)], PSOConfig(seed=0, swarm_size=5, iterations=70))
    assert len(set(info['convergence'])) == 1


def test_stagnation_reseeds_after_limit_and_resets(caplog):
    graph = _chain(5)
    cfg = PSOConfig(seed=0, swarm_size=5, iterations=70)
    with caplog.at_level(logging.DEBUG, logger="pso"):
        pso.schedule_dag(graph, [Resource(0, 1000.0)], cfg)
    reseeds = [r.getMessage() for r in caplog.records if 'stagnated' in r.getMessage()]
    assert reseeds == ['iteration 31: stagnated, re-seeded 1 particles',
                       'iteration 62: stagnated, re-seeded 1 particles']


def test_inertia_decays_linearly_from_w_max_to_w_min():
    cfg = PSOConfig(iterations=11, w_max=0.9, w_min=0.4)
    assert pso.inertia_weight(cfg, 0) == pytest.approx(0.9)
    assert pso.inertia_weight(cfg, 5) == pytest.approx(0.65)
    assert pso.inertia_weight(cfg, 10) == pytest.approx(0.4)
    assert pso.inertia_weight(PSOConfig(iterations=1), 0) == pytest.approx(0.9)


def test_same_seed_same_schedule():
    graph = generate_dag(25, 40, seed=8)
    pool = generate_resources(4, seed=8)
    a, ia = pso.schedule_dag(graph, pool, PSOConfig(seed=123, **SMALL))
    b, ib = pso.schedule_dag(graph, pool, PSOConfig(seed=123, **SMALL))
    assert a.events == b.events
    assert ia['convergence'] == ib['convergence']


def test_worker_pool_matches_serial_run():
    graph = generate_dag(25, 40, seed=8)
    pool = generate_resources(4, seed=8)
    a, ia = pso.schedule_dag(graph, pool, PSOConfig(seed=7, workers=1, **SMALL))
    b, ib = pso.schedule_dag(graph, pool, PSOConfig(seed=7, workers=3, **SMALL))
    assert a.events == b.events
    assert ia['convergence'] == ib['convergence']


def test_injected_rng_overrides_seed():
    graph = generate_dag(20, 30, seed=4)
    pool = generate_resources(3, seed=4)
    a, _ = pso.schedule_dag(graph, pool, PSOConfig(seed=1, **SMALL), rng=np.random.default_rng(99))
    b, _ = pso.schedule_dag(graph, pool, PSOConfig(seed=2, **SMALL), rng=np.random.default_rng(99))
    assert a.events == b.events
