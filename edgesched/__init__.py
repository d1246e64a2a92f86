from .taskgraph import (
    Task, Resource, TaskGraph, Schedule, ScheduleEvent, DEFAULT_BANDWIDTH,
    comm_time, write_graph_csv, read_graph_csv,
)
from .dag_gen import generate_dag, generate_resources
from . import cpop, pso
from .pso import PSOConfig

__all__ = [
    'Task','Resource','TaskGraph','Schedule','ScheduleEvent','DEFAULT_BANDWIDTH',
    'comm_time','write_graph_csv','read_graph_csv',
    'generate_dag','generate_resources','cpop','pso','PSOConfig',
]
