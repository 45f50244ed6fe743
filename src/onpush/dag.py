# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Set, Tuple

from .errors import PipelineDefinitionError
from .model import Job, Pipeline


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the job graph.

    Returns (adj, indeg): adj maps a job to the jobs that need it, indeg
    counts unfinished dependencies per job. Rejects duplicate names and
    `needs` entries that name no job.
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise PipelineDefinitionError(f"Duplicate job names found: {dupes}")

    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for dep in job.needs or []:
            if dep not in adj:
                raise PipelineDefinitionError(
                    f"Job '{job.name}' needs missing job '{dep}'. Known jobs: {sorted(adj)}"
                )
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the graph into stages. Jobs in one stage have no ordering
    constraint between them and may run in parallel.
    """
    indeg = dict(indeg)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1
            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise PipelineDefinitionError(f"Job graph has a cycle. Stuck jobs: {remaining}")

    return levels


def validate_pipeline(pipeline: Pipeline) -> List[List[str]]:
    """Check a pipeline is runnable and return its stages."""
    if not pipeline.jobs:
        raise PipelineDefinitionError(f"pipeline {pipeline.name!r} has no jobs")
    for job in pipeline.jobs:
        if not job.steps:
            raise PipelineDefinitionError(f"job {job.name!r} has no steps")
    if not pipeline.triggers:
        raise PipelineDefinitionError(f"pipeline {pipeline.name!r} has no trigger")
    adj, indeg = build_dag(pipeline.jobs)
    return topo_levels(adj, indeg)
