# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Set, Tuple

from .errors import ConfigurationError
from .model import Job


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must finish BEFORE this job)

    Returns (adj, indeg) where adj maps a job to the jobs that need it.
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs or []:
            if need not in name_set:
                raise ConfigurationError(
                    f"Job '{job.name}' needs missing job '{need}'. "
                    f"Known jobs: {sorted(name_set)}"
                )
            # Edge need -> job.name (need must run before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(
    adj: Dict[str, Set[str]],
    indeg: Dict[str, int],
    order: List[str] | None = None,
) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Jobs inside one level do not depend on each other.

    Within a level, jobs keep their declaration order when `order` is given.
    """
    rank = {name: i for i, name in enumerate(order or sorted(indeg))}
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted((n for n, d in indeg.items() if d == 0), key=rank.__getitem__))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []
        unlocked: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    unlocked.append(child)

        q.extend(sorted(unlocked, key=rank.__getitem__))
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ConfigurationError(f"Job dependencies contain a cycle. Stuck jobs: {remaining}")

    return levels


def topo_order(jobs: List[Job]) -> List[str]:
    """Job names in a valid execution order (dependencies first)."""
    adj, indeg = build_dag(jobs)
    levels = topo_levels(adj, indeg, order=[j.name for j in jobs])
    return [name for level in levels for name in level]
