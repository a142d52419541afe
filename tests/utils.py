"""Fixtures and helpers for allocator tests."""
from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from allocator import Allocator


class NoShuffle:
    """Shuffling source that keeps pool order, so queues are predictable."""

    def __init__(self):
        self.calls = 0

    def shuffle(self, seq: List[object]) -> None:
        self.calls += 1


class StaticTaskProvider:
    """Task instance provider backed by a dict; records every lookup."""

    def __init__(self, tasks: Dict[object, List[Tuple[object, str]]] | None = None):
        self.tasks: Dict[object, List[Tuple[object, str]]] = dict(tasks or {})
        self.calls: List[object] = []

    def __call__(self, workflow_id) -> List[Tuple[object, str]]:
        self.calls.append(workflow_id)
        return list(self.tasks.get(workflow_id, []))


def tasks_for(role_names: Sequence[str], workflow_ids: Iterable[object]) -> Dict[object, List[Tuple[str, str]]]:
    """One task instance per role name and workflow, ids like ``w1-t2``."""
    return {
        wid: [(f"{wid}-t{i}", name) for i, name in enumerate(role_names, start=1)]
        for wid in workflow_ids
    }


def make_allocator(
    roles: Sequence[Tuple[str, dict | None]],
    pools: Dict[str, Sequence[object]],
    workflows: Sequence[object],
    rng=None,
) -> Tuple[Allocator, StaticTaskProvider]:
    """Build an allocator with matching task instances for every role slot.

    Roles whose rules have ``count > 1`` are registered as sibling groups.
    """
    provider = StaticTaskProvider()
    allocator = Allocator(provider, rng=rng if rng is not None else NoShuffle())
    for name, rules in roles:
        if int((rules or {}).get("count", 1)) > 1:
            allocator.create_role_group(name, rules)
        else:
            allocator.create_role(name, rules)
    provider.tasks.update(tasks_for([r.name for r in allocator.get_roles()], workflows))
    for name, users in pools.items():
        allocator.add_pool(name, users)
    for wid in workflows:
        allocator.add_workflow(wid)
    return allocator, provider


def write_tasks_csv(path: Path, tasks: Dict[object, List[Tuple[object, str]]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["Workflow", "TaskInstance", "Type"])
        for wid, rows in tasks.items():
            for task_id, type_name in rows:
                writer.writerow([wid, task_id, type_name])


def write_pools_csv(path: Path, pools: Dict[str, Sequence[str]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["Pool", "User"])
        for name, users in pools.items():
            for user in users:
                writer.writerow([name, user])


def write_config(path: Path, cfg: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg, indent=2), encoding="utf-8")


def read_csv_dicts(path: Path) -> List[Dict[str, str]]:
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        return list(csv.DictReader(handle))
