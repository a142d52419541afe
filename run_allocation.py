#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Allocate pool members to workflow roles.

Inputs:
  - config JSON          (roles, default pool, MAX_RUNS, SEED, optional WORKFLOWS)
  - task_instances.csv   (Workflow, TaskInstance, Type)
  - pools.csv            (Pool, User)

Outputs:
  - assignments.csv      one row per workflow role slot
  - allocation_log.csv   every queue/slot/retry decision
  - reports/membership.csv + reports/allocation_summary.txt

Exit status is 1 when slots are still unassigned after MAX_RUNS passes, unless
``--allow-unassigned`` (or ALLOW_UNASSIGNED in the config) is set.
"""

from __future__ import annotations

import argparse
import csv
from pathlib import Path
from typing import Dict, List

import report_allocation as report
from allocation_config import load_config
from allocation_log import DecisionLogger
from allocator import AllocationResult, build_allocator
from providers import CACHE_DIR, CsvPoolProvider, CsvTaskInstanceProvider
from workflow_state import UNASSIGNED

ASSIGNMENT_FIELDS = ["Workflow", "RoleId", "Role", "TaskInstance", "AssignedTo", "AliasOf", "Status"]


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Randomized workflow role allocation", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("--config", type=Path, help="JSON file with CONFIG overrides (ROLES, MAX_RUNS, ...)")
    ap.add_argument("--tasks", default="task_instances.csv", help="Task instance CSV (path or URL)")
    ap.add_argument("--pools", default="pools.csv", help="Pool membership CSV (path or URL)")
    ap.add_argument("--out", default=Path("assignments.csv"), type=Path, help="Per-slot assignment CSV")
    ap.add_argument("--decision-log", default=Path("allocation_log.csv"), type=Path, help="Decision log CSV (set to '-' to skip)")
    ap.add_argument("--report", default=Path("reports") / "membership.csv", type=Path, help="Membership report CSV (set to '-' to skip)")
    ap.add_argument("--summary", default=Path("reports") / "allocation_summary.txt", type=Path, help="Plaintext summary (set to '-' to skip)")
    ap.add_argument("--report-pool", default=None, help="Pool listed in the membership report (defaults to DEFAULT_POOL)")
    ap.add_argument("--max-runs", type=int, default=None, help="Override MAX_RUNS")
    ap.add_argument("--seed", type=int, default=None, help="Override SEED")
    ap.add_argument("--allow-unassigned", action="store_true", help="Exit 0 even if slots stay unassigned")
    ap.add_argument("--cache-dir", default=CACHE_DIR, type=Path, help="Where downloaded CSVs are cached")
    ap.add_argument("--refresh", action="store_true", help="Re-download URL inputs")
    return ap.parse_args(argv)


def assignment_rows(result: AllocationResult) -> List[Dict[str, object]]:
    by_id = {r.id: r for r in result.roles}
    rows: List[Dict[str, object]] = []
    for workflow_id, workflow in result.workflows.items():
        binding = result.bindings.get(workflow_id, {})
        for role_id, user in (workflow or {}).items():
            role = by_id[role_id]
            rows.append({
                "Workflow": workflow_id,
                "RoleId": role_id,
                "Role": role.name,
                "TaskInstance": binding.get(role_id, ""),
                "AssignedTo": "" if user is UNASSIGNED else user,
                "AliasOf": role.rules.alias_target or "",
                "Status": "UNASSIGNED" if user is UNASSIGNED else "ASSIGNED",
            })
    return rows


def write_assignments(rows: List[Dict[str, object]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as fh:
        w = csv.DictWriter(fh, fieldnames=ASSIGNMENT_FIELDS)
        w.writeheader()
        w.writerows(rows)


def run_allocation(args: argparse.Namespace) -> tuple[AllocationResult, dict]:
    cfg = load_config(args.config)
    if args.max_runs is not None:
        if args.max_runs < 1:
            raise SystemExit("--max-runs must be >= 1")
        cfg["MAX_RUNS"] = args.max_runs
    if args.seed is not None:
        cfg["SEED"] = args.seed
    # CSV workflow ids are strings
    cfg["WORKFLOWS"] = [str(w) for w in cfg.get("WORKFLOWS") or []]

    tasks = CsvTaskInstanceProvider(args.tasks, cache_dir=args.cache_dir, force=args.refresh)
    pools = CsvPoolProvider(args.pools, cache_dir=args.cache_dir, force=args.refresh)

    log = DecisionLogger()
    allocator = build_allocator(cfg, tasks, pools, workflow_ids=tasks.workflow_ids(), log=log)
    allocator.validate()
    result = allocator.assignment_run(cfg["MAX_RUNS"])

    write_assignments(assignment_rows(result), args.out)
    if str(args.decision_log) != "-":
        log.write_csv(args.decision_log)

    pool_name = args.report_pool or cfg["DEFAULT_POOL"]["name"]
    members = allocator.get_pool(pool_name) or ()
    rows = report.build_membership_rows(result, pool_name, members)
    if str(args.report) != "-":
        report.write_report(rows, args.report)
    report.write_summary(result, rows, args.summary, pool_name)
    return result, cfg


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    result, cfg = run_allocation(args)

    total = sum(len(wf or {}) for wf in result.workflows.values())
    missing = result.unassigned()
    print(f"Allocated {total - len(missing)}/{total} slots across {len(result.workflows)} workflow(s) "
          f"in {result.run_count} run(s)")
    print(f"Wrote assignments → {args.out.resolve()}")

    if missing:
        print(f"WARNING: {len(missing)} slot(s) still unassigned after {result.run_count} run(s)")
        if not (args.allow_unassigned or cfg.get("ALLOW_UNASSIGNED")):
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
