"""Per-user membership report over an allocation result.

One row per member of a pool, with a YES/NO column for every role that draws
from that pool ("is <role>?"), plus a plaintext summary with the totals.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable, List

from allocator import AllocationResult
from workflow_state import UNASSIGNED


def role_column(role_id: int, role_name: str, duplicated: bool) -> str:
    return f"is {role_name} #{role_id}?" if duplicated else f"is {role_name}?"


def build_membership_rows(result: AllocationResult, pool_name: str, users: Iterable[object]) -> List[Dict[str, str]]:
    roles = [r for r in result.roles if r.rules.pool_name == pool_name]
    names = [r.name for r in roles]
    columns = {r.id: role_column(r.id, r.name, names.count(r.name) > 1) for r in roles}

    held: Dict[int, List[object]] = {r.id: [] for r in roles}
    for workflow in result.workflows.values():
        for role_id in held:
            user = (workflow or {}).get(role_id)
            if user is not None and user is not UNASSIGNED:
                held[role_id].append(user)

    rows: List[Dict[str, str]] = []
    for user in users:
        row = {"User": str(user)}
        for r in roles:
            row[columns[r.id]] = "YES" if user in held[r.id] else "NO"
        rows.append(row)
    return rows


def write_report(rows: List[Dict[str, str]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not rows:
        path.write_text("User\n", encoding="utf-8")
        return
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)


def summary_lines(result: AllocationResult, rows: List[Dict[str, str]], pool_name: str) -> List[str]:
    lines = ["Allocation report"]
    lines.append(f"Total {pool_name} users: {len(rows)}")
    lines.append(f"Total runs: {result.run_count}")
    missing = result.unassigned()
    lines.append(f"Unassigned slots: {len(missing)}")
    if missing:
        by_id = {r.id: r.name for r in result.roles}
        lines.append("  " + ", ".join(f"{wid}:{by_id.get(rid, rid)}" for wid, rid in missing))
    idle = [row["User"] for row in rows if all(v == "NO" for k, v in row.items() if k != "User")]
    if idle:
        lines.append("Users without any role: " + ", ".join(idle))
    return lines


def write_summary(result: AllocationResult, rows: List[Dict[str, str]], path: Path, pool_name: str) -> None:
    if str(path) == "-":
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(summary_lines(result, rows, pool_name)) + "\n", encoding="utf-8")
