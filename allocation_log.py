"""Step-by-step record of allocation decisions, written out as CSV."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, List, Optional

DECISION_FIELDS = ["Step", "Run", "Phase", "Workflow", "RoleId", "Role", "AssignedTo", "Status", "Note"]


class DecisionLogger:
    def __init__(self):
        self.rows: List[Dict[str, object]] = []
        self.step = 0
        self.run = 0

    def start_run(self) -> int:
        self.run += 1
        return self.run

    def log(
        self,
        phase: str,
        status: str,
        *,
        workflow_id=None,
        role_id: Optional[int] = None,
        role_name: str = "",
        assigned_to: object = "",
        note: str = "",
    ) -> None:
        self.step += 1
        self.rows.append({
            "Step": self.step, "Run": self.run, "Phase": phase,
            "Workflow": "" if workflow_id is None else workflow_id,
            "RoleId": "" if role_id is None else role_id,
            "Role": role_name,
            "AssignedTo": assigned_to, "Status": status, "Note": note,
        })

    def filter(self, *, phase: str | None = None, status: str | None = None) -> List[Dict[str, object]]:
        return [
            r for r in self.rows
            if (phase is None or r["Phase"] == phase) and (status is None or r["Status"] == status)
        ]

    def write_csv(self, out: Path) -> None:
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=DECISION_FIELDS)
            w.writeheader()
            for r in self.rows:
                w.writerow({k: r.get(k, "") for k in DECISION_FIELDS})
