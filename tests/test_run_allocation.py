from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

import providers
import report_allocation as report
import run_allocation as cli
from allocator import build_allocator
from allocation_config import build_config
from tests.utils import make_allocator, read_csv_dicts, tasks_for, write_config, write_pools_csv, write_tasks_csv

ROOT = Path(__file__).resolve().parents[1]

ROLES = [
    {"name": "create problem"},
    {"name": "edit problem", "pool": {"name": "ta"}},
    {"name": "solve problem"},
    {"name": "grade solution", "count": 2},
    {"name": "resolve grades", "user_alias": "grade solution"},
]


def _inputs(tmp_path: Path, *, students: int, workflows: int, max_runs: int = 30) -> dict:
    cfg_path = tmp_path / "config.json"
    write_config(cfg_path, {"ROLES": ROLES, "MAX_RUNS": max_runs, "SEED": 1234})
    names = ["create problem", "edit problem", "solve problem", "grade solution", "grade solution", "resolve grades"]
    tasks_path = tmp_path / "task_instances.csv"
    write_tasks_csv(tasks_path, tasks_for(names, [f"wf{i}" for i in range(1, workflows + 1)]))
    pools_path = tmp_path / "pools.csv"
    write_pools_csv(pools_path, {
        "student": [f"student{i}" for i in range(1, students + 1)],
        "ta": ["ta-ann", "ta-ben", "ta-cat"],
    })
    return {"config": cfg_path, "tasks": tasks_path, "pools": pools_path}


def _argv(tmp_path: Path, paths: dict, *extra: str) -> list:
    return [
        "--config", str(paths["config"]),
        "--tasks", str(paths["tasks"]),
        "--pools", str(paths["pools"]),
        "--out", str(tmp_path / "assignments.csv"),
        "--decision-log", str(tmp_path / "allocation_log.csv"),
        "--report", str(tmp_path / "reports" / "membership.csv"),
        "--summary", str(tmp_path / "reports" / "summary.txt"),
        "--cache-dir", str(tmp_path / "cache"),
        *extra,
    ]


def test_csv_providers(tmp_path: Path) -> None:
    paths = _inputs(tmp_path, students=4, workflows=2)
    tasks = providers.CsvTaskInstanceProvider(paths["tasks"])
    pools = providers.CsvPoolProvider(paths["pools"])

    assert tasks.workflow_ids() == ["wf1", "wf2"]
    assert tasks("wf2")[0] == ("wf2-t1", "create problem")
    assert tasks("missing") == []
    assert pools("ta") == ["ta-ann", "ta-ben", "ta-cat"]
    assert pools.pool_names() == ["student", "ta"]


def test_provider_rejects_missing_columns(tmp_path: Path) -> None:
    bad = tmp_path / "pools.csv"
    bad.write_text("Name,User\nstudent,ana\n", encoding="utf-8")
    with pytest.raises(ValueError):
        providers.CsvPoolProvider(bad)
    with pytest.raises(SystemExit):
        providers.CsvPoolProvider(tmp_path / "absent.csv")


def test_url_sources_are_cached(tmp_path: Path, monkeypatch) -> None:
    fetched = []

    def fake_download(url: str, dest: Path, force: bool = False) -> Path:
        fetched.append(url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text("Pool,User\nstudent,ana\n", encoding="utf-8")
        return dest

    monkeypatch.setattr(providers, "download_if_needed", fake_download)
    url = "https://docs.example.com/export?format=csv&gid=1"
    pools = providers.CsvPoolProvider(url, cache_dir=tmp_path / "cache")

    assert fetched == [url]
    assert pools.path.parent == tmp_path / "cache"
    assert pools("student") == ["ana"]


def test_build_allocator_from_config() -> None:
    cfg = build_config({"ROLES": ROLES, "WORKFLOWS": ["wf2"]})
    names = ["create problem", "edit problem", "solve problem", "grade solution", "grade solution", "resolve grades"]
    task_map = tasks_for(names, ["wf1", "wf2"])
    allocator = build_allocator(
        cfg,
        lambda wid: task_map[wid],
        lambda name: {"student": ["s1", "s2", "s3", "s4", "s5"], "ta": ["t1"]}[name],
        workflow_ids=["wf1", "wf2"],
    )

    assert [r.name for r in allocator.get_roles()] == names
    assert allocator.roles.siblings(3) == (3, 4)
    assert set(allocator.get_pools()) == {"student", "ta"}
    assert list(allocator.get_workflows()) == ["wf2"]
    result = allocator.assignment_run(cfg["MAX_RUNS"])
    wf = result.workflows["wf2"]
    assert wf[5] == wf[3]


def test_main_writes_outputs(tmp_path: Path) -> None:
    paths = _inputs(tmp_path, students=8, workflows=3)

    assert cli.main(_argv(tmp_path, paths)) == 0

    rows = read_csv_dicts(tmp_path / "assignments.csv")
    assert len(rows) == 3 * 6
    assert all(r["Status"] == "ASSIGNED" for r in rows)
    for wid in ("wf1", "wf2", "wf3"):
        slots = {int(r["RoleId"]): r for r in rows if r["Workflow"] == wid}
        assert slots[5]["AssignedTo"] == slots[3]["AssignedTo"]
        assert slots[5]["AliasOf"] == "grade solution"
        assert slots[1]["AssignedTo"].startswith("ta-")
        assert slots[0]["TaskInstance"] == f"{wid}-t1"
        independent = [slots[i]["AssignedTo"] for i in (0, 2, 3, 4)]
        assert len(set(independent)) == 4

    log_rows = read_csv_dicts(tmp_path / "allocation_log.csv")
    assert any(r["Phase"] == "retry" and r["Status"] == "Valid" for r in log_rows)

    members = read_csv_dicts(tmp_path / "reports" / "membership.csv")
    assert len(members) == 8
    assert "is create problem?" in members[0]
    assert "is grade solution #3?" in members[0]
    assert "is edit problem?" not in members[0]
    summary = (tmp_path / "reports" / "summary.txt").read_text(encoding="utf-8")
    assert "Total student users: 8" in summary
    assert "Unassigned slots: 0" in summary


def test_main_flags_unassigned_slots(tmp_path: Path) -> None:
    # two students cannot fill four independent student slots
    paths = _inputs(tmp_path, students=2, workflows=1, max_runs=3)

    assert cli.main(_argv(tmp_path, paths)) == 1
    assert cli.main(_argv(tmp_path, paths, "--allow-unassigned")) == 0

    rows = read_csv_dicts(tmp_path / "assignments.csv")
    assert any(r["Status"] == "UNASSIGNED" and r["AssignedTo"] == "" for r in rows)
    summary = (tmp_path / "reports" / "summary.txt").read_text(encoding="utf-8")
    assert "Total runs: 3" in summary


def test_script_runs_as_subprocess(tmp_path: Path) -> None:
    paths = _inputs(tmp_path, students=6, workflows=2)
    subprocess.check_call(
        [sys.executable, str(ROOT / "run_allocation.py"), *_argv(tmp_path, paths), "--seed", "7", "--max-runs", "40"],
        cwd=tmp_path,
    )
    assert (tmp_path / "assignments.csv").exists()


def test_membership_rows_mark_role_holders() -> None:
    allocator, _ = make_allocator(
        roles=[("author", None), ("reviewer", {"user_alias": "author"}), ("helper", {"pool": {"name": "staff"}})],
        pools={"student": ["ana", "bo", "cy"], "staff": ["dee"]},
        workflows=["w1", "w2"],
    )
    result = allocator.assignment_run(max_runs=1)
    rows = report.build_membership_rows(result, "student", allocator.get_pool("student"))

    assert rows == [
        {"User": "ana", "is author?": "YES", "is reviewer?": "YES"},
        {"User": "bo", "is author?": "YES", "is reviewer?": "YES"},
        {"User": "cy", "is author?": "NO", "is reviewer?": "NO"},
    ]
    lines = report.summary_lines(result, rows, "student")
    assert "Users without any role: cy" in lines
