"""CSV-backed task-instance and user-pool providers.

Inputs (either a local path or an ``http(s)`` URL, e.g. a sheet CSV export):

  - task instances CSV : ``Workflow, TaskInstance, Type``
                         one row per task instance, in workflow order
  - pools CSV          : ``Pool, User``
                         one row per pool member, in pool order

URLs are downloaded once into a local cache file; pass ``force=True`` to
refresh it.
"""

from __future__ import annotations

import csv
import hashlib
import io
import ssl
import urllib.request
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Tuple

import certifi

CACHE_DIR = Path(".allocator_cache")

TASK_COLUMNS = ("Workflow", "TaskInstance", "Type")
POOL_COLUMNS = ("Pool", "User")


def trim(s: str) -> str:
    return (s or "").strip()


def is_url(source: str | Path) -> bool:
    return str(source).startswith(("http://", "https://"))


def download_if_needed(url: str, dest: Path, force: bool = False) -> Path:
    if dest.exists() and not force:
        return dest
    dest.parent.mkdir(parents=True, exist_ok=True)
    ctx = ssl.create_default_context(cafile=certifi.where())
    req = urllib.request.Request(url, headers={"User-Agent": "Mozilla/5.0 (WorkflowAllocator/1.0)"})
    with urllib.request.urlopen(req, context=ctx) as resp:
        data = resp.read()
    dest.write_bytes(data)
    return dest


def resolve_source(source: str | Path, cache_dir: Path = CACHE_DIR, force: bool = False) -> Path:
    """Return a local path for ``source``, downloading URLs into ``cache_dir``."""
    if is_url(source):
        digest = hashlib.sha1(str(source).encode("utf-8")).hexdigest()[:12]
        return download_if_needed(str(source), cache_dir / f"{digest}.csv", force=force)
    path = Path(source)
    if not path.exists():
        raise SystemExit(f"Missing file: {path}")
    return path


def read_csv_rows(path: Path, required: Tuple[str, ...]) -> List[Dict[str, str]]:
    text = path.read_bytes().decode("utf-8-sig", errors="replace")
    rdr = csv.DictReader(io.StringIO(text))
    header = [trim(h) for h in (rdr.fieldnames or [])]
    missing = [c for c in required if c not in header]
    if missing:
        raise ValueError(f"{path}: missing column(s) {', '.join(missing)}")
    return [{trim(k): trim(v) for k, v in row.items() if k is not None} for row in rdr]


class CsvTaskInstanceProvider:
    """Task instances per workflow, as ``(task_instance_id, type_name)`` pairs."""

    def __init__(self, source: str | Path, cache_dir: Path = CACHE_DIR, force: bool = False):
        self.path = resolve_source(source, cache_dir, force)
        self._by_workflow: Dict[str, List[Tuple[str, str]]] = defaultdict(list)
        for row in read_csv_rows(self.path, TASK_COLUMNS):
            wid = row["Workflow"]
            if not wid:
                continue
            self._by_workflow[wid].append((row["TaskInstance"], row["Type"]))

    def workflow_ids(self) -> List[str]:
        return list(self._by_workflow)

    def __call__(self, workflow_id) -> List[Tuple[str, str]]:
        return list(self._by_workflow.get(str(workflow_id), []))


class CsvPoolProvider:
    """Pool members by pool name. Users are their identifier strings."""

    def __init__(self, source: str | Path, cache_dir: Path = CACHE_DIR, force: bool = False):
        self.path = resolve_source(source, cache_dir, force)
        self._pools: Dict[str, List[str]] = defaultdict(list)
        for row in read_csv_rows(self.path, POOL_COLUMNS):
            pool, user = row["Pool"], row["User"]
            if pool and user and user not in self._pools[pool]:
                self._pools[pool].append(user)

    def pool_names(self) -> List[str]:
        return list(self._pools)

    def __call__(self, pool_name: str) -> List[str]:
        return list(self._pools.get(pool_name, []))
