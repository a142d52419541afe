"""Allocator configuration plus the role and pool registries.

Roles and pools are registered once, before any run, and are treated as
read-only while an assignment pass is in progress. Everything that changes
during a run lives in ``workflow_state.WorkflowSet`` and in the engine's
per-pass candidate queues.

Role rules use the same nested layout as the JSON config::

    {
        "pool": {"name": "student", "pull_after": true},
        "user_alias": "create problem",
        "user_alias_all_types": true,
        "count": 2
    }

Role ids are dense and follow creation order. The double-alias window in
``alias_resolver`` does arithmetic on those ids, so roles of a repeated group
must be registered back to back (``RoleRegistry.create_role_group`` does that).
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

# =============== CONFIG ====================
DEFAULT_CONFIG = {
    # Upper bound on full passes tried by assignment_run()
    "MAX_RUNS": 20,
    # Seed for the shuffling source; None draws from OS entropy
    "SEED": None,
    # CLI only: exit 0 even if slots stay unassigned after MAX_RUNS
    "ALLOW_UNASSIGNED": False,

    # Pool rules every role starts from; per-role "pool" entries win
    "DEFAULT_POOL": {
        "name": "student",
        "pull_after": True,
    },

    # Role definitions, in assignment order. Entries with count > 1 register
    # that many consecutive sibling roles.
    "ROLES": [],

    # Workflow ids to allocate. Empty means "every workflow in the tasks CSV".
    "WORKFLOWS": [],
}

RULE_KEYS = ("pool", "user_alias", "user_alias_all_types", "count")
POOL_KEYS = ("name", "pull_after")


def deep_update(dst: dict, src: dict) -> dict:
    """Recursively merge ``src`` into ``dst`` (in-place)."""

    for key, value in (src or {}).items():
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            deep_update(dst[key], value)
        else:
            dst[key] = copy.deepcopy(value)
    return dst


def build_config(overrides: dict | None = None) -> dict:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if overrides:
        deep_update(cfg, overrides)

    try:
        max_runs = int(cfg.get("MAX_RUNS"))
    except (TypeError, ValueError):
        raise ValueError(f"MAX_RUNS must be an integer, got {cfg.get('MAX_RUNS')!r}")
    if max_runs < 1:
        raise ValueError("MAX_RUNS must be >= 1")
    cfg["MAX_RUNS"] = max_runs

    for entry in cfg.get("ROLES") or []:
        if not isinstance(entry, dict) or not str(entry.get("name") or "").strip():
            raise ValueError("Each role must be an object with a non-empty 'name' field")
    return cfg


def load_config(path: Path | None) -> dict:
    """Build the config from an optional JSON overrides file."""

    if path is None:
        return build_config()
    if not path.exists():
        raise SystemExit(f"Missing file: {path}")
    return build_config(json.loads(path.read_text(encoding="utf-8")))


# -------------------- Roles --------------------
@dataclass(frozen=True)
class RoleRules:
    pool_name: str = "student"
    pull_after: bool = True
    alias_target: Optional[str] = None
    alias_all_types: bool = False
    count: int = 1


@dataclass(frozen=True)
class Role:
    id: int
    name: str
    rules: RoleRules


class RoleRegistry:
    """Ordered role definitions. Ids are list positions and never change."""

    def __init__(self, default_pool: dict | None = None):
        self._default_pool = copy.deepcopy(default_pool or DEFAULT_CONFIG["DEFAULT_POOL"])
        self._roles: List[Role] = []
        self._groups: Dict[int, Tuple[int, ...]] = {}

    def _build_rules(self, rules: dict | None) -> RoleRules:
        rules = rules or {}
        unknown = [k for k in rules if k not in RULE_KEYS]
        if unknown:
            raise KeyError(f"Unknown role rule(s): {', '.join(sorted(unknown))}")

        pool = deep_update(copy.deepcopy(self._default_pool), rules.get("pool") or {})
        unknown = [k for k in pool if k not in POOL_KEYS]
        if unknown:
            raise KeyError(f"Unknown pool rule(s): {', '.join(sorted(unknown))}")

        count = int(rules.get("count", 1))
        if count < 1:
            raise ValueError(f"Role count must be >= 1, got {count}")

        alias = rules.get("user_alias")
        alias = str(alias).strip() if alias is not None else ""
        return RoleRules(
            pool_name=str(pool["name"]),
            pull_after=bool(pool["pull_after"]),
            alias_target=alias or None,
            alias_all_types=bool(rules.get("user_alias_all_types", False)),
            count=count,
        )

    def create_role(self, name: str, rules: dict | None = None) -> Role:
        role = Role(id=len(self._roles), name=name, rules=self._build_rules(rules))
        self._roles.append(role)
        # alias windows index roles by id, so ids must equal list positions
        assert self._roles[role.id] is role
        return role

    def create_role_group(self, name: str, rules: dict | None = None) -> List[Role]:
        """Register ``rules["count"]`` consecutive roles sharing ``name``."""

        count = int((rules or {}).get("count", 1))
        if count < 1:
            raise ValueError(f"Role count must be >= 1, got {count}")
        created = [self.create_role(name, rules) for _ in range(count)]
        ids = tuple(r.id for r in created)
        for rid in ids:
            self._groups[rid] = ids
        return created

    def siblings(self, role_id: int) -> Tuple[int, ...]:
        self.get_role(role_id)
        return self._groups.get(role_id, (role_id,))

    def get_role(self, role_id: int) -> Role:
        if role_id < 0 or role_id >= len(self._roles):
            raise KeyError(f"Unknown role id {role_id}")
        return self._roles[role_id]

    def get_roles(self) -> Tuple[Role, ...]:
        return tuple(self._roles)

    def __len__(self) -> int:
        return len(self._roles)

    def __contains__(self, role_id: object) -> bool:
        return isinstance(role_id, int) and 0 <= role_id < len(self._roles)


def register_roles(registry: RoleRegistry, cfg: dict) -> List[Role]:
    """Register every ``ROLES`` entry from a built config, in order."""

    created: List[Role] = []
    for entry in cfg.get("ROLES") or []:
        name = str(entry["name"]).strip()
        rules = {k: v for k, v in entry.items() if k != "name"}
        if int(rules.get("count", 1)) > 1:
            created.extend(registry.create_role_group(name, rules))
        else:
            created.append(registry.create_role(name, rules))
    return created


# -------------------- Pools --------------------
PoolProvider = Callable[[str], Iterable[object]]


class PoolRegistry:
    """Named, ordered user pools. Users are opaque; only equality matters."""

    def __init__(self):
        self._pools: Dict[str, Tuple[object, ...]] = {}

    def add_pool(self, name: str, users: Iterable[object]) -> Tuple[object, ...]:
        self._pools[name] = tuple(users)
        return self._pools[name]

    def get_pool(self, name: str) -> Optional[Tuple[object, ...]]:
        return self._pools.get(name)

    def get_pools(self) -> Dict[str, Tuple[object, ...]]:
        return dict(self._pools)

    def names(self) -> List[str]:
        return list(self._pools)

    def load_pools(self, provider: PoolProvider, names: Sequence[str]) -> None:
        for name in names:
            self.add_pool(name, provider(name))

    def __len__(self) -> int:
        return len(self._pools)
