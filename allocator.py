"""Randomized user allocator for workflow roles.

Assigns a pool of users to the roles of every registered workflow:

* every role slot of every workflow gets one user
* a user never holds two slots of the same workflow, unless one slot's role
  is a user alias of the other (then the same user is required)
* pools are shuffled for each pass; ``pull_after`` pools hand out each user
  once per pass, the others are reshuffled for every slot

The greedy pass has no backtracking, so it can leave slots unassigned. Use
``Allocator.assignment_run()`` which repeats the pass until a run comes out
clean or ``max_runs`` is exhausted. The last run is returned either way, so
always check ``AllocationResult.has_errors``.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from alias_resolver import AliasResolver
from allocation_config import PoolProvider, PoolRegistry, Role, RoleRegistry, register_roles
from allocation_errors import (
    NoPoolsDefined,
    NoRolesDefined,
    NoWorkflowsDefined,
    SlotAlreadyAssigned,
    UnknownPool,
)
from allocation_log import DecisionLogger
from workflow_state import (
    UNASSIGNED,
    TaskInstanceProvider,
    Workflow,
    WorkflowId,
    WorkflowSet,
    has_error,
    has_errors,
    unassigned_slots,
)


def can_enter_workflow(roles: RoleRegistry, user: object, workflow: Mapping[int, object], role_id: int) -> bool:
    """Return False if ``user`` already holds a conflicting slot in ``workflow``.

    A slot whose role declares ``role_id``'s name as its user alias is not a
    conflict: the alias requires the same person.
    """
    role = roles.get_role(role_id)
    for other_id, assignee in workflow.items():
        if assignee is UNASSIGNED:
            continue
        if assignee == user:
            if roles.get_role(other_id).rules.alias_target == role.name:
                continue
            return False
    return True


class AssignmentEngine:
    """One greedy pass over all workflows."""

    def __init__(
        self,
        roles: RoleRegistry,
        pools: PoolRegistry,
        workflows: WorkflowSet,
        rng=None,
        log: DecisionLogger | None = None,
    ):
        self.roles = roles
        self.pools = pools
        self.workflows = workflows
        self.aliases = AliasResolver(roles)
        # anything with shuffle(list); random.Random(seed) for reproducible runs
        self.random = rng if rng is not None else random.Random()
        self.log = log if log is not None else DecisionLogger()
        self.roles_queue: Dict[int, List[object]] = {}

    def check_prerequisites(self) -> None:
        if len(self.roles) == 0:
            raise NoRolesDefined()
        if len(self.pools) == 0:
            raise NoPoolsDefined()
        if len(self.workflows) == 0:
            raise NoWorkflowsDefined()

    def build_queues(self) -> Dict[int, List[object]]:
        queues: Dict[int, List[object]] = {}
        for role in self.roles.get_roles():
            pool = self.pools.get_pool(role.rules.pool_name)
            if pool is None:
                raise UnknownPool(role.rules.pool_name, role.name)
            queue = list(pool)
            self.random.shuffle(queue)
            queues[role.id] = queue
            self.log.log("queue", "Built", role_id=role.id, role_name=role.name,
                         note=f"pool={role.rules.pool_name} size={len(queue)}")
        return queues

    def can_enter_workflow(self, user: object, workflow: Mapping[int, object], role_id: int) -> bool:
        return can_enter_workflow(self.roles, user, workflow, role_id)

    def _assign_slot(self, workflow_id: WorkflowId, role: Role) -> None:
        workflow = self.workflows.get_workflow(workflow_id)
        current = workflow[role.id]
        if current is not UNASSIGNED:
            raise SlotAlreadyAssigned(workflow_id, role.id, current)

        queue = self.roles_queue[role.id]
        if not role.rules.pull_after:
            self.random.shuffle(queue)

        if self.aliases.has_alias(role.id, workflow):
            user = self.aliases.alias_value(role.id, workflow, workflow_id)
            self.workflows.assign(workflow_id, role.id, user)
            self.log.log("assign", "Alias", workflow_id=workflow_id, role_id=role.id,
                         role_name=role.name, assigned_to=user, note=f"alias of {role.rules.alias_target}")
            return

        for pos, user in enumerate(queue):
            if not self.can_enter_workflow(user, workflow, role.id):
                continue
            self.workflows.assign(workflow_id, role.id, user)
            if role.rules.pull_after:
                del queue[pos]
            self.log.log("assign", "Assigned", workflow_id=workflow_id, role_id=role.id,
                         role_name=role.name, assigned_to=user)
            return

        self.log.log("assign", "Unassigned", workflow_id=workflow_id, role_id=role.id,
                     role_name=role.name, note=f"no eligible candidate in queue of {len(queue)}")

    def run_assignment(self) -> Dict[WorkflowId, Workflow]:
        """Reset every workflow and fill it once. Returns the workflow slot maps."""
        self.check_prerequisites()
        self.workflows.reset_workflows()
        self.roles_queue = self.build_queues()

        roles = self.roles.get_roles()
        for workflow_id in self.workflows.workflow_ids():
            for role in roles:
                self._assign_slot(workflow_id, role)

        self.roles_queue = {}
        return self.workflows.get_workflows()


class RetryOrchestrator:
    """Repeats full passes until one leaves no slot unassigned."""

    def __init__(self, engine, log: DecisionLogger | None = None):
        self.engine = engine
        self.log = log if log is not None else getattr(engine, "log", None) or DecisionLogger()
        self.run_count = 0

    def assignment_run(self, max_runs: int = 20) -> Dict[WorkflowId, Workflow]:
        if max_runs < 1:
            raise ValueError("max_runs must be >= 1")

        workflows: Dict[WorkflowId, Workflow] = {}
        for _ in range(max_runs):
            self.run_count += 1
            self.log.start_run()
            workflows = self.engine.run_assignment()
            if not has_errors(workflows):
                self.log.log("retry", "Valid", note=f"clean after run {self.run_count}")
                return workflows
            self.log.log("retry", "Errors", note=f"{len(unassigned_slots(workflows))} unassigned slot(s)")
        # TODO: keep the attempt with the fewest unassigned slots instead of the last one
        return workflows


@dataclass
class AllocationResult:
    roles: Tuple[Role, ...]
    workflows: Dict[WorkflowId, Optional[Workflow]]
    bindings: Dict[WorkflowId, Dict[int, object]]
    run_count: int

    @property
    def has_errors(self) -> bool:
        return has_errors(self.workflows)

    def unassigned(self) -> List[Tuple[WorkflowId, int]]:
        return unassigned_slots(self.workflows)


class Allocator:
    """Registries, workflow state, engine and retry loop behind one object."""

    def __init__(
        self,
        task_provider: TaskInstanceProvider,
        rng=None,
        log: DecisionLogger | None = None,
        default_pool: dict | None = None,
    ):
        self.log = log if log is not None else DecisionLogger()
        self.roles = RoleRegistry(default_pool)
        self.pools = PoolRegistry()
        self.workflows = WorkflowSet(self.roles, task_provider)
        self.engine = AssignmentEngine(self.roles, self.pools, self.workflows, rng=rng, log=self.log)
        self.orchestrator = RetryOrchestrator(self.engine, log=self.log)

    # -------- registration --------
    def create_role(self, name: str, rules: dict | None = None) -> Role:
        return self.roles.create_role(name, rules)

    def create_role_group(self, name: str, rules: dict | None = None) -> List[Role]:
        return self.roles.create_role_group(name, rules)

    def add_pool(self, name: str, users: Iterable[object]) -> None:
        self.pools.add_pool(name, users)

    def add_workflow(self, workflow_id: WorkflowId) -> None:
        self.workflows.add_workflow(workflow_id)

    # -------- accessors --------
    def get_roles(self) -> Tuple[Role, ...]:
        return self.roles.get_roles()

    def get_pool(self, name: str):
        return self.pools.get_pool(name)

    def get_pools(self):
        return self.pools.get_pools()

    def get_workflow(self, workflow_id: WorkflowId) -> Optional[Workflow]:
        return self.workflows.get_workflow(workflow_id)

    def get_workflows(self) -> Dict[WorkflowId, Optional[Workflow]]:
        return self.workflows.get_workflows()

    def get_task_instance_bindings(self) -> Dict[WorkflowId, Dict[int, object]]:
        return self.workflows.get_task_instance_bindings()

    @property
    def run_count(self) -> int:
        return self.orchestrator.run_count

    # -------- running --------
    def validate(self) -> None:
        """Fail fast on configuration errors without touching workflow state."""
        self.engine.check_prerequisites()
        empty = {role.id: UNASSIGNED for role in self.roles.get_roles()}
        for role in self.roles.get_roles():
            if self.pools.get_pool(role.rules.pool_name) is None:
                raise UnknownPool(role.rules.pool_name, role.name)
            self.engine.aliases.find_alias(role.id, empty)

    def run_assignment(self) -> Dict[WorkflowId, Workflow]:
        return self.engine.run_assignment()

    def assignment_run(self, max_runs: int = 20) -> AllocationResult:
        self.orchestrator.assignment_run(max_runs)
        return self.result()

    def result(self) -> AllocationResult:
        return AllocationResult(
            roles=self.roles.get_roles(),
            workflows={wid: (dict(wf) if wf is not None else None) for wid, wf in self.get_workflows().items()},
            bindings={wid: dict(b) for wid, b in self.get_task_instance_bindings().items()},
            run_count=self.run_count,
        )

    contains_error = staticmethod(has_error)
    contains_errors = staticmethod(has_errors)


def build_allocator(
    cfg: dict,
    task_provider: TaskInstanceProvider,
    pool_provider: PoolProvider,
    workflow_ids: Sequence[WorkflowId] = (),
    log: DecisionLogger | None = None,
) -> Allocator:
    """Create an allocator from a built config and the two data providers.

    Workflows come from ``cfg["WORKFLOWS"]`` when set, else from ``workflow_ids``.
    """
    allocator = Allocator(
        task_provider,
        rng=random.Random(cfg.get("SEED")),
        log=log,
        default_pool=cfg.get("DEFAULT_POOL"),
    )
    register_roles(allocator.roles, cfg)

    pool_names: List[str] = []
    for role in allocator.get_roles():
        if role.rules.pool_name not in pool_names:
            pool_names.append(role.rules.pool_name)
    allocator.pools.load_pools(pool_provider, pool_names)

    for workflow_id in (cfg.get("WORKFLOWS") or workflow_ids):
        allocator.add_workflow(workflow_id)
    return allocator
