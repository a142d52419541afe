"""Per-workflow slot maps, task-instance bindings and validity checks."""

from __future__ import annotations

from typing import Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

from allocation_config import RoleRegistry
from allocation_errors import SlotAlreadyAssigned, UnknownTaskInstance

WorkflowId = Hashable
# workflow id -> iterable of (task instance id, role type name)
TaskInstanceProvider = Callable[[WorkflowId], Iterable[Tuple[object, str]]]


class _Unassigned:
    """Marker for an empty slot. Distinct from ``None`` and from a missing key."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNASSIGNED"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Unassigned, ())


UNASSIGNED = _Unassigned()

# role id -> user or UNASSIGNED
Workflow = Dict[int, object]


class WorkflowSet:
    """Registered workflows and the state of the current assignment pass."""

    def __init__(self, roles: RoleRegistry, task_provider: TaskInstanceProvider):
        self._roles = roles
        self._task_provider = task_provider
        # None until the first reset
        self._workflows: Dict[WorkflowId, Optional[Workflow]] = {}
        self._bindings: Dict[WorkflowId, Dict[int, object]] = {}

    def add_workflow(self, workflow_id: WorkflowId) -> None:
        """Register a workflow. Call after every role has been created."""
        self._workflows[workflow_id] = None

    def workflow_ids(self) -> List[WorkflowId]:
        return list(self._workflows)

    def _bind_task_instances(self, workflow_id: WorkflowId) -> Dict[int, object]:
        tasks = list(self._task_provider(workflow_id))
        used = set()
        binding: Dict[int, object] = {}
        for role in self._roles.get_roles():
            for task_id, type_name in tasks:
                if type_name == role.name and task_id not in used:
                    binding[role.id] = task_id
                    used.add(task_id)
                    break
            else:
                raise UnknownTaskInstance(role.name, workflow_id)
        return binding

    def reset_workflows(self) -> None:
        """Empty every slot and rebind task instances for all workflows.

        Nothing is replaced unless every workflow could be bound.
        """
        workflows: Dict[WorkflowId, Workflow] = {}
        bindings: Dict[WorkflowId, Dict[int, object]] = {}
        for workflow_id in self._workflows:
            binding = self._bind_task_instances(workflow_id)
            bindings[workflow_id] = binding
            workflows[workflow_id] = {role_id: UNASSIGNED for role_id in binding}
        self._workflows = workflows
        self._bindings = bindings

    def assign(self, workflow_id: WorkflowId, role_id: int, user: object) -> None:
        workflow = self._workflows[workflow_id]
        current = workflow[role_id]
        if current is not UNASSIGNED:
            raise SlotAlreadyAssigned(workflow_id, role_id, current)
        workflow[role_id] = user

    def get_workflow(self, workflow_id: WorkflowId) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    def get_workflows(self) -> Dict[WorkflowId, Optional[Workflow]]:
        return dict(self._workflows)

    def get_task_instance_bindings(self) -> Dict[WorkflowId, Dict[int, object]]:
        return dict(self._bindings)

    def __len__(self) -> int:
        return len(self._workflows)


# -------------------- Validity --------------------
def has_error(workflow: Optional[Mapping[int, object]]) -> bool:
    """True if any slot of the workflow is still unassigned."""
    if workflow is None:
        return True
    return any(user is UNASSIGNED for user in workflow.values())


def has_errors(workflows: Mapping[WorkflowId, Optional[Mapping[int, object]]]) -> bool:
    return any(has_error(workflow) for workflow in workflows.values())


def unassigned_slots(
    workflows: Mapping[WorkflowId, Optional[Mapping[int, object]]],
) -> List[Tuple[WorkflowId, int]]:
    out: List[Tuple[WorkflowId, int]] = []
    for workflow_id, workflow in workflows.items():
        for role_id, user in (workflow or {}).items():
            if user is UNASSIGNED:
                out.append((workflow_id, role_id))
    return out
