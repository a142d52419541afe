"""Errors raised by the workflow allocator.

Every error here aborts the run. An unassigned slot after a pass is *not* an
error: it is data, inspected with ``workflow_state.has_errors`` and retried by
the orchestrator.
"""

from __future__ import annotations


class AllocationError(Exception):
    """Base class for fatal allocation failures."""


class NoRolesDefined(AllocationError):
    def __init__(self) -> None:
        super().__init__("Roles are not defined for allocation.")


class NoPoolsDefined(AllocationError):
    def __init__(self) -> None:
        super().__init__("Pools are not defined for allocation.")


class NoWorkflowsDefined(AllocationError):
    def __init__(self) -> None:
        super().__init__("No workflows to allocate to.")


class UnknownPool(AllocationError):
    def __init__(self, pool_name: str, role_name: str) -> None:
        self.pool_name = pool_name
        self.role_name = role_name
        super().__init__(f"Role {role_name!r} draws from unknown pool {pool_name!r}")


class SlotAlreadyAssigned(AllocationError):
    """A cell was visited twice in one pass. Always an engine bug."""

    def __init__(self, workflow_id, role_id: int, assignee) -> None:
        self.workflow_id = workflow_id
        self.role_id = role_id
        self.assignee = assignee
        super().__init__(
            f"Workflow {workflow_id!r} role {role_id} is already assigned to {assignee!r}"
        )


class UnknownTaskInstance(AllocationError):
    def __init__(self, role_name: str, workflow_id) -> None:
        self.role_name = role_name
        self.workflow_id = workflow_id
        super().__init__(
            f"Unknown task instance id to assign for role {role_name!r} of workflow {workflow_id!r}"
        )


class SelfAlias(AllocationError):
    def __init__(self, role_id: int, role_name: str) -> None:
        self.role_id = role_id
        self.role_name = role_name
        super().__init__(f"Role {role_id} ({role_name!r}) resolves its alias to itself")


class AliasNotAssigned(AllocationError):
    def __init__(self, role_id: int, workflow_id=None) -> None:
        self.role_id = role_id
        self.workflow_id = workflow_id
        super().__init__(
            f"Alias of role {role_id} is not assigned; check AliasResolver.has_alias() first"
        )


# Short names used by callers that mirror the precondition checks.
NoRoles = NoRolesDefined
NoPools = NoPoolsDefined
NoWorkflows = NoWorkflowsDefined
