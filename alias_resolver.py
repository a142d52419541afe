"""User-alias resolution between roles of the same workflow.

A role with ``user_alias`` set must be filled by whoever holds the first role
carrying that name. Roles that repeat inside a workflow (``count > 1``) can
also set ``user_alias_all_types``: once one sibling instance has been filled,
the remaining siblings inside the ``count - 1`` window on either side are
allocated independently instead of all collapsing onto the same person.
"""

from __future__ import annotations

from typing import Mapping, Optional

from allocation_config import Role, RoleRegistry
from allocation_errors import AliasNotAssigned, SelfAlias
from workflow_state import UNASSIGNED


class AliasResolver:
    def __init__(self, roles: RoleRegistry):
        self._roles = roles

    def _sibling_claimed(self, role: Role, workflow: Mapping[int, object]) -> bool:
        """True if a sibling instance within the window is already assigned."""
        window = role.rules.count - 1

        # search down
        for i in range(role.id - 1, role.id - 1 - window, -1):
            if i < 0:
                break
            if workflow.get(i, UNASSIGNED) is not UNASSIGNED and self._roles.get_role(i).name == role.name:
                return True

        # search up
        for i in range(role.id + 1, role.id + 1 + window):
            if i not in self._roles:
                break
            if workflow.get(i, UNASSIGNED) is not UNASSIGNED and self._roles.get_role(i).name == role.name:
                return True
        return False

    def find_alias(self, role_id: int, workflow: Mapping[int, object]) -> Optional[int]:
        """Return the role id this role aliases in ``workflow``, or None."""
        role = self._roles.get_role(role_id)
        target = role.rules.alias_target
        if target is None:
            return None

        for candidate in self._roles.get_roles():
            if candidate.name != target:
                continue
            if candidate.id == role_id:
                raise SelfAlias(role_id, role.name)
            if role.rules.alias_all_types and role.rules.count > 1 and self._sibling_claimed(role, workflow):
                return None
            return candidate.id

        # target name matches no registered role
        return None

    def has_alias(self, role_id: int, workflow: Mapping[int, object]) -> bool:
        alias_id = self.find_alias(role_id, workflow)
        return alias_id is not None and workflow.get(alias_id, UNASSIGNED) is not UNASSIGNED

    def alias_value(self, role_id: int, workflow: Mapping[int, object], workflow_id=None) -> object:
        """User holding this role's alias target. Call ``has_alias`` first."""
        alias_id = self.find_alias(role_id, workflow)
        if alias_id is None or workflow.get(alias_id, UNASSIGNED) is UNASSIGNED:
            raise AliasNotAssigned(role_id, workflow_id)
        return workflow[alias_id]
