"""Principal directory and approver resolution."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Protocol

from .contracts import Principal, WorkflowStep

logger = logging.getLogger(__name__)


class PrincipalDirectory(Protocol):
    """Lookup of principals maintained outside the engine."""

    async def find_by_role(self, role: str) -> List[Principal]:
        """Return all principals holding ``role``."""

    async def find_by_id(self, principal_id: str) -> Optional[Principal]:
        """Return the principal with ``principal_id`` if known."""


class InMemoryPrincipalDirectory(PrincipalDirectory):
    """Directory backed by a dict. Useful for tests and the CLI."""

    def __init__(self, principals: Iterable[Principal] = ()) -> None:
        self._principals: Dict[str, Principal] = {}
        for principal in principals:
            self.add(principal)

    def add(self, principal: Principal) -> None:
        self._principals[principal.id] = principal

    async def find_by_role(self, role: str) -> List[Principal]:
        return [p for p in self._principals.values() if p.role == role]

    async def find_by_id(self, principal_id: str) -> Optional[Principal]:
        return self._principals.get(principal_id)


class ApproverResolver:
    """Turns a step's approver role and IDs into concrete principals."""

    def __init__(self, directory: PrincipalDirectory) -> None:
        self._directory = directory

    async def resolve(self, step: WorkflowStep) -> List[Principal]:
        """Union of explicit approver IDs and role members, deduplicated by ID.

        Explicit IDs unknown to the directory are kept as bare principals so
        they can still act on the step.
        """
        resolved: Dict[str, Principal] = {}
        for principal_id in step.approver_ids:
            if principal_id in resolved:
                continue
            principal = await self._directory.find_by_id(principal_id)
            if principal is None:
                logger.debug(f"Approver {principal_id} not in directory; using bare id")
                principal = Principal(id=principal_id)
            resolved[principal_id] = principal

        if step.approver_role:
            for principal in await self._directory.find_by_role(step.approver_role):
                resolved.setdefault(principal.id, principal)

        return list(resolved.values())

    async def is_authorized(self, step: WorkflowStep, principal_id: str) -> bool:
        if principal_id in step.approver_ids:
            return True
        if step.approver_role:
            principal = await self._directory.find_by_id(principal_id)
            return principal is not None and principal.role == step.approver_role
        return False


__all__ = [
    "ApproverResolver",
    "InMemoryPrincipalDirectory",
    "PrincipalDirectory",
]
