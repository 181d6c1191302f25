"""
Reconciliation engine interface and the in-memory engine.

The orchestrator only declares intent. An engine owns the declared plan and
turns it into real resources when ``resolve`` is called.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from pvecluster.errors import ProvisioningError, ResourceDeclarationError
from pvecluster.models import ResolvedResource, ResourceKind
from pvecluster.plan import PendingRef, ProvisioningPlan, ResourceDeclaration, ResourceSpec, substitute_refs

logger = logging.getLogger(__name__)


class ReconciliationEngine(ABC):
    """Narrow interface between the orchestrator and the infrastructure runtime."""

    def __init__(self) -> None:
        self.plan = ProvisioningPlan()

    def declare(self, spec: ResourceSpec, dependencies: Iterable[PendingRef] = ()) -> PendingRef:
        """Add *spec* to the plan and return a reference to it."""
        return self.plan.add(spec, tuple(dependencies))

    def resolve(self, plan: Optional[ProvisioningPlan] = None) -> Dict[str, ResolvedResource]:
        """Realise every declaration in dependency order.

        Args:
            plan: Plan to resolve, defaults to the one built through ``declare``

        Returns:
            Mapping of resource name to its realised identifier and attributes

        Raises:
            PlanValidationError: If the plan is not a valid DAG
            ResourceDeclarationError: If a resource cannot be realised
        """
        plan = plan if plan is not None else self.plan
        plan.validate()

        resolved: Dict[str, ResolvedResource] = {}
        for decl in plan.topological_order():
            ids = {dep: resolved[dep].resource_id for dep in decl.depends_on}
            args = substitute_refs(decl.spec.args, ids)
            try:
                resolved[decl.name] = self.realize(decl, args)
            except ProvisioningError as e:
                if e.node_name is None:
                    e.node_name = decl.spec.node_name
                raise
            except Exception as e:
                raise ResourceDeclarationError(
                    f"failed to realise {decl.kind.value} {decl.name!r}: {e}", node_name=decl.spec.node_name
                ) from e
            logger.info(f"✅ {decl.kind.value} {decl.name!r} -> {resolved[decl.name].resource_id}")
        return resolved

    @abstractmethod
    def realize(self, declaration: ResourceDeclaration, args: Dict[str, Any]) -> ResolvedResource:
        """Create or update one resource; *args* has dependency ids filled in."""


class RecordingEngine(ReconciliationEngine):
    """Engine that realises nothing and assigns predictable identifiers.

    Used for dry runs and tests. ``realized`` keeps the order in which
    declarations were realised together with their resolved arguments.
    """

    def __init__(self, first_vmid: int = 100, addresses: Optional[Dict[str, List[str]]] = None) -> None:
        super().__init__()
        self.next_vmid = first_vmid
        self.addresses = addresses or {}
        self.realized: List[Dict[str, Any]] = []

    def realize(self, declaration: ResourceDeclaration, args: Dict[str, Any]) -> ResolvedResource:
        kind = declaration.kind
        if kind in (ResourceKind.IMAGE, ResourceKind.SNIPPET):
            resource_id = f"{args['datastore_id']}:{args['content_type']}/{args['file_name']}"
        else:
            resource_id = str(args.get("vmid") or self.next_vmid)
            self.next_vmid = max(self.next_vmid, int(resource_id)) + 1

        attributes: Dict[str, Any] = {}
        if kind.is_compute and declaration.spec.node_name in self.addresses:
            attributes["ipv4_addresses"] = list(self.addresses[declaration.spec.node_name])

        self.realized.append({"name": declaration.name, "kind": kind, "args": args, "id": resource_id})
        return ResolvedResource(declaration.name, resource_id, attributes)
